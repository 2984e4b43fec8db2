from __future__ import annotations

from typing import List

import pytest

from fakes import FakeSession
from solix_bridge.collector import CollectorError, ItemFailure, Site, SiteDataCollector
from solix_bridge.solix_api import ApiResponse, SolixAuthRejected

HOME = Site(site_id="site-home", site_name="Home")


def _collector(sleeps: List[float]) -> SiteDataCollector:
    return SiteDataCollector(retry_delay_s=1.0, sleep_fn=sleeps.append)


def test_empty_overview_is_retried_once_after_fixed_delay() -> None:
    class _FlakySession(FakeSession):
        def __init__(self) -> None:
            super().__init__([{"site_id": "site-home", "site_name": "Home"}])
            self.empty_left = 1

        def site_homepage(self) -> ApiResponse:
            if self.empty_left:
                self.empty_left -= 1
                return ApiResponse(code=0, msg="success", data=None)
            return super().site_homepage()

    sleeps: List[float] = []
    overview = _collector(sleeps).site_homepage(_FlakySession())

    assert overview == {"site_list": [{"site_id": "site-home", "site_name": "Home"}]}
    assert sleeps == [1.0]


def test_overview_fails_after_second_empty_result() -> None:
    sleeps: List[float] = []
    with pytest.raises(CollectorError) as exc:
        _collector(sleeps).site_homepage(FakeSession([], homepage_empty=True))

    assert "site_homepage" in str(exc.value)
    assert exc.value.auth_rejected is False
    assert sleeps == [1.0]


def test_same_retry_policy_applies_to_per_site_items() -> None:
    session = FakeSession([], failing={("scen_info", "site-home"): 1})
    sleeps: List[float] = []

    info = _collector(sleeps).scenario_info(session, HOME)

    assert info["site_id"] == "site-home"
    assert session.calls == [("scen_info", "site-home"), ("scen_info", "site-home")]
    assert sleeps == [1.0]


def test_error_code_counts_as_failure() -> None:
    class _ErrorCodeSession(FakeSession):
        def get_site_device_param(self, site_id: str, param_type: str) -> ApiResponse:
            self.calls.append(("get_site_device_param", site_id))
            return ApiResponse(code=10000, msg="system busy", data=None)

    session = _ErrorCodeSession([])
    with pytest.raises(CollectorError) as exc:
        _collector([]).device_schedule(session, HOME)

    assert "system busy" in str(exc.value)
    assert len(session.calls) == 2


def test_device_schedule_returns_param_data() -> None:
    schedule = _collector([]).device_schedule(FakeSession([]), HOME)

    assert schedule == {"ranges": [], "site": "site-home", "param_type": "4"}


def test_missing_param_data_is_a_failure() -> None:
    class _NoParamSession(FakeSession):
        def get_site_device_param(self, site_id: str, param_type: str) -> ApiResponse:
            return ApiResponse(code=0, msg="success", data={"other": 1})

    with pytest.raises(CollectorError):
        _collector([]).device_schedule(_NoParamSession([]), HOME)


def test_rejected_token_is_not_retried() -> None:
    class _RejectingSession(FakeSession):
        def scen_info(self, site_id: str) -> ApiResponse:
            self.calls.append(("scen_info", site_id))
            raise SolixAuthRejected("401")

    session = _RejectingSession([])
    sleeps: List[float] = []
    with pytest.raises(CollectorError) as exc:
        _collector(sleeps).scenario_info(session, HOME)

    assert exc.value.auth_rejected is True
    assert len(session.calls) == 1
    assert sleeps == []


def test_list_sites_keeps_order_and_skips_entries_without_id() -> None:
    overview = {
        "site_list": [
            {"site_id": "a", "site_name": "Home"},
            {"site_name": "Orphan"},
            "junk",
            {"site_id": "b", "site_name": ""},
        ]
    }

    sites = _collector([]).list_sites(overview)

    assert sites == [Site(site_id="a", site_name="Home"), Site(site_id="b", site_name="b")]


def test_list_sites_handles_missing_list() -> None:
    assert _collector([]).list_sites({}) == []
    assert _collector([]).list_sites({"site_list": None}) == []
    assert _collector([]).list_sites(None) == []


def test_collect_for_site_returns_every_item() -> None:
    payloads = _collector([]).collect_for_site(FakeSession([]), HOME)

    assert list(payloads) == ["scenInfo", "schedule"]
    assert payloads["scenInfo"]["site_id"] == "site-home"


def test_collect_for_site_isolates_a_failed_item() -> None:
    session = FakeSession([], failing={("scen_info", "site-home"): None})
    failures: List[ItemFailure] = []

    payloads = _collector([]).collect_for_site(session, HOME, failures=failures)

    assert list(payloads) == ["schedule"]
    assert [f.item for f in failures] == ["scenInfo"]
    assert failures[0].auth_rejected is False


def test_collect_for_site_contains_unexpected_errors() -> None:
    class _BrokenSession(FakeSession):
        def get_site_device_param(self, site_id: str, param_type: str) -> ApiResponse:
            raise KeyError("surprise")

    failures: List[ItemFailure] = []
    payloads = _collector([]).collect_for_site(_BrokenSession([]), HOME, failures=failures)

    assert list(payloads) == ["scenInfo"]
    assert isinstance(failures[0].error, KeyError)


def test_collect_for_site_flags_rejected_token() -> None:
    class _RejectingSession(FakeSession):
        def scen_info(self, site_id: str) -> ApiResponse:
            raise SolixAuthRejected("401")

    failures: List[ItemFailure] = []
    _collector([]).collect_for_site(_RejectingSession([]), HOME, failures=failures)

    assert failures[0].auth_rejected is True
