from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from .auth import SessionLike
from .solix_api import ApiResponse, ParamType, SolixApiError, SolixAuthRejected

log = logging.getLogger("solix_bridge.collector")

SleepFn = Callable[[float], None]

ITEM_SITE_HOMEPAGE = "site_homepage"
ITEM_SCENARIO_INFO = "scenario_info"
ITEM_DEVICE_SCHEDULE = "device_schedule"

# Per-site payload names, in publish order.
SITE_SCENARIO_INFO = "scenInfo"
SITE_SCHEDULE = "schedule"


class CollectorError(RuntimeError):
    """Raised when a collection call yields nothing usable after its retry."""

    def __init__(self, message: str, *, auth_rejected: bool = False) -> None:
        super().__init__(message)
        self.auth_rejected = auth_rejected


@dataclass(frozen=True)
class Site:
    site_id: str
    site_name: str


@dataclass(frozen=True)
class ItemFailure:
    item: str
    error: Exception

    @property
    def auth_rejected(self) -> bool:
        return isinstance(self.error, CollectorError) and self.error.auth_rejected


class SiteDataCollector:
    """Fetches the items the bridge republishes.

    Every call gets the same retry policy: a transport error, an error code or
    an empty ``data`` is retried once after ``retry_delay_s``. A rejected auth
    token is never retried.
    """

    def __init__(self, *, retry_delay_s: float = 1.0, sleep_fn: SleepFn | None = None) -> None:
        self.retry_delay_s = max(0.0, float(retry_delay_s))
        self._sleep = sleep_fn or time.sleep

    def site_homepage(self, session: SessionLike) -> Any:
        return self._fetch(ITEM_SITE_HOMEPAGE, session.site_homepage, _data)

    def list_sites(self, overview: Any) -> List[Site]:
        raw = overview.get("site_list") if isinstance(overview, Mapping) else None
        sites: List[Site] = []
        for entry in raw or []:
            if not isinstance(entry, Mapping):
                continue
            site_id = entry.get("site_id")
            if not site_id:
                log.warning("skipping site without site_id: %r", entry.get("site_name"))
                continue
            sites.append(Site(site_id=str(site_id), site_name=str(entry.get("site_name") or site_id)))
        return sites

    def scenario_info(self, session: SessionLike, site: Site) -> Any:
        return self._fetch(
            f"{ITEM_SCENARIO_INFO}[{site.site_name}]",
            lambda: session.scen_info(site.site_id),
            _data,
        )

    def device_schedule(self, session: SessionLike, site: Site) -> Any:
        return self._fetch(
            f"{ITEM_DEVICE_SCHEDULE}[{site.site_name}]",
            lambda: session.get_site_device_param(site.site_id, ParamType.LOAD_CONFIGURATION),
            _param_data,
        )

    def iter_site_items(
        self,
        session: SessionLike,
        site: Site,
        *,
        failures: Optional[List[ItemFailure]] = None,
    ) -> Iterator[Tuple[str, Any]]:
        """Yield ``(name, payload)`` for each per-site item as soon as it is fetched.

        Items are independent: a failed item is logged, skipped and appended to
        ``failures`` when the caller passes a list.
        """

        fetchers = (
            (SITE_SCENARIO_INFO, self.scenario_info),
            (SITE_SCHEDULE, self.device_schedule),
        )
        for name, fetch in fetchers:
            try:
                payload = fetch(session, site)
            except CollectorError as exc:
                log.warning("skipping %s for site %s: %s", name, site.site_name, exc)
                if failures is not None:
                    failures.append(ItemFailure(name, exc))
                continue
            except Exception as exc:
                log.exception("unexpected failure collecting %s for site %s", name, site.site_name)
                if failures is not None:
                    failures.append(ItemFailure(name, exc))
                continue
            yield name, payload

    def collect_for_site(
        self,
        session: SessionLike,
        site: Site,
        *,
        failures: Optional[List[ItemFailure]] = None,
    ) -> Dict[str, Any]:
        return dict(self.iter_site_items(session, site, failures=failures))

    def _fetch(
        self,
        item: str,
        call: Callable[[], ApiResponse],
        extract: Callable[[ApiResponse], Any],
    ) -> Any:
        last_problem = ""
        for attempt in (1, 2):
            if attempt == 2:
                log.debug("retrying %s in %.1fs (%s)", item, self.retry_delay_s, last_problem)
                self._sleep(self.retry_delay_s)
            try:
                resp = call()
            except SolixAuthRejected as exc:
                raise CollectorError(f"{item}: {exc}", auth_rejected=True) from exc
            except SolixApiError as exc:
                last_problem = str(exc)
                continue

            if resp is None:
                last_problem = "empty response"
                continue
            if not resp.ok:
                last_problem = f"code {resp.code}: {resp.msg}"
                continue
            value = extract(resp)
            if value is None:
                last_problem = "empty data"
                continue
            return value

        raise CollectorError(f"unable to retrieve {item}: {last_problem}")


def _data(resp: ApiResponse) -> Optional[Any]:
    return resp.data


def _param_data(resp: ApiResponse) -> Optional[Any]:
    if isinstance(resp.data, Mapping):
        return resp.data.get("param_data")
    return None
