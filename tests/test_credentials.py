from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import pytest

from fakes import NOW, login_record
from solix_bridge.credentials import (
    Credential,
    CredentialCache,
    CredentialState,
    classify,
    is_usable,
)
from solix_bridge.persistence import FilePersistence, PersistenceError


def _credential(expires_at: datetime) -> Credential:
    return Credential(token="tok", expires_at=expires_at)


@pytest.mark.parametrize("offset_s", [1, 60, 3600, 86400 * 30])
def test_is_usable_when_expiry_in_future(offset_s: int) -> None:
    assert is_usable(_credential(NOW + timedelta(seconds=offset_s)), NOW) is True


@pytest.mark.parametrize("offset_s", [0, -1, -3600])
def test_not_usable_at_or_after_expiry(offset_s: int) -> None:
    assert is_usable(_credential(NOW + timedelta(seconds=offset_s)), NOW) is False


def test_classify_maps_cache_reads_to_states() -> None:
    assert classify(None, NOW) is CredentialState.NO_CREDENTIAL
    assert classify(_credential(NOW - timedelta(seconds=1)), NOW) is CredentialState.EXPIRED
    assert classify(_credential(NOW + timedelta(seconds=1)), NOW) is CredentialState.CACHED


def test_credential_from_login_data_keeps_full_record() -> None:
    record = login_record(expires_in_s=3600)
    credential = Credential.from_login_data(record)

    assert credential.token == "tok-1"
    assert credential.expires_at == NOW + timedelta(hours=1)
    assert credential.expires_at.tzinfo is timezone.utc
    assert credential.to_record() == record


@pytest.mark.parametrize(
    "record",
    [
        {"token_expires_at": 1},
        {"auth_token": "", "token_expires_at": 1},
        {"auth_token": "tok"},
        {"auth_token": "tok", "token_expires_at": "tomorrow"},
        {"auth_token": "tok", "token_expires_at": True},
    ],
)
def test_credential_rejects_malformed_records(record: Dict[str, Any]) -> None:
    with pytest.raises(ValueError):
        Credential.from_login_data(record)


def test_file_persistence_tolerates_missing_and_corrupt_files(tmp_path: Path) -> None:
    path = tmp_path / "login.json"
    store = FilePersistence(path)
    assert store.retrieve() is None

    path.write_text("{not json", encoding="utf-8")
    assert store.retrieve() is None

    path.write_text(json.dumps(["a", "list"]), encoding="utf-8")
    assert store.retrieve() is None


def test_file_persistence_store_overwrites_and_clear_removes(tmp_path: Path) -> None:
    path = tmp_path / "state" / "login.json"
    store = FilePersistence(path)

    store.store({"auth_token": "a"})
    store.store({"auth_token": "b"})
    assert store.retrieve() == {"auth_token": "b"}
    assert not path.with_suffix(".json.tmp").exists()

    store.clear()
    assert not path.exists()
    store.clear()


def test_file_persistence_store_failure_is_raised(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    store = FilePersistence(blocker / "login.json")

    with pytest.raises(PersistenceError):
        store.store({"auth_token": "a"})


def test_cache_roundtrip_through_file(tmp_path: Path) -> None:
    cache = CredentialCache(FilePersistence(tmp_path / "login.json"))
    assert cache.retrieve() is None

    credential = Credential.from_login_data(login_record())
    cache.store(credential)

    again = cache.retrieve()
    assert again is not None
    assert again.token == credential.token
    assert again.expires_at == credential.expires_at
    assert again.data["user_id"] == "user-1"

    cache.clear()
    assert cache.retrieve() is None


def test_cache_retrieve_never_raises_on_storage_error() -> None:
    class _Exploding:
        def retrieve(self) -> Optional[Dict[str, Any]]:
            raise OSError("disk gone")

        def store(self, record: Dict[str, Any]) -> None:
            raise AssertionError("unexpected")

        def clear(self) -> None:
            raise AssertionError("unexpected")

    assert CredentialCache(_Exploding()).retrieve() is None


def test_cache_retrieve_ignores_malformed_record(tmp_path: Path) -> None:
    path = tmp_path / "login.json"
    path.write_text(json.dumps({"auth_token": "tok"}), encoding="utf-8")

    assert CredentialCache(FilePersistence(path)).retrieve() is None
