from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from .persistence import Persistence

log = logging.getLogger("solix_bridge.credentials")


class CredentialState(str, enum.Enum):
    NO_CREDENTIAL = "no_credential"
    EXPIRED = "expired"
    CACHED = "cached"
    FRESH_CREDENTIAL = "fresh_credential"
    SESSION = "session"
    CLEARED = "cleared"


@dataclass(frozen=True)
class Credential:
    """Auth token plus absolute expiry, as returned by the cloud login.

    ``data`` is the full login record; it is what gets persisted and what the
    API client needs to rebuild an authenticated session.
    """

    token: str
    expires_at: datetime
    data: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_login_data(cls, data: Mapping[str, Any]) -> Credential:
        token = data.get("auth_token")
        if not isinstance(token, str) or not token:
            raise ValueError("'auth_token' must be a non-empty string")

        expires = data.get("token_expires_at")
        if isinstance(expires, bool) or not isinstance(expires, (int, float)):
            raise ValueError("'token_expires_at' must be a unix timestamp")

        return cls(
            token=token,
            expires_at=datetime.fromtimestamp(float(expires), tz=timezone.utc),
            data=dict(data),
        )

    def to_record(self) -> Dict[str, Any]:
        record = dict(self.data)
        record["auth_token"] = self.token
        record["token_expires_at"] = int(self.expires_at.timestamp())
        return record


def is_usable(credential: Credential, now: datetime) -> bool:
    return credential.expires_at > now


def classify(credential: Optional[Credential], now: datetime) -> CredentialState:
    if credential is None:
        return CredentialState.NO_CREDENTIAL
    if not is_usable(credential, now):
        return CredentialState.EXPIRED
    return CredentialState.CACHED


class CredentialCache:
    """The persisted login record, seen as a Credential.

    Only the cycle orchestrator writes through this cache.
    """

    def __init__(self, persistence: Persistence) -> None:
        self._persistence = persistence

    def retrieve(self) -> Optional[Credential]:
        try:
            record = self._persistence.retrieve()
        except Exception as exc:
            log.warning("login store read failed; treating as empty: %r", exc)
            return None

        if not record:
            return None

        try:
            return Credential.from_login_data(record)
        except ValueError as exc:
            log.warning("ignoring malformed login record: %s", exc)
            return None

    def store(self, credential: Credential) -> None:
        self._persistence.store(credential.to_record())

    def clear(self) -> None:
        self._persistence.clear()
