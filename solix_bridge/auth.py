from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from .credentials import Credential
from .solix_api import (
    LOGIN_BAD_CREDENTIALS_CODE,
    ApiResponse,
    SolixApiError,
    login_data_or_none,
)

log = logging.getLogger("solix_bridge.auth")


class AuthError(RuntimeError):
    """Raised when the cloud refuses or fails the login call."""

    def __init__(self, code: int | None, message: str) -> None:
        super().__init__(f"{message} ({code})" if code is not None else message)
        self.code = code
        self.message = message

    @property
    def bad_credentials(self) -> bool:
        return self.code == LOGIN_BAD_CREDENTIALS_CODE


class SessionError(RuntimeError):
    """Raised when a credential cannot be bound into an API session."""


class SessionLike(Protocol):
    def site_homepage(self) -> ApiResponse: ...

    def scen_info(self, site_id: str) -> ApiResponse: ...

    def get_site_device_param(self, site_id: str, param_type: str) -> ApiResponse: ...


class LoginApi(Protocol):
    def login(self) -> ApiResponse: ...

    def with_login(self, login_data: Mapping[str, Any]) -> SessionLike: ...


class Authenticator:
    def __init__(self, api: LoginApi) -> None:
        self._api = api

    def login(self) -> Credential:
        try:
            resp = self._api.login()
        except SolixApiError as exc:
            raise AuthError(None, f"login request failed: {exc}") from exc

        data = login_data_or_none(resp)
        if data is None:
            raise AuthError(resp.code, resp.msg or "login returned no data")

        try:
            credential = Credential.from_login_data(data)
        except ValueError as exc:
            raise AuthError(resp.code, f"login returned an unusable record: {exc}") from exc

        log.info("logged in; token valid until %s", credential.expires_at.isoformat())
        return credential

    def establish_session(self, credential: Credential) -> SessionLike:
        try:
            return self._api.with_login(credential.to_record())
        except (SolixApiError, ValueError) as exc:
            raise SessionError(f"could not establish session: {exc}") from exc
