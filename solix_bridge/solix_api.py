"""Minimal Anker Solix cloud client.

Only the calls the bridge needs are implemented: login, site homepage,
scenario info and site device parameters. Responses use the cloud's
``{"code", "msg", "data"}`` envelope and are handed back without
interpreting ``data``.
"""

from __future__ import annotations

import base64
import hashlib
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Protocol

import requests
from cryptography.hazmat.primitives import padding, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

API_SERVER_EU = "https://ankerpower-api-eu.anker.com"
API_SERVER_COM = "https://ankerpower-api.anker.com"

# Countries served by the EU host; everything else goes to the global host.
EU_COUNTRIES = frozenset(
    {
        "AD", "AL", "AT", "BA", "BE", "BG", "CH", "CY", "CZ", "DE", "DK", "EE", "ES", "FI",
        "FR", "GB", "GR", "HR", "HU", "IE", "IS", "IT", "LI", "LT", "LU", "LV", "MC", "ME",
        "MK", "MT", "NL", "NO", "PL", "PT", "RO", "RS", "SE", "SI", "SK", "SM", "UA", "VA",
    }
)

SERVER_PUBLIC_KEY = (
    "04c5c00c4f8d1197cc7c3167c52bf7acb054d722f0ef08dcd7e0883236e0d72a38"
    "68d9750cb47fa4619248f3d83f0f662671dadc6e2d31c2f41db0161651c7c076"
)

LOGIN_PATH = "passport/login"
SITE_HOMEPAGE_PATH = "power_service/v1/site/get_site_homepage"
SCEN_INFO_PATH = "power_service/v1/site/get_scen_info"
SITE_DEVICE_PARAM_PATH = "power_service/v1/site/get_site_device_param"

# Result code the cloud returns for a wrong e-mail/password pair.
LOGIN_BAD_CREDENTIALS_CODE = 100053


class ParamType:
    LOAD_CONFIGURATION = "4"


class SolixApiError(RuntimeError):
    """Raised when a cloud call fails at the transport level."""


class SolixAuthRejected(SolixApiError):
    """Raised when the cloud refuses the auth token (HTTP 401/403)."""


class HTTPSession(Protocol):
    def post(
        self,
        url: str,
        *,
        headers: Mapping[str, str],
        json: Mapping[str, Any],
        timeout: float,
    ) -> Any:
        ...


@dataclass(frozen=True)
class ApiResponse:
    code: int
    msg: str
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.code == 0


def _parse_envelope(body: Any) -> ApiResponse:
    if not isinstance(body, Mapping):
        raise SolixApiError("response was not a JSON object")
    code = body.get("code")
    if isinstance(code, bool) or not isinstance(code, int):
        try:
            code = int(str(code))
        except ValueError as exc:
            raise SolixApiError(f"response carried no usable code: {code!r}") from exc
    return ApiResponse(code=code, msg=str(body.get("msg") or ""), data=body.get("data"))


def api_base_for_country(country: str) -> str:
    return API_SERVER_EU if country.strip().upper() in EU_COUNTRIES else API_SERVER_COM


def _gmt_offset_header(now: datetime | None = None) -> str:
    offset = (now or datetime.now().astimezone()).utcoffset()
    minutes = int(offset.total_seconds() // 60) if offset is not None else 0
    sign = "+" if minutes >= 0 else "-"
    minutes = abs(minutes)
    return f"GMT{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def encrypt_password(password: str, *, server_public_key_hex: str = SERVER_PUBLIC_KEY) -> tuple[str, str]:
    """Encrypt the account password for the login call.

    Returns (encrypted_password_b64, client_public_key_hex). The AES key is the
    ECDH shared secret between a fresh P-256 key and the server key; the IV is
    its first 16 bytes.
    """

    private_key = ec.generate_private_key(ec.SECP256R1())
    server_key = ec.EllipticCurvePublicKey.from_encoded_point(
        ec.SECP256R1(), bytes.fromhex(server_public_key_hex)
    )
    shared = private_key.exchange(ec.ECDH(), server_key)

    padder = padding.PKCS7(128).padder()
    padded = padder.update(password.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(shared), modes.CBC(shared[:16])).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    public_hex = (
        private_key.public_key()
        .public_bytes(serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint)
        .hex()
    )
    return base64.b64encode(ciphertext).decode("ascii"), public_hex


class SolixApi:
    def __init__(
        self,
        *,
        username: str,
        password: str,
        country: str,
        session: HTTPSession | None = None,
        timeout_s: float = 10.0,
        server_public_key_hex: str = SERVER_PUBLIC_KEY,
    ) -> None:
        self.username = username
        self._password = password
        self.country = country.strip().upper()
        self.api_base = api_base_for_country(self.country)
        self.timeout_s = float(timeout_s)
        self._session: HTTPSession = session or requests.Session()
        self._server_public_key_hex = server_public_key_hex

    def base_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Model-Type": "DESKTOP",
            "App-Name": "anker_power",
            "Os-Type": "android",
            "Country": self.country,
            "Timezone": _gmt_offset_header(),
        }

    def post(self, path: str, body: Mapping[str, Any], *, headers: Mapping[str, str]) -> ApiResponse:
        url = f"{self.api_base.rstrip('/')}/{path.lstrip('/')}"
        try:
            resp = self._session.post(url, headers=headers, json=body, timeout=self.timeout_s)
        except requests.RequestException as exc:
            raise SolixApiError(f"{path} request failed: {exc}") from exc

        if resp.status_code in (401, 403):
            raise SolixAuthRejected(f"{path} rejected auth token: {resp.status_code}")
        if not 200 <= resp.status_code < 300:
            raise SolixApiError(f"{path} failed: {resp.status_code} {resp.text[:200]}")

        try:
            body_json = resp.json()
        except ValueError as exc:
            raise SolixApiError(f"{path} returned non-JSON body") from exc
        return _parse_envelope(body_json)

    def login(self) -> ApiResponse:
        encrypted, public_key = encrypt_password(
            self._password, server_public_key_hex=self._server_public_key_hex
        )
        offset = datetime.now().astimezone().utcoffset()
        body = {
            "ab": self.country,
            "client_secret_info": {"public_key": public_key},
            "enc": 0,
            "email": self.username,
            "password": encrypted,
            "time_zone": int(offset.total_seconds() * 1000) if offset is not None else 0,
            "transaction": str(int(time.time() * 1000)),
        }
        return self.post(LOGIN_PATH, body, headers=self.base_headers())

    def with_login(self, login_data: Mapping[str, Any]) -> SolixSession:
        return SolixSession(self, login_data)


class SolixSession:
    """Authenticated view of :class:`SolixApi` bound to one login record."""

    def __init__(self, api: SolixApi, login_data: Mapping[str, Any]) -> None:
        token = login_data.get("auth_token")
        user_id = login_data.get("user_id")
        if not isinstance(token, str) or not token:
            raise SolixApiError("login record has no auth_token")
        if not isinstance(user_id, str) or not user_id:
            raise SolixApiError("login record has no user_id")

        self._api = api
        self._auth_headers = {
            "x-auth-token": token,
            "gtoken": hashlib.md5(user_id.encode("utf-8")).hexdigest(),
        }

    def _post(self, path: str, body: Mapping[str, Any]) -> ApiResponse:
        headers = self._api.base_headers()
        headers.update(self._auth_headers)
        return self._api.post(path, body, headers=headers)

    def site_homepage(self) -> ApiResponse:
        return self._post(SITE_HOMEPAGE_PATH, {})

    def scen_info(self, site_id: str) -> ApiResponse:
        return self._post(SCEN_INFO_PATH, {"site_id": site_id})

    def get_site_device_param(self, site_id: str, param_type: str) -> ApiResponse:
        return self._post(SITE_DEVICE_PARAM_PATH, {"site_id": site_id, "param_type": param_type})


def login_data_or_none(resp: ApiResponse) -> Optional[Dict[str, Any]]:
    if resp.ok and isinstance(resp.data, Mapping):
        return dict(resp.data)
    return None
