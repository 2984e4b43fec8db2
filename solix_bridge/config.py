from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Any, Dict


class ConfigError(ValueError):
    """Raised when bridge configuration is missing or invalid."""


_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off"}

_SECRET_FIELDS = ("password", "mqtt_password")


@dataclass(frozen=True)
class Settings:
    # Anker cloud account
    username: str
    password: str
    country: str

    # Polling
    poll_interval_s: int
    collect_retry_delay_s: float
    http_timeout_s: float
    run_once: bool

    # MQTT
    mqtt_url: str
    mqtt_topic: str
    mqtt_retain: bool
    mqtt_client_id: str | None
    mqtt_username: str | None
    mqtt_password: str | None

    # Credential cache
    login_store_path: str

    # Logging
    verbose: bool
    log_format: str

    @property
    def poll_interval_ms(self) -> int:
        return self.poll_interval_s * 1000


def load_settings() -> Settings:
    username = _get_optional_str("ANKER_USERNAME")
    if not username:
        raise ConfigError("ANKER_USERNAME must be set")
    password = _get_optional_str("ANKER_PASSWORD")
    if not password:
        raise ConfigError("ANKER_PASSWORD must be set")

    mqtt_topic = (os.getenv("MQTT_TOPIC", "anker").strip() or "anker").rstrip("/")
    if not mqtt_topic:
        raise ConfigError("MQTT_TOPIC must be non-empty")
    if "+" in mqtt_topic or "#" in mqtt_topic:
        raise ConfigError("MQTT_TOPIC must not contain MQTT wildcards (+ or #)")

    log_format = os.getenv("LOG_FORMAT", "text").strip().lower() or "text"
    if log_format not in {"text", "json"}:
        raise ConfigError("LOG_FORMAT must be one of: json, text")

    return Settings(
        username=username,
        password=password,
        country=(os.getenv("ANKER_COUNTRY", "DE").strip() or "DE").upper(),
        poll_interval_s=_get_positive_int("POLL_INTERVAL_IN_SECONDS", 30),
        collect_retry_delay_s=_get_non_negative_float("COLLECT_RETRY_DELAY_S", 1.0),
        http_timeout_s=_get_non_negative_float("HTTP_TIMEOUT_S", 10.0),
        run_once=_get_bool("RUN_ONCE", False),
        mqtt_url=os.getenv("MQTT_URL", "mqtt://localhost:1883").strip() or "mqtt://localhost:1883",
        mqtt_topic=mqtt_topic,
        mqtt_retain=_get_bool("MQTT_RETAIN", False),
        mqtt_client_id=_get_optional_str("MQTT_CLIENT_ID"),
        mqtt_username=_get_optional_str("MQTT_USERNAME"),
        mqtt_password=_get_optional_str("MQTT_PASSWORD"),
        login_store_path=os.getenv("LOGIN_STORE_PATH", "login.json").strip() or "login.json",
        verbose=_get_bool("VERBOSE", False),
        log_format=log_format,
    )


def anonymize_settings(settings: Settings) -> Dict[str, Any]:
    """Settings as a dict with secrets masked, safe to log."""

    out = asdict(settings)
    for key in _SECRET_FIELDS:
        if out.get(key):
            out[key] = "***"
    return out


def _get_optional_str(name: str) -> str | None:
    v = os.getenv(name)
    if v is None:
        return None
    vv = v.strip()
    return vv or None


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    norm = raw.strip().lower()
    if norm in _TRUE_VALUES:
        return True
    if norm in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be one of: {sorted(_TRUE_VALUES | _FALSE_VALUES)}")


def _get_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return int(default)
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer") from exc
    if parsed <= 0:
        raise ConfigError(f"{name} must be > 0")
    return parsed


def _get_non_negative_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return float(default)
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number") from exc
    if parsed < 0:
        raise ConfigError(f"{name} must be >= 0")
    return parsed
