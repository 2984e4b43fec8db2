from __future__ import annotations

import logging
import os
import signal
from pathlib import Path
from typing import Any

import requests
from dotenv import load_dotenv

from . import __version__
from .auth import Authenticator
from .collector import SiteDataCollector
from .config import ConfigError, Settings, anonymize_settings, load_settings
from .credentials import CredentialCache
from .observability import configure_logging, resolve_level
from .orchestrator import CycleOrchestrator
from .persistence import FilePersistence
from .publisher import MqttPublisher, PublishAdapter
from .scheduler import Scheduler
from .solix_api import SolixApi

log = logging.getLogger("solix_bridge")


def build_orchestrator(settings: Settings, *, publisher: Any) -> CycleOrchestrator:
    api = SolixApi(
        username=settings.username,
        password=settings.password,
        country=settings.country,
        session=requests.Session(),
        timeout_s=settings.http_timeout_s,
    )
    return CycleOrchestrator(
        cache=CredentialCache(FilePersistence(settings.login_store_path)),
        authenticator=Authenticator(api),
        collector=SiteDataCollector(retry_delay_s=settings.collect_retry_delay_s),
        publisher=PublishAdapter(publisher, topic_prefix=settings.mqtt_topic),
    )


def build_publisher(settings: Settings) -> MqttPublisher:
    return MqttPublisher(
        settings.mqtt_url,
        retain=settings.mqtt_retain,
        client_id=settings.mqtt_client_id,
        username=settings.mqtt_username,
        password=settings.mqtt_password,
    )


def _install_signal_handlers(scheduler: Scheduler) -> None:
    def _handle(signum: int, _frame: Any) -> None:
        log.info("received signal %s; stopping after the current cycle", signum)
        scheduler.stop()

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)


def main() -> None:
    # Load .env from the working directory, then one next to the package.
    load_dotenv()
    load_dotenv(Path(__file__).resolve().parent.parent / ".env")

    # Bootstrap logging so configuration errors are reported in the same shape.
    configure_logging(level=logging.INFO, log_format=os.getenv("LOG_FORMAT", "text"))

    try:
        settings = load_settings()
    except ConfigError as exc:
        log.critical("invalid configuration: %s", exc)
        raise SystemExit(1) from exc

    configure_logging(level=resolve_level(verbose=settings.verbose), log_format=settings.log_format)
    log.info("solix-bridge %s starting", __version__, extra={"fields": anonymize_settings(settings)})
    log.debug("settings: %s", anonymize_settings(settings))

    try:
        publisher = build_publisher(settings)
    except ValueError as exc:
        log.critical("invalid MQTT_URL: %s", exc)
        raise SystemExit(1) from exc

    orchestrator = build_orchestrator(settings, publisher=publisher)
    scheduler = Scheduler(orchestrator, interval_ms=settings.poll_interval_ms)
    _install_signal_handlers(scheduler)

    try:
        scheduler.run_forever(max_cycles=1 if settings.run_once else None)
    finally:
        publisher.close()
    log.info("done")


if __name__ == "__main__":
    main()
