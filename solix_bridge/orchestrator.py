from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from .auth import Authenticator, AuthError, SessionError, SessionLike
from .collector import CollectorError, ItemFailure, Site, SiteDataCollector
from .credentials import Credential, CredentialCache, CredentialState, classify
from .publisher import TOPIC_SITE_HOMEPAGE, PublishAdapter, PublishError, site_topic_suffix

log = logging.getLogger("solix_bridge.cycle")

NowFn = Callable[[], datetime]

OUTCOME_COMPLETE = "complete"
OUTCOME_PARTIAL = "partial"
OUTCOME_ABORTED = "aborted"


@dataclass
class CycleResult:
    outcome: str = OUTCOME_COMPLETE
    credential_state: CredentialState = CredentialState.NO_CREDENTIAL
    sites: int = 0
    published: List[str] = field(default_factory=list)
    failed_items: List[str] = field(default_factory=list)
    abort_reason: Optional[str] = None

    def abort(self, reason: str) -> CycleResult:
        self.outcome = OUTCOME_ABORTED
        self.abort_reason = reason
        return self


class CycleOrchestrator:
    """One fetch-and-publish pass over the account.

    Failures are contained here: an aborted cycle and a skipped item are both
    logged and reported through :class:`CycleResult`; nothing is raised for
    the failure kinds the collaborators declare.
    """

    def __init__(
        self,
        *,
        cache: CredentialCache,
        authenticator: Authenticator,
        collector: SiteDataCollector,
        publisher: PublishAdapter,
        now_fn: NowFn | None = None,
    ) -> None:
        self._cache = cache
        self._authenticator = authenticator
        self._collector = collector
        self._publisher = publisher
        self._now_fn = now_fn or _utcnow

    def run_cycle(self) -> CycleResult:
        result = CycleResult()
        log.info("fetching data")

        credential = self._obtain_credential(result)
        if credential is None:
            return self._finish(result)

        try:
            session = self._authenticator.establish_session(credential)
        except SessionError as exc:
            log.warning("%s; clearing cached login", exc)
            self._clear_cache()
            result.credential_state = CredentialState.CLEARED
            return self._finish(result.abort("session"))
        result.credential_state = CredentialState.SESSION

        sites = self._publish_overview(session, result)
        if sites is None:
            return self._finish(result)

        result.sites = len(sites)
        for site in sites:
            self._publish_site(session, site, result)

        if result.failed_items:
            result.outcome = OUTCOME_PARTIAL
        return self._finish(result)

    def _obtain_credential(self, result: CycleResult) -> Optional[Credential]:
        credential = self._cache.retrieve()
        state = classify(credential, self._now_fn())
        result.credential_state = state

        if state is CredentialState.CACHED:
            log.info("using cached auth data")
            return credential

        log.info("no usable login (%s); logging in", state.value)
        try:
            credential = self._authenticator.login()
        except AuthError as exc:
            log.error("could not log in: %s", exc)
            result.abort("login")
            return None
        result.credential_state = CredentialState.FRESH_CREDENTIAL

        # The fresh credential is used for this cycle even if the write fails.
        try:
            self._cache.store(credential)
        except Exception as exc:
            log.warning("failed to persist login; next cycle will log in again: %r", exc)
        return credential

    def _publish_overview(self, session: SessionLike, result: CycleResult) -> Optional[List[Site]]:
        try:
            overview = self._collector.site_homepage(session)
        except CollectorError as exc:
            if exc.auth_rejected:
                self._clear_cache()
                result.credential_state = CredentialState.CLEARED
            log.warning("site overview unavailable, aborting cycle: %s", exc)
            result.abort("overview")
            return None

        try:
            result.published.append(self._publisher.publish(TOPIC_SITE_HOMEPAGE, overview))
        except PublishError as exc:
            log.warning("publishing site overview failed, aborting cycle: %s", exc)
            result.abort("overview_publish")
            return None
        except Exception:
            log.exception("unexpected failure publishing site overview, aborting cycle")
            result.abort("overview_publish")
            return None

        return self._collector.list_sites(overview)

    def _publish_site(self, session: SessionLike, site: Site, result: CycleResult) -> None:
        failures: List[ItemFailure] = []
        for item, payload in self._collector.iter_site_items(session, site, failures=failures):
            self._publish_item(result, site_topic_suffix(site.site_name, item), payload)

        for failure in failures:
            result.failed_items.append(site_topic_suffix(site.site_name, failure.item))

        if any(f.auth_rejected for f in failures) and result.credential_state is not CredentialState.CLEARED:
            self._clear_cache()
            result.credential_state = CredentialState.CLEARED

    def _publish_item(self, result: CycleResult, topic_suffix: str, payload: Any) -> None:
        try:
            result.published.append(self._publisher.publish(topic_suffix, payload))
        except PublishError as exc:
            log.warning("skipping %s: %s", topic_suffix, exc)
            result.failed_items.append(topic_suffix)
        except Exception:
            log.exception("unexpected failure on %s", topic_suffix)
            result.failed_items.append(topic_suffix)

    def _clear_cache(self) -> None:
        try:
            self._cache.clear()
        except Exception as exc:
            log.warning("failed to clear cached login: %r", exc)

    def _finish(self, result: CycleResult) -> CycleResult:
        fields = {
            "outcome": result.outcome,
            "sites": result.sites,
            "published": len(result.published),
            "failed": len(result.failed_items),
            "credential": result.credential_state.value,
        }
        if result.outcome == OUTCOME_ABORTED:
            log.warning("cycle aborted (%s)", result.abort_reason, extra={"fields": fields})
        else:
            log.info(
                "cycle complete: outcome=%s published=%d failed=%d",
                result.outcome,
                len(result.published),
                len(result.failed_items),
                extra={"fields": fields},
            )
        return result


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
