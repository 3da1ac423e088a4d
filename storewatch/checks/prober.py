"""Lightweight availability probing with two-consecutive-down alerting."""

from __future__ import annotations

import time
from datetime import timedelta

import httpx
import structlog

from storewatch.models import Alert, AlertCategory, PingLog, Severity, Store, utcnow
from storewatch.notifications.telegram_bot import AlertNotifier
from storewatch.storage.database import StoreRepository


logger = structlog.get_logger(__name__)

DEFAULT_PROBE_TIMEOUT_SECONDS = 10.0


class AvailabilityProber:
    """HEAD-probes a store, logs the ping, and alerts on consecutive downs."""

    def __init__(
        self,
        repository: StoreRepository,
        notifier: AlertNotifier,
        client: httpx.AsyncClient,
        timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        alert_cooldown_seconds: int = 0,
    ):
        self.repository = repository
        self.notifier = notifier
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.alert_cooldown_seconds = alert_cooldown_seconds

    async def probe(self, store: Store) -> PingLog:
        url = store.full_url
        started = time.perf_counter()
        status_code = None
        error_message = None

        try:
            resp = await self.client.head(url, follow_redirects=True, timeout=self.timeout_seconds)
            status_code = resp.status_code
            is_up = 200 <= status_code < 300
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # A malformed store URL is recorded as down like any transport failure.
            is_up = False
            error_message = f"{type(e).__name__}: {e}"

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if error_message:
            logger.warning("Ping failed", store_id=store.id, url=url, error=error_message)
        else:
            logger.info("Ping", store_id=store.id, url=url, status_code=status_code, response_time_ms=elapsed_ms)

        ping = self.repository.insert_ping(
            PingLog(
                store_id=store.id,
                is_up=is_up,
                response_time_ms=elapsed_ms,
                status_code=status_code,
                error_message=error_message,
            )
        )

        if not ping.is_up:
            await self._alert_if_still_down(store, ping)
        return ping

    async def _alert_if_still_down(self, store: Store, ping: PingLog) -> None:
        previous = self.repository.previous_ping(store.id, ping.id)
        if previous is None or previous.is_up:
            return

        if self._in_cooldown(store.id):
            logger.info("Store still down, alert suppressed by cooldown", store_id=store.id)
            return

        alert = self.repository.insert_alert(
            Alert(
                store_id=store.id,
                category=AlertCategory.AVAILABILITY,
                severity=Severity.HIGH,
            )
        )
        logger.warning("Store down on consecutive pings", store_id=store.id, alert_id=alert.id)
        await self.notifier.notify(alert, store)

    def _in_cooldown(self, store_id: int) -> bool:
        if self.alert_cooldown_seconds <= 0:
            return False
        last = self.repository.latest_alert(store_id, AlertCategory.AVAILABILITY)
        if last is None:
            return False
        return utcnow() - last.created_at < timedelta(seconds=self.alert_cooldown_seconds)
