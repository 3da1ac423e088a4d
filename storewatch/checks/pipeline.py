"""Per-store visual check: capture, compare against the baseline, alert or adopt."""

from __future__ import annotations

import asyncio
from datetime import datetime

import structlog

from storewatch.capture.renderer import RenderService, build_capture_request
from storewatch.checks.failures import FailureTracker
from storewatch.config import WatchConfig
from storewatch.diffing.image_diff import ImageDiffEngine, classify_severity
from storewatch.errors import CaptureError, is_connectivity_failure
from storewatch.models import Alert, AlertCategory, RunRecord, RunStatus, Store, utcnow
from storewatch.notifications.telegram_bot import AlertNotifier
from storewatch.storage.artifacts import ArtifactStore
from storewatch.storage.database import StoreRepository


logger = structlog.get_logger(__name__)

HOMEPAGE_STEP = "homepage"


def artifact_stamp(moment: datetime) -> str:
    """ISO timestamp made safe for object keys."""
    return moment.isoformat().replace(":", "-").replace(".", "-").replace("+", "-")


def screenshot_key(store_id: int, stamp: str) -> str:
    return f"screenshots/{store_id}/homepage-{stamp}.png"


def overlay_key(store_id: int, stamp: str) -> str:
    return f"diffs/{store_id}/{stamp}-diff.png"


class VisualCheckPipeline:
    """Runs one visual check for one store and records the outcome.

    The baseline is only ever changed here: it is adopted on the first run,
    when the stored one is gone, when the page dimensions change, and when the
    page drifted below the alert threshold. A significant change raises an
    alert and keeps the old baseline unless ``advance_baseline_on_alert`` is set.
    """

    def __init__(
        self,
        config: WatchConfig,
        repository: StoreRepository,
        artifacts: ArtifactStore,
        renderer: RenderService,
        diff_engine: ImageDiffEngine,
        failures: FailureTracker,
        notifier: AlertNotifier,
    ):
        self.config = config
        self.repository = repository
        self.artifacts = artifacts
        self.renderer = renderer
        self.diff_engine = diff_engine
        self.failures = failures
        self.notifier = notifier

    async def run(self, store: Store) -> RunRecord:
        """Check ``store`` once. Every failure is recorded on the returned run."""
        run = RunRecord(store_id=store.id, started_at=utcnow())
        log = logger.bind(store_id=store.id, url=store.full_url)
        log.info("Processing store")

        try:
            try:
                raw = await self.renderer.capture(build_capture_request(self.config, store.full_url))
            except Exception as e:
                self._record_capture_failure(store, run, e)
                return run

            await self._process_capture(store, raw, run, log)

        except Exception as e:
            run.status = RunStatus.ERROR
            run.error_message = str(e) or type(e).__name__
            log.error("Store check failed", error=run.error_message)

        finally:
            self._finalize(store, run)

        return run

    def _record_capture_failure(self, store: Store, run: RunRecord, error: Exception) -> None:
        message = str(error) or type(error).__name__
        run.status = RunStatus.ERROR
        run.error_message = message

        if isinstance(error, CaptureError):
            connectivity = error.connectivity
        else:
            connectivity = is_connectivity_failure(message)

        logger.error("Capture failed", store_id=store.id, error=message, connectivity=connectivity)
        if connectivity:
            self.failures.record_connectivity_failure(store.id)

    async def _process_capture(
        self, store: Store, raw: bytes, run: RunRecord, log: structlog.stdlib.BoundLogger
    ) -> None:
        stamp = artifact_stamp(utcnow())
        key = screenshot_key(store.id, stamp)
        run.screenshot_url = self.artifacts.put(key, raw)
        log.info("Screenshot stored", key=key)

        self.failures.reset(store.id)

        if not store.baseline_url:
            self._adopt_baseline(store, run.screenshot_url)
            log.info("First run, baseline set")
            return

        baseline_bytes = self.artifacts.get(self.artifacts.key_from_url(store.baseline_url))
        if baseline_bytes is None:
            self._adopt_baseline(store, run.screenshot_url)
            log.info("Missing baseline, reset")
            return

        result = await asyncio.to_thread(
            self.diff_engine.compare,
            baseline_bytes,
            raw,
            overlay_key=overlay_key(store.id, stamp),
        )

        if result.error:
            run.status = RunStatus.ERROR
            run.error_message = f"Comparison failed: {result.error}"
            log.error("Comparison failed, baseline kept", error=result.error)
            return

        if result.dimension_changed:
            self._adopt_baseline(store, run.screenshot_url)
            log.info("Dimensions changed, baseline updated")
            return

        run.diff_percentage = result.percentage

        if result.significant:
            previous_baseline = store.baseline_url
            alert = self.repository.insert_alert(
                Alert(
                    store_id=store.id,
                    category=AlertCategory.VISUAL,
                    severity=classify_severity(result.percentage, self.config.high_severity_percent),
                    step=HOMEPAGE_STEP,
                    before_url=previous_baseline,
                    after_url=run.screenshot_url,
                    diff_url=result.overlay_url,
                    diff_percentage=result.percentage,
                )
            )
            log.warning(
                "Significant change",
                diff_percentage=result.percentage,
                severity=alert.severity.value,
                alert_id=alert.id,
            )
            await self.notifier.notify(alert, store)

            if self.config.advance_baseline_on_alert:
                self._adopt_baseline(store, run.screenshot_url)
            return

        if result.differing_pixels:
            self._adopt_baseline(store, run.screenshot_url)
        log.info("No significant change", diff_percentage=result.percentage)

    def _adopt_baseline(self, store: Store, screenshot_url: str) -> None:
        self.repository.update_store(store.id, baseline_url=screenshot_url)
        store.baseline_url = screenshot_url

    def _finalize(self, store: Store, run: RunRecord) -> None:
        run.finished_at = utcnow()
        self.repository.update_store(store.id, last_checked=run.finished_at)
        store.last_checked = run.finished_at
        self.repository.insert_run(run)
        logger.info(
            "Run recorded",
            store_id=store.id,
            status=run.status.value,
            diff_percentage=run.diff_percentage,
        )
