"""Visual and ping cycle drivers with skip-if-busy overlap protection."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from ..capture.renderer import RenderService
from ..checks.pipeline import VisualCheckPipeline
from ..checks.prober import AvailabilityProber
from ..config import WatchConfig
from ..errors import StoreListingError
from ..models import Store
from ..storage.database import StoreRepository
from .job_scheduler import JobScheduler


logger = structlog.get_logger(__name__)

VISUAL_JOB_ID = "visual_checks"
PING_JOB_ID = "ping_checks"


class CycleGuard:
    """Single-slot, non-blocking guard: a busy cycle makes new ticks skip, never wait."""

    def __init__(self, name: str):
        self.name = name
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def try_acquire(self) -> bool:
        # No await between the check and the set, so this is atomic on the event loop.
        if self._busy:
            return False
        self._busy = True
        return True

    def release(self) -> None:
        self._busy = False


class MonitorCoordinator:
    """Drives the visual and ping cycles over the active store set."""

    def __init__(
        self,
        config: WatchConfig,
        repository: StoreRepository,
        pipeline: VisualCheckPipeline,
        prober: AvailabilityProber,
        renderer: RenderService,
        scheduler: Optional[JobScheduler] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self.repository = repository
        self.pipeline = pipeline
        self.prober = prober
        self.renderer = renderer
        self.scheduler = scheduler or JobScheduler()
        self._sleep = sleep

        self._visual_guard = CycleGuard("visual")
        self._ping_guard = CycleGuard("ping")
        self.cycle_history: List[Dict[str, Any]] = []

    def preflight(self) -> int:
        """Make sure the active store set can be read before any cycle runs.

        Raises:
            StoreListingError: if the stores cannot be listed
        """
        stores = self.repository.list_active_stores()
        logger.info("Preflight ok", active_stores=len(stores))
        return len(stores)

    def start(self):
        """Register both drivers; each fires once immediately and then periodically."""
        self.scheduler.add_interval_job(
            job_id=VISUAL_JOB_ID,
            func=self.run_visual_cycle,
            seconds=self.config.visual_interval_seconds,
            description="Visual homepage checks",
        )
        self.scheduler.add_interval_job(
            job_id=PING_JOB_ID,
            func=self.run_ping_cycle,
            seconds=self.config.ping_interval_seconds,
            description="Availability pings",
        )
        self.scheduler.start()
        logger.info(
            "Coordinator started",
            visual_interval_seconds=self.config.visual_interval_seconds,
            ping_interval_seconds=self.config.ping_interval_seconds,
        )

    async def stop(self):
        """Stop scheduling and release the render connection."""
        self.scheduler.stop()
        await self.renderer.stop()
        logger.info("Coordinator stopped")

    async def run_visual_cycle(self) -> Dict[str, Any]:
        """Run the visual pipeline over every active store, one at a time."""
        if not self._visual_guard.try_acquire():
            logger.info("Visual cycle still running, skipping")
            return {"cycle": "visual", "skipped": True}

        started = datetime.now(timezone.utc)
        processed = 0
        failed = 0
        try:
            stores = self._list_stores("visual")
            if stores is None:
                return self._complete("visual", started, success=False, error="store listing failed")
            if not stores:
                logger.info("No active stores for visual check")
                return self._complete("visual", started)

            logger.info("Starting visual check cycle", store_count=len(stores))
            async with self.renderer:
                for index, store in enumerate(stores):
                    if index:
                        await self._sleep(self.config.store_delay_seconds)
                    ok = await self._contain(store, self.pipeline.run, "visual")
                    processed += 1
                    failed += 0 if ok else 1

            logger.info("Visual cycle finished", processed=processed, failed=failed)
            return self._complete("visual", started, processed=processed, failed=failed)

        except Exception as e:
            logger.error("Visual cycle error", error=str(e))
            return self._complete("visual", started, success=False, error=str(e), processed=processed)

        finally:
            self._visual_guard.release()

    async def run_ping_cycle(self) -> Dict[str, Any]:
        """Probe every active store, one at a time."""
        if not self._ping_guard.try_acquire():
            logger.info("Ping cycle still running, skipping")
            return {"cycle": "ping", "skipped": True}

        started = datetime.now(timezone.utc)
        processed = 0
        failed = 0
        try:
            stores = self._list_stores("ping")
            if stores is None:
                return self._complete("ping", started, success=False, error="store listing failed")
            if not stores:
                logger.info("No active stores for ping")
                return self._complete("ping", started)

            logger.info("Starting ping cycle", store_count=len(stores))
            for store in stores:
                ok = await self._contain(store, self.prober.probe, "ping")
                processed += 1
                failed += 0 if ok else 1

            logger.info("Ping cycle finished", processed=processed, failed=failed)
            return self._complete("ping", started, processed=processed, failed=failed)

        finally:
            self._ping_guard.release()

    def _list_stores(self, cycle: str) -> Optional[List[Store]]:
        try:
            return self.repository.list_active_stores()
        except StoreListingError as e:
            logger.error("Cannot list active stores", cycle=cycle, error=str(e))
            return None

    async def _contain(self, store: Store, check: Callable[[Store], Awaitable[Any]], cycle: str) -> bool:
        """Run one store's check; its failure must not reach sibling stores."""
        try:
            await check(store)
            return True
        except Exception as e:
            logger.error("Store check crashed", cycle=cycle, store_id=store.id, error=str(e))
            return False

    def _complete(self, cycle: str, started: datetime, success: bool = True, **details: Any) -> Dict[str, Any]:
        finished = datetime.now(timezone.utc)
        result = {
            "cycle": cycle,
            "skipped": False,
            "success": success,
            "started_at": started.isoformat(),
            "duration_seconds": (finished - started).total_seconds(),
            **details,
        }
        self.cycle_history.append(result)
        # Keep only recent history
        if len(self.cycle_history) > 100:
            self.cycle_history = self.cycle_history[-100:]
        return result

    def get_status(self) -> Dict[str, Any]:
        """Report guard state, scheduled jobs and recent cycles."""
        return {
            "visual_running": self._visual_guard.busy,
            "ping_running": self._ping_guard.busy,
            "jobs": self.scheduler.list_jobs(),
            "recent_cycles": self.cycle_history[-10:],
        }
