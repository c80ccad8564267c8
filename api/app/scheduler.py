from __future__ import annotations

import logging
import threading
import time

from apscheduler.schedulers.background import BackgroundScheduler

from .services.notifications import AlertNotifier
from .services.status_check import GatewayFactory, StatusCheckResult, run_status_check
from .storage.base import Storage


logger = logging.getLogger("branchwatch.scheduler")

JOB_ID = "device_status_check"


class DeviceStatusScheduler:
    """Runs the device status check on a fixed interval (15 minutes by default).

    Ticks never overlap: APScheduler is limited to one instance, and `tick()`
    itself skips when a previous run still holds the lock (covers direct calls).
    """

    def __init__(
        self,
        storage: Storage,
        gateway_factory: GatewayFactory,
        *,
        interval_s: int,
        notifier: AlertNotifier | None = None,
    ) -> None:
        self.storage = storage
        self.gateway_factory = gateway_factory
        self.interval_s = interval_s
        self.notifier = notifier
        self._tick_lock = threading.Lock()
        self._scheduler: BackgroundScheduler | None = None

    def tick(self) -> StatusCheckResult | None:
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("previous status check still running; skipping this tick")
            return None

        start = time.perf_counter()
        try:
            logger.info("Checking device status...")
            return run_status_check(self.storage, self.gateway_factory, self.notifier)
        except Exception:
            logger.exception("device status check failed")
            return None
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            logger.debug("status check tick finished", extra={"fields": {"duration_ms": round(duration_ms, 1)}})
            self._tick_lock.release()

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        if self._scheduler is not None:
            return
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_job(
            func=self.tick,
            trigger="interval",
            seconds=self.interval_s,
            id=JOB_ID,
            max_instances=1,
            replace_existing=True,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Device status scheduler started (interval_s=%s)", self.interval_s)

    def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Device status scheduler stopped")
