"""Timer-driven scheduling of daily and hourly syncs."""
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from processor.models import SyncResult

logger = logging.getLogger(__name__)

DAILY_SYNC_HOUR = 2
DAILY_INTERVAL = timedelta(hours=24)
HOURLY_INTERVAL = timedelta(hours=1)
HOURLY_INITIAL_DELAY = timedelta(minutes=5)


def next_daily_run(now: datetime, hour: int = DAILY_SYNC_HOUR) -> datetime:
    """Next occurrence of ``hour``:00 strictly after ``now``."""
    candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


class SyncScheduler:
    """
    Runs a season sync every night at 02:00 and a 7-day sync every hour.

    Runs go through the engine's single-flight guard, so a tick that fires
    while another sync is active is skipped and logged.
    """

    def __init__(
        self,
        sync_engine,
        season_year: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now,
        timer_factory: Callable[..., threading.Timer] = threading.Timer
    ):
        self.sync_engine = sync_engine
        self.season_year = season_year
        self.clock = clock
        self.timer_factory = timer_factory

        self._lock = threading.Lock()
        self._running = False
        self._daily_timer: Optional[threading.Timer] = None
        self._hourly_timer: Optional[threading.Timer] = None
        self._next_daily: Optional[datetime] = None
        self._next_hourly: Optional[datetime] = None
        self._last_daily_result: Optional[SyncResult] = None
        self._last_hourly_result: Optional[SyncResult] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                logger.warning("Scheduler is already running")
                return
            self._running = True

            now = self.clock()
            self._arm_daily(next_daily_run(now))
            self._arm_hourly(now + HOURLY_INITIAL_DELAY)

        logger.info(
            "Sync scheduler started",
            extra={'next_daily': self._next_daily.isoformat(), 'next_hourly': self._next_hourly.isoformat()}
        )

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            for timer in (self._daily_timer, self._hourly_timer):
                if timer is not None:
                    timer.cancel()
            self._daily_timer = None
            self._hourly_timer = None
            self._next_daily = None
            self._next_hourly = None
        logger.info("Sync scheduler stopped")

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'running': self._running,
                'daily_sync_scheduled': self._daily_timer is not None,
                'hourly_sync_scheduled': self._hourly_timer is not None,
                'next_daily_sync': self._next_daily.isoformat() if self._next_daily else None,
                'next_hourly_sync': self._next_hourly.isoformat() if self._next_hourly else None,
                'sync_in_progress': self.sync_engine.is_running,
                'last_daily_result': self._last_daily_result.to_dict() if self._last_daily_result else None,
                'last_hourly_result': self._last_hourly_result.to_dict() if self._last_hourly_result else None
            }

    def perform_immediate_full_sync(self) -> SyncResult:
        logger.info("Performing immediate full sync")
        return self.sync_engine.sync_season(self.season_year)

    def _arm_daily(self, at: datetime) -> None:
        self._next_daily = at
        self._daily_timer = self._make_timer(at, self._run_daily)

    def _arm_hourly(self, at: datetime) -> None:
        self._next_hourly = at
        self._hourly_timer = self._make_timer(at, self._run_hourly)

    def _make_timer(self, at: datetime, callback) -> threading.Timer:
        delay = max((at - self.clock()).total_seconds(), 0)
        timer = self.timer_factory(delay, callback)
        timer.daemon = True
        timer.start()
        return timer

    def _run_daily(self) -> None:
        logger.info("Starting scheduled daily sync")
        result = self._run_safely(lambda: self.sync_engine.sync_daily(self.season_year))
        with self._lock:
            self._last_daily_result = result
            if self._running:
                self._arm_daily(self._following(self._next_daily, DAILY_INTERVAL))

    def _run_hourly(self) -> None:
        logger.info("Starting scheduled hourly sync")
        result = self._run_safely(self.sync_engine.sync_hourly)
        with self._lock:
            self._last_hourly_result = result
            if self._running:
                self._arm_hourly(self._following(self._next_hourly, HOURLY_INTERVAL))

    def _following(self, previous: datetime, interval: timedelta) -> datetime:
        """Next slot on the original cadence, skipping slots a long run overran."""
        now = self.clock()
        following = previous + interval
        while following <= now:
            following += interval
        return following

    def _run_safely(self, run: Callable[[], SyncResult]) -> SyncResult:
        """Run a sync on a timer thread, where an exception would be lost."""
        try:
            result = run()
        except Exception as e:
            logger.error(f"Scheduled sync raised: {e}", exc_info=True)
            return SyncResult(success=False, errors=[str(e)])

        if result.success:
            logger.info(
                "Scheduled sync completed",
                extra={'events_processed': result.events_processed, 'duration_ms': result.duration}
            )
        else:
            logger.warning(f"Scheduled sync finished with errors: {'; '.join(result.errors)}")
        return result
