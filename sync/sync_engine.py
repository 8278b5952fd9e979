"""Sync engine reconciling upstream events with the event store."""
import logging
import threading
import time
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple, Union

from processor.change_detector import API_WATCH_FIELDS, ChangeDetector
from processor.event_normalizer import API_SOURCE, MANUAL_SOURCE, EventNormalizer
from processor.models import CanonicalEvent, DateRange, IcsSourceEvent, RawSourceEvent, SyncResult
from processor.season import season_range
from sources.exceptions import SyncCancelledError

logger = logging.getLogger(__name__)

ALREADY_RUNNING = "A sync is already in progress"

CREATED = 'created'
UPDATED = 'updated'
SKIPPED = 'skipped'

SYNC_STEPS = ('fetch', 'normalize', 'reconcile', 'cleanup')


def _raw_id(raw: RawSourceEvent) -> str:
    return str(getattr(raw, 'id', None) or getattr(raw, 'uid', 'unknown'))


class SyncEngine:
    """
    Orchestrates sync runs: fetch, normalize, reconcile, clean up.

    Only one run executes at a time; a run started while another is active
    returns a failed result immediately without touching the store.
    """

    def __init__(
        self,
        store,
        api_client=None,
        normalizer: Optional[EventNormalizer] = None,
        change_detector: Optional[ChangeDetector] = None,
        status_tracker=None,
        ics_adapter=None,
        today: Callable[[], date] = date.today
    ):
        """
        Initialize the sync engine.

        Args:
            store: Event store with get/put/scan_range/batch_delete_events
            api_client: EventsCalendarApiClient for API syncs
            normalizer: EventNormalizer (default: default tables)
            change_detector: ChangeDetector (default: API watch-list)
            status_tracker: Optional SyncStatusTracker recording each run
            ics_adapter: IcsFeedAdapter for ICS syncs
            today: Date source for relative sync windows

        Raises:
            ValueError: If no store is given
        """
        if store is None:
            raise ValueError("An event store is required")

        self.store = store
        self.api_client = api_client
        self.normalizer = normalizer or EventNormalizer()
        self.change_detector = change_detector or ChangeDetector(API_WATCH_FIELDS)
        self.status_tracker = status_tracker
        self.ics_adapter = ics_adapter
        self.today = today

        self._run_lock = threading.Lock()
        self._cancel_event: Optional[threading.Event] = None

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def cancel(self) -> bool:
        """
        Ask the active run to stop.

        Returns:
            True if a run was active and has been signalled
        """
        cancel_event = self._cancel_event
        if cancel_event is None:
            return False
        logger.warning("Cancellation requested for active sync")
        cancel_event.set()
        return True

    def sync_range(self, date_range: DateRange, cancel_event: Optional[threading.Event] = None,
                   sync_type: str = 'range') -> SyncResult:
        """Sync every event in a date range."""
        return self._run(
            sync_type,
            f"Sync for {date_range}",
            lambda cancel: self.api_client.get_all_events_in_range(date_range, cancel),
            date_range,
            cancel_event
        )

    def sync_season(self, year: Optional[int] = None, cancel_event: Optional[threading.Event] = None,
                    sync_type: str = 'full') -> SyncResult:
        """Sync the full 9-week season of a year (default: current year)."""
        year = year or self.today().year
        return self._run(
            sync_type,
            f"Season sync for {year}",
            lambda cancel: self.api_client.get_season_events(year, cancel),
            season_range(year),
            cancel_event
        )

    def sync_incremental(self, cancel_event: Optional[threading.Event] = None) -> SyncResult:
        """Sync from 7 days ago to 30 days ahead."""
        today = self.today()
        date_range = DateRange(start=today - timedelta(days=7), end=today + timedelta(days=30))
        logger.info(f"Starting incremental sync for {date_range}")
        return self.sync_range(date_range, cancel_event, sync_type='incremental')

    def sync_hourly(self, cancel_event: Optional[threading.Event] = None) -> SyncResult:
        """Sync the next 7 days."""
        today = self.today()
        date_range = DateRange(start=today, end=today + timedelta(days=7))
        logger.info(f"Starting hourly sync for {date_range}")
        return self.sync_range(date_range, cancel_event, sync_type='hourly')

    def sync_daily(self, year: Optional[int] = None, cancel_event: Optional[threading.Event] = None) -> SyncResult:
        logger.info("Starting daily full sync")
        return self.sync_season(year, cancel_event, sync_type='daily')

    def sync_custom_range(
        self,
        start: Union[str, date],
        end: Union[str, date],
        cancel_event: Optional[threading.Event] = None
    ) -> SyncResult:
        """Sync an arbitrary range, fetching long ranges in weekly chunks."""
        if isinstance(start, str) or isinstance(end, str):
            date_range = DateRange.parse(str(start), str(end))
        else:
            date_range = DateRange(start=start, end=end)
        if date_range.end < date_range.start:
            raise ValueError(f"Range end {date_range.end} is before start {date_range.start}")

        return self._run(
            'custom',
            f"Date range sync for {date_range}",
            lambda cancel: self.api_client.get_events_with_chunking(date_range, cancel),
            date_range,
            cancel_event
        )

    def sync_ics_feed(
        self,
        ics_text: str,
        force_update: bool = False,
        cancel_event: Optional[threading.Event] = None
    ) -> SyncResult:
        """
        Sync events parsed from ICS text.

        Existing events are only compared when the feed reports a newer
        modification time, unless force_update is set. ICS feeds are not
        treated as complete, so nothing is deleted.
        """
        return self._run(
            'ics',
            "ICS sync",
            lambda cancel: self.ics_adapter.parse(ics_text).events,
            None,
            cancel_event,
            process=lambda event, raw, now: self._reconcile_ics(event, raw, now, force_update)
        )

    def sync_ics_month(self, year: int, month: int, force_update: bool = False) -> SyncResult:
        try:
            ics_text = self.ics_adapter.fetch_month(year, month)
        except Exception as e:
            message = f"ICS sync for {year:04d}-{month:02d} failed: {e}"
            logger.error(message)
            return SyncResult(success=False, errors=[message])
        return self.sync_ics_feed(ics_text, force_update)

    def cleanup_removed(self, date_range: DateRange, current_events: List[CanonicalEvent]) -> int:
        """
        Delete stored API events in a range that the latest fetch no longer
        contains.

        Returns:
            Count of deleted events
        """
        current_ids = {event.id for event in current_events}
        stored = self.store.scan_range(date_range, source=API_SOURCE)
        stale_ids = [event.id for event in stored if event.id not in current_ids]

        if not stale_ids:
            logger.info(f"No removed events to clean up for {date_range}")
            return 0

        logger.info(f"Removing {len(stale_ids)} events no longer in source for {date_range}")
        return self.store.batch_delete_events(stale_ids)

    def get_health_status(self) -> dict:
        api_health = self.api_client.health_check()
        if not api_health['healthy']:
            return {
                'healthy': False,
                'message': f"API health check failed: {api_health['message']}",
                'details': {'api_health': api_health}
            }
        return {
            'healthy': True,
            'message': 'Sync service healthy',
            'details': {
                'api_health': api_health,
                'sync_running': self.is_running,
                'cache': self.api_client.get_cache_stats()
            }
        }

    def clear_cache(self) -> None:
        self.api_client.clear_cache()

    def _run(
        self,
        sync_type: str,
        label: str,
        fetch: Callable[[threading.Event], List[RawSourceEvent]],
        scope: Optional[DateRange],
        cancel_event: Optional[threading.Event],
        process=None
    ) -> SyncResult:
        if not self._run_lock.acquire(blocking=False):
            logger.warning(f"{label} skipped: {ALREADY_RUNNING}")
            return SyncResult(success=False, errors=[ALREADY_RUNNING])

        self._cancel_event = cancel_event or threading.Event()
        try:
            return self._execute(
                sync_type, label, fetch, scope, self._cancel_event, process or self._reconcile_api
            )
        finally:
            self._cancel_event = None
            self._run_lock.release()

    def _execute(self, sync_type, label, fetch, scope, cancel_event, process) -> SyncResult:
        started = time.monotonic()
        result = SyncResult()
        sync_id = self._begin_status(sync_type, scope)
        logger.info(f"{label} started")

        try:
            raw_events = fetch(cancel_event)
        except SyncCancelledError:
            result.errors.append("Sync cancelled")
            return self._finish(label, result, started, sync_id)
        except Exception as e:
            message = f"{label} failed: {e}"
            logger.error(message, extra={'error_type': type(e).__name__}, exc_info=True)
            result.errors.append(message)
            return self._finish(label, result, started, sync_id)

        logger.info(f"Fetched {len(raw_events)} events")
        self._report_progress(sync_id, 'normalize')

        now = datetime.now(timezone.utc)
        pairs: List[Tuple[RawSourceEvent, CanonicalEvent]] = []
        for raw in raw_events:
            try:
                pairs.append((raw, self.normalizer.normalize(raw, now)))
            except Exception as e:
                message = f"Error normalizing event {_raw_id(raw)}: {e}"
                logger.error(message)
                result.errors.append(message)
        normalization_failed = len(pairs) < len(raw_events)

        self._report_progress(sync_id, 'reconcile')
        cancelled = False
        for raw, event in pairs:
            if cancel_event.is_set():
                cancelled = True
                break

            result.events_processed += 1
            try:
                outcome = process(event, raw, now)
            except Exception as e:
                message = f"Error processing event {event.id}: {e}"
                logger.error(message)
                result.errors.append(message)
                continue

            if outcome == CREATED:
                result.events_created += 1
            elif outcome == UPDATED:
                result.events_updated += 1
            else:
                result.events_skipped += 1

        if cancelled:
            result.errors.append(
                f"Sync cancelled after {result.events_processed} of {len(pairs)} events"
            )
        elif scope is not None:
            self._report_progress(sync_id, 'cleanup')
            if normalization_failed:
                logger.warning("Skipping cleanup because some events could not be normalized")
            else:
                try:
                    result.events_deleted = self.cleanup_removed(scope, [event for _, event in pairs])
                except Exception as e:
                    message = f"Cleanup failed for {scope}: {e}"
                    logger.error(message)
                    result.errors.append(message)

        return self._finish(label, result, started, sync_id)

    def _reconcile_api(self, event: CanonicalEvent, raw: RawSourceEvent, now: datetime) -> str:
        existing = self.store.get(event.id)
        if existing is None:
            self.store.put(replace(event, created_at=now, updated_at=now))
            logger.debug(f"Created new event: {event.title} (ID: {event.id})")
            return CREATED

        if existing.source == MANUAL_SOURCE:
            logger.info(f"Keeping manually maintained event {event.id}")
            return SKIPPED

        changes = self.change_detector.detect_changes(existing, event, now)
        if not changes:
            return SKIPPED

        self._store_update(existing, event, changes, now)
        logger.debug(f"Updated event: {event.title} (ID: {event.id}, {len(changes)} changes)")
        return UPDATED

    def _reconcile_ics(self, event: CanonicalEvent, raw: IcsSourceEvent, now: datetime,
                       force_update: bool) -> str:
        existing = self.store.get(event.id)
        if existing is None:
            self.store.put(replace(event, created_at=now, updated_at=now))
            return CREATED

        if existing.source == MANUAL_SOURCE:
            return SKIPPED
        if not force_update and not self.ics_adapter.needs_update(existing, raw):
            return SKIPPED

        changes = self.ics_adapter.detect_changes(existing, event)
        if not changes:
            return SKIPPED

        self._store_update(existing, replace(event, last_updated=now), changes, now)
        return UPDATED

    def _store_update(self, existing: CanonicalEvent, incoming: CanonicalEvent, changes, now: datetime) -> None:
        self.store.put(replace(
            incoming,
            created_at=existing.created_at or now,
            updated_at=now,
            sync_status='synced',
            change_log=list(existing.change_log) + list(changes)
        ))

    def _begin_status(self, sync_type: str, scope: Optional[DateRange]) -> Optional[str]:
        if self.status_tracker is None:
            return None
        metadata = {'range': str(scope)} if scope else None
        try:
            sync_id = self.status_tracker.create_sync_status(sync_type, metadata=metadata)
            self.status_tracker.start_sync(sync_id)
        except Exception as e:
            logger.warning(f"Could not record sync status: {e}")
            return None
        return sync_id

    def _report_progress(self, sync_id: Optional[str], step: str) -> None:
        if sync_id is None:
            return
        try:
            self.status_tracker.update_progress(
                sync_id, step, len(SYNC_STEPS), SYNC_STEPS.index(step)
            )
        except Exception as e:
            logger.warning(f"Could not record sync progress for {sync_id}: {e}")

    def _finish(self, label: str, result: SyncResult, started: float, sync_id: Optional[str]) -> SyncResult:
        result.success = not result.errors
        result.duration = int((time.monotonic() - started) * 1000)

        logger.info(
            f"{label} completed in {result.duration}ms",
            extra={
                'events_processed': result.events_processed,
                'events_created': result.events_created,
                'events_updated': result.events_updated,
                'events_deleted': result.events_deleted,
                'errors': len(result.errors)
            }
        )

        if sync_id is not None:
            try:
                if result.success:
                    self.status_tracker.complete_sync_success(sync_id, result)
                else:
                    self.status_tracker.complete_sync_failure(sync_id, result.errors[0], result)
            except Exception as e:
                logger.warning(f"Could not record sync completion for {sync_id}: {e}")

        return result
