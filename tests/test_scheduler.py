"""Unit tests for SyncScheduler."""
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from processor.models import SyncResult
from sync.scheduler import SyncScheduler, next_daily_run


class FakeTimer:
    """Stands in for threading.Timer; fire() runs the callback synchronously."""

    created = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function()


NOW = datetime(2025, 7, 10, 14, 30)


class FakeClock:

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def reset_timers():
    FakeTimer.created = []


@pytest.fixture
def sync_engine():
    engine = Mock()
    engine.is_running = False
    engine.sync_daily.return_value = SyncResult(success=True, events_processed=10)
    engine.sync_hourly.return_value = SyncResult(success=True, events_processed=2)
    engine.sync_season.return_value = SyncResult(success=True, events_processed=10)
    return engine


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def scheduler(sync_engine, clock):
    return SyncScheduler(sync_engine, season_year=2025, clock=clock, timer_factory=FakeTimer)


def test_next_daily_run():
    assert next_daily_run(datetime(2025, 7, 10, 1, 0)) == datetime(2025, 7, 10, 2, 0)
    assert next_daily_run(datetime(2025, 7, 10, 2, 0)) == datetime(2025, 7, 11, 2, 0)
    assert next_daily_run(datetime(2025, 7, 31, 14, 30)) == datetime(2025, 8, 1, 2, 0)


class TestSyncScheduler:

    def test_start_arms_daily_and_hourly_timers(self, scheduler):
        scheduler.start()

        daily, hourly = FakeTimer.created
        assert daily.interval == timedelta(hours=11, minutes=30).total_seconds()
        assert hourly.interval == 300
        assert daily.daemon and hourly.daemon
        assert daily.started and hourly.started

        status = scheduler.get_status()
        assert status['running'] is True
        assert status['daily_sync_scheduled'] is True
        assert status['next_daily_sync'] == '2025-07-11T02:00:00'
        assert status['next_hourly_sync'] == '2025-07-10T14:35:00'

    def test_start_twice_is_a_no_op(self, scheduler):
        scheduler.start()
        scheduler.start()

        assert len(FakeTimer.created) == 2

    def test_daily_tick_runs_season_sync_and_rearms(self, scheduler, sync_engine, clock):
        scheduler.start()
        daily = FakeTimer.created[0]
        clock.now = datetime(2025, 7, 11, 2, 0)

        daily.fire()

        sync_engine.sync_daily.assert_called_once_with(2025)
        rearmed = FakeTimer.created[-1]
        assert rearmed.interval == 24 * 60 * 60
        assert scheduler.get_status()['next_daily_sync'] == '2025-07-12T02:00:00'
        assert scheduler.get_status()['last_daily_result']['events_processed'] == 10

    def test_hourly_tick_runs_and_rearms(self, scheduler, sync_engine, clock):
        scheduler.start()
        hourly = FakeTimer.created[1]
        clock.now = datetime(2025, 7, 10, 14, 35)

        hourly.fire()

        sync_engine.sync_hourly.assert_called_once_with()
        assert FakeTimer.created[-1].interval == 60 * 60

    def test_skipped_run_is_recorded(self, scheduler, sync_engine):
        sync_engine.sync_hourly.return_value = SyncResult(success=False, errors=["A sync is already in progress"])
        scheduler.start()

        FakeTimer.created[1].fire()

        assert scheduler.get_status()['last_hourly_result']['errors'] == ["A sync is already in progress"]

    def test_exception_in_tick_keeps_schedule(self, scheduler, sync_engine):
        sync_engine.sync_hourly.side_effect = RuntimeError("boom")
        scheduler.start()

        FakeTimer.created[1].fire()

        assert len(FakeTimer.created) == 3
        assert scheduler.get_status()['last_hourly_result']['success'] is False

    def test_stop_cancels_timers(self, scheduler):
        scheduler.start()

        scheduler.stop()

        assert all(timer.cancelled for timer in FakeTimer.created)
        status = scheduler.get_status()
        assert status['running'] is False
        assert status['next_daily_sync'] is None

    def test_tick_after_stop_does_not_rearm(self, scheduler):
        scheduler.start()
        hourly = FakeTimer.created[1]
        scheduler.stop()

        hourly.fire()

        assert len(FakeTimer.created) == 2

    def test_immediate_full_sync(self, scheduler, sync_engine):
        result = scheduler.perform_immediate_full_sync()

        sync_engine.sync_season.assert_called_once_with(2025)
        assert result.success is True

    def test_daily_cadence_does_not_drift_with_run_time(self, scheduler, sync_engine, clock):
        scheduler.start()
        clock.now = datetime(2025, 7, 11, 2, 0)

        def slow_sync(year):
            clock.advance(minutes=20)
            return SyncResult(success=True)
        sync_engine.sync_daily.side_effect = slow_sync

        FakeTimer.created[0].fire()

        assert scheduler.get_status()['next_daily_sync'] == '2025-07-12T02:00:00'
        assert FakeTimer.created[-1].interval == timedelta(hours=23, minutes=40).total_seconds()

    def test_hourly_run_longer_than_interval_skips_missed_slot(self, scheduler, sync_engine, clock):
        scheduler.start()
        clock.now = datetime(2025, 7, 10, 14, 35)

        def slow_sync():
            clock.advance(minutes=90)
            return SyncResult(success=True)
        sync_engine.sync_hourly.side_effect = slow_sync

        FakeTimer.created[1].fire()

        assert scheduler.get_status()['next_hourly_sync'] == '2025-07-10T16:35:00'
        assert FakeTimer.created[-1].interval == 30 * 60
