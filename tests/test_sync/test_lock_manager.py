"""Tests for edit locks: acquisition, staleness, heartbeat and release."""

from datetime import datetime, timedelta, timezone

import pytest

from field_report.database.models import LockInfo
from field_report.sync.lock_manager import EditLockManager, format_lock_message

T0 = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)
PROJECT = "proj-1"
DATE = "2025-06-01"


class Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def make_manager(remote, timers, clock):
    def _make(device_id):
        return EditLockManager(remote, device_id, timer_factory=timers,
                               lock_timeout_minutes=30,
                               heartbeat_seconds=120, clock=clock)
    return _make


def _lock_rows(remote):
    return remote.rows("active_reports")


class TestAcquire:
    def test_acquire_free_lock(self, make_manager, remote, timers):
        mgr = make_manager("device-a")
        assert mgr.acquire_lock(PROJECT, DATE, "Sam") is True
        rows = _lock_rows(remote)
        assert len(rows) == 1
        assert rows[0]["device_id"] == "device-a"
        assert rows[0]["inspector_name"] == "Sam"
        assert mgr.has_active_lock()
        assert mgr.heartbeat_running
        assert timers.active[0].seconds == 120

    def test_second_device_blocked(self, make_manager):
        a = make_manager("device-a")
        b = make_manager("device-b")
        assert a.acquire_lock(PROJECT, DATE, "Sam")
        assert b.acquire_lock(PROJECT, DATE, "Lee") is False
        holder = b.check_lock(PROJECT, DATE)
        assert holder.device_id == "device-a"
        assert holder.inspector_name == "Sam"
        assert not b.has_active_lock()

    def test_own_lock_is_reentrant(self, make_manager, remote, clock):
        assert make_manager("device-a").acquire_lock(PROJECT, DATE)
        clock.advance(minutes=5)
        restarted = make_manager("device-a")
        assert restarted.check_lock(PROJECT, DATE) is None
        assert restarted.acquire_lock(PROJECT, DATE) is True
        assert _lock_rows(remote)[0]["last_heartbeat"] == clock.now.isoformat()

    def test_reentry_updates_inspector_name(self, make_manager, remote,
                                            clock):
        assert make_manager("device-a").acquire_lock(PROJECT, DATE, "Sam")
        clock.advance(minutes=5)
        restarted = make_manager("device-a")
        assert restarted.acquire_lock(PROJECT, DATE, "Samantha") is True
        assert _lock_rows(remote)[0]["inspector_name"] == "Samantha"
        assert restarted.current_lock.inspector_name == "Samantha"
        holder = make_manager("device-b").check_lock(PROJECT, DATE)
        assert holder.inspector_name == "Samantha"

    def test_stale_lock_is_taken_over(self, make_manager, remote, clock):
        a = make_manager("device-a")
        a.acquire_lock(PROJECT, DATE)
        a.stop_heartbeat()
        clock.advance(minutes=31)
        b = make_manager("device-b")
        assert b.acquire_lock(PROJECT, DATE) is True
        rows = _lock_rows(remote)
        assert len(rows) == 1
        assert rows[0]["device_id"] == "device-b"

    def test_fresh_heartbeat_keeps_lock(self, make_manager, clock):
        a = make_manager("device-a")
        a.acquire_lock(PROJECT, DATE)
        clock.advance(minutes=29)
        assert make_manager("device-b").acquire_lock(PROJECT, DATE) is False

    def test_row_without_timestamps_is_stale(self, make_manager, remote):
        remote.rows("active_reports").append({
            "project_id": PROJECT, "report_date": DATE,
            "device_id": "ghost", "locked_at": None, "last_heartbeat": None,
        })
        assert make_manager("device-a").check_lock(PROJECT, DATE) is None
        assert _lock_rows(remote) == []

    def test_lost_race(self, make_manager, remote, monkeypatch):
        a = make_manager("device-a")
        b = make_manager("device-b")
        a.acquire_lock(PROJECT, DATE)
        # b passed its check before a's row landed
        monkeypatch.setattr(b, "check_lock", lambda *args: None)
        assert b.acquire_lock(PROJECT, DATE) is False
        assert _lock_rows(remote)[0]["device_id"] == "device-a"
        assert not b.has_active_lock()
        assert not b.heartbeat_running

    def test_missing_key_refused(self, make_manager):
        mgr = make_manager("device-a")
        assert mgr.acquire_lock("", DATE) is False
        assert mgr.acquire_lock(PROJECT, None) is False

    def test_offline_check_allows_and_acquire_fails(self, make_manager,
                                                    network):
        mgr = make_manager("device-a")
        network.online = False
        assert mgr.check_lock(PROJECT, DATE) is None
        assert mgr.acquire_lock(PROJECT, DATE) is False


class TestHeartbeat:
    def test_tick_updates_row(self, make_manager, remote, timers, clock):
        mgr = make_manager("device-a")
        mgr.acquire_lock(PROJECT, DATE)
        clock.advance(minutes=2)
        timers.fire_all()
        assert _lock_rows(remote)[0]["last_heartbeat"] == clock.now.isoformat()
        assert mgr.heartbeat_running

    def test_heartbeat_does_not_touch_foreign_row(self, make_manager, remote,
                                                  clock):
        a = make_manager("device-a")
        a.acquire_lock(PROJECT, DATE)
        stale_beat = _lock_rows(remote)[0]["last_heartbeat"]
        remote.rows("active_reports")[0]["device_id"] = "device-b"
        clock.advance(minutes=2)
        a.update_heartbeat()
        assert _lock_rows(remote)[0]["last_heartbeat"] == stale_beat

    def test_no_lock_no_heartbeat(self, make_manager):
        assert make_manager("device-a").update_heartbeat() is False

    def test_heartbeat_failure_is_logged(self, make_manager, network):
        mgr = make_manager("device-a")
        mgr.acquire_lock(PROJECT, DATE)
        network.online = False
        assert mgr.update_heartbeat() is False

    def test_on_foreground_renews(self, make_manager, remote, clock):
        mgr = make_manager("device-a")
        assert mgr.on_foreground() is False
        mgr.acquire_lock(PROJECT, DATE)
        clock.advance(minutes=10)
        assert mgr.on_foreground() is True
        assert _lock_rows(remote)[0]["last_heartbeat"] == clock.now.isoformat()


class TestRelease:
    def test_release_own_lock(self, make_manager, remote, timers):
        mgr = make_manager("device-a")
        mgr.acquire_lock(PROJECT, DATE)
        assert mgr.release_lock(PROJECT, DATE) is True
        assert _lock_rows(remote) == []
        assert not mgr.has_active_lock()
        assert not mgr.heartbeat_running
        assert timers.active == []

    def test_release_only_deletes_own_row(self, make_manager, remote):
        make_manager("device-a").acquire_lock(PROJECT, DATE)
        make_manager("device-b").release_lock(PROJECT, DATE)
        assert len(_lock_rows(remote)) == 1

    def test_release_current(self, make_manager, remote):
        mgr = make_manager("device-a")
        assert mgr.release_current_lock() is True
        mgr.acquire_lock(PROJECT, DATE)
        mgr.release_current_lock()
        assert _lock_rows(remote) == []

    def test_release_on_teardown(self, make_manager, remote):
        mgr = make_manager("device-a")
        mgr.acquire_lock(PROJECT, DATE)
        mgr.release_on_teardown()
        assert ("delete_nowait", "active_reports") in remote.calls
        assert _lock_rows(remote) == []
        assert not mgr.has_active_lock()
        assert not mgr.heartbeat_running

    def test_teardown_without_lock(self, make_manager, remote):
        assert make_manager("device-a").release_on_teardown() is None
        assert ("delete_nowait", "active_reports") not in remote.calls


class TestLockMessage:
    def test_message(self):
        info = LockInfo(device_id="d", inspector_name="Sam",
                        locked_at=(T0 - timedelta(minutes=5)).isoformat())
        assert format_lock_message(info, now=T0) == (
            "This report is currently being edited by Sam "
            "(started 5 minutes ago)"
        )

    def test_none(self):
        assert format_lock_message(None) == ""
