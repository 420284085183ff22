"""End-to-end checks of the core guarantees across modules."""

from datetime import datetime, timedelta, timezone
from itertools import product

from field_report.core import rules
from field_report.core.resolver import resolve, resolve_text_field
from field_report.core.rules import ReportRules
from field_report.database.models import Entry, Report
from field_report.sync.lock_manager import EditLockManager
from field_report.utils.constants import STATUS_FLOW


class TestTransitionTable:
    def test_allowed_iff_same_or_next(self):
        for current, target in product(STATUS_FLOW, STATUS_FLOW):
            step = STATUS_FLOW.index(target) - STATUS_FLOW.index(current)
            assert rules.can_transition(current, target).allowed == \
                (step in (0, 1)), (current, target)


class TestResolution:
    def test_user_edit_beats_ai_issues(self):
        report = Report(id="r", status="draft",
                        user_edits={"issues": "standing water"},
                        ai_generated={"issues_delays": "none"})
        assert resolve_text_field(report, report.user_edits, "issues") == \
            "standing water"

    def test_resolution_is_idempotent(self):
        report = Report(id="r", ai_generated={"qaqc_notes": ["a", "b"]})
        first = resolve_text_field(report, {}, "qaqc")
        assert resolve_text_field(report, {}, "qaqc") == first

    def test_edit_overrides_after_earlier_resolution(self):
        report = Report(id="r", ai_generated={"x": "ai"})
        assert resolve(report, {}, "x") == "ai"
        assert resolve(report, {"x": "user"}, "x") == "user"


class TestToggleScenario:
    def test_safety_false_is_locked(self, store, make_report):
        report = make_report()
        report.section_toggles["safety"] = False
        store.save_report(report)
        result = ReportRules(store).can_change_toggle("r-1", "safety")
        assert result.allowed is False
        assert result.current_value is False


class TestTwoDeviceLock:
    def test_b_sees_a_until_release_or_staleness(self, remote, timers):
        now = [datetime(2025, 6, 1, 7, 0, tzinfo=timezone.utc)]

        def clock():
            return now[0]

        a = EditLockManager(remote, "device-a", timers, 30, 120, clock)
        b = EditLockManager(remote, "device-b", timers, 30, 120, clock)

        assert a.acquire_lock("proj-1", "2025-06-01", "Sam")
        assert b.check_lock("proj-1", "2025-06-01").device_id == "device-a"

        # Heartbeat stops; still held inside the window
        a.stop_heartbeat()
        now[0] += timedelta(minutes=29)
        assert b.check_lock("proj-1", "2025-06-01") is not None

        now[0] += timedelta(minutes=2)
        assert b.check_lock("proj-1", "2025-06-01") is None
        assert remote.rows("active_reports") == []

    def test_release_frees_lock(self, remote, timers):
        a = EditLockManager(remote, "device-a", timers)
        b = EditLockManager(remote, "device-b", timers)
        a.acquire_lock("proj-1", "2025-06-01")
        a.release_lock("proj-1", "2025-06-01")
        assert b.check_lock("proj-1", "2025-06-01") is None
        assert b.acquire_lock("proj-1", "2025-06-01")


class TestOfflineEntryBackup:
    def test_queued_then_drained(self, sync, network, remote):
        network.online = False
        sync.backup_entry("r-1", Entry(id="e1", section="issues",
                                       content="Standing water"))
        assert sync.get_pending_sync_count() == 1

        network.online = True
        sync.on_connectivity_restored()
        assert sync.get_pending_sync_count() == 0
        assert remote.rows("report_entries")[0]["local_id"] == "e1"

    def test_redelivery_does_not_duplicate(self, sync, network, remote):
        entry = Entry(id="e1", content="Standing water")
        sync.backup_entry("r-1", entry)
        network.online = False
        sync.backup_entry("r-1", entry)
        network.online = True
        sync.process_offline_queue()
        assert len(remote.rows("report_entries")) == 1

    def test_dropped_after_three_rejections(self, sync, network, remote):
        network.online = False
        sync.backup_entry("r-1", Entry(id="e1"))
        network.online = True
        remote.fail("upsert", "report_entries", times=3)
        for _ in range(3):
            sync.process_offline_queue()
        assert sync.get_pending_sync_count() == 0
        assert remote.rows("report_entries") == []


class TestEligibilityOrdering:
    def test_unfinished_previous_outranks_submitted_today(self, store,
                                                           make_report):
        today = datetime(2025, 6, 10).date()
        store.save_report(make_report("old", report_date="2025-06-09"))
        store.save_report(make_report("new", report_date="2025-06-10",
                                      status="submitted"))
        result = ReportRules(store).can_start_new_report("proj-1", today)
        assert result.reason == "UNFINISHED_PREVIOUS"
