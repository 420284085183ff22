"""ReportSession — the editing context for one open report.

Holds the loaded report, its user edits and the autosave debounce, and
gates every mutation through the lifecycle rules. Collaborators are passed
in, so several sessions can run side by side (and under test) without
shared state.

Autosave writes to the local store only. Transitions, toggles and
`save()` write the report through to the remote store as well.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from field_report.config import Config
from field_report.core import resolver, rules
from field_report.core.rules import TransitionResult, ValidationResult
from field_report.database.models import Project, Report
from field_report.remote.converters import build_raw_capture
from field_report.remote.refine import (
    RefinementClient,
    RefinementError,
    build_refine_payload,
)
from field_report.sync.lock_manager import EditLockManager, format_lock_message
from field_report.sync.sync_manager import SyncLockError, SyncManager, SyncResult
from field_report.sync.timers import Debouncer, TimerFactory, thread_timer
from field_report.utils.constants import (
    CAPTURE_MODES,
    OFFLINE,
    STATUS_PENDING_REFINE,
    STATUS_REFINED,
    STATUS_SUBMITTED,
    TOGGLE_SECTIONS,
)

logger = logging.getLogger(__name__)


class ReportNotFoundError(Exception):
    """The referenced report is not available locally or remotely."""


class ReportNotEditableError(Exception):
    """The report's status (or capture state) does not allow this edit."""


class ToggleLockedError(Exception):
    """A section toggle was already answered and cannot change."""

    def __init__(self, section: str, current_value: Optional[bool]):
        super().__init__(
            f"Section '{section}' is already set to {current_value}"
        )
        self.section = section
        self.current_value = current_value


class InvalidTransitionError(Exception):
    """A status change the lifecycle does not allow."""

    def __init__(self, current: str, target: str, reason: Optional[str]):
        super().__init__(f"Cannot move from {current} to {target}: {reason}")
        self.current = current
        self.target = target
        self.reason = reason


@dataclass
class RefineOutcome:
    success: bool
    retryable: bool = False
    error: Optional[str] = None
    version: Optional[str] = None
    validation: Optional[ValidationResult] = None


class ReportSession:
    """Editing state and operations for a single report."""

    def __init__(self, sync: SyncManager,
                 locks: EditLockManager | None = None,
                 refiner: RefinementClient | None = None,
                 timer_factory: TimerFactory = thread_timer,
                 autosave_ms: int | None = None):
        self.sync = sync
        self.store = sync.store
        self.locks = locks
        self.refiner = refiner or RefinementClient()
        self.report: Optional[Report] = None
        self.project: Optional[Project] = None
        self._autosave = Debouncer(
            (autosave_ms or Config.AUTOSAVE_DEBOUNCE_MS) / 1000,
            self.save_local,
            timer_factory,
        )

    # ── Loading ────────────────────────────────────────────────

    def load(self, report_id: str, acquire_lock: bool = False,
             inspector_name: str | None = None) -> Report:
        """Open a report. Raises ReportNotFoundError when it is unknown.

        With `acquire_lock`, an editable report is locked for this device
        first. SyncLockError names the other holder when another device
        has it. Offline, the report opens without a lock.
        """
        report = self.sync.get_report(report_id)
        if report is None:
            raise ReportNotFoundError(f"Report not found: {report_id}")

        if acquire_lock and self.locks and rules.is_editable(report):
            self._lock_for_editing(report, inspector_name)

        self.report = report
        self.project = None
        if report.project_id:
            self.project = self.store.get_project(report.project_id)
        logger.info("Loaded report %s (%s)", report.id, report.status)
        return report

    def _lock_for_editing(self, report: Report, inspector_name: str | None):
        if not self.sync.is_online:
            logger.info("Offline, opening %s without an edit lock", report.id)
            return
        holder = self.locks.check_lock(report.project_id, report.report_date)
        if holder is not None:
            raise SyncLockError(format_lock_message(holder), holder)
        if not self.locks.acquire_lock(
                report.project_id, report.report_date, inspector_name):
            logger.warning("Could not acquire edit lock for %s, continuing",
                           report.id)

    def _require(self) -> Report:
        if self.report is None:
            raise ReportNotFoundError("No report loaded")
        return self.report

    @property
    def user_edits(self) -> dict:
        return self._require().user_edits

    @property
    def contractors(self) -> list:
        return self.project.sorted_contractors() if self.project else []

    # ── Resolved values ────────────────────────────────────────

    def value(self, field_path: str, ai_path: str | None = None,
              fallback="", legacy_ai_path: str | None = None):
        report = self._require()
        return resolver.resolve(report, report.user_edits, field_path,
                                ai_path, fallback, legacy_ai_path)

    def text_value(self, section: str, fallback=""):
        report = self._require()
        return resolver.resolve_text_field(report, report.user_edits,
                                           section, fallback)

    def contractor_activity(self, contractor_id: str):
        report = self._require()
        return resolver.resolve_contractor_activity(
            report, report.user_edits, contractor_id, self.contractors
        )

    def contractor_operations(self, contractor_id: str):
        report = self._require()
        return resolver.resolve_contractor_operations(
            report, report.user_edits, contractor_id, self.contractors
        )

    def equipment_rows(self) -> list[dict]:
        equipment = self.project.equipment if self.project else []
        return resolver.resolve_equipment(
            self._require(), self.contractors, equipment
        )

    def has_safety_incident(self) -> bool:
        report = self._require()
        return resolver.resolve_safety_incident(report, report.user_edits)

    # ── Editing ────────────────────────────────────────────────

    def _require_editable(self) -> Report:
        report = self._require()
        if not rules.is_editable(report):
            raise ReportNotEditableError(
                f"Report {report.id} is {report.status} and cannot be edited"
            )
        return report

    def set_user_edit(self, path: str, value):
        """Record an edit and schedule an autosave."""
        report = self._require_editable()
        report.user_edits[path] = value
        self._autosave.trigger()

    def on_field_blur(self) -> bool:
        """Save now instead of waiting for the debounce."""
        self._autosave.cancel()
        return self.save_local()

    def save_local(self) -> bool:
        if self.report is None:
            return False
        return self.store.save_report(self.report)

    def save(self) -> SyncResult:
        """Save locally and write through to the remote store."""
        self._autosave.cancel()
        return self.sync.save_report(self._require())

    def set_toggle(self, section: str, value: bool):
        if section not in TOGGLE_SECTIONS:
            raise ValueError(f"Section has no toggle: {section}")
        report = self._require_editable()
        check = rules.can_change_toggle(report, section)
        if not check.allowed:
            raise ToggleLockedError(section, check.current_value)
        report.section_toggles[section] = bool(value)
        self.save()

    def switch_capture_mode(self, mode: str) -> rules.ModeSwitchResult:
        report = self._require()
        if mode not in CAPTURE_MODES:
            raise ValueError(f"Unknown capture mode: {mode}")
        # Entries may have synced since load (debounced backup, queue drain)
        self.store.merge_remote_ids(report)
        check = rules.can_switch_capture_mode(report)
        if not check.allowed:
            raise ReportNotEditableError(
                f"Capture mode is locked: {check.reason}"
            )
        report.capture_mode = mode
        self.save_local()
        return check

    # ── Lifecycle ──────────────────────────────────────────────

    def transition(self, target: str) -> TransitionResult:
        report = self._require()
        check = rules.can_transition(report.status, target)
        if not check.allowed:
            raise InvalidTransitionError(report.status, target, check.reason)
        if report.status != target:
            logger.info("Report %s: %s -> %s", report.id, report.status, target)
            report.status = target
            self.save()
        return check

    def send_to_refine(self) -> RefineOutcome:
        """Validate, move to pending_refine and call the refinement webhook."""
        report = self._require()
        validation = rules.validate_for_ai(report)
        if not validation.valid:
            return RefineOutcome(False, validation=validation)

        self.transition(STATUS_PENDING_REFINE)
        self.sync.sync_raw_capture(
            build_raw_capture(report, self.project), report.id
        )
        payload = build_refine_payload(report, self.project)
        return self._run_refine(payload)

    def retry_refine(self) -> RefineOutcome:
        """Replay the refinement payload preserved by a failed attempt."""
        report = self._require()
        if not report.pending_refine:
            return RefineOutcome(False, error="No pending processing found")
        return self._run_refine(report.pending_refine)

    def _run_refine(self, payload: dict) -> RefineOutcome:
        report = self._require()
        if not self.sync.is_online:
            return self._defer_refine(payload, OFFLINE)
        try:
            result = self.refiner.refine(payload)
        except RefinementError as e:
            logger.warning("Refinement failed for %s: %s", report.id, e)
            return self._defer_refine(payload, str(e))

        report.ai_generated = result.ai_generated
        if result.version == "modern":
            report.original_input = result.original_input or payload
            if result.capture_mode in CAPTURE_MODES:
                report.capture_mode = result.capture_mode
        report.pending_refine = None
        self.transition(STATUS_REFINED)
        return RefineOutcome(True, version=result.version)

    def _defer_refine(self, payload: dict, error: str) -> RefineOutcome:
        report = self._require()
        report.pending_refine = payload
        self.save_local()
        return RefineOutcome(False, retryable=True, error=error)

    def submit(self) -> ValidationResult:
        """Final submission. Raises SyncError when the remote call fails."""
        report = self._require()
        validation = rules.validate_for_submit(report)
        if not validation.valid:
            return validation
        self._autosave.cancel()
        self.sync.submit_final_report(report)
        report.status = STATUS_SUBMITTED
        self.store.save_report(report)
        if self.locks:
            self.locks.release_current_lock()
        logger.info("Report %s submitted", report.id)
        return validation

    def close(self):
        """Flush pending edits and drop the lock without waiting."""
        if self._autosave.pending:
            self._autosave.flush()
        if self.locks:
            self.locks.release_on_teardown()
        self.report = None
        self.project = None
