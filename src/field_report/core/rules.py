"""Report lifecycle rules and project eligibility.

Module-level functions are pure and take a Report (or plain status strings).
`ReportRules` binds them to a LocalStore so callers can ask by report id.
None of these raise on a rule violation: they return a result object.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from field_report.database.local_store import LocalStore
from field_report.database.models import Report
from field_report.utils.constants import (
    CAPTURE_FREEFORM,
    CAPTURE_GUIDED,
    EDITABLE_STATUSES,
    REASON_ALREADY_AT_STATUS,
    REASON_ALREADY_SUBMITTED_TODAY,
    REASON_CANNOT_GO_BACKWARDS,
    REASON_CANNOT_SKIP_STEPS,
    REASON_CONTINUE_EXISTING,
    REASON_ENTRIES_ALREADY_SYNCED,
    REASON_INVALID_CURRENT_STATUS,
    REASON_INVALID_TARGET_STATUS,
    REASON_NO_PROJECT_ID,
    REASON_NOT_IN_DRAFT,
    REASON_REPORT_NOT_FOUND,
    REASON_UNFINISHED_PREVIOUS,
    STATUS_DRAFT,
    STATUS_FLOW,
    STATUS_PENDING_REFINE,
    STATUS_REFINED,
    STATUS_SUBMITTED,
)
from field_report.utils.formatters import today_date_string

logger = logging.getLogger(__name__)


# ── Result types ───────────────────────────────────────────────

@dataclass
class TransitionResult:
    allowed: bool
    reason: Optional[str] = None


@dataclass
class ModeSwitchResult:
    allowed: bool
    reason: Optional[str] = None
    data_will_migrate: bool = False


@dataclass
class ToggleResult:
    allowed: bool
    current_value: Optional[bool] = None


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass
class EligibilityResult:
    allowed: bool
    reason: Optional[str] = None
    blocking_report_id: Optional[str] = None


@dataclass
class UrgencyBuckets:
    late: list[dict] = field(default_factory=list)
    today_drafts: list[dict] = field(default_factory=list)
    today_ready: list[dict] = field(default_factory=list)
    today_submitted: list[dict] = field(default_factory=list)


# ── Status flow ────────────────────────────────────────────────

def can_transition(current: str, target: str) -> TransitionResult:
    """Allowed iff target is the current status or exactly one step on."""
    if current not in STATUS_FLOW:
        logger.warning("Invalid current status: %s", current)
        return TransitionResult(False, REASON_INVALID_CURRENT_STATUS)
    if target not in STATUS_FLOW:
        logger.warning("Invalid target status: %s", target)
        return TransitionResult(False, REASON_INVALID_TARGET_STATUS)

    current_index = STATUS_FLOW.index(current)
    target_index = STATUS_FLOW.index(target)
    if target_index < current_index:
        return TransitionResult(False, REASON_CANNOT_GO_BACKWARDS)
    if target_index > current_index + 1:
        return TransitionResult(False, REASON_CANNOT_SKIP_STEPS)
    if target_index == current_index:
        return TransitionResult(True, REASON_ALREADY_AT_STATUS)
    return TransitionResult(True)


def get_next_valid_status(status: str) -> Optional[str]:
    if status not in STATUS_FLOW:
        return None
    index = STATUS_FLOW.index(status)
    if index >= len(STATUS_FLOW) - 1:
        return None
    return STATUS_FLOW[index + 1]


def is_editable(report: Report | None) -> bool:
    return report is not None and report.status in EDITABLE_STATUSES


def can_return_to_notes(report: Report | None) -> bool:
    """Raw note-taking is only reachable before refinement starts."""
    return report is not None and report.status == STATUS_DRAFT


# ── Toggles and capture mode ───────────────────────────────────

def toggle_state(report: Report, section: str) -> Optional[bool]:
    return report.section_toggles.get(section)


def can_change_toggle(report: Report | None, section: str) -> ToggleResult:
    """A toggle may be set once; after that it stays as answered."""
    if report is None:
        return ToggleResult(False, None)
    current = toggle_state(report, section)
    if current is None:
        return ToggleResult(True, None)
    return ToggleResult(False, current)


def can_switch_capture_mode(report: Report | None) -> ModeSwitchResult:
    if report is None:
        return ModeSwitchResult(False, REASON_REPORT_NOT_FOUND)
    if report.status != STATUS_DRAFT:
        return ModeSwitchResult(False, REASON_NOT_IN_DRAFT)
    if report.has_synced_entries():
        return ModeSwitchResult(False, REASON_ENTRIES_ALREADY_SYNCED)
    return ModeSwitchResult(True, None, bool(report.all_entries()))


# ── Validation gates ───────────────────────────────────────────

def _live_entries(entries) -> list:
    return [e for e in entries if not e.is_deleted]


def _weather_value(weather: dict, *keys):
    for key in keys:
        if weather.get(key) is not None:
            return weather[key]
    return None


def _entry_errors(report: Report) -> list[str]:
    if report.capture_mode == CAPTURE_FREEFORM:
        if not _live_entries(report.freeform_entries):
            return ["At least one freeform entry is required"]
    elif report.capture_mode == CAPTURE_GUIDED:
        if not _live_entries(report.entries):
            return ["At least one guided entry is required"]
    return []


def validate_for_ai(report: Report) -> ValidationResult:
    """Gate checked before a report is sent for refinement."""
    errors = []
    if report.status != STATUS_DRAFT:
        errors.append(
            "Report must be in draft status to send to AI "
            f"(current: {report.status})"
        )
    errors.extend(_entry_errors(report))

    if report.capture_mode == CAPTURE_GUIDED:
        weather = report.weather
        if not weather:
            errors.append("Weather data is required in guided mode")
        else:
            if _weather_value(weather, "highTemp", "high_temp") is None:
                errors.append("High temperature is required")
            if _weather_value(weather, "lowTemp", "low_temp") is None:
                errors.append("Low temperature is required")
            if not _weather_value(weather, "generalCondition",
                                  "general_condition"):
                errors.append("General weather condition is required")

    return ValidationResult(not errors, errors)


def validate_for_submit(report: Report) -> ValidationResult:
    """Gate checked before final submission."""
    errors = []
    if report.status != STATUS_REFINED:
        errors.append(
            "Report must be in refined status to submit "
            f"(current: {report.status})"
        )
    if not report.project_id:
        errors.append("Project ID is required")
    if not report.report_date:
        errors.append("Report date is required")
    errors.extend(_entry_errors(report))
    if report.capture_mode == CAPTURE_GUIDED and not report.weather:
        errors.append("Weather data is required")
    return ValidationResult(not errors, errors)


# ── Dates ──────────────────────────────────────────────────────

def _report_date(report) -> Optional[str]:
    if isinstance(report, Report):
        return report.report_date
    return (report or {}).get("date") or (report or {}).get("report_date")


def _report_status(report) -> Optional[str]:
    if isinstance(report, Report):
        return report.status
    return (report or {}).get("status")


def is_report_from_today(report, today: date | None = None) -> bool:
    report_date = _report_date(report)
    return bool(report_date) and report_date == today_date_string(today)


def is_report_late(report, today: date | None = None) -> bool:
    """Dated before today and still not submitted."""
    report_date = _report_date(report)
    if not report_date:
        return False
    return (report_date < today_date_string(today)
            and _report_status(report) != STATUS_SUBMITTED)


# ── Eligibility over report summaries ──────────────────────────

def classify_new_report(summaries: list[dict], project_id: str | None,
                        today: date | None = None) -> EligibilityResult:
    """Decide whether a new report may start for a project today.

    A late report outranks anything dated today, so the checks run in
    a fixed order.
    """
    if not project_id:
        return EligibilityResult(False, REASON_NO_PROJECT_ID)

    today_str = today_date_string(today)
    reports = [r for r in summaries if r.get("project_id") == project_id]

    for r in reports:
        if (r.get("date") and r["date"] < today_str
                and r.get("status") != STATUS_SUBMITTED):
            return EligibilityResult(
                False, REASON_UNFINISHED_PREVIOUS, r.get("id"),
            )
    for r in reports:
        if r.get("date") == today_str and r.get("status") == STATUS_SUBMITTED:
            return EligibilityResult(
                False, REASON_ALREADY_SUBMITTED_TODAY, r.get("id"),
            )
    for r in reports:
        if r.get("date") == today_str:
            return EligibilityResult(True, REASON_CONTINUE_EXISTING, r.get("id"))
    return EligibilityResult(True)


def bucket_by_urgency(summaries: list[dict],
                      today: date | None = None) -> UrgencyBuckets:
    today_str = today_date_string(today)
    buckets = UrgencyBuckets()
    for r in summaries:
        report_date = r.get("date") or ""
        status = r.get("status")
        if report_date < today_str and status != STATUS_SUBMITTED:
            buckets.late.append(r)
        elif report_date == today_str:
            if status in (STATUS_DRAFT, STATUS_PENDING_REFINE):
                buckets.today_drafts.append(r)
            elif status == STATUS_REFINED:
                buckets.today_ready.append(r)
            elif status == STATUS_SUBMITTED:
                buckets.today_submitted.append(r)

    buckets.late.sort(key=lambda r: r.get("date") or "")
    for bucket in (buckets.today_drafts, buckets.today_ready,
                   buckets.today_submitted):
        bucket.sort(key=lambda r: r.get("created_at") or "", reverse=True)
    return buckets


class ReportRules:
    """Rules evaluated against reports held in the local store."""

    def __init__(self, store: LocalStore):
        self.store = store

    def _get(self, report_id: str) -> Optional[Report]:
        report = self.store.get_report(report_id)
        if report is None:
            logger.warning("Report not found: %s", report_id)
        return report

    def can_transition_status(self, report_id: str,
                              target: str) -> TransitionResult:
        report = self._get(report_id)
        if report is None:
            return TransitionResult(False, REASON_REPORT_NOT_FOUND)
        return can_transition(report.status, target)

    def is_editable(self, report_id: str) -> bool:
        return is_editable(self._get(report_id))

    def can_return_to_notes(self, report_id: str) -> bool:
        return can_return_to_notes(self._get(report_id))

    def can_change_toggle(self, report_id: str, section: str) -> ToggleResult:
        return can_change_toggle(self._get(report_id), section)

    def get_section_toggle_state(self, report_id: str,
                                 section: str) -> Optional[bool]:
        report = self._get(report_id)
        return toggle_state(report, section) if report else None

    def can_switch_capture_mode(self, report_id: str) -> ModeSwitchResult:
        return can_switch_capture_mode(self._get(report_id))

    def validate_for_ai(self, report_id: str) -> ValidationResult:
        report = self._get(report_id)
        if report is None:
            return ValidationResult(False, ["Report not found"])
        return validate_for_ai(report)

    def validate_for_submit(self, report_id: str) -> ValidationResult:
        report = self._get(report_id)
        if report is None:
            return ValidationResult(False, ["Report not found"])
        return validate_for_submit(report)

    # ── Eligibility ──

    def _summaries(self) -> list[dict]:
        return list(self.store.get_current_reports().values())

    def can_start_new_report(self, project_id: str | None,
                             today: date | None = None) -> EligibilityResult:
        return classify_new_report(self._summaries(), project_id, today)

    def get_projects_eligible_for_new_report(
            self, today: date | None = None) -> list[str]:
        """Ids of cached projects that may start (or continue) a report."""
        summaries = self._summaries()
        return [
            p.id for p in self.store.get_all_projects()
            if classify_new_report(summaries, p.id, today).allowed
        ]

    def get_reports_by_urgency(self, today: date | None = None) -> UrgencyBuckets:
        return bucket_by_urgency(self._summaries(), today)
