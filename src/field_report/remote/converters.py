"""Row converters between remote snake_case rows and local models.

Each `from_remote_*` accepts a row dict as returned by the table API and
each `to_remote_*` returns the dict to send. Defaults mirror what the remote
schema assumes when a column is empty.
"""

from typing import Optional

from field_report.database.models import (
    Contractor,
    Entry,
    Equipment,
    Project,
    Report,
    UserProfile,
)
from field_report.utils.constants import (
    CAPTURE_GUIDED,
    FREEFORM_ENTRY_SECTION,
    STATUS_DRAFT,
    STATUS_SUBMITTED,
    WORK_SECTION_PREFIX,
)
from field_report.utils.formatters import now_iso, today_date_string


# ── Projects / contractors / equipment ─────────────────────────

def from_remote_contractor(row: dict) -> Contractor:
    return Contractor(
        id=row.get("id"),
        project_id=row.get("project_id") or "",
        name=row.get("name") or "",
        abbreviation=row.get("abbreviation") or "",
        type=row.get("type") or "sub",
        trades=row.get("trades") or "",
        status=row.get("status") or "active",
        company=row.get("company") or "",
    )


def to_remote_contractor(contractor: Contractor,
                         project_id: str | None = None) -> dict:
    row = {
        "project_id": project_id or contractor.project_id,
        "name": contractor.name,
        "company": contractor.company,
        "abbreviation": contractor.abbreviation,
        "type": contractor.type or "sub",
        "trades": contractor.trades,
        "status": contractor.status or "active",
    }
    if contractor.id:
        row["id"] = contractor.id
    return row


def from_remote_equipment(row: dict) -> Equipment:
    is_active = row.get("is_active")
    return Equipment(
        id=row.get("id"),
        project_id=row.get("project_id") or "",
        name=row.get("name") or "",
        type=row.get("type") or row.get("name") or "",
        description=row.get("description") or "",
        is_active=True if is_active is None else bool(is_active),
    )


def from_remote_project(row: dict) -> Project:
    """Project row, with any joined `contractors`/`equipment` rows."""
    return Project(
        id=row.get("id"),
        project_name=row.get("project_name") or "",
        status=row.get("status") or "active",
        noab_project_no=row.get("noab_project_no") or "",
        location=row.get("location") or "",
        engineer=row.get("engineer") or "",
        prime_contractor=row.get("prime_contractor") or "",
        default_start_time=row.get("default_start_time") or "",
        default_end_time=row.get("default_end_time") or "",
        contractors=[
            from_remote_contractor(c) for c in row.get("contractors") or []
        ],
        equipment=[
            from_remote_equipment(e) for e in row.get("equipment") or []
        ],
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def to_remote_project(project: Project) -> dict:
    row = {
        "project_name": project.project_name,
        "noab_project_no": project.noab_project_no,
        "location": project.location,
        "engineer": project.engineer,
        "prime_contractor": project.prime_contractor,
        "default_start_time": project.default_start_time,
        "default_end_time": project.default_end_time,
        "status": project.status or "active",
    }
    if project.id:
        row["id"] = project.id
    return row


# ── Reports ────────────────────────────────────────────────────

def from_remote_report(row: dict) -> Report:
    """Report header row. Payload layers are not stored remotely."""
    return Report(
        id=row.get("id") or "",
        project_id=row.get("project_id"),
        report_date=row.get("report_date"),
        status=row.get("status") or STATUS_DRAFT,
        capture_mode=row.get("capture_mode") or CAPTURE_GUIDED,
        section_toggles=dict(row.get("toggle_states") or {}),
        remote_id=row.get("id"),
        created_at=row.get("created_at"),
        last_saved=row.get("updated_at"),
    )


def to_remote_report(report: Report, user_id: str, device_id: str,
                     submitted_at: str | None = None) -> dict:
    row = {
        "project_id": report.project_id,
        "user_id": user_id,
        "device_id": device_id,
        "report_date": report.report_date or today_date_string(),
        "status": report.status or STATUS_DRAFT,
        "capture_mode": report.capture_mode or CAPTURE_GUIDED,
        "updated_at": now_iso(),
        "toggle_states": dict(report.section_toggles),
    }
    if report.remote_id:
        row["id"] = report.remote_id
    if submitted_at:
        row["submitted_at"] = submitted_at
    elif report.status == STATUS_SUBMITTED:
        row["submitted_at"] = now_iso()
    return row


# ── Entries ────────────────────────────────────────────────────

def contractor_id_from_section(section: str | None) -> Optional[str]:
    """Contractor id carried by a `work_<id>` guided section, if any."""
    if section and section.startswith(WORK_SECTION_PREFIX):
        return section[len(WORK_SECTION_PREFIX):] or None
    return None


def from_remote_entry(row: dict) -> Entry:
    return Entry(
        id=row.get("local_id") or row.get("id") or "",
        section=row.get("section") or "",
        content=row.get("content") or "",
        order=row.get("entry_order") or 0,
        created_at=row.get("timestamp") or row.get("created_at"),
        updated_at=row.get("updated_at"),
        remote_id=row.get("id"),
        is_deleted=bool(row.get("is_deleted") or False),
    )


def to_remote_entry(entry: Entry | dict, report_id: str) -> dict:
    """Row keyed for upsert on (report_id, local_id)."""
    if isinstance(entry, dict):
        entry = Entry.from_dict(entry)
    row = {
        "report_id": report_id,
        "local_id": entry.id or None,
        "section": entry.section or FREEFORM_ENTRY_SECTION,
        "content": entry.content,
        "entry_order": entry.order or 0,
        "timestamp": entry.created_at,
        "contractor_id": contractor_id_from_section(entry.section),
        "updated_at": entry.updated_at or now_iso(),
        "is_deleted": entry.is_deleted,
    }
    if entry.remote_id:
        row["id"] = entry.remote_id
    return row


# ── Raw capture ────────────────────────────────────────────────

def from_remote_raw_capture(row: dict) -> dict:
    return {
        "id": row.get("id"),
        "reportId": row.get("report_id"),
        "captureMode": row.get("capture_mode") or CAPTURE_GUIDED,
        "rawData": row.get("raw_data"),
        "weather": row.get("weather"),
        "location": row.get("location"),
        "createdAt": row.get("created_at"),
    }


def to_remote_raw_capture(capture: dict, report_id: str) -> dict:
    """One raw-capture row per report, built from the capture snapshot."""
    raw_data = {
        "entries": capture.get("entries") or [],
        "contractors": capture.get("contractors") or [],
        "equipment": capture.get("equipment") or [],
    }
    for key in ("freeformEntries", "freeformChecklist", "sectionToggles"):
        if capture.get(key):
            raw_data[key] = capture[key]
    return {
        "report_id": report_id,
        "capture_mode": capture.get("captureMode") or CAPTURE_GUIDED,
        "raw_data": raw_data,
        "weather": capture.get("weather"),
        "location": capture.get("location"),
        "created_at": now_iso(),
    }


def build_raw_capture(report: Report, project: Project | None = None) -> dict:
    """Snapshot of a report's captured input for the raw-capture table."""
    capture = {
        "captureMode": report.capture_mode,
        "entries": [e.to_dict() for e in report.entries if not e.is_deleted],
        "contractors": (
            [c.to_dict() for c in project.contractors] if project else []
        ),
        "equipment": list(report.equipment),
        "weather": report.weather,
        "sectionToggles": dict(report.section_toggles),
    }
    if report.is_freeform:
        capture["freeformEntries"] = [
            e.to_dict() for e in report.freeform_entries if not e.is_deleted
        ]
    return capture


# ── User profiles ──────────────────────────────────────────────

def from_remote_user_profile(row: dict) -> UserProfile:
    return UserProfile(
        id=row.get("id"),
        device_id=row.get("device_id") or "",
        full_name=row.get("full_name") or "",
        title=row.get("title") or "",
        company=row.get("company") or "",
        email=row.get("email") or "",
        phone=row.get("phone") or "",
    )


def to_remote_user_profile(profile: UserProfile) -> dict:
    row = {
        "device_id": profile.device_id or None,
        "full_name": profile.full_name,
        "title": profile.title,
        "company": profile.company,
        "email": profile.email,
        "phone": profile.phone,
        "updated_at": now_iso(),
    }
    if profile.id:
        row["id"] = profile.id
    return row
