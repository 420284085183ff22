"""Data models for the local store and the reconciliation core."""

import copy
from dataclasses import dataclass, field
from typing import Any, Optional

from field_report.utils.constants import (
    CAPTURE_FREEFORM,
    CAPTURE_GUIDED,
    STATUS_DRAFT,
)


def _first(data: dict, *keys, default=None):
    """Return the first key present (and not None) in data."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


@dataclass
class Contractor:
    id: Optional[str] = None
    project_id: str = ""
    name: str = ""
    abbreviation: str = ""
    type: str = "sub"  # 'prime' or 'sub'
    trades: str = ""
    status: str = "active"
    company: str = ""

    @property
    def display_name(self) -> str:
        return self.abbreviation or self.name

    @property
    def is_prime(self) -> bool:
        return self.type == "prime"

    @classmethod
    def from_dict(cls, data: dict) -> "Contractor":
        return cls(
            id=data.get("id"),
            project_id=_first(data, "projectId", "project_id", default=""),
            name=data.get("name") or "",
            abbreviation=data.get("abbreviation") or "",
            type=data.get("type") or "sub",
            trades=_first(data, "trades", "trade", default=""),
            status=data.get("status") or "active",
            company=data.get("company") or "",
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "name": self.name,
            "abbreviation": self.abbreviation,
            "type": self.type,
            "trades": self.trades,
            "status": self.status,
            "company": self.company,
        }


@dataclass
class Equipment:
    id: Optional[str] = None
    project_id: str = ""
    name: str = ""
    type: str = ""
    description: str = ""
    is_active: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "Equipment":
        return cls(
            id=data.get("id"),
            project_id=_first(data, "projectId", "project_id", default=""),
            name=data.get("name") or "",
            type=_first(data, "type", "model", default=""),
            description=data.get("description") or "",
            is_active=_first(data, "isActive", "is_active", default=True),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "isActive": self.is_active,
        }


@dataclass
class Project:
    id: Optional[str] = None
    project_name: str = ""
    status: str = "active"
    noab_project_no: str = ""
    location: str = ""
    engineer: str = ""
    prime_contractor: str = ""
    default_start_time: str = ""
    default_end_time: str = ""
    contractors: list[Contractor] = field(default_factory=list)
    equipment: list[Equipment] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def sorted_contractors(self) -> list[Contractor]:
        """Prime contractors first, roster order otherwise preserved."""
        return sorted(self.contractors, key=lambda c: 0 if c.is_prime else 1)

    @classmethod
    def from_dict(cls, data: dict) -> "Project":
        return cls(
            id=data.get("id"),
            project_name=_first(
                data, "projectName", "project_name", "name", default=""
            ),
            status=data.get("status") or "active",
            noab_project_no=_first(
                data, "noabProjectNo", "noab_project_no", default=""
            ),
            location=data.get("location") or "",
            engineer=data.get("engineer") or "",
            prime_contractor=_first(
                data, "primeContractor", "prime_contractor", default=""
            ),
            default_start_time=_first(
                data, "defaultStartTime", "default_start_time", default=""
            ),
            default_end_time=_first(
                data, "defaultEndTime", "default_end_time", default=""
            ),
            contractors=[
                c if isinstance(c, Contractor) else Contractor.from_dict(c)
                for c in data.get("contractors") or []
            ],
            equipment=[
                e if isinstance(e, Equipment) else Equipment.from_dict(e)
                for e in data.get("equipment") or []
            ],
            created_at=_first(data, "createdAt", "created_at"),
            updated_at=_first(data, "updatedAt", "updated_at"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "projectName": self.project_name,
            "status": self.status,
            "noabProjectNo": self.noab_project_no,
            "location": self.location,
            "engineer": self.engineer,
            "primeContractor": self.prime_contractor,
            "defaultStartTime": self.default_start_time,
            "defaultEndTime": self.default_end_time,
            "contractors": [c.to_dict() for c in self.contractors],
            "equipment": [e.to_dict() for e in self.equipment],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class Entry:
    """One captured note. `remote_id` is set once the remote store has it."""

    id: str = ""
    section: str = ""
    content: str = ""
    order: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    remote_id: Optional[str] = None
    is_deleted: bool = False

    @property
    def is_synced(self) -> bool:
        return bool(self.remote_id)

    @classmethod
    def from_dict(cls, data: dict) -> "Entry":
        return cls(
            id=_first(data, "id", "localId", "local_id", default=""),
            section=data.get("section") or "",
            content=data.get("content") or "",
            order=_first(data, "order", "entryOrder", "entry_order", default=0),
            created_at=_first(data, "createdAt", "created_at"),
            updated_at=_first(data, "updatedAt", "updated_at"),
            remote_id=_first(data, "remoteId", "supabaseId", "supabase_id"),
            is_deleted=bool(_first(data, "isDeleted", "is_deleted", default=False)),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "section": self.section,
            "content": self.content,
            "order": self.order,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "remoteId": self.remote_id,
            "isDeleted": self.is_deleted,
        }


@dataclass
class Report:
    """The central aggregate: identity, lifecycle state and layered payloads.

    `original_input` and `ai_generated` are written by refinement only;
    `user_edits` is the interactively mutated layer (dot path -> value).
    The remaining dict/list payloads are the captured and legacy data used
    as the lowest-priority resolution tier and as the remote row shape.
    """

    id: str = ""
    project_id: Optional[str] = None
    report_date: Optional[str] = None
    status: str = STATUS_DRAFT
    capture_mode: str = CAPTURE_GUIDED
    ai_generated: Optional[dict] = None
    original_input: Optional[dict] = None
    user_edits: dict = field(default_factory=dict)
    # Captured data
    entries: list[Entry] = field(default_factory=list)
    freeform_entries: list[Entry] = field(default_factory=list)
    weather: Optional[dict] = None
    section_toggles: dict = field(default_factory=dict)
    # Derived / legacy payloads
    overview: dict = field(default_factory=dict)
    field_notes: dict = field(default_factory=dict)
    guided_notes: dict = field(default_factory=dict)
    activities: list[dict] = field(default_factory=list)
    operations: list[dict] = field(default_factory=list)
    equipment: list[dict] = field(default_factory=list)
    photos: list[dict] = field(default_factory=list)
    safety: dict = field(default_factory=dict)
    issues: str = ""
    qaqc: str = ""
    communications: str = ""
    visitors: str = ""
    # Queued refinement payload awaiting an explicit retry
    pending_refine: Optional[dict] = None
    remote_id: Optional[str] = None
    created_at: Optional[str] = None
    last_saved: Optional[str] = None

    @property
    def is_freeform(self) -> bool:
        return self.capture_mode == CAPTURE_FREEFORM

    def mode_entries(self) -> list[Entry]:
        """Entries appropriate to the current capture mode."""
        return self.freeform_entries if self.is_freeform else self.entries

    def all_entries(self) -> list[Entry]:
        return [*self.entries, *self.freeform_entries]

    def has_synced_entries(self) -> bool:
        return any(e.is_synced for e in self.all_entries())

    @classmethod
    def from_record(cls, data: dict) -> "Report":
        """Build a Report from a stored JSON record."""
        return cls(
            id=_first(data, "reportId", "id", default=""),
            project_id=_first(data, "projectId", "project_id"),
            report_date=_first(data, "reportDate", "report_date", "date"),
            status=data.get("status") or STATUS_DRAFT,
            capture_mode=_first(
                data, "captureMode", "capture_mode", default=CAPTURE_GUIDED
            ),
            ai_generated=_first(data, "aiGenerated", "ai_generated"),
            original_input=_first(data, "originalInput", "original_input"),
            user_edits=dict(_first(data, "userEdits", "user_edits", default={})),
            entries=[
                Entry.from_dict(e) for e in data.get("entries") or []
            ],
            freeform_entries=[
                Entry.from_dict(e)
                for e in _first(
                    data, "freeformEntries", "freeform_entries", default=[]
                )
            ],
            weather=data.get("weather"),
            section_toggles=dict(
                _first(data, "sectionToggles", "section_toggles", default={})
            ),
            overview=dict(data.get("overview") or {}),
            field_notes=dict(_first(data, "fieldNotes", "field_notes", default={})),
            guided_notes=dict(
                _first(data, "guidedNotes", "guided_notes", default={})
            ),
            activities=list(data.get("activities") or []),
            operations=list(data.get("operations") or []),
            equipment=list(data.get("equipment") or []),
            photos=list(data.get("photos") or []),
            safety=dict(data.get("safety") or {}),
            issues=data.get("issues") or "",
            qaqc=data.get("qaqc") or "",
            communications=data.get("communications") or "",
            visitors=data.get("visitors") or "",
            pending_refine=_first(data, "pendingRefine", "pending_refine"),
            remote_id=_first(data, "remoteId", "remote_id"),
            created_at=_first(data, "createdAt", "created_at"),
            last_saved=_first(data, "lastSaved", "last_saved"),
        )

    def to_record(self) -> dict:
        """Serialize to the JSON record persisted under the report id."""
        return copy.deepcopy({
            "reportId": self.id,
            "projectId": self.project_id,
            "reportDate": self.report_date,
            "status": self.status,
            "captureMode": self.capture_mode,
            "aiGenerated": self.ai_generated,
            "originalInput": self.original_input,
            "userEdits": self.user_edits,
            "entries": [e.to_dict() for e in self.entries],
            "freeformEntries": [e.to_dict() for e in self.freeform_entries],
            "weather": self.weather,
            "sectionToggles": self.section_toggles,
            "overview": self.overview,
            "fieldNotes": self.field_notes,
            "guidedNotes": self.guided_notes,
            "activities": self.activities,
            "operations": self.operations,
            "equipment": self.equipment,
            "photos": self.photos,
            "safety": self.safety,
            "issues": self.issues,
            "qaqc": self.qaqc,
            "communications": self.communications,
            "visitors": self.visitors,
            "pendingRefine": self.pending_refine,
            "remoteId": self.remote_id,
            "createdAt": self.created_at,
            "lastSaved": self.last_saved,
        })

    def summary(self) -> dict:
        """Small record kept in the current-reports map for listings."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "date": self.report_date,
            "status": self.status,
            "capture_mode": self.capture_mode,
            "created_at": self.created_at,
            "updated_at": self.last_saved,
        }


@dataclass
class EditLock:
    project_id: str
    report_date: str
    device_id: str
    inspector_name: Optional[str] = None
    locked_at: Optional[str] = None
    last_heartbeat: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "EditLock":
        return cls(
            project_id=row["project_id"],
            report_date=row["report_date"],
            device_id=row.get("device_id") or "",
            inspector_name=row.get("inspector_name"),
            locked_at=row.get("locked_at"),
            last_heartbeat=row.get("last_heartbeat"),
        )

    def to_row(self) -> dict:
        return {
            "project_id": self.project_id,
            "report_date": self.report_date,
            "device_id": self.device_id,
            "inspector_name": self.inspector_name,
            "locked_at": self.locked_at,
            "last_heartbeat": self.last_heartbeat,
        }


@dataclass
class LockInfo:
    """Who holds a lock this device cannot take."""

    device_id: str
    inspector_name: str = "Another user"
    locked_at: Optional[str] = None
    last_heartbeat: Optional[str] = None


@dataclass
class SyncOperation:
    """A queued remote write. `type` selects how `payload` is replayed."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    enqueued_at: Optional[str] = None
    retries: int = 0
    id: Optional[int] = None


@dataclass
class UserProfile:
    id: Optional[str] = None
    device_id: str = ""
    full_name: str = ""
    title: str = ""
    company: str = ""
    email: str = ""
    phone: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "UserProfile":
        return cls(
            id=data.get("id"),
            device_id=_first(data, "deviceId", "device_id", default=""),
            full_name=_first(data, "fullName", "full_name", default=""),
            title=data.get("title") or "",
            company=data.get("company") or "",
            email=data.get("email") or "",
            phone=data.get("phone") or "",
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deviceId": self.device_id,
            "fullName": self.full_name,
            "title": self.title,
            "company": self.company,
            "email": self.email,
            "phone": self.phone,
        }
