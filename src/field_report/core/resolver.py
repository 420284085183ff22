"""Value resolution across a report's layered payloads.

Priority, first defined-and-non-empty wins:

    1. user_edits[field_path]
    2. ai_generated at ai_path (then legacy_ai_path)
    3. the report's own nested field at field_path
    4. the fallback

`None` and `""` count as empty; `0` and `False` are values. A list from
any tier is joined with newlines. Nothing here mutates its inputs.
"""

from typing import Any, Optional

from field_report.database.models import Contractor, Equipment, Report
from field_report.utils.constants import PERSONNEL_FIELDS

# Text sections: (report path, AI path, legacy AI path)
TEXT_FIELDS = {
    "issues": ("issues", "issues_delays", "generalIssues"),
    "qaqc": ("qaqc", "qaqc_notes", "qaqcNotes"),
    "safety": ("safety.notes", "safety.summary", "safety.notes"),
    "communications": ("communications", "communications",
                       "contractorCommunications"),
    "visitors": ("visitors", "visitors_deliveries", "visitorsRemarks"),
}

_MISSING = object()


def _is_set(value) -> bool:
    return value is not None and value is not _MISSING and value != ""


def _normalize(value):
    if isinstance(value, (list, tuple)):
        return "\n".join(str(v) for v in value)
    return value


def get_nested_value(obj, path: str):
    """Follow a dot path through nested dicts; missing steps read as None."""
    current = obj
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
        if current is None:
            return None
    return current


def set_nested_value(obj: dict, path: str, value) -> None:
    """Write through a dot path, creating intermediate dicts."""
    keys = path.split(".")
    target = obj
    for key in keys[:-1]:
        if not isinstance(target.get(key), dict):
            target[key] = {}
        target = target[key]
    target[keys[-1]] = value


def _as_record(report) -> dict:
    if isinstance(report, Report):
        return report.to_record()
    return report or {}


def _ai_layer(report) -> Optional[dict]:
    if isinstance(report, Report):
        return report.ai_generated
    return (report or {}).get("aiGenerated")


def resolve(report, user_edits: dict | None, field_path: str,
            ai_path: str | None = None, fallback: Any = "",
            legacy_ai_path: str | None = None):
    """Effective value of one field (see module docstring for the order)."""
    edits = user_edits or {}
    if field_path in edits and _is_set(edits[field_path]):
        return _normalize(edits[field_path])

    ai = _ai_layer(report)
    if ai:
        ai_value = get_nested_value(ai, ai_path or field_path)
        if not _is_set(ai_value) and legacy_ai_path:
            ai_value = get_nested_value(ai, legacy_ai_path)
        if _is_set(ai_value):
            return _normalize(ai_value)

    own_value = get_nested_value(_as_record(report), field_path)
    if _is_set(own_value):
        return _normalize(own_value)

    return fallback


def resolve_text_field(report, user_edits: dict | None, section: str,
                       fallback: Any = ""):
    """Resolve one of the named narrative sections in TEXT_FIELDS."""
    field_path, ai_path, legacy = TEXT_FIELDS[section]
    return resolve(report, user_edits, field_path, ai_path, fallback, legacy)


# ── Contractor-scoped resolution ───────────────────────────────

def _contractor_name(contractor) -> str:
    if isinstance(contractor, Contractor):
        return contractor.name
    return (contractor or {}).get("name") or ""


def _contractor_id(contractor):
    if isinstance(contractor, Contractor):
        return contractor.id
    return (contractor or {}).get("id")


def find_contractor_by_name(contractors, name: str | None):
    """Case-insensitive exact match on the roster name."""
    if not name:
        return None
    wanted = name.lower()
    for contractor in contractors or []:
        if _contractor_name(contractor).lower() == wanted:
            return contractor
    return None


def _match_ai_record(records, contractor_id, contractors):
    """Find a contractor's AI record by id, else by name on id-less records."""
    for record in records:
        if record.get("contractorId") == contractor_id:
            return record

    name = None
    for contractor in contractors or []:
        if _contractor_id(contractor) == contractor_id:
            name = _contractor_name(contractor)
            break
    if not name:
        return None
    for record in records:
        ai_name = record.get("contractorName")
        if (record.get("contractorId") is None and ai_name
                and ai_name.lower() == name.lower()):
            return record
    return None


def _own_records(report, key: str) -> list:
    if isinstance(report, Report):
        return getattr(report, key)
    return (report or {}).get(key) or []


def resolve_contractor_activity(report, user_edits: dict | None,
                                contractor_id: str, contractors=None):
    edited = (user_edits or {}).get(f"activity_{contractor_id}")
    if _is_set(edited):
        return edited

    ai = _ai_layer(report) or {}
    match = _match_ai_record(ai.get("activities") or [],
                             contractor_id, contractors)
    if match:
        no_work = match.get("noWork")
        return {
            "contractorId": contractor_id,
            "noWork": False if no_work is None else no_work,
            "narrative": match.get("narrative") or "",
            "equipmentUsed": match.get("equipmentUsed") or "",
            "crew": match.get("crew") or "",
        }

    for activity in _own_records(report, "activities"):
        if activity.get("contractorId") == contractor_id:
            return activity
    return None


def resolve_contractor_operations(report, user_edits: dict | None,
                                  contractor_id: str, contractors=None):
    edited = (user_edits or {}).get(f"operations_{contractor_id}")
    if _is_set(edited):
        return edited

    ai = _ai_layer(report) or {}
    match = _match_ai_record(ai.get("operations") or [],
                             contractor_id, contractors)
    if match:
        ops = {"contractorId": contractor_id}
        for name in PERSONNEL_FIELDS:
            value = match.get(name)
            ops[name] = value if _is_set(value) else None
        return ops

    for ops in _own_records(report, "operations"):
        if ops.get("contractorId") == contractor_id:
            return ops
    return None


def resolve_equipment(report, contractors=None,
                      project_equipment=None) -> list[dict]:
    """Equipment rows: saved rows win, else AI rows resolved to the roster."""
    saved = _own_records(report, "equipment")
    if saved:
        return list(saved)

    ai = _ai_layer(report) or {}
    rows = []
    for item in ai.get("equipment") or []:
        equipment_type = item.get("type") or ""
        equipment_id = item.get("equipmentId")
        if equipment_id:
            for equip in project_equipment or []:
                if isinstance(equip, Equipment):
                    equip = equip.to_dict()
                if equip.get("id") == equipment_id:
                    equipment_type = (equip.get("type") or equip.get("model")
                                      or equipment_type)
                    break

        contractor_id = item.get("contractorId") or ""
        if not contractor_id and item.get("contractorName"):
            matched = find_contractor_by_name(contractors,
                                              item["contractorName"])
            if matched is not None:
                contractor_id = _contractor_id(matched)

        if item.get("status"):
            status = item["status"]
        elif item.get("hoursUsed"):
            status = f"{item['hoursUsed']} hrs"
        else:
            status = "IDLE"

        rows.append({
            "contractorId": contractor_id,
            "contractorName": item.get("contractorName") or "",
            "type": equipment_type,
            "qty": item.get("qty") or item.get("quantity") or 1,
            "status": status,
        })
    return rows


def resolve_safety_incident(report, user_edits: dict | None) -> bool:
    """Whether a safety incident is recorded, across old and new AI keys."""
    edited = (user_edits or {}).get("safety.hasIncident")
    if _is_set(edited):
        return bool(edited)
    value = resolve(report, None, "safety.hasIncident", fallback=False)
    if value:
        return True
    ai = _ai_layer(report) or {}
    safety = ai.get("safety") or {}
    return bool(safety.get("has_incidents") or safety.get("hasIncidents"))
