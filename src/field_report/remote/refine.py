"""AI refinement webhook client.

A single POST carrying the report's capture payload. Two response shapes are
accepted and normalized by `parse_refine_response`:

    modern  {"success": true, "captureMode", "originalInput", "refinedReport"}
    legacy  {"aiGenerated": {...}}   (aiGenerated may arrive as a JSON string)

The legacy shape only ever populates `ai_generated`.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from field_report.config import Config
from field_report.database.models import Project, Report
from field_report.utils.constants import CAPTURE_GUIDED

logger = logging.getLogger(__name__)

VERSION_MODERN = "modern"
VERSION_LEGACY = "legacy"

# List-valued sections the renderer iterates over
_REQUIRED_LISTS = ("activities", "operations", "equipment")


class RefinementError(Exception):
    """The refinement call failed or returned an unusable body."""


class RefinementTimeoutError(RefinementError):
    """The refinement call exceeded its deadline and was aborted."""


@dataclass
class RefinementResult:
    version: str
    ai_generated: dict
    original_input: Optional[dict] = None
    capture_mode: Optional[str] = None


def parse_refine_response(data) -> RefinementResult:
    """Translate either response shape into a RefinementResult."""
    if not isinstance(data, dict):
        raise RefinementError("Invalid response from AI processing")
    if not data.get("success") and not data.get("aiGenerated"):
        raise RefinementError("Invalid response from AI processing")

    if data.get("refinedReport") is not None:
        result = RefinementResult(
            version=VERSION_MODERN,
            ai_generated=_decode_report(data["refinedReport"]),
            original_input=data.get("originalInput"),
            capture_mode=data.get("captureMode"),
        )
    elif data.get("aiGenerated") is not None:
        result = RefinementResult(
            version=VERSION_LEGACY,
            ai_generated=_decode_report(data["aiGenerated"]),
        )
    else:
        raise RefinementError("Response carried no refined report")

    for key in _REQUIRED_LISTS:
        if not isinstance(result.ai_generated.get(key), list):
            result.ai_generated[key] = []
    return result


def _decode_report(value) -> dict:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise RefinementError(f"Unparseable refined report: {e}") from e
    if not isinstance(value, dict):
        raise RefinementError("Refined report is not an object")
    return value


def _freeform_notes(report: Report) -> str:
    entries = sorted(
        (e for e in report.freeform_entries
         if not e.is_deleted and e.content and e.content.strip()),
        key=lambda e: e.created_at or "",
    )
    notes = "\n\n".join(e.content.strip() for e in entries)
    return notes or report.field_notes.get("freeformNotes", "")


def build_refine_payload(report: Report,
                         project: Project | None = None) -> dict:
    """Assemble the capture payload sent for refinement."""
    if report.is_freeform:
        field_notes = {
            "freeformNotes": _freeform_notes(report),
            "freeform_entries": [e.to_dict() for e in report.freeform_entries],
        }
    else:
        field_notes = {
            "workSummary": report.guided_notes.get("workSummary", ""),
            "issues": report.guided_notes.get("issues", ""),
            "safety": report.guided_notes.get("safety", ""),
        }

    project_context = {"projectId": report.project_id}
    if project:
        project_context.update({
            "projectName": project.project_name,
            "noabProjectNo": project.noab_project_no,
            "location": project.location,
            "engineer": project.engineer,
            "primeContractor": project.prime_contractor,
            "contractors": [c.to_dict() for c in project.contractors],
            "equipment": [e.to_dict() for e in project.equipment],
        })

    return {
        "reportId": report.id,
        "captureMode": report.capture_mode or CAPTURE_GUIDED,
        "projectContext": project_context,
        "fieldNotes": field_notes,
        "weather": report.overview.get("weather") or report.weather or {},
        "photos": [
            {k: p.get(k) for k in ("id", "url", "storagePath", "caption",
                                   "timestamp", "date", "time", "gps")}
            for p in report.photos
        ],
        "reportDate": report.report_date,
        "inspectorName": report.overview.get("completedBy", ""),
        "operations": list(report.operations),
        "equipmentRows": list(report.equipment),
        "activities": list(report.activities),
        "safety": report.safety or {
            "hasIncidents": False, "noIncidents": True, "notes": [],
        },
        "entries": [e.to_dict() for e in report.entries if not e.is_deleted],
        "toggleStates": dict(report.section_toggles),
    }


class RefinementClient:
    """Posts capture payloads to the refinement webhook.

    `timeout` is a total deadline for the call. httpx applies it to each
    connect/read phase, so the body is streamed and the deadline checked
    between chunks as well.
    """

    def __init__(self, webhook_url: str | None = None,
                 timeout: float | None = None,
                 transport: httpx.BaseTransport | None = None,
                 clock: Callable[[], float] = time.monotonic):
        self.webhook_url = webhook_url or Config.REFINE_WEBHOOK_URL
        self.timeout = timeout if timeout is not None else Config.REFINE_TIMEOUT
        self._transport = transport
        self._clock = clock

    def refine(self, payload: dict) -> RefinementResult:
        if not self.webhook_url:
            raise RefinementError("Refinement webhook is not configured")

        deadline = self._clock() + self.timeout
        try:
            with httpx.Client(timeout=self.timeout,
                              transport=self._transport) as client:
                with client.stream("POST", self.webhook_url,
                                   json=payload) as response:
                    body = self._read_body(response, deadline)
        except httpx.TimeoutException as e:
            raise self._timed_out() from e
        except httpx.TransportError as e:
            raise RefinementError(f"Refinement request failed: {e}") from e

        if response.is_error:
            raise RefinementError(f"Webhook failed: {response.status_code}")

        try:
            data = json.loads(body)
        except ValueError as e:
            raise RefinementError("Webhook returned non-JSON body") from e

        result = parse_refine_response(data)
        logger.info("Refinement complete (%s response) for report %s",
                    result.version, payload.get("reportId"))
        return result

    def _read_body(self, response: httpx.Response, deadline: float) -> bytes:
        chunks = []
        for chunk in response.iter_bytes():
            if self._clock() > deadline:
                raise self._timed_out()
            chunks.append(chunk)
        if self._clock() > deadline:
            raise self._timed_out()
        return b"".join(chunks)

    def _timed_out(self) -> RefinementTimeoutError:
        return RefinementTimeoutError(
            f"Refinement timed out after {self.timeout:g}s"
        )
