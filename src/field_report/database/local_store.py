"""Local store — durable key/value and record persistence on SQLite.

Pure storage with no policy. Writes return True/False and reads return
None/empty on a database error, after logging it: local persistence is
best-effort and callers keep going with their in-memory state.
"""

import json
import logging
import sqlite3
import uuid
from typing import Any, Optional

from field_report.utils.constants import (
    KEY_ACTIVE_PROJECT_ID,
    KEY_CURRENT_REPORTS,
    KEY_DEVICE_ID,
    KEY_LAST_SYNC,
    KEY_USER_PROFILE,
)
from field_report.utils.formatters import now_iso, report_key

from .connection import DatabaseConnection
from .models import Project, Report, SyncOperation, UserProfile

logger = logging.getLogger(__name__)


class LocalStore:
    """All local persistence for reports, projects, settings and the queue."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    # ── Settings (JSON values by key) ──────────────────────────

    def get_setting(self, key: str, default: Any = None) -> Any:
        try:
            rows = self.db.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            )
        except sqlite3.Error as e:
            logger.error("Error reading setting %r: %s", key, e)
            return default
        if not rows or rows[0]["value"] is None:
            return default
        raw = rows[0]["value"]
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            # Plain string stored without JSON encoding
            return raw

    def set_setting(self, key: str, value: Any) -> bool:
        try:
            with self.db.get_connection() as conn:
                conn.execute(
                    "INSERT INTO settings (key, value, updated_at) "
                    "VALUES (?, ?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET "
                    "value = excluded.value, updated_at = excluded.updated_at",
                    (key, json.dumps(value, default=str), now_iso()),
                )
            return True
        except sqlite3.Error as e:
            logger.error("Error writing setting %r: %s", key, e)
            return False

    def remove_setting(self, key: str) -> bool:
        try:
            with self.db.get_connection() as conn:
                conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            return True
        except sqlite3.Error as e:
            logger.error("Error removing setting %r: %s", key, e)
            return False

    # ── Device identity ────────────────────────────────────────

    def get_device_id(self) -> str:
        """Return this device's id, generating it on first use.

        The id never changes for the life of the local store.
        """
        device_id = self.get_setting(KEY_DEVICE_ID)
        if not device_id:
            device_id = str(uuid.uuid4())
            self.set_setting(KEY_DEVICE_ID, device_id)
            logger.info("Generated new device ID: %s", device_id)
        return device_id

    # ── User profile / active project ──────────────────────────

    def get_user_profile(self) -> Optional[UserProfile]:
        data = self.get_setting(KEY_USER_PROFILE)
        return UserProfile.from_dict(data) if data else None

    def save_user_profile(self, profile: UserProfile) -> bool:
        return self.set_setting(KEY_USER_PROFILE, profile.to_dict())

    def get_active_project_id(self) -> Optional[str]:
        return self.get_setting(KEY_ACTIVE_PROJECT_ID)

    def set_active_project_id(self, project_id: str) -> bool:
        return self.set_setting(KEY_ACTIVE_PROJECT_ID, project_id)

    def get_last_sync(self) -> Optional[str]:
        return self.get_setting(KEY_LAST_SYNC)

    def set_last_sync(self, timestamp: str) -> bool:
        return self.set_setting(KEY_LAST_SYNC, timestamp)

    # ── Reports ────────────────────────────────────────────────

    def get_report(self, report_id: str) -> Optional[Report]:
        if not report_id:
            return None
        try:
            rows = self.db.execute(
                "SELECT data FROM reports WHERE report_id = ?", (report_id,)
            )
        except sqlite3.Error as e:
            logger.error("Error reading report %s: %s", report_id, e)
            return None
        if not rows:
            return None
        return Report.from_record(json.loads(rows[0]["data"]))

    def get_report_for_date(self, project_id: str,
                            report_date: str) -> Optional[Report]:
        try:
            rows = self.db.execute(
                "SELECT data FROM reports "
                "WHERE project_id = ? AND report_date = ? "
                "ORDER BY created_at DESC LIMIT 1",
                (project_id, report_date),
            )
        except sqlite3.Error as e:
            logger.error("Error reading report for %s/%s: %s",
                         project_id, report_date, e)
            return None
        return Report.from_record(json.loads(rows[0]["data"])) if rows else None

    def list_reports(self, project_id: str | None = None,
                     status: str | None = None) -> list[Report]:
        sql = "SELECT data FROM reports"
        clauses, params = [], []
        if project_id:
            clauses.append("project_id = ?")
            params.append(project_id)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY report_date DESC, created_at DESC"
        try:
            rows = self.db.execute(sql, tuple(params))
        except sqlite3.Error as e:
            logger.error("Error listing reports: %s", e)
            return []
        return [Report.from_record(json.loads(r["data"])) for r in rows]

    def save_report(self, report: Report) -> bool:
        """Persist the full report record and its current-reports summary.

        Remote ids already stored for this report are copied onto `report`
        where it has none, so saving an older in-memory copy never marks
        synced entries as unsynced.
        """
        if not report.id:
            logger.error("Cannot save report: missing id")
            return False
        with self.db.write_lock:
            self.merge_remote_ids(report)
            report.last_saved = now_iso()
            if not report.created_at:
                report.created_at = report.last_saved
            try:
                with self.db.get_connection() as conn:
                    conn.execute(
                        "INSERT INTO reports (report_id, project_id, "
                        "report_date, status, capture_mode, data, "
                        "created_at, last_saved) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                        "ON CONFLICT(report_id) DO UPDATE SET "
                        "project_id = excluded.project_id, "
                        "report_date = excluded.report_date, "
                        "status = excluded.status, "
                        "capture_mode = excluded.capture_mode, "
                        "data = excluded.data, "
                        "last_saved = excluded.last_saved",
                        (report.id, report.project_id, report.report_date,
                         report.status, report.capture_mode,
                         json.dumps(report.to_record(), default=str),
                         report.created_at, report.last_saved),
                    )
            except sqlite3.Error as e:
                logger.error("Failed to save report %s locally: %s",
                             report.id, e)
                return False
            self._put_current_report(report)
        return True

    def merge_remote_ids(self, report: Report) -> bool:
        """Copy stored remote ids onto `report` where it has none.

        Returns True when anything was copied.
        """
        stored = self.get_report(report.id)
        if stored is None:
            return False
        changed = False
        if stored.remote_id and not report.remote_id:
            report.remote_id = stored.remote_id
            changed = True
        known = {e.id: e.remote_id for e in stored.all_entries() if e.remote_id}
        for entry in report.all_entries():
            if not entry.remote_id and known.get(entry.id):
                entry.remote_id = known[entry.id]
                changed = True
        return changed

    def set_entry_remote_ids(self, report_id: str,
                             remote_ids: dict[str, str]) -> bool:
        """Record remote ids (keyed by local entry id) on a stored report."""
        with self.db.write_lock:
            report = self.get_report(report_id)
            if report is None:
                return False
            changed = False
            for entry in report.all_entries():
                remote_id = remote_ids.get(entry.id)
                if remote_id and entry.remote_id != remote_id:
                    entry.remote_id = remote_id
                    changed = True
            return self.save_report(report) if changed else True

    def set_report_remote_id(self, report_id: str, remote_id: str) -> bool:
        with self.db.write_lock:
            report = self.get_report(report_id)
            if report is None:
                return False
            if report.remote_id == remote_id:
                return True
            report.remote_id = remote_id
            return self.save_report(report)

    def mark_entry_deleted(self, report_id: str, local_id: str) -> bool:
        """Soft-delete one entry of a stored report."""
        with self.db.write_lock:
            report = self.get_report(report_id)
            if report is None:
                return False
            for entry in report.all_entries():
                if entry.id == local_id:
                    entry.is_deleted = True
                    entry.updated_at = now_iso()
            return self.save_report(report)

    def delete_report(self, report_id: str) -> bool:
        with self.db.write_lock:
            report = self.get_report(report_id)
            try:
                with self.db.get_connection() as conn:
                    conn.execute(
                        "DELETE FROM reports WHERE report_id = ?", (report_id,)
                    )
            except sqlite3.Error as e:
                logger.error("Failed to delete report %s: %s", report_id, e)
                return False
            if report and report.project_id and report.report_date:
                current = self.get_current_reports()
                current.pop(
                    report_key(report.project_id, report.report_date), None
                )
                self.set_setting(KEY_CURRENT_REPORTS, current)
        logger.info("Report data deleted: %s", report_id)
        return True

    def clear_reports(self, project_id: str) -> bool:
        """Drop every cached report for one project."""
        with self.db.write_lock:
            try:
                with self.db.get_connection() as conn:
                    conn.execute(
                        "DELETE FROM reports WHERE project_id = ?",
                        (project_id,),
                    )
            except sqlite3.Error as e:
                logger.error("Failed to clear reports for %s: %s",
                             project_id, e)
                return False
            current = {
                k: v for k, v in self.get_current_reports().items()
                if v.get("project_id") != project_id
            }
            return self.set_setting(KEY_CURRENT_REPORTS, current)

    # ── Current-reports map (project+date -> summary) ──────────

    def get_current_reports(self) -> dict[str, dict]:
        current = self.get_setting(KEY_CURRENT_REPORTS, {})
        return current if isinstance(current, dict) else {}

    def _put_current_report(self, report: Report) -> bool:
        if not report.project_id or not report.report_date:
            return False
        current = self.get_current_reports()
        current[report_key(report.project_id, report.report_date)] = (
            report.summary()
        )
        return self.set_setting(KEY_CURRENT_REPORTS, current)

    # ── Projects ───────────────────────────────────────────────

    def get_project(self, project_id: str) -> Optional[Project]:
        try:
            rows = self.db.execute(
                "SELECT data FROM projects WHERE id = ?", (project_id,)
            )
        except sqlite3.Error as e:
            logger.error("Error reading project %s: %s", project_id, e)
            return None
        return Project.from_dict(json.loads(rows[0]["data"])) if rows else None

    def get_all_projects(self) -> list[Project]:
        try:
            rows = self.db.execute("SELECT data FROM projects")
        except sqlite3.Error as e:
            logger.error("Error listing projects: %s", e)
            return []
        projects = [Project.from_dict(json.loads(r["data"])) for r in rows]
        return sorted(projects, key=lambda p: p.project_name.lower())

    def save_projects(self, projects: list[Project]) -> bool:
        try:
            with self.db.get_connection() as conn:
                for project in projects:
                    conn.execute(
                        "INSERT INTO projects (id, data, updated_at) "
                        "VALUES (?, ?, ?) "
                        "ON CONFLICT(id) DO UPDATE SET "
                        "data = excluded.data, updated_at = excluded.updated_at",
                        (project.id, json.dumps(project.to_dict(), default=str),
                         now_iso()),
                    )
            return True
        except sqlite3.Error as e:
            logger.error("Failed to cache projects: %s", e)
            return False

    def save_project(self, project: Project) -> bool:
        return self.save_projects([project])

    def replace_projects(self, projects: list[Project]) -> bool:
        """Swap the whole project bucket in one transaction."""
        try:
            with self.db.get_connection() as conn:
                conn.execute("DELETE FROM projects")
                for project in projects:
                    conn.execute(
                        "INSERT INTO projects (id, data, updated_at) "
                        "VALUES (?, ?, ?)",
                        (project.id, json.dumps(project.to_dict(), default=str),
                         now_iso()),
                    )
            return True
        except sqlite3.Error as e:
            logger.error("Failed to replace project cache: %s", e)
            return False

    def delete_project(self, project_id: str) -> bool:
        try:
            with self.db.get_connection() as conn:
                conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            return True
        except sqlite3.Error as e:
            logger.error("Failed to delete project %s: %s", project_id, e)
            return False

    # ── Pending-operations queue ───────────────────────────────

    def enqueue(self, op: SyncOperation) -> Optional[SyncOperation]:
        """Append an operation to the queue and return it with its id."""
        if not op.enqueued_at:
            op.enqueued_at = now_iso()
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    "INSERT INTO sync_queue (op_type, payload, enqueued_at, "
                    "retries) VALUES (?, ?, ?, ?)",
                    (op.type, json.dumps(op.payload, default=str),
                     op.enqueued_at, op.retries),
                )
                op.id = cursor.lastrowid
        except sqlite3.Error as e:
            logger.error("Failed to queue %s operation: %s", op.type, e)
            return None
        logger.debug("Added to sync queue: %s (#%s)", op.type, op.id)
        return op

    def get_queue(self) -> list[SyncOperation]:
        try:
            rows = self.db.execute(
                "SELECT * FROM sync_queue ORDER BY id"
            )
        except sqlite3.Error as e:
            logger.error("Error reading sync queue: %s", e)
            return []
        return [
            SyncOperation(
                type=r["op_type"],
                payload=json.loads(r["payload"]),
                enqueued_at=r["enqueued_at"],
                retries=r["retries"],
                id=r["id"],
            )
            for r in rows
        ]

    def queue_count(self) -> int:
        try:
            rows = self.db.execute("SELECT COUNT(*) AS cnt FROM sync_queue")
        except sqlite3.Error as e:
            logger.error("Error counting sync queue: %s", e)
            return 0
        return rows[0]["cnt"] if rows else 0

    def update_retries(self, op_id: int, retries: int) -> bool:
        try:
            with self.db.get_connection() as conn:
                conn.execute(
                    "UPDATE sync_queue SET retries = ? WHERE id = ?",
                    (retries, op_id),
                )
            return True
        except sqlite3.Error as e:
            logger.error("Failed to update retries for op #%s: %s", op_id, e)
            return False

    def remove_operation(self, op_id: int) -> bool:
        try:
            with self.db.get_connection() as conn:
                conn.execute("DELETE FROM sync_queue WHERE id = ?", (op_id,))
            return True
        except sqlite3.Error as e:
            logger.error("Failed to remove op #%s: %s", op_id, e)
            return False

    def clear_queue(self) -> bool:
        try:
            with self.db.get_connection() as conn:
                conn.execute("DELETE FROM sync_queue")
        except sqlite3.Error as e:
            logger.error("Failed to clear sync queue: %s", e)
            return False
        logger.info("Sync queue cleared")
        return True
