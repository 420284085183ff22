"""SyncManager — local-first reads and write-through to the remote store.

Reads:
1. Local store hit returns immediately, no network
2. Offline miss returns an empty result
3. Online miss fetches remotely and caches any non-empty result

Writes land in the local store first. The remote write follows at once
when online; otherwise (or when the backend rejects it) the operation is
queued in `sync_queue` and replayed, oldest first, by
`process_offline_queue()`.

Every remote write is an upsert on a natural key, so replaying an operation
that already landed never duplicates a row:

    report_entries      report_id,local_id
    reports             project_id,report_date,user_id
    report_raw_capture  one row per report (deleted, then re-inserted)

After MAX_SYNC_RETRIES non-connectivity failures an operation is dropped
and logged at ERROR level. Nothing else reports the loss.

There is no cross-device conflict detection here: the edit lock is the only
mutual exclusion between devices.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from field_report.config import Config
from field_report.database.local_store import LocalStore
from field_report.database.models import (
    Entry,
    Project,
    Report,
    SyncOperation,
    UserProfile,
)
from field_report.remote.client import (
    RemoteConnectivityError,
    RemoteError,
    RemoteStoreClient,
)
from field_report.remote.converters import (
    from_remote_entry,
    from_remote_project,
    from_remote_raw_capture,
    from_remote_report,
    from_remote_user_profile,
    to_remote_contractor,
    to_remote_entry,
    to_remote_project,
    to_remote_raw_capture,
    to_remote_report,
    to_remote_user_profile,
)
from field_report.utils.constants import (
    ENTRY_CONFLICT_KEY,
    FREEFORM_ENTRY_SECTION,
    KEY_ACTIVE_PROJECT_ID,
    OFFLINE,
    OP_ENTRY_BACKUP,
    OP_ENTRY_DELETE,
    OP_RAW_CAPTURE_SYNC,
    OP_REPORT_SYNC,
    REPORT_CONFLICT_KEY,
    STATUS_FLOW,
    STATUS_SUBMITTED,
    TABLE_CONTRACTORS,
    TABLE_PROJECTS,
    TABLE_RAW_CAPTURE,
    TABLE_REPORT_ENTRIES,
    TABLE_REPORTS,
    TABLE_USER_PROFILES,
    USER_PROFILE_CONFLICT_KEY,
)
from field_report.utils.formatters import now_iso

from .timers import Debouncer, TimerFactory, thread_timer

logger = logging.getLogger(__name__)

PROJECT_COLUMNS = f"*, {TABLE_CONTRACTORS}(*)"
ARCHIVE_LIMIT = 20


class SyncError(Exception):
    """Base exception for sync operations."""


class SyncLockError(SyncError):
    """Another device holds the edit lock for this report."""

    def __init__(self, message: str, holder=None):
        super().__init__(message)
        self.holder = holder


@dataclass
class SyncResult:
    success: bool
    error: Optional[str] = None
    # Remote row ids keyed by local id, for writes that return rows
    remote_ids: dict[str, str] = field(default_factory=dict)


@dataclass
class QueueResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    dropped: int = 0
    remaining: int = 0
    skipped: bool = False


class SyncManager:
    """Reconciles the local store with the remote store."""

    def __init__(self, store: LocalStore, remote: RemoteStoreClient,
                 is_online: Callable[[], bool] = lambda: True,
                 timer_factory: TimerFactory = thread_timer,
                 max_retries: int | None = None,
                 entry_debounce_ms: int | None = None,
                 auto_sync: bool | None = None):
        self.store = store
        self.remote = remote
        self._is_online = is_online
        self._timer_factory = timer_factory
        self.max_retries = max_retries or Config.MAX_SYNC_RETRIES
        self.entry_debounce = (
            entry_debounce_ms or Config.ENTRY_BACKUP_DEBOUNCE_MS
        ) / 1000
        self.auto_sync = (
            Config.AUTO_SYNC_ENABLED if auto_sync is None else auto_sync
        )
        self.device_id = store.get_device_id()

        self._state_lock = threading.Lock()
        self._drain_lock = threading.Lock()
        self._initialized = False
        self._entry_debouncers: dict[str, Debouncer] = {}
        self._pending_entries: dict[str, dict[str, Entry]] = {}

        self._handlers = {
            OP_ENTRY_BACKUP: self._push_entries,
            OP_ENTRY_DELETE: self._push_entry_delete,
            OP_REPORT_SYNC: self._push_report,
            OP_RAW_CAPTURE_SYNC: self._push_raw_capture,
        }

    @property
    def is_online(self) -> bool:
        return bool(self._is_online())

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def current_user_id(self) -> str:
        """Profile id when one exists, otherwise the device id."""
        profile = self.store.get_user_profile()
        if profile and profile.id:
            return profile.id
        return self.device_id

    # ── Lifecycle ──────────────────────────────────────────────

    def init(self) -> bool:
        """Start the manager once; drains the queue when online.

        Returns False when already initialized.
        """
        with self._state_lock:
            if self._initialized:
                return False
            self._initialized = True
        logger.info("Sync manager initialized (device %s)", self.device_id)
        if self.is_online:
            self.process_offline_queue()
        return True

    def destroy(self):
        """Cancel pending debounced backups. Safe to call repeatedly."""
        with self._state_lock:
            debouncers = list(self._entry_debouncers.values())
            self._entry_debouncers.clear()
            self._pending_entries.clear()
            self._initialized = False
        for debouncer in debouncers:
            debouncer.cancel()

    def on_connectivity_restored(self) -> QueueResult:
        logger.info("Back online, processing queue")
        return self.process_offline_queue()

    # ── Read path ──────────────────────────────────────────────

    def get_report(self, report_id: str) -> Optional[Report]:
        report = self.store.get_report(report_id)
        if report is not None:
            return report
        if not self.is_online:
            logger.info("Offline, report %s not cached", report_id)
            return None
        try:
            row = self.remote.select_one(TABLE_REPORTS, {"id": report_id})
            if row is None:
                return None
            report = from_remote_report(row)
            entry_rows = self.remote.select(
                TABLE_REPORT_ENTRIES,
                {"report_id": report_id, "is_deleted": False},
                order="entry_order",
            )
        except RemoteError as e:
            logger.warning("Remote fetch of report %s failed: %s", report_id, e)
            return None

        for entry in (from_remote_entry(r) for r in entry_rows):
            if entry.section == FREEFORM_ENTRY_SECTION:
                entry.section = ""
                report.freeform_entries.append(entry)
            else:
                report.entries.append(entry)
        self.store.save_report(report)
        logger.info("Fetched and cached report %s", report_id)
        return report

    def get_projects(self) -> list[Project]:
        projects = self.store.get_all_projects()
        if projects:
            return projects
        if not self.is_online:
            return []
        try:
            rows = self.remote.select(
                TABLE_PROJECTS, columns=PROJECT_COLUMNS, order="project_name"
            )
        except RemoteError as e:
            logger.warning("Remote fetch of projects failed: %s", e)
            return []
        projects = [from_remote_project(r) for r in rows]
        if projects:
            self.store.save_projects(projects)
        return projects

    def get_archives(self, limit: int = ARCHIVE_LIMIT) -> list[Report]:
        """Submitted reports, newest first."""
        reports = self.store.list_reports(status=STATUS_SUBMITTED)
        if reports:
            reports.sort(key=lambda r: r.created_at or "", reverse=True)
            return reports[:limit]
        if not self.is_online:
            return []
        try:
            rows = self.remote.select(
                TABLE_REPORTS, {"status": STATUS_SUBMITTED},
                order="created_at.desc", limit=limit,
            )
        except RemoteError as e:
            logger.warning("Remote fetch of archives failed: %s", e)
            return []
        reports = [from_remote_report(r) for r in rows]
        for report in reports:
            self.store.save_report(report)
        return reports

    def get_active_project(self) -> Optional[Project]:
        project_id = self.store.get_active_project_id()
        if not project_id:
            return None
        project = self.store.get_project(project_id)
        if project is not None:
            return project
        if not self.is_online:
            return None
        try:
            row = self.remote.select_one(
                TABLE_PROJECTS, {"id": project_id}, columns=PROJECT_COLUMNS
            )
        except RemoteError as e:
            logger.warning("Remote fetch of project %s failed: %s",
                           project_id, e)
            return None
        if row is None:
            return None
        project = from_remote_project(row)
        self.store.save_project(project)
        return project

    def get_user_profile(self) -> Optional[UserProfile]:
        profile = self.store.get_user_profile()
        if profile is not None:
            return profile
        if not self.is_online:
            return None
        try:
            row = self.remote.select_one(
                TABLE_USER_PROFILES, {"device_id": self.device_id}
            )
        except RemoteError as e:
            logger.warning("Remote fetch of user profile failed: %s", e)
            return None
        if row is None:
            return None
        profile = from_remote_user_profile(row)
        self.store.save_user_profile(profile)
        return profile

    def get_raw_capture(self, report_id: str) -> Optional[dict]:
        """Remote raw-capture snapshot for a report. Never cached locally."""
        if not self.is_online:
            return None
        try:
            row = self.remote.select_one(
                TABLE_RAW_CAPTURE, {"report_id": report_id}
            )
        except RemoteError as e:
            logger.warning("Remote fetch of raw capture %s failed: %s",
                           report_id, e)
            return None
        return from_remote_raw_capture(row) if row else None

    def save_user_profile(self, profile: UserProfile) -> SyncResult:
        """Store the profile locally, then upsert it on the device id."""
        profile.device_id = profile.device_id or self.device_id
        self.store.save_user_profile(profile)
        if not self.is_online:
            return SyncResult(False, OFFLINE)
        try:
            rows = self.remote.upsert(
                TABLE_USER_PROFILES, to_remote_user_profile(profile),
                on_conflict=USER_PROFILE_CONFLICT_KEY,
            )
        except RemoteError as e:
            logger.warning("User profile upload failed: %s", e)
            return SyncResult(False, str(e))
        if rows and rows[0].get("id") and rows[0]["id"] != profile.id:
            profile.id = rows[0]["id"]
            self.store.save_user_profile(profile)
        return SyncResult(True)

    # ── Cloud refresh (explicit user action) ───────────────────

    def refresh_projects_from_cloud(self) -> list[Project]:
        """Replace cached projects, but only after a non-empty fetch."""
        if not self.is_online:
            logger.info("Offline, cannot refresh projects from cloud")
            return []
        try:
            rows = self.remote.select(
                TABLE_PROJECTS, columns=PROJECT_COLUMNS, order="project_name"
            )
        except RemoteError as e:
            raise SyncError(f"Project refresh failed: {e}") from e

        projects = [from_remote_project(r) for r in rows]
        if projects:
            self.store.replace_projects(projects)
            self.store.set_last_sync(now_iso())
            logger.info("Refreshed %d projects from cloud", len(projects))
        else:
            logger.warning("Cloud returned no projects, keeping local cache")
        return projects

    def refresh_reports_from_cloud(self, project_id: str) -> list[Report]:
        """Pull report headers for a project into the local store.

        Unknown reports are cached. Known reports keep their local payload
        and only take the remote status when it is further along.
        """
        if not self.is_online:
            return []
        try:
            rows = self.remote.select(
                TABLE_REPORTS, {"project_id": project_id},
                order="report_date.desc",
            )
        except RemoteError as e:
            raise SyncError(f"Report refresh failed: {e}") from e

        remote_reports = [from_remote_report(r) for r in rows]
        if not remote_reports:
            logger.warning("Cloud returned no reports for %s", project_id)
            return []

        for remote_report in remote_reports:
            local = self.store.get_report(remote_report.id)
            if local is None:
                self.store.save_report(remote_report)
            elif (remote_report.status in STATUS_FLOW
                  and local.status in STATUS_FLOW
                  and STATUS_FLOW.index(remote_report.status)
                  > STATUS_FLOW.index(local.status)):
                local.status = remote_report.status
                local.remote_id = remote_report.remote_id
                self.store.save_report(local)
        return remote_reports

    # ── Project configuration (online only) ────────────────────

    def save_project(self, project: Project) -> Project:
        """Save a project and its roster locally and remotely.

        Contractors dropped from the roster are deleted remotely.
        Raises SyncError when offline or when the remote store rejects it.
        """
        if not project.id:
            project.id = str(uuid.uuid4())
        for contractor in project.contractors:
            contractor.project_id = project.id
            if not contractor.id:
                contractor.id = str(uuid.uuid4())
        if not self.is_online:
            raise SyncError("Cannot save project offline, internet required")

        try:
            self.remote.upsert(TABLE_PROJECTS, to_remote_project(project),
                               on_conflict="id")
            existing = self.remote.select(
                TABLE_CONTRACTORS, {"project_id": project.id}, columns="id"
            )
            keep = {c.id for c in project.contractors}
            for row in existing:
                if row.get("id") not in keep:
                    self.remote.delete(TABLE_CONTRACTORS, {"id": row["id"]})
            if project.contractors:
                self.remote.upsert(
                    TABLE_CONTRACTORS,
                    [to_remote_contractor(c, project.id)
                     for c in project.contractors],
                    on_conflict="id",
                )
        except RemoteError as e:
            raise SyncError(f"Failed to save project: {e}") from e

        self.store.save_project(project)
        logger.info("Project saved: %s", project.project_name)
        return project

    def delete_project(self, project_id: str):
        """Delete a project, its roster and its cached reports."""
        if not self.is_online:
            raise SyncError("Cannot delete project offline, internet required")
        try:
            self.remote.delete(TABLE_CONTRACTORS, {"project_id": project_id})
            self.remote.delete(TABLE_PROJECTS, {"id": project_id})
        except RemoteError as e:
            raise SyncError(f"Failed to delete project: {e}") from e
        self.store.delete_project(project_id)
        self.store.clear_reports(project_id)
        if self.store.get_active_project_id() == project_id:
            self.store.remove_setting(KEY_ACTIVE_PROJECT_ID)

    # ── Write path ─────────────────────────────────────────────

    def save_report(self, report: Report) -> SyncResult:
        """Persist locally, then write the report row through."""
        if not self.store.save_report(report):
            logger.warning("Local save of %s failed; continuing in memory",
                           report.id)
        result = self.sync_report(report)
        remote_id = result.remote_ids.get(report.id)
        if remote_id:
            report.remote_id = remote_id
        return result

    def backup_entry(self, report_id: str, entry: Entry) -> SyncResult:
        return self.backup_all_entries(report_id, [entry])

    def backup_all_entries(self, report_id: str,
                           entries: list[Entry]) -> SyncResult:
        """Upsert entries remotely and set `remote_id` on the ones passed in."""
        if not entries:
            return SyncResult(True)
        result = self._write(OP_ENTRY_BACKUP, {
            "report_id": report_id,
            "entries": [e.to_dict() for e in entries],
        })
        for entry in entries:
            remote_id = result.remote_ids.get(entry.id)
            if remote_id:
                entry.remote_id = remote_id
        return result

    def delete_entry(self, report_id: str, local_id: str) -> SyncResult:
        """Soft-delete an entry locally and remotely."""
        self.store.mark_entry_deleted(report_id, local_id)
        return self._write(OP_ENTRY_DELETE, {
            "report_id": report_id,
            "local_id": local_id,
        })

    def sync_report(self, report: Report) -> SyncResult:
        return self._write(OP_REPORT_SYNC, {"report": report.to_record()})

    def sync_raw_capture(self, capture: dict, report_id: str) -> SyncResult:
        return self._write(OP_RAW_CAPTURE_SYNC, {
            "report_id": report_id,
            "capture": capture,
        })

    def submit_final_report(self, report: Report) -> str:
        """Mark the report submitted remotely. Requires connectivity.

        Returns the submission timestamp.
        """
        if not self.is_online:
            raise SyncError("Cannot submit offline, internet required")
        submitted_at = now_iso()
        try:
            remote_ids = self._push_report(
                {"report": report.to_record()}, submitted_at=submitted_at,
            )
            if remote_ids.get(report.id):
                report.remote_id = remote_ids[report.id]
            self.remote.update(
                TABLE_REPORTS,
                {"status": STATUS_SUBMITTED, "submitted_at": submitted_at},
                {"id": report.remote_id or report.id},
            )
        except RemoteError as e:
            raise SyncError(f"Submit failed: {e}") from e
        logger.info("Final report submitted: %s", report.id)
        return submitted_at

    # ── Debounced entry backup ─────────────────────────────────

    def queue_entry_backup(self, report_id: str, entry: Entry) -> bool:
        """Back an entry up after a quiet period; repeated edits coalesce.

        Returns False when background sync is disabled.
        """
        if not self.auto_sync:
            logger.debug("Auto-backup disabled, skipping %s", report_id)
            return False
        with self._state_lock:
            self._pending_entries.setdefault(report_id, {})[entry.id] = entry
            debouncer = self._entry_debouncers.get(report_id)
            if debouncer is None:
                debouncer = Debouncer(
                    self.entry_debounce, self._flush_report_entries,
                    self._timer_factory,
                )
                self._entry_debouncers[report_id] = debouncer
        debouncer.trigger(report_id)
        return True

    def flush_entry_backups(self):
        with self._state_lock:
            debouncers = list(self._entry_debouncers.values())
        for debouncer in debouncers:
            debouncer.flush()

    def _flush_report_entries(self, report_id: str):
        with self._state_lock:
            entries = list(self._pending_entries.pop(report_id, {}).values())
        if entries:
            self.backup_all_entries(report_id, entries)

    # ── Queue ──────────────────────────────────────────────────

    def get_pending_sync_count(self) -> int:
        return self.store.queue_count()

    def _enqueue(self, op_type: str, payload: dict):
        self.store.enqueue(SyncOperation(type=op_type, payload=payload))

    def _write(self, op_type: str, payload: dict) -> SyncResult:
        """Attempt a remote write now; queue it if that is not possible."""
        if not self.is_online:
            self._enqueue(op_type, payload)
            logger.info("Offline, %s queued", op_type)
            return SyncResult(False, OFFLINE)
        try:
            remote_ids = self._handlers[op_type](payload)
        except RemoteConnectivityError:
            self._enqueue(op_type, payload)
            logger.info("Connection lost, %s queued", op_type)
            return SyncResult(False, OFFLINE)
        except RemoteError as e:
            logger.error("%s failed, queued for retry: %s", op_type, e)
            self._enqueue(op_type, payload)
            return SyncResult(False, str(e))
        return SyncResult(True, remote_ids=remote_ids or {})

    def process_offline_queue(self) -> QueueResult:
        """Replay queued operations oldest first. Single-flight.

        A connectivity failure stops the drain and leaves that operation's
        retry count alone; the next drain starts from the top again.
        """
        if not self._drain_lock.acquire(blocking=False):
            logger.info("Already processing queue")
            return QueueResult(skipped=True,
                               remaining=self.store.queue_count())
        try:
            return self._drain()
        finally:
            self._drain_lock.release()

    def _drain(self) -> QueueResult:
        result = QueueResult()
        if not self.is_online:
            logger.info("Still offline, skipping queue processing")
            result.remaining = self.store.queue_count()
            return result

        queue = self.store.get_queue()
        if queue:
            logger.info("Processing %d queued operations", len(queue))

        for op in queue:
            if not self.is_online:
                break
            handler = self._handlers.get(op.type)
            if handler is None:
                logger.warning("Unknown operation type %s, discarding", op.type)
                self.store.remove_operation(op.id)
                continue
            try:
                handler(op.payload)
            except RemoteConnectivityError:
                logger.info("Connection lost during queue processing")
                break
            except RemoteError as e:
                result.processed += 1
                op.retries += 1
                if op.retries >= self.max_retries:
                    self.store.remove_operation(op.id)
                    result.dropped += 1
                    logger.error(
                        "Operation failed after max retries, dropped: "
                        "%s #%s payload=%s (%s)",
                        op.type, op.id, op.payload, e,
                    )
                else:
                    self.store.update_retries(op.id, op.retries)
                    result.failed += 1
                continue
            result.processed += 1
            result.succeeded += 1
            self.store.remove_operation(op.id)

        result.remaining = self.store.queue_count()
        logger.info("Queue processing complete, %d operations remaining",
                    result.remaining)
        return result

    # ── Remote writers (raise RemoteError) ─────────────────────
    # Each returns the remote ids it learned, keyed by local id.

    def _push_entries(self, payload: dict) -> dict[str, str]:
        report_id = payload["report_id"]
        rows = [to_remote_entry(e, report_id) for e in payload["entries"]]
        saved = self.remote.upsert(
            TABLE_REPORT_ENTRIES, rows, on_conflict=ENTRY_CONFLICT_KEY
        )
        remote_ids = {
            r.get("local_id"): r.get("id") for r in saved or []
            if r.get("local_id") and r.get("id")
        }
        if remote_ids:
            # Entries count as synced from here on
            self.store.set_entry_remote_ids(report_id, remote_ids)
        return remote_ids

    def _push_entry_delete(self, payload: dict):
        self.remote.update(
            TABLE_REPORT_ENTRIES,
            {"is_deleted": True, "updated_at": now_iso()},
            {"report_id": payload["report_id"],
             "local_id": payload["local_id"]},
        )

    def _push_report(self, payload: dict,
                     submitted_at: str | None = None) -> dict[str, str]:
        report = Report.from_record(payload["report"])
        row = to_remote_report(
            report, self.current_user_id(), self.device_id, submitted_at,
        )
        row.setdefault("id", report.id)
        saved = self.remote.upsert(
            TABLE_REPORTS, row, on_conflict=REPORT_CONFLICT_KEY
        )
        remote_id = saved[0].get("id") if saved else None
        if not remote_id:
            return {}
        self.store.set_report_remote_id(report.id, remote_id)
        return {report.id: remote_id}

    def _push_raw_capture(self, payload: dict):
        report_id = payload["report_id"]
        self.remote.delete(TABLE_RAW_CAPTURE, {"report_id": report_id})
        self.remote.insert(
            TABLE_RAW_CAPTURE,
            to_remote_raw_capture(payload["capture"], report_id),
        )
