"""EditLockManager — one editing device per (project, report date).

Lock rows live in the remote `active_reports` table, unique on
(project_id, report_date). A holder renews `last_heartbeat` every couple of
minutes; a row whose heartbeat is older than the staleness window is
treated as abandoned and deleted by whoever finds it.

Release on teardown is best-effort. Staleness is what actually frees
abandoned locks.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from field_report.config import Config
from field_report.database.models import EditLock, LockInfo
from field_report.remote.client import RemoteError, RemoteStoreClient
from field_report.utils.constants import LOCK_CONFLICT_KEY, TABLE_ACTIVE_REPORTS
from field_report.utils.formatters import (
    format_time_ago,
    parse_iso,
    utc_now,
)

from .timers import RepeatingTimer, TimerFactory, thread_timer

logger = logging.getLogger(__name__)


def format_lock_message(info: LockInfo | None,
                        now: datetime | None = None) -> str:
    """User-facing sentence describing who holds a lock."""
    if info is None:
        return ""
    locked_by = info.inspector_name or "Another user"
    time_ago = format_time_ago(parse_iso(info.locked_at), now)
    return f"This report is currently being edited by {locked_by} (started {time_ago})"


class EditLockManager:
    """Acquires, renews and releases edit locks for this device."""

    def __init__(self, remote: RemoteStoreClient, device_id: str,
                 timer_factory: TimerFactory = thread_timer,
                 lock_timeout_minutes: int | None = None,
                 heartbeat_seconds: float | None = None,
                 clock: Callable[[], datetime] = utc_now):
        self.remote = remote
        self.device_id = device_id
        self.lock_timeout = timedelta(
            minutes=lock_timeout_minutes or Config.LOCK_TIMEOUT_MINUTES
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._current: Optional[EditLock] = None
        self._heartbeat = RepeatingTimer(
            heartbeat_seconds or Config.HEARTBEAT_INTERVAL_SECONDS,
            self.update_heartbeat,
            timer_factory,
            name="lock-heartbeat",
        )

    @property
    def current_lock(self) -> Optional[EditLock]:
        return self._current

    def has_active_lock(self) -> bool:
        return self._current is not None

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat.is_running

    def _key_filters(self, project_id: str, report_date: str) -> dict:
        return {"project_id": project_id, "report_date": report_date}

    def _is_stale(self, row: dict) -> bool:
        seen = parse_iso(row.get("last_heartbeat") or row.get("locked_at"))
        if seen is None:
            return True
        return seen < self._clock() - self.lock_timeout

    # ── Check / acquire ────────────────────────────────────────

    def check_lock(self, project_id: str,
                   report_date: str) -> Optional[LockInfo]:
        """Return the foreign holder, or None when this device may edit."""
        if not project_id or not report_date:
            logger.warning("Lock check without project or date")
            return None

        try:
            row = self.remote.select_one(
                TABLE_ACTIVE_REPORTS, self._key_filters(project_id, report_date)
            )
        except RemoteError as e:
            logger.error("Error checking lock: %s", e)
            return None

        if row is None:
            return None

        if self._is_stale(row):
            logger.info("Found stale lock held by %s, clearing it",
                        row.get("device_id"))
            self.release_lock(project_id, report_date, row.get("device_id"))
            return None

        if row.get("device_id") == self.device_id:
            return None

        logger.info("Report locked by another device: %s", row.get("device_id"))
        return LockInfo(
            device_id=row.get("device_id") or "",
            inspector_name=row.get("inspector_name") or "Another user",
            locked_at=row.get("locked_at"),
            last_heartbeat=row.get("last_heartbeat"),
        )

    def acquire_lock(self, project_id: str, report_date: str,
                     inspector_name: str | None = None) -> bool:
        """Take the lock for this device and start the heartbeat.

        The insert ignores an existing row, so when two devices race past
        the check only the first write lands; the re-read names the winner.
        """
        if not project_id or not report_date:
            logger.warning("Lock acquire without project or date")
            return False

        holder = self.check_lock(project_id, report_date)
        if holder is not None:
            logger.info("Cannot acquire lock, held by %s", holder.inspector_name)
            return False

        now = self._clock().isoformat()
        lock = EditLock(
            project_id=project_id,
            report_date=report_date,
            device_id=self.device_id,
            inspector_name=inspector_name,
            locked_at=now,
            last_heartbeat=now,
        )
        try:
            self.remote.upsert(
                TABLE_ACTIVE_REPORTS, lock.to_row(),
                on_conflict=LOCK_CONFLICT_KEY, ignore_duplicates=True,
            )
            row = self.remote.select_one(
                TABLE_ACTIVE_REPORTS, self._key_filters(project_id, report_date)
            )
        except RemoteError as e:
            logger.error("Error acquiring lock: %s", e)
            return False

        if row is None or row.get("device_id") != self.device_id:
            logger.info("Lost lock race for %s/%s", project_id, report_date)
            return False

        with self._lock:
            self._current = EditLock.from_row(row)
        if row.get("last_heartbeat") != now:
            # Re-entered our own earlier lock; renew it under the current name
            self.update_heartbeat(inspector_name)
        self.start_heartbeat()
        logger.info("Lock acquired for project %s date %s",
                    project_id, report_date)
        return True

    # ── Heartbeat ──────────────────────────────────────────────

    def update_heartbeat(self, inspector_name: str | None = None) -> bool:
        """Renew the held lock, also renaming its holder when a name is given."""
        current = self._current
        if current is None:
            return False
        now = self._clock().isoformat()
        values = {"last_heartbeat": now}
        if inspector_name:
            values["inspector_name"] = inspector_name
        try:
            self.remote.update(
                TABLE_ACTIVE_REPORTS,
                values,
                {
                    "project_id": current.project_id,
                    "report_date": current.report_date,
                    "device_id": self.device_id,
                },
            )
        except RemoteError as e:
            logger.error("Error updating heartbeat: %s", e)
            return False
        current.last_heartbeat = now
        if inspector_name:
            current.inspector_name = inspector_name
        logger.debug("Heartbeat updated")
        return True

    def start_heartbeat(self):
        self._heartbeat.start()

    def stop_heartbeat(self):
        self._heartbeat.stop()

    def on_foreground(self) -> bool:
        """Renew immediately when the app comes back to the foreground."""
        if self._current is None:
            return False
        return self.update_heartbeat()

    # ── Release ────────────────────────────────────────────────

    def release_lock(self, project_id: str, report_date: str,
                     device_id: str | None = None) -> bool:
        """Delete the lock row held by `device_id` (default: this device)."""
        if not project_id or not report_date:
            logger.warning("Lock release without project or date")
            return False

        holder = device_id or self.device_id
        try:
            self.remote.delete(TABLE_ACTIVE_REPORTS, {
                "project_id": project_id,
                "report_date": report_date,
                "device_id": holder,
            })
        except RemoteError as e:
            logger.error("Error releasing lock: %s", e)
            return False

        logger.info("Lock released for project %s date %s",
                    project_id, report_date)
        with self._lock:
            current = self._current
            if (current and current.project_id == project_id
                    and current.report_date == report_date
                    and holder == self.device_id):
                self._current = None
                release_heartbeat = True
            else:
                release_heartbeat = False
        if release_heartbeat:
            self.stop_heartbeat()
        return True

    def release_current_lock(self) -> bool:
        current = self._current
        if current is None:
            return True
        return self.release_lock(current.project_id, current.report_date)

    def release_on_teardown(self) -> Optional[threading.Thread]:
        """Send a non-blocking unlock for the held lock and forget it."""
        with self._lock:
            current = self._current
            self._current = None
        self.stop_heartbeat()
        if current is None:
            return None
        return self.remote.delete_nowait(TABLE_ACTIVE_REPORTS, {
            "project_id": current.project_id,
            "report_date": current.report_date,
            "device_id": self.device_id,
        })
