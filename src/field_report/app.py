"""Application wiring: builds the store, remote clients and managers.

Also a small command line for maintenance from a terminal:

    field-report status            pending queue size and device id
    field-report drain             replay the offline queue now
    field-report refresh-projects  pull projects from the remote store
"""

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path

from field_report.config import Config
from field_report.database.connection import DatabaseConnection
from field_report.database.local_store import LocalStore
from field_report.database.schema import initialize_database
from field_report.remote.client import RemoteStoreClient
from field_report.remote.refine import RefinementClient
from field_report.session.report_session import ReportSession
from field_report.sync.lock_manager import EditLockManager
from field_report.sync.sync_manager import SyncError, SyncManager
from field_report.utils.constants import APP_NAME, APP_VERSION
from field_report.utils.logging import configure_logging

logger = logging.getLogger(__name__)


@dataclass
class Services:
    db: DatabaseConnection
    store: LocalStore
    remote: RemoteStoreClient
    sync: SyncManager
    locks: EditLockManager
    refiner: RefinementClient

    def open_session(self) -> ReportSession:
        return ReportSession(self.sync, self.locks, self.refiner)

    def shutdown(self):
        self.locks.release_on_teardown()
        self.sync.destroy()
        self.remote.close()


def build_services(db_path: str | Path | None = None,
                   remote: RemoteStoreClient | None = None) -> Services:
    """Create every long-lived collaborator once, in dependency order."""
    db = DatabaseConnection(db_path or Config.DATABASE_PATH)
    initialize_database(db)
    store = LocalStore(db)
    remote = remote or RemoteStoreClient()
    sync = SyncManager(store, remote)
    locks = EditLockManager(remote, store.get_device_id())
    return Services(db, store, remote, sync, locks, RefinementClient())


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="field-report",
        description=f"{APP_NAME} local store maintenance",
    )
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {APP_VERSION}")
    parser.add_argument("command",
                        choices=["status", "drain", "refresh-projects"])
    parser.add_argument("--db", help="Path to the local database")
    args = parser.parse_args(argv)

    configure_logging()
    services = build_services(args.db)
    try:
        if args.command == "status":
            print(f"Device: {services.store.get_device_id()}")
            print(f"Pending operations: {services.sync.get_pending_sync_count()}")
            print(f"Last sync: {services.store.get_last_sync() or 'never'}")
        elif args.command == "drain":
            result = services.sync.process_offline_queue()
            print(f"Succeeded {result.succeeded}, failed {result.failed}, "
                  f"dropped {result.dropped}, remaining {result.remaining}")
        else:
            if not Config.is_remote_configured():
                print("Remote store is not configured. Set SUPABASE_URL "
                      "and SUPABASE_ANON_KEY.")
                return 1
            try:
                projects = services.sync.refresh_projects_from_cloud()
            except SyncError as e:
                logger.error("%s", e)
                return 1
            print(f"Refreshed {len(projects)} projects")
    finally:
        services.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
