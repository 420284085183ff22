"""Shared test fixtures."""

import copy
import uuid

import pytest

from field_report.database.connection import DatabaseConnection
from field_report.database.local_store import LocalStore
from field_report.database.models import Entry, Project, Contractor, Report
from field_report.database.schema import initialize_database
from field_report.remote.client import (
    RemoteConnectivityError,
    RemoteRejectedError,
)
from field_report.sync.sync_manager import SyncManager


# ── Network switch ─────────────────────────────────────────────

class Network:
    def __init__(self):
        self.online = True

    def is_online(self) -> bool:
        return self.online


# ── In-memory remote store ─────────────────────────────────────

class FakeRemote:
    """Table API stand-in honouring unique keys and upsert conflict targets."""

    def __init__(self, network: Network):
        self.network = network
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple] = []
        self._failures: list[list] = []

    # Failure injection

    def fail(self, method: str, table: str | None = None, times: int = 1,
             status_code: int = 500, connectivity: bool = False):
        """Make the next `times` matching calls fail.

        Raises RemoteRejectedError, or RemoteConnectivityError when
        `connectivity` is set.
        """
        self._failures.append([method, table, times, status_code, connectivity])

    def _check(self, method: str, table: str):
        self.calls.append((method, table))
        if not self.network.online:
            raise RemoteConnectivityError(f"{method} {table}: offline")
        for failure in self._failures:
            f_method, f_table, times, status, connectivity = failure
            if times > 0 and f_method == method and f_table in (None, table):
                failure[2] -= 1
                if connectivity:
                    raise RemoteConnectivityError(f"{method} {table}: dropped")
                raise RemoteRejectedError(f"{method} {table} rejected", status)

    def rows(self, table: str) -> list[dict]:
        return self.tables.setdefault(table, [])

    @staticmethod
    def _matches(row: dict, filters: dict | None) -> bool:
        return all(row.get(k) == v for k, v in (filters or {}).items())

    # Table operations

    def select(self, table, filters=None, columns="*", order=None, limit=None):
        self._check("select", table)
        result = [copy.deepcopy(r) for r in self.rows(table)
                  if self._matches(r, filters)]
        if "contractors(*)" in columns:
            for row in result:
                row["contractors"] = [
                    copy.deepcopy(c) for c in self.rows("contractors")
                    if c.get("project_id") == row.get("id")
                ]
        if order:
            column, _, direction = order.partition(".")
            result.sort(key=lambda r: (r.get(column) is None,
                                       r.get(column)),
                        reverse=direction == "desc")
        if limit is not None:
            result = result[:limit]
        return result

    def select_one(self, table, filters, columns="*"):
        rows = self.select(table, filters, columns=columns, limit=1)
        return rows[0] if rows else None

    def insert(self, table, rows):
        self._check("insert", table)
        rows = rows if isinstance(rows, list) else [rows]
        saved = []
        for row in rows:
            row = copy.deepcopy(row)
            row.setdefault("id", str(uuid.uuid4()))
            self.rows(table).append(row)
            saved.append(copy.deepcopy(row))
        return saved

    def upsert(self, table, rows, on_conflict, ignore_duplicates=False):
        self._check("upsert", table)
        keys = on_conflict.split(",")
        rows = rows if isinstance(rows, list) else [rows]
        saved = []
        for row in rows:
            key = {k: row.get(k) for k in keys}
            existing = next(
                (r for r in self.rows(table) if self._matches(r, key)), None
            )
            if existing is None:
                row = copy.deepcopy(row)
                row.setdefault("id", str(uuid.uuid4()))
                self.rows(table).append(row)
                saved.append(copy.deepcopy(row))
            elif ignore_duplicates:
                continue
            else:
                update = {k: v for k, v in row.items() if k != "id"}
                existing.update(copy.deepcopy(update))
                saved.append(copy.deepcopy(existing))
        return saved

    def update(self, table, values, filters):
        self._check("update", table)
        updated = []
        for row in self.rows(table):
            if self._matches(row, filters):
                row.update(copy.deepcopy(values))
                updated.append(copy.deepcopy(row))
        return updated

    def delete(self, table, filters):
        self._check("delete", table)
        removed = [r for r in self.rows(table) if self._matches(r, filters)]
        self.tables[table] = [
            r for r in self.rows(table) if not self._matches(r, filters)
        ]
        return removed

    def delete_nowait(self, table, filters):
        self.calls.append(("delete_nowait", table))
        try:
            self.delete(table, filters)
        except (RemoteConnectivityError, RemoteRejectedError):
            pass
        return None

    def close(self):
        self.calls.append(("close", None))


# ── Manually fired timers ──────────────────────────────────────

class ManualTimer:
    def __init__(self, registry, seconds, fn):
        self.registry = registry
        self.seconds = seconds
        self.fn = fn
        self.cancelled = False

    def start(self):
        self.registry.active.append(self)

    def cancel(self):
        self.cancelled = True
        if self in self.registry.active:
            self.registry.active.remove(self)


class ManualTimers:
    """Timer factory whose timers run only when fired by the test."""

    def __init__(self):
        self.active: list[ManualTimer] = []

    def __call__(self, seconds, fn):
        return ManualTimer(self, seconds, fn)

    def fire_all(self) -> int:
        due = list(self.active)
        self.active.clear()
        for timer in due:
            timer.fn()
        return len(due)


# ── Fixtures ───────────────────────────────────────────────────

@pytest.fixture
def db_path(tmp_path):
    """Provide a temporary database path."""
    return tmp_path / "test.db"


@pytest.fixture
def db(db_path):
    """Provide an initialized database connection."""
    conn = DatabaseConnection(db_path)
    initialize_database(conn)
    return conn


@pytest.fixture
def store(db):
    return LocalStore(db)


@pytest.fixture
def network():
    return Network()


@pytest.fixture
def remote(network):
    return FakeRemote(network)


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def sync(store, remote, network, timers):
    return SyncManager(
        store, remote,
        is_online=network.is_online,
        timer_factory=timers,
        max_retries=3,
        entry_debounce_ms=2000,
        auto_sync=True,
    )


@pytest.fixture
def project(store):
    project = Project(
        id="proj-1",
        project_name="Harbor Seawall",
        contractors=[
            Contractor(id="c-sub", project_id="proj-1", name="Gulf Paving",
                       type="sub"),
            Contractor(id="c-prime", project_id="proj-1", name="Acme Marine",
                       type="prime"),
        ],
    )
    store.save_project(project)
    return project


@pytest.fixture
def make_report():
    """Factory for draft guided reports with one entry and full weather."""
    def _make(report_id="r-1", project_id="proj-1",
              report_date="2025-06-01", **overrides):
        fields = dict(
            id=report_id,
            project_id=project_id,
            report_date=report_date,
            entries=[Entry(id="e1", section="issues", content="Water on site",
                           created_at="2025-06-01T08:00:00+00:00")],
            weather={"highTemp": 88, "lowTemp": 71,
                     "generalCondition": "Sunny"},
        )
        fields.update(overrides)
        return Report(**fields)
    return _make
