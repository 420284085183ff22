"""Local store schema definition and initialization."""

import sqlite3

SCHEMA_VERSION = 1

# Each statement is a separate string to avoid executescript issues
_SCHEMA_STATEMENTS = [
    # Small JSON-encoded values: device id, profile, current-reports map
    """CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    # One record per report; `data` is the full JSON record
    """CREATE TABLE IF NOT EXISTS reports (
        report_id TEXT PRIMARY KEY,
        project_id TEXT,
        report_date TEXT,
        status TEXT NOT NULL DEFAULT 'draft'
            CHECK (status IN ('draft', 'pending_refine', 'refined', 'submitted')),
        capture_mode TEXT,
        data TEXT NOT NULL,
        created_at TEXT,
        last_saved TEXT
    )""",

    """CREATE INDEX IF NOT EXISTS idx_reports_project_date
        ON reports (project_id, report_date)""",

    # Cached projects (with contractors and equipment) as JSON
    """CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        data TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    # Pending remote operations, replayed in id (enqueue) order
    """CREATE TABLE IF NOT EXISTS sync_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        op_type TEXT NOT NULL
            CHECK (op_type IN ('ENTRY_BACKUP', 'ENTRY_DELETE',
                               'REPORT_SYNC', 'RAW_CAPTURE_SYNC')),
        payload TEXT NOT NULL,
        enqueued_at TEXT NOT NULL,
        retries INTEGER NOT NULL DEFAULT 0 CHECK (retries >= 0)
    )""",

    """CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER NOT NULL
    )""",
]


def initialize_database(db):
    """Create all tables and record the schema version.

    Safe to call repeatedly: every statement is IF NOT EXISTS and the
    version row is written only once.
    """
    with db.get_connection() as conn:
        for statement in _SCHEMA_STATEMENTS:
            conn.execute(statement)
        row = conn.execute(
            "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
        ).fetchone()
        if row is None:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )


def get_schema_version(db) -> int:
    """Return the recorded schema version, or 0 if uninitialized."""
    try:
        rows = db.execute(
            "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
        )
    except sqlite3.Error:
        return 0
    return rows[0]["version"] if rows else 0
