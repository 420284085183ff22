"""Application-wide constants."""

APP_NAME = "Field Report"
APP_VERSION = "6.6.2"

# ── Report lifecycle ─────────────────────────────────────────────
# Strictly forward, one step at a time
STATUS_DRAFT = "draft"
STATUS_PENDING_REFINE = "pending_refine"
STATUS_REFINED = "refined"
STATUS_SUBMITTED = "submitted"

STATUS_FLOW = [
    STATUS_DRAFT,
    STATUS_PENDING_REFINE,
    STATUS_REFINED,
    STATUS_SUBMITTED,
]

# Human editing happens only in these two states
EDITABLE_STATUSES = {STATUS_DRAFT, STATUS_REFINED}

# ── Capture modes ────────────────────────────────────────────────
CAPTURE_FREEFORM = "freeform"
CAPTURE_GUIDED = "guided"
CAPTURE_MODES = [CAPTURE_FREEFORM, CAPTURE_GUIDED]

# Sections with a Yes/No toggle (weather and activities have none)
TOGGLE_SECTIONS = [
    "personnel",
    "equipment",
    "issues",
    "communications",
    "qaqc",
    "safety",
    "visitors",
    "photos",
]

# Section used for freeform entries in the remote entries table
FREEFORM_ENTRY_SECTION = "minimal"
WORK_SECTION_PREFIX = "work_"

# Crew count fields per contractor
PERSONNEL_FIELDS = [
    "superintendents",
    "foremen",
    "operators",
    "laborers",
    "surveyors",
    "others",
]

# ── Sync operations ──────────────────────────────────────────────
OP_ENTRY_BACKUP = "ENTRY_BACKUP"
OP_ENTRY_DELETE = "ENTRY_DELETE"
OP_REPORT_SYNC = "REPORT_SYNC"
OP_RAW_CAPTURE_SYNC = "RAW_CAPTURE_SYNC"

# Error marker for results that failed only because the network is down
OFFLINE = "offline"

# ── Rule reason codes ────────────────────────────────────────────
REASON_REPORT_NOT_FOUND = "REPORT_NOT_FOUND"
REASON_INVALID_CURRENT_STATUS = "INVALID_CURRENT_STATUS"
REASON_INVALID_TARGET_STATUS = "INVALID_TARGET_STATUS"
REASON_CANNOT_GO_BACKWARDS = "CANNOT_GO_BACKWARDS"
REASON_CANNOT_SKIP_STEPS = "CANNOT_SKIP_STEPS"
REASON_ALREADY_AT_STATUS = "ALREADY_AT_STATUS"
REASON_NOT_IN_DRAFT = "NOT_IN_DRAFT"
REASON_ENTRIES_ALREADY_SYNCED = "ENTRIES_ALREADY_SYNCED"
REASON_NO_PROJECT_ID = "NO_PROJECT_ID"
REASON_UNFINISHED_PREVIOUS = "UNFINISHED_PREVIOUS"
REASON_ALREADY_SUBMITTED_TODAY = "ALREADY_SUBMITTED_TODAY"
REASON_CONTINUE_EXISTING = "CONTINUE_EXISTING"

# ── Remote tables ────────────────────────────────────────────────
TABLE_PROJECTS = "projects"
TABLE_CONTRACTORS = "contractors"
TABLE_REPORTS = "reports"
TABLE_REPORT_ENTRIES = "report_entries"
TABLE_RAW_CAPTURE = "report_raw_capture"
TABLE_ACTIVE_REPORTS = "active_reports"
TABLE_USER_PROFILES = "user_profiles"

# Natural keys for idempotent upserts
ENTRY_CONFLICT_KEY = "report_id,local_id"
REPORT_CONFLICT_KEY = "project_id,report_date,user_id"
LOCK_CONFLICT_KEY = "project_id,report_date"
USER_PROFILE_CONFLICT_KEY = "device_id"

# ── Local settings keys ──────────────────────────────────────────
KEY_DEVICE_ID = "device_id"
KEY_USER_PROFILE = "user_profile"
KEY_ACTIVE_PROJECT_ID = "active_project_id"
KEY_CURRENT_REPORTS = "current_reports"
KEY_LAST_SYNC = "last_sync"
