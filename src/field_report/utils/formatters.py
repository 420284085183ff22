"""Formatting utilities for dates, timestamps and display values."""

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return utc_now().isoformat()


def today_date_string(today: date | None = None) -> str:
    """Today's local calendar date as YYYY-MM-DD."""
    return (today or date.today()).isoformat()


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are treated as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_time_ago(when: datetime | None, now: datetime | None = None) -> str:
    """Human-readable 'N minutes ago' style string."""
    if when is None:
        return "at an unknown time"
    seconds = int(((now or utc_now()) - when).total_seconds())
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60} minutes ago"
    if seconds < 86400:
        return f"{seconds // 3600} hours ago"
    return f"{seconds // 86400} days ago"


def report_key(project_id: str, report_date: str) -> str:
    """Composite key for the current-reports map."""
    return f"{project_id}_{report_date}"
