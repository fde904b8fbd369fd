"""
Project health metrics - idle time, due dates, communication freshness and
assignment-queue overdue detection.

All functions are pure: pass ``now`` to pin the clock. Dates are compared as
naive local times in ``config.DASHBOARD_TIMEZONE``; business days skip
Saturday and Sunday only (no holiday calendar).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import config

logger = logging.getLogger(__name__)

# Business-day gap allowed before a project moves out of each state:
# (active if gap <= first, attention if gap <= second, else stale)
COMMUNICATION_THRESHOLDS = {
    "rush": (1, 2),
    "normal": (3, 4),
}

# Business days a queued project may wait for assignment before it is overdue
ASSIGNMENT_THRESHOLDS = {
    "rush": 0,    # same business day
    "normal": 1,  # by the next business day
}

QUEUE_STATUSES = {"queue", "rush - queue"}

IDLE_FLOOR_DAYS = 7
UPCOMING_WINDOW_DAYS = 30


# ============================================================================
# Dates
# ============================================================================

def local_now() -> datetime:
    """Current wall-clock time in the dashboard zone, without tzinfo."""
    return datetime.now(config.DASHBOARD_TIMEZONE).replace(tzinfo=None)


def _to_local(dt: datetime) -> datetime:
    return dt.astimezone(config.DASHBOARD_TIMEZONE).replace(tzinfo=None)


def parse_date(value, assume_utc: bool = False) -> Optional[datetime]:
    """Parse a ProWorkflow date into a naive local datetime.

    Accepts ISO strings (``2024-03-01``, ``2024-03-01 09:30:00``,
    ``2024-03-01T09:30:00Z``), epoch seconds or milliseconds, and datetime
    objects. Naive values are taken as local time unless ``assume_utc``
    (used for ``*utc`` fields). Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e12 else value
        return _to_local(datetime.fromtimestamp(seconds, tz=timezone.utc))
    elif isinstance(value, str):
        text = value.strip().replace("Z", "+00:00")
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            logger.debug(f"Could not parse date '{value}'")
            return None
    else:
        return None

    if dt.tzinfo is None:
        if assume_utc:
            return _to_local(dt.replace(tzinfo=timezone.utc))
        return dt
    return _to_local(dt)


def business_days_between(start: datetime, end: datetime) -> int:
    """Weekdays after ``start``'s date up to and including ``end``'s date.

    Both ends are truncated to midnight, so anything earlier today is 0 and
    Friday → Monday is 1.
    """
    start_day = start.date()
    end_day = end.date()
    days = (end_day - start_day).days
    if days <= 0:
        return 0

    weeks, extra = divmod(days, 7)
    count = weeks * 5
    base = start_day + timedelta(days=weeks * 7)
    for offset in range(1, extra + 1):
        if (base + timedelta(days=offset)).weekday() < 5:
            count += 1
    return count


def days_between(start: datetime, end: datetime) -> int:
    """Whole calendar days from ``start`` to ``end``, floored (negative if end is earlier)."""
    return (end - start).days


# ============================================================================
# Status labels
# ============================================================================

def status_label(project: dict) -> str:
    return project.get("customstatus") or project.get("status") or ""


def is_rush_status(label: Optional[str]) -> bool:
    return "rush" in (label or "").lower()


def is_queue_status(label: Optional[str]) -> bool:
    return (label or "").strip().lower() in QUEUE_STATUSES


# ============================================================================
# Health state machines
# ============================================================================

def communication_status(last_message_date: Optional[datetime], is_rush: bool,
                         now: Optional[datetime] = None) -> dict:
    """Classify communication freshness from the most recent message.

    Returns ``{"status": active|attention|stale|unknown, "business_days": int|None}``.
    """
    if last_message_date is None:
        return {"status": "unknown", "business_days": None}

    now = now or local_now()
    gap = business_days_between(last_message_date, now)
    active_limit, attention_limit = COMMUNICATION_THRESHOLDS["rush" if is_rush else "normal"]

    if gap <= active_limit:
        status = "active"
    elif gap <= attention_limit:
        status = "attention"
    else:
        status = "stale"
    return {"status": status, "business_days": gap}


def assignment_status(label: Optional[str], entry_date: Optional[datetime],
                      now: Optional[datetime] = None) -> dict:
    """Work out whether a queued project has waited too long for assignment.

    Returns ``{"status": not_in_queue|unknown_entry_time|overdue|on_time,
    "business_days": int|None, "overdue": bool}``.
    """
    if not is_queue_status(label):
        return {"status": "not_in_queue", "business_days": None, "overdue": False}
    if entry_date is None:
        return {"status": "unknown_entry_time", "business_days": None, "overdue": False}

    now = now or local_now()
    waited = business_days_between(entry_date, now)
    threshold = ASSIGNMENT_THRESHOLDS["rush" if is_rush_status(label) else "normal"]
    overdue = waited > threshold
    return {
        "status": "overdue" if overdue else "on_time",
        "business_days": waited,
        "overdue": overdue,
    }


# ============================================================================
# Per-project metrics
# ============================================================================

def project_timeline(project: dict, now: Optional[datetime] = None) -> dict:
    """Calendar metrics for a project row: age, idle time and due-date flags."""
    now = now or local_now()

    start = parse_date(project.get("startdate"))
    due = parse_date(project.get("duedate"))
    last_modified = parse_date(project.get("lastmodifiedutc"), assume_utc=True) or start or now

    days_since_start = days_between(start, now) if start else 0
    days_since_activity = days_between(last_modified, now)
    days_until_due = days_between(now, due) if due else None

    return {
        "start_date": start.date().isoformat() if start else None,
        "due_date": due.date().isoformat() if due else None,
        "days_since_start": days_since_start,
        "days_idle": days_since_activity if days_since_activity > IDLE_FLOOR_DAYS else 0,
        "days_until_due": days_until_due,
        "is_overdue": days_until_due is not None and days_until_due < 0,
        "is_upcoming": days_until_due is not None and 0 <= days_until_due <= UPCOMING_WINDOW_DAYS,
    }


def derive_health(project: dict, last_message_date: Optional[datetime],
                  now: Optional[datetime] = None, days_idle: int = 0) -> dict:
    """Communication and assignment health for one project.

    Recomputed on every pass; nothing here is cached.
    """
    now = now or local_now()
    label = status_label(project)
    rush = is_rush_status(label)

    communication = communication_status(last_message_date, rush, now)
    assignment = assignment_status(label, parse_date(project.get("startdate")), now)

    reason = None
    if assignment["overdue"]:
        reason = f"Waiting for assignment {assignment['business_days']} business days"
    elif communication["status"] == "stale":
        reason = f"No contact in {communication['business_days']} business days"
    elif days_idle > 0:
        reason = f"No updates in {days_idle} days"

    return {
        "is_rush": rush,
        "communication_status": communication["status"],
        "business_days_since_last_contact": communication["business_days"],
        "assignment_status": assignment["status"],
        "assignment_overdue": assignment["overdue"],
        "business_days_in_queue": assignment["business_days"],
        "needs_status_update_reason": reason,
    }
