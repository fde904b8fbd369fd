"""
Project dashboard aggregation.

Builds the project table and per-project task lists out of ProWorkflow's
single-record endpoints: list → per-item detail and messages (fanned out
with a concurrency cap, read through the response cache) → derived health
metrics → filter and sort.

Only the initial list fetch may fail the whole call. Anything that goes
wrong for a single project or task is logged and turned into a degraded
row (``error`` / ``message_source == "error"``) so the rest still renders.
"""

import logging
import time
from datetime import datetime
from typing import Callable, List, Optional

import config
from bounded_fetch import run_bounded
from message_matcher import (
    build_message_threads,
    latest_message,
    match_messages,
    normalize_message,
)
from project_health import (
    derive_health,
    days_between,
    local_now,
    parse_date,
    project_timeline,
    status_label,
)
from proworkflow import UpstreamNotFound, extract_list, extract_record
from response_cache import ResponseCache, cached_request

logger = logging.getLogger(__name__)

DEFAULT_SORT = "idle"

# sort name -> (key function, descending)
SORT_OPTIONS = {
    "idle": (lambda row: row["days_idle"], True),
    "age": (lambda row: row["days_since_start"], True),
    "manager": (lambda row: row["owner"].lower(), False),
    "number": (lambda row: str(row["number"] or ""), True),
    "status": (lambda row: row["custom_status"].lower(), False),
    "title": (lambda row: (row["title"] or "").lower(), False),
    "due_date": (lambda row: (row["days_until_due"] is None, row["days_until_due"] or 0), False),
    "communication": (
        lambda row: (row["business_days_since_last_contact"] is not None,
                     row["business_days_since_last_contact"] or 0),
        True,
    ),
}


# ============================================================================
# Tags and endpoints
# ============================================================================

def project_tag(project_id) -> str:
    return f"project:{project_id}"


def task_tag(task_id) -> str:
    return f"task:{task_id}"


def invalidate_on_write(cache: ResponseCache, *tags: str) -> int:
    """Drop every cached read that depends on ``tags``. Call after an upstream write."""
    removed = sum(cache.invalidate(tag) for tag in tags)
    logger.info(f"Invalidated {removed} cache entries for {', '.join(tags)}")
    return removed


def fetch_project_messages(request_fn: Callable, cache: ResponseCache, project_id) -> List[dict]:
    """Normalized messages posted on a project. A 404 means no messages."""
    endpoint = f"/projects/{project_id}/messages"
    try:
        payload, _ = cached_request(cache, request_fn, endpoint, "messages", (project_tag(project_id),))
    except UpstreamNotFound:
        return []
    return [normalize_message(m) for m in extract_list(payload, "messages", endpoint=endpoint)]


def _fetch_task_messages(request_fn: Callable, cache: ResponseCache, task_id) -> List[dict]:
    endpoint = f"/tasks/{task_id}/messages"
    try:
        payload, _ = cached_request(cache, request_fn, endpoint, "messages", (task_tag(task_id),))
    except UpstreamNotFound:
        return []
    return [normalize_message(m) for m in extract_list(payload, "messages", endpoint=endpoint)]


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ============================================================================
# Project table
# ============================================================================

def _project_fetcher(request_fn: Callable, cache: ResponseCache, summary: dict) -> Callable[[], dict]:
    """Fetch task for one project: detail + messages, never raises."""
    project_id = summary.get("id")

    def fetch() -> dict:
        result = {"project": None, "messages": [], "from_cache": False,
                  "error": False, "messages_error": False}

        endpoint = f"/projects/{project_id}"
        try:
            payload, from_cache = cached_request(
                cache, request_fn, endpoint, "detail", (project_tag(project_id),)
            )
            detail = extract_record(payload, "project", endpoint)
            result["project"] = dict(detail, id=detail.get("id", project_id), original_id=project_id)
            result["from_cache"] = from_cache
        except Exception as e:
            logger.error(f"Failed to get details for project {project_id}: {e}")
            result["project"] = dict(summary, error=True)
            result["error"] = True

        try:
            result["messages"] = fetch_project_messages(request_fn, cache, project_id)
        except Exception as e:
            logger.warning(f"Failed to get messages for project {project_id}: {e}")
            result["messages_error"] = True

        return result

    return fetch


def _matches_manager(project: dict, manager: str) -> bool:
    wanted = manager.strip()
    if str(project.get("managerid")) == wanted:
        return True
    return wanted.lower() in (project.get("managername") or "").lower()


def _project_row(fetched: dict, now: datetime) -> dict:
    project = fetched["project"]
    project_id = project.get("id")
    messages = fetched["messages"]

    timeline = project_timeline(project, now)
    last = latest_message(messages)
    last_date = parse_date(last["date"]) if last else None
    health = derive_health(project, last_date, now, days_idle=timeline["days_idle"])

    color = project.get("customstatuscolor")
    row = {
        "number": project.get("number"),
        "title": project.get("title") or "",
        "project_id": project_id,
        "project_url": config.PROJECT_URL_TEMPLATE.format(project_id=project_id),
        "owner": project.get("managername") or "Unassigned",
        "manager_id": project.get("managerid"),
        "custom_status": status_label(project) or "Active",
        "status_color": f"#{color}" if color else "#4CAF50",
        "client": project.get("companyname") or "Unknown Client",
        "priority": project.get("priority") or "Medium",
        "status": project.get("status") or "active",
        "error": fetched["error"],
        "messages_error": fetched["messages_error"],
        "message_count": len(messages),
        "last_message_date": last_date.isoformat() if last_date else None,
        "last_message_author": last["author_name"] if last else None,
        "last_message_type": last["author_type"] if last else None,
        "communication_health": health["communication_status"],
    }
    row.update(timeline)
    row.update(health)
    return row


def build_project_table(request_fn: Callable, cache: ResponseCache, manager: Optional[str] = None,
                        sort: str = DEFAULT_SORT, manager_ids: Optional[List[int]] = None,
                        now: Optional[datetime] = None, concurrency: Optional[int] = None) -> dict:
    """All recognized-manager projects with derived health metrics.

    Args:
        request_fn: ProWorkflow request function (``proworkflow_request``)
        cache: Shared response cache
        manager: Optional manager id, or a case-insensitive fragment of the manager's name
        sort: One of ``SORT_OPTIONS``; anything else sorts by idle days
        manager_ids: Recognized manager ids (defaults to config)

    Returns:
        {"rows": [...], "facets": {"managers": [{"id", "name"}]}, "total_projects",
         "load_time_seconds", "cache_hit_count", "error_count"}

    Raises:
        UpstreamError: when the project list itself cannot be fetched
    """
    now = now or local_now()
    manager_ids = set(config.RECOGNIZED_MANAGER_IDS if manager_ids is None else manager_ids)
    concurrency = concurrency or config.PROJECT_FETCH_CONCURRENCY

    logger.info("=== Building project table ===")
    payload, _ = cached_request(cache, request_fn, "/projects", "list", ("projects",))
    projects = extract_list(payload, "projects", endpoint="/projects")
    logger.info(f"Found {len(projects)} total projects")

    start_time = time.time()
    fetched = run_bounded(
        [_project_fetcher(request_fn, cache, summary) for summary in projects],
        concurrency,
    )
    load_time = round(time.time() - start_time, 1)
    logger.info(f"Completed {len(fetched)} project fetches in {load_time}s (max {concurrency} concurrent)")

    team = [f for f in fetched if f and _as_int(f["project"].get("managerid")) in manager_ids]
    selected = [f for f in team if _matches_manager(f["project"], manager)] if manager else team

    rows = [_project_row(f, now) for f in selected]

    key, descending = SORT_OPTIONS.get(sort, SORT_OPTIONS[DEFAULT_SORT])
    rows.sort(key=key, reverse=descending)

    managers = {}
    for f in team:
        project = f["project"]
        if project.get("managerid") and project.get("managername"):
            managers[project["managerid"]] = {"id": project["managerid"], "name": project["managername"]}

    logger.info(f"Returning {len(rows)} team projects")
    return {
        "rows": rows,
        "facets": {"managers": list(managers.values())},
        "total_projects": len(rows),
        "load_time_seconds": load_time,
        "cache_hit_count": sum(1 for f in fetched if f and f["from_cache"]),
        "error_count": sum(1 for row in rows if row["error"]),
    }


def get_project_overview(request_fn: Callable, cache: ResponseCache, project_id, recent: int = 5) -> dict:
    """Project detail with its ``recent`` newest messages threaded, oldest first."""
    endpoint = f"/projects/{project_id}"
    payload, _ = cached_request(cache, request_fn, endpoint, "detail", (project_tag(project_id),))
    project = extract_record(payload, "project", endpoint)

    try:
        messages = fetch_project_messages(request_fn, cache, project_id)
    except Exception as e:
        logger.warning(f"Failed to get messages for project {project_id}: {e}")
        messages = []

    newest = sorted(messages, key=lambda m: parse_date(m.get("date")) or datetime.min)[-recent:] if recent else []
    return {
        "project": project,
        "messages": build_message_threads(newest),
        "message_count": len(messages),
    }


# ============================================================================
# Task list
# ============================================================================

def _due_status(days_until_due: Optional[int]) -> str:
    if days_until_due is None:
        return "none"
    if days_until_due < 0:
        return "overdue"
    if days_until_due <= 7:
        return "due-soon"
    return "normal"


def _error_task_row(summary: dict) -> dict:
    return {
        "id": summary.get("id"),
        "title": summary.get("name") or "Untitled Task",
        "status": "unknown",
        "completed": False,
        "assigned_to": "Error loading assignments",
        "due_date": None,
        "due_date_status": "none",
        "days_until_due": None,
        "priority": 3,
        "description": None,
        "order": summary.get("order1") or 0,
        "task_number": summary.get("ordernumber") or summary.get("id"),
        "start_date": None,
        "complete_date": None,
        "time_allocated": 0,
        "time_tracked": 0,
        "messages": [],
        "message_source": "error",
        "error": True,
    }


def _task_fetcher(request_fn: Callable, cache: ResponseCache, project_id, summary: dict,
                  project_messages: List[dict], now: datetime) -> Callable[[], dict]:
    task_id = summary.get("id")

    def fetch() -> dict:
        endpoint = f"/tasks/{task_id}"
        try:
            payload, _ = cached_request(
                cache, request_fn, endpoint, "detail", (task_tag(task_id), project_tag(project_id))
            )
            info = extract_record(payload, "task", endpoint)
        except Exception as e:
            logger.error(f"Error fetching task {task_id}: {e}")
            return _error_task_row(summary)

        assignees = [c.get("name").strip() for c in info.get("contacts") or []
                     if (c.get("name") or "").strip()]
        start = parse_date(info.get("startdate"))
        due = parse_date(info.get("duedate"))
        completed_at = parse_date(info.get("completedate"))
        days_until_due = days_between(now, due) if due else None
        completed = info.get("status") == "complete"
        title = summary.get("name") or info.get("name") or info.get("title") or "Untitled Task"

        try:
            messages = _fetch_task_messages(request_fn, cache, task_id)
            source = "direct" if messages else "none"
        except Exception as e:
            logger.warning(f"Error fetching messages for task {task_id}: {e}")
            messages = []
            source = "error"

        if source == "none" and project_messages:
            messages = match_messages(project_messages, {
                "title": title,
                "start_date": start,
                "completed_date": completed_at if completed else None,
                "assignees": assignees,
            }, now=now)
            if messages:
                source = "project-context"

        messages = sorted(messages, key=lambda m: parse_date(m.get("date")) or datetime.min)

        return {
            "id": task_id,
            "title": title,
            "status": info.get("status") or "active",
            "completed": completed,
            "assigned_to": ", ".join(assignees) if assignees else "Unassigned",
            "due_date": due.date().isoformat() if due else None,
            "due_date_status": _due_status(days_until_due),
            "days_until_due": days_until_due,
            "priority": info.get("priority") or 3,
            "description": info.get("description") or None,
            "order": summary.get("order1") or 0,
            "task_number": summary.get("ordernumber") or task_id,
            "start_date": start.date().isoformat() if start else None,
            "complete_date": completed_at.date().isoformat() if completed_at else None,
            "time_allocated": info.get("timeallocated") or 0,
            "time_tracked": info.get("timetracked") or 0,
            "messages": messages,
            "message_source": source,
            "error": False,
        }

    return fetch


def build_task_list(request_fn: Callable, cache: ResponseCache, project_id, offset: int = 0,
                    limit: Optional[int] = None, now: Optional[datetime] = None,
                    concurrency: Optional[int] = None) -> dict:
    """One page of a project's tasks with assignments and messages.

    Tasks with no messages of their own get the project messages that
    ``match_messages`` ties to them; ``message_source`` says which:
    ``direct``, ``project-context``, ``none`` or ``error``.

    Raises:
        ValueError: on a negative offset or a limit below 1
        UpstreamError: when the task list itself cannot be fetched
    """
    limit = config.DEFAULT_TASK_PAGE_SIZE if limit is None else limit
    if offset < 0:
        raise ValueError(f"offset must be >= 0, got {offset}")
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    now = now or local_now()
    concurrency = concurrency or config.TASK_FETCH_CONCURRENCY

    logger.info(f"Fetching tasks for project {project_id} (limit: {limit}, offset: {offset})")
    endpoint = f"/projects/{project_id}/tasks?status=all"
    payload, _ = cached_request(cache, request_fn, endpoint, "list", (project_tag(project_id),))
    tasks = extract_list(payload, "tasks", endpoint=endpoint)
    page = tasks[offset:offset + limit]
    logger.info(f"Processing tasks {offset + 1}-{offset + len(page)} of {len(tasks)}")

    project_messages = []
    if page:
        try:
            project_messages = fetch_project_messages(request_fn, cache, project_id)
        except Exception as e:
            logger.warning(f"Project {project_id} messages unavailable for task matching: {e}")

    rows = run_bounded(
        [_task_fetcher(request_fn, cache, project_id, summary, project_messages, now) for summary in page],
        concurrency,
    )
    rows = [row if row is not None else _error_task_row(summary) for row, summary in zip(rows, page)]
    rows.sort(key=lambda row: row["order"])

    stats = {"direct": 0, "project-context": 0, "none": 0, "error": 0}
    for row in rows:
        stats[row["message_source"]] += 1
    stats["project_message_count"] = len(project_messages)

    has_more = offset + limit < len(tasks)
    logger.info(f"Processed {len(rows)} tasks for project {project_id}: {stats}")
    return {
        "tasks": rows,
        "has_more": has_more,
        "total_tasks": len(tasks),
        "displayed_tasks": offset + len(rows),
        "remaining": len(tasks) - (offset + limit) if has_more else 0,
        "next_offset": offset + limit if has_more else None,
        "message_stats": stats,
    }
