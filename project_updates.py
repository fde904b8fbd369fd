"""
Write-back to ProWorkflow: project status, task dates and task completion.

Every write goes upstream first; on success the dependent cache entries are
invalidated by tag so the next read sees fresh data. A failed write raises
and leaves the cache untouched.
"""

import logging
from datetime import date
from typing import Callable, Optional

import config
from dashboard import invalidate_on_write, project_tag, task_tag
from proworkflow import extract_list
from response_cache import ResponseCache, cached_request

logger = logging.getLogger(__name__)


def _iso_date(value) -> Optional[str]:
    """Accept a date or a YYYY-MM-DD string; return the ISO string."""
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value).strip()[:10]).isoformat()


def list_status_options(request_fn: Callable, cache: ResponseCache) -> list:
    """Custom project statuses as ``{id, name, color}``."""
    endpoint = config.STATUS_OPTIONS_ENDPOINT
    payload, _ = cached_request(cache, request_fn, endpoint, "config", ("statuses",))
    statuses = extract_list(payload, "customstatuses", "statuses", endpoint=endpoint)
    options = [{
        "id": s.get("id"),
        "name": s.get("name") or s.get("title") or "",
        "color": s.get("color") or s.get("customstatuscolor") or "",
    } for s in statuses]
    logger.info(f"Loaded {len(options)} status options")
    return options


def update_project_status(request_fn: Callable, cache: ResponseCache, project_id, status_id) -> dict:
    """Set a project's custom status."""
    if status_id in (None, ""):
        raise ValueError("status_id is required")
    logger.info(f"Updating project {project_id} to status {status_id}")
    result = request_fn(f"/projects/{project_id}", "PUT", {"customstatusid": status_id})
    invalidate_on_write(cache, project_tag(project_id), "projects")
    return result


def update_task_dates(request_fn: Callable, cache: ResponseCache, task_id,
                      start_date=None, due_date=None) -> dict:
    """Change a task's start and/or due date."""
    body = {}
    if start_date is not None:
        body["startdate"] = _iso_date(start_date)
    if due_date is not None:
        body["duedate"] = _iso_date(due_date)
    if not body:
        raise ValueError("start_date or due_date is required")

    logger.info(f"Updating task {task_id} dates: {body}")
    result = request_fn(f"/tasks/{task_id}", "PUT", body)
    invalidate_on_write(cache, task_tag(task_id))
    return result


def complete_task(request_fn: Callable, cache: ResponseCache, task_id, complete_date=None) -> dict:
    """Mark a task complete (today unless ``complete_date`` is given)."""
    body = {"completedate": _iso_date(complete_date) or date.today().isoformat()}
    logger.info(f"Completing task {task_id} on {body['completedate']}")
    result = request_fn(f"/tasks/{task_id}/complete", "PUT", body)
    invalidate_on_write(cache, task_tag(task_id))
    return result


def reactivate_task(request_fn: Callable, cache: ResponseCache, task_id) -> dict:
    logger.info(f"Reactivating task {task_id}")
    result = request_fn(f"/tasks/{task_id}/reactivate", "PUT")
    invalidate_on_write(cache, task_tag(task_id))
    return result
