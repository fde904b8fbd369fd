"""
Assignment queue - incoming project requests waiting to be assigned.

Shows requests for one recipient group, most urgent first, and lets the
team approve (assign) or decline them.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

import config
from dashboard import invalidate_on_write
from project_health import days_between, local_now, parse_date
from proworkflow import extract_list, extract_record
from response_cache import ResponseCache, cached_request

logger = logging.getLogger(__name__)

QUEUE_TAG = "project-requests"
NO_DUE_DATE_DAYS = 999


def _days_until_due(request: dict, now: datetime) -> int:
    due = parse_date(request.get("duedate"))
    return days_between(now, due) if due else NO_DUE_DATE_DAYS


def list_project_requests(request_fn: Callable, cache: ResponseCache,
                          group: str = config.ASSIGNMENT_QUEUE_GROUP,
                          now: Optional[datetime] = None) -> dict:
    """Project requests for ``group``, overdue first, undated last."""
    now = now or local_now()
    payload, _ = cached_request(cache, request_fn, "/projectrequests", "queue", (QUEUE_TAG,))
    requests = extract_list(payload, "projectrequests", endpoint="/projectrequests")
    logger.info(f"Found {len(requests)} total project requests")

    filtered = [r for r in requests if r.get("recipientgroupname") == group]
    filtered.sort(key=lambda r: _days_until_due(r, now))
    logger.info(f"Filtered to {len(filtered)} {group} requests")

    return {"project_requests": filtered, "count": len(filtered)}


def get_project_request(request_fn: Callable, cache: ResponseCache, request_id) -> dict:
    endpoint = f"/projectrequests/{request_id}"
    payload, _ = cached_request(cache, request_fn, endpoint, "queue", (QUEUE_TAG,))
    return extract_record(payload, "projectrequest", endpoint)


def approve_project_request(request_fn: Callable, cache: ResponseCache, request_id, assignment: dict) -> dict:
    """Approve a request; ProWorkflow turns it into a project assigned per ``assignment``."""
    logger.info(f"Approving project request {request_id}: {assignment}")
    result = request_fn(f"/projectrequests/{request_id}/approve", "PUT", assignment or {})
    invalidate_on_write(cache, QUEUE_TAG, "projects")
    return result


def decline_project_request(request_fn: Callable, cache: ResponseCache, request_id,
                            reason: Optional[str] = None) -> dict:
    logger.info(f"Declining project request {request_id}: {reason}")
    result = request_fn(f"/projectrequests/{request_id}/decline", "PUT", {"reason": reason or ""})
    invalidate_on_write(cache, QUEUE_TAG, "projects")
    return result


def list_team_members(request_fn: Callable, cache: ResponseCache,
                      manager_ids: Optional[List[int]] = None) -> List[dict]:
    """Recognized managers from the contact list, for the assignment dropdown."""
    manager_ids = set(config.RECOGNIZED_MANAGER_IDS if manager_ids is None else manager_ids)
    payload, _ = cached_request(cache, request_fn, "/contacts", "config", ("contacts",))
    contacts = extract_list(payload, "contacts", endpoint="/contacts")

    members = []
    for contact in contacts:
        try:
            contact_id = int(contact.get("id"))
        except (TypeError, ValueError):
            continue
        if contact_id not in manager_ids:
            continue
        name = contact.get("name") or f"{contact.get('firstname') or ''} {contact.get('lastname') or ''}".strip()
        members.append({"id": contact_id, "name": name, "email": contact.get("email")})

    members.sort(key=lambda m: m["name"].lower())
    logger.info(f"Found {len(members)} team members")
    return members
