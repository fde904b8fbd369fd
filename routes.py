"""
JSON routes for the dashboard and assignment queue.

Handlers are thin: pull the request function and cache off the app, call
the aggregation / write-back module, translate upstream failures to HTTP.
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

import assignment_queue
import dashboard
import project_updates
from message_matcher import build_message_threads
from proworkflow import UpstreamError, UpstreamNotFound

logger = logging.getLogger(__name__)

dashboard_bp = Blueprint("dashboard", __name__)


def _services():
    return current_app.config["PROWORKFLOW_REQUEST"], current_app.config["DASHBOARD_CACHE"]


def _upstream_error(e: UpstreamError, what: str):
    if isinstance(e, UpstreamNotFound):
        return jsonify({"error": f"{what} not found"}), 404
    logger.error(f"Upstream failure while trying to {what}: {e}")
    return jsonify({"error": f"Failed to {what}", "details": str(e)}), 502


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


# ============================================================================
# Status
# ============================================================================

@dashboard_bp.route("/health")
def health():
    _, cache = _services()
    return jsonify({
        "service": "ProWorkflow Dashboard",
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cache_size": len(cache),
    })


@dashboard_bp.route("/api/cache-status")
def api_cache_status():
    _, cache = _services()
    return jsonify(cache.debug_snapshot(limit=_int_arg("limit", 50)))


@dashboard_bp.route("/api/cache/invalidate", methods=["POST"])
def api_cache_invalidate():
    _, cache = _services()
    tag = (request.get_json(silent=True) or {}).get("tag")
    if not tag:
        return jsonify({"error": "tag is required"}), 400
    return jsonify({"tag": tag, "removed": dashboard.invalidate_on_write(cache, tag)})


@dashboard_bp.route("/api/cache/clear", methods=["POST"])
def api_cache_clear():
    _, cache = _services()
    return jsonify({"removed": cache.clear()})


# ============================================================================
# Dashboard reads
# ============================================================================

@dashboard_bp.route("/api/projects-table")
def api_projects_table():
    request_fn, cache = _services()
    try:
        result = dashboard.build_project_table(
            request_fn, cache,
            manager=request.args.get("manager") or None,
            sort=request.args.get("sort") or dashboard.DEFAULT_SORT,
        )
        return jsonify(result)
    except UpstreamError as e:
        return _upstream_error(e, "fetch projects table")
    except Exception as e:
        logger.error(f"Error in api_projects_table: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


@dashboard_bp.route("/api/project/<int:project_id>")
def api_project(project_id):
    request_fn, cache = _services()
    try:
        return jsonify(dashboard.get_project_overview(request_fn, cache, project_id))
    except UpstreamError as e:
        return _upstream_error(e, "fetch project")
    except Exception as e:
        logger.error(f"Error in api_project: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


@dashboard_bp.route("/api/project/<int:project_id>/messages")
def api_project_messages(project_id):
    request_fn, cache = _services()
    try:
        messages = dashboard.fetch_project_messages(request_fn, cache, project_id)
        return jsonify({"messages": build_message_threads(messages), "count": len(messages)})
    except UpstreamError as e:
        return _upstream_error(e, "fetch project messages")
    except Exception as e:
        logger.error(f"Error in api_project_messages: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


@dashboard_bp.route("/api/project/<int:project_id>/tasks")
def api_project_tasks(project_id):
    request_fn, cache = _services()
    try:
        result = dashboard.build_task_list(
            request_fn, cache, project_id,
            offset=_int_arg("offset", 0),
            limit=_int_arg("limit", current_app.config["DEFAULT_TASK_PAGE_SIZE"]),
        )
        return jsonify(result)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except UpstreamError as e:
        return _upstream_error(e, "fetch project tasks")
    except Exception as e:
        logger.error(f"Error fetching tasks for project {project_id}: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


@dashboard_bp.route("/api/status-options")
def api_status_options():
    request_fn, cache = _services()
    try:
        return jsonify({"statuses": project_updates.list_status_options(request_fn, cache)})
    except UpstreamError as e:
        return _upstream_error(e, "fetch status options")
    except Exception as e:
        logger.error(f"Error trying to fetch status options: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


# ============================================================================
# Dashboard writes
# ============================================================================

@dashboard_bp.route("/api/project/<int:project_id>/status", methods=["PUT"])
def api_update_project_status(project_id):
    request_fn, cache = _services()
    data = request.get_json(silent=True) or {}
    try:
        result = project_updates.update_project_status(request_fn, cache, project_id, data.get("status_id"))
        return jsonify({"success": True, "result": result})
    except ValueError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except UpstreamError as e:
        return _upstream_error(e, "update project status")
    except Exception as e:
        logger.error(f"Error trying to update project status: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


@dashboard_bp.route("/api/task/<int:task_id>", methods=["PUT"])
def api_update_task(task_id):
    request_fn, cache = _services()
    data = request.get_json(silent=True) or {}
    try:
        result = project_updates.update_task_dates(
            request_fn, cache, task_id,
            start_date=data.get("start_date"),
            due_date=data.get("due_date"),
        )
        return jsonify({"success": True, "result": result})
    except ValueError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except UpstreamError as e:
        return _upstream_error(e, "update task")
    except Exception as e:
        logger.error(f"Error trying to update task: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


@dashboard_bp.route("/api/task/<int:task_id>/complete", methods=["PUT"])
def api_complete_task(task_id):
    request_fn, cache = _services()
    data = request.get_json(silent=True) or {}
    try:
        result = project_updates.complete_task(request_fn, cache, task_id, data.get("complete_date"))
        return jsonify({"success": True, "result": result})
    except ValueError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except UpstreamError as e:
        return _upstream_error(e, "complete task")
    except Exception as e:
        logger.error(f"Error trying to complete task: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


@dashboard_bp.route("/api/task/<int:task_id>/reactivate", methods=["PUT"])
def api_reactivate_task(task_id):
    request_fn, cache = _services()
    try:
        result = project_updates.reactivate_task(request_fn, cache, task_id)
        return jsonify({"success": True, "result": result})
    except UpstreamError as e:
        return _upstream_error(e, "reactivate task")
    except Exception as e:
        logger.error(f"Error trying to reactivate task: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


# ============================================================================
# Assignment queue
# ============================================================================

@dashboard_bp.route("/api/project-requests")
def api_project_requests():
    request_fn, cache = _services()
    try:
        return jsonify(assignment_queue.list_project_requests(request_fn, cache))
    except UpstreamError as e:
        return _upstream_error(e, "fetch project requests")
    except Exception as e:
        logger.error(f"Error trying to fetch project requests: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


@dashboard_bp.route("/api/project-requests/<int:request_id>")
def api_project_request(request_id):
    request_fn, cache = _services()
    try:
        return jsonify({"projectrequest": assignment_queue.get_project_request(request_fn, cache, request_id)})
    except UpstreamError as e:
        return _upstream_error(e, "fetch project request details")
    except Exception as e:
        logger.error(f"Error trying to fetch project request details: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


@dashboard_bp.route("/api/project-requests/<int:request_id>/approve", methods=["PUT"])
def api_approve_project_request(request_id):
    request_fn, cache = _services()
    try:
        result = assignment_queue.approve_project_request(
            request_fn, cache, request_id, request.get_json(silent=True) or {}
        )
        return jsonify(result)
    except UpstreamError as e:
        return _upstream_error(e, "approve project request")
    except Exception as e:
        logger.error(f"Error trying to approve project request: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


@dashboard_bp.route("/api/project-requests/<int:request_id>/decline", methods=["PUT"])
def api_decline_project_request(request_id):
    request_fn, cache = _services()
    reason = (request.get_json(silent=True) or {}).get("reason")
    try:
        return jsonify(assignment_queue.decline_project_request(request_fn, cache, request_id, reason))
    except UpstreamError as e:
        return _upstream_error(e, "decline project request")
    except Exception as e:
        logger.error(f"Error trying to decline project request: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


@dashboard_bp.route("/api/team-members")
def api_team_members():
    request_fn, cache = _services()
    try:
        return jsonify({"team_members": assignment_queue.list_team_members(request_fn, cache)})
    except UpstreamError as e:
        return _upstream_error(e, "fetch team members")
    except Exception as e:
        logger.error(f"Error trying to fetch team members: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500
