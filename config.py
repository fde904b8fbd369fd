"""
Runtime configuration for the ProWorkflow dashboard.

Everything is read from environment variables once at import time.
"""

import os
import logging

import pytz

logger = logging.getLogger(__name__)

# ============================================================================
# ProWorkflow API
# ============================================================================

PROWORKFLOW_API_KEY = os.environ.get("PROWORKFLOW_API_KEY", "")
PROWORKFLOW_USERNAME = os.environ.get("PROWORKFLOW_USERNAME", "")
PROWORKFLOW_PASSWORD = os.environ.get("PROWORKFLOW_PASSWORD", "")
PROWORKFLOW_BASE_URL = os.environ.get("PROWORKFLOW_BASE_URL", "https://api.proworkflow.net")
PROWORKFLOW_TIMEOUT = int(os.environ.get("PROWORKFLOW_TIMEOUT", "30"))

# Deep link shown on each project row
PROJECT_URL_TEMPLATE = os.environ.get(
    "PROWORKFLOW_PROJECT_URL",
    "https://app.proworkflow.com/?fuseaction=jobs&fusesubaction=jobdetails&Jobs_currentJobID={project_id}",
)

STATUS_OPTIONS_ENDPOINT = "/settings/projects/customstatuses"

# ============================================================================
# Dashboard
# ============================================================================


def _parse_id_list(raw: str) -> list:
    ids = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            logger.warning(f"Ignoring non-numeric manager id '{part}'")
    return ids


# Only projects managed by these people appear on the dashboard
RECOGNIZED_MANAGER_IDS = _parse_id_list(
    os.environ.get("DASHBOARD_MANAGER_IDS", "1030,4,18,605,1029,597,801")
)

# Business-day math truncates to local midnight in this zone
DASHBOARD_TIMEZONE = pytz.timezone(os.environ.get("DASHBOARD_TIMEZONE", "US/Eastern"))

ASSIGNMENT_QUEUE_GROUP = os.environ.get("ASSIGNMENT_QUEUE_GROUP", "Creative Services")

PROJECT_FETCH_CONCURRENCY = int(os.environ.get("PROJECT_FETCH_CONCURRENCY", "8"))
TASK_FETCH_CONCURRENCY = int(os.environ.get("TASK_FETCH_CONCURRENCY", "5"))
DEFAULT_TASK_PAGE_SIZE = int(os.environ.get("DEFAULT_TASK_PAGE_SIZE", "20"))

# ============================================================================
# Cache
# ============================================================================

DEFAULT_CACHE_TTL = 300  # 5 minutes

# Seconds an entry stays fresh, by resource category
CACHE_TTLS = {
    "list": 300,       # project / task lists
    "detail": 300,     # single project / task records
    "queue": 120,      # assignment queue, changes as requests come in
    "messages": 30,    # conversations, near real-time
    "config": 3600,    # statuses, contacts
}

for _category in list(CACHE_TTLS):
    _override = os.environ.get(f"CACHE_TTL_{_category.upper()}")
    if _override:
        CACHE_TTLS[_category] = int(_override)

CACHE_SWEEP_INTERVAL_SECONDS = int(os.environ.get("CACHE_SWEEP_INTERVAL_SECONDS", "60"))


def missing_credentials() -> list:
    """Names of ProWorkflow credential variables that are not set."""
    missing = []
    if not PROWORKFLOW_API_KEY:
        missing.append("PROWORKFLOW_API_KEY")
    if not PROWORKFLOW_USERNAME:
        missing.append("PROWORKFLOW_USERNAME")
    if not PROWORKFLOW_PASSWORD:
        missing.append("PROWORKFLOW_PASSWORD")
    return missing
