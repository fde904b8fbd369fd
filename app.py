"""
ProWorkflow Dashboard - project health and assignment queue

Aggregates ProWorkflow projects, tasks and messages into a health view
(idle time, communication freshness, assignment overdue) with limited
write-back (status, dates, completion, request approval).
"""

import os
import atexit
import logging
from typing import Callable, Optional

from flask import Flask
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

import config
from proworkflow import proworkflow_request
from response_cache import ResponseCache
from routes import dashboard_bp

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# ============================================================================
# Scheduler Setup - Sweeps expired cache entries on an interval
# ============================================================================

def init_scheduler(cache: ResponseCache, interval_seconds: int = config.CACHE_SWEEP_INTERVAL_SECONDS):
    """Start the background scheduler that keeps the cache to its live working set."""
    scheduler = BackgroundScheduler(daemon=True)

    scheduler.add_job(
        func=cache.sweep_expired,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id='cache_sweep',
        name=f'Sweep expired cache entries every {interval_seconds}s',
        replace_existing=True,
    )

    scheduler.start()
    logger.info(f"Scheduler started - cache sweep every {interval_seconds}s")

    # Ensure scheduler shuts down cleanly
    atexit.register(lambda: scheduler.shutdown(wait=False))

    return scheduler


def create_app(request_fn: Optional[Callable] = None, cache: Optional[ResponseCache] = None,
               start_scheduler: bool = True) -> Flask:
    """Build the Flask app.

    The cache is created once here and shared by every request; pass
    ``request_fn``/``cache`` to swap in fakes for tests.
    """
    app = Flask(__name__)

    cache = cache if cache is not None else ResponseCache()
    app.config["DASHBOARD_CACHE"] = cache
    app.config["PROWORKFLOW_REQUEST"] = request_fn or proworkflow_request
    app.config["DEFAULT_TASK_PAGE_SIZE"] = config.DEFAULT_TASK_PAGE_SIZE

    app.register_blueprint(dashboard_bp)

    for name in config.missing_credentials():
        logger.warning(f"WARNING: {name} environment variable not set")

    if start_scheduler:
        app.extensions["cache_scheduler"] = init_scheduler(cache)

    logger.info(f"ProWorkflow dashboard ready - managers {config.RECOGNIZED_MANAGER_IDS}, "
                f"cache TTLs {config.CACHE_TTLS}")
    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    create_app().run(debug=True, port=port, host="127.0.0.1", use_reloader=False)
