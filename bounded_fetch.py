"""
Bounded concurrent fan-out for upstream calls.

ProWorkflow only offers single-record endpoints, so a dashboard view turns
into dozens of detail/message requests. ``run_bounded`` runs them on a
worker pool with a hard ceiling on how many are in flight at once.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Sequence

logger = logging.getLogger(__name__)


def run_bounded(producers: Sequence[Callable[[], Any]], limit: int, fallback: Any = None) -> List[Any]:
    """Run zero-argument callables with at most ``limit`` in flight.

    A fixed pool of ``limit`` workers pulls producers off a shared queue, so
    a slot is reused the moment its call finishes instead of waiting for a
    whole batch. Results come back in input order, one per producer.

    Producers are expected to turn their own failures into a fallback value.
    One that raises anyway still gets its slot: the exception is logged and
    ``fallback`` is returned in its place, and its siblings keep running.

    No timeout is enforced here; a producer that never returns holds one
    worker for good and the others carry on.
    """
    producers = list(producers)
    if not producers:
        return []
    if limit < 1:
        raise ValueError(f"Concurrency limit must be at least 1, got {limit}")

    workers = min(limit, len(producers))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="upstream-fetch") as executor:
        futures = [executor.submit(producer) for producer in producers]

        results = []
        for index, future in enumerate(futures):
            try:
                results.append(future.result())
            except Exception as e:
                logger.error(f"Fetch task {index} raised instead of returning a fallback: {e}", exc_info=True)
                results.append(fallback)

    logger.debug(f"Completed {len(results)} fetch tasks with {workers} workers")
    return results
