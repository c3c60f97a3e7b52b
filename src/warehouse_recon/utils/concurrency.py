"""
Fan-out helper for independent read queries.

Stages of a reconciliation run are sequential; only queries that do not
depend on each other (e.g. statistics for source and target) run
concurrently, and they are all joined before the stage returns.
"""

import contextvars
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def fan_out(tasks: Dict[str, Callable[[], T]], max_workers: int = 4) -> Dict[str, T]:
    """
    Run named callables concurrently and join them.

    Each task runs in a copy of the caller's context, so correlation IDs
    reach worker-thread log records.

    Args:
        tasks: Task name -> zero-argument callable
        max_workers: Upper bound on worker threads

    Returns:
        Task name -> result

    Raises:
        Exception: The exception of the first failed task, in ``tasks``
            order, once every task has finished
    """
    if not tasks:
        return {}

    if len(tasks) == 1 or max_workers <= 1:
        return {name: task() for name, task in tasks.items()}

    results: Dict[str, T] = {}
    errors: Dict[str, BaseException] = {}

    with ThreadPoolExecutor(max_workers=min(max_workers, len(tasks)), thread_name_prefix="recon") as executor:
        future_map = {
            executor.submit(contextvars.copy_context().run, task): name
            for name, task in tasks.items()
        }
        for future in as_completed(future_map):
            name = future_map[future]
            try:
                results[name] = future.result()
            except Exception as e:
                logger.debug(f"Task {name} failed: {e}")
                errors[name] = e

    for name in tasks:
        if name in errors:
            raise errors[name]

    return results
