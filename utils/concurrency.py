"""
Concurrency Helpers

Fan-out/fan-in primitive for independent units of analysis work, plus the
cancellation token that lets a caller abort an in-flight analysis.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


class AnalysisCancelled(Exception):
    """Raised when an analysis is aborted through its CancellationToken."""


class CancellationToken:
    """Thread-safe, one-way cancellation flag."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AnalysisCancelled("Analysis was cancelled")


def default_worker_count() -> int:
    return os.cpu_count() or 1


def check_cancelled(cancel_token: Optional[CancellationToken]) -> None:
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()


def parallel_map(func: Callable[[T], R],
                 items: Iterable[T],
                 max_workers: Optional[int] = None,
                 cancel_token: Optional[CancellationToken] = None) -> List[R]:
    """
    Apply ``func`` to every item on a thread pool and join.

    Every unit must be independent of the others. Results come back in
    submission order once all units have completed. If the token is
    cancelled, units that have not started are dropped and
    AnalysisCancelled is raised.

    Args:
        func: Pure function applied to each item
        items: Work units
        max_workers: Pool size (defaults to the processor count)
        cancel_token: Optional token checked before each unit starts

    Returns:
        List of results, one per item, in input order
    """

    items = list(items)
    check_cancelled(cancel_token)

    if not items:
        return []

    workers = min(max_workers or default_worker_count(), len(items))

    def run(item: T) -> R:
        check_cancelled(cancel_token)
        return func(item)

    if workers <= 1:
        return [run(item) for item in items]

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="composition") as executor:
        futures = [executor.submit(run, item) for item in items]
        try:
            return [future.result() for future in futures]
        except AnalysisCancelled:
            for future in futures:
                future.cancel()
            logger.debug(f"Cancelled parallel map over {len(items)} units")
            raise
