"""
Parallel Fan-Out - Fixed-size worker pool over index ranges

Row-, column- and diagonal-independent kernels split ``[0, n)`` into
contiguous chunks. Every chunk writes only to its own output slice, so
the kernels need no locking.
"""

import os
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from .exceptions import OperationCancelled

logger = logging.getLogger(__name__)

# Chunks per worker; more than one keeps workers busy when chunk costs differ
CHUNKS_PER_WORKER = 4


def default_workers() -> int:
    """Number of worker threads used when none is configured."""
    return os.cpu_count() or 4


def partition(n_items: int, n_parts: int) -> List[range]:
    """
    Split ``range(n_items)`` into at most ``n_parts`` contiguous ranges.

    The ranges are disjoint, non-empty and cover every index exactly once.
    """
    if n_items <= 0:
        return []
    n_parts = max(1, min(n_parts, n_items))
    size, remainder = divmod(n_items, n_parts)
    parts = []
    start = 0
    for i in range(n_parts):
        stop = start + size + (1 if i < remainder else 0)
        parts.append(range(start, stop))
        start = stop
    return parts


def check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    """Raise OperationCancelled if cancellation was requested."""
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelled("Operation cancelled")


def fan_out(task: Callable[[int, int], None], n_items: int,
            max_workers: Optional[int] = None,
            cancel_event: Optional[threading.Event] = None) -> None:
    """
    Run ``task(start, stop)`` over disjoint chunks of ``[0, n_items)``.

    Args:
        task: Callable processing one chunk; must only write to output
              indices inside ``[start, stop)``
        n_items: Number of independent work items
        max_workers: Pool size (defaults to the CPU count)
        cancel_event: Checked before each chunk starts

    Raises:
        OperationCancelled: If ``cancel_event`` is set
        Exception: The first exception raised by any chunk, after all
                   chunks have finished
    """
    workers = max_workers or default_workers()
    chunks = partition(n_items, workers * CHUNKS_PER_WORKER)
    if not chunks:
        return

    def run(chunk: range) -> None:
        check_cancelled(cancel_event)
        task(chunk.start, chunk.stop)

    if workers == 1 or len(chunks) == 1:
        for chunk in chunks:
            run(chunk)
        return

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(run, chunk) for chunk in chunks]
    errors = [f.exception() for f in futures if f.exception() is not None]
    if errors:
        # real failures take precedence over cancellation
        errors.sort(key=lambda e: isinstance(e, OperationCancelled))
        raise errors[0]
