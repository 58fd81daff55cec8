"""Worker thread pool for dependency scans and compiles.

Each unit of work writes only the files it owns (one record, or one
object), so units run without any locking beyond the scheduler's.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerPool:
    """ThreadPoolExecutor wrapper with explicit shutdown semantics.

    Leaving the ``with`` block because of an exception cancels queued work;
    units already running always finish.

    Args:
        max_workers: Maximum concurrent units
        name: Thread name prefix
    """

    def __init__(self, max_workers: int, name: str = "appmake") -> None:
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix=name)
        self._shutdown = False
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., T], *args: Any) -> "Future[T]":
        """Queue one unit of work.

        Raises:
            RuntimeError: If the pool has been shut down
        """
        with self._lock:
            if self._shutdown:
                raise RuntimeError("WorkerPool has been shut down")
        return self._executor.submit(fn, *args)

    def shutdown(self, cancel_pending: bool = False) -> None:
        """Stop accepting work and wait for running units."""
        with self._lock:
            self._shutdown = True
        self._executor.shutdown(wait=True, cancel_futures=cancel_pending)

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is not None:
            logger.debug("Cancelling queued work after %s", exc_type.__name__)
        self.shutdown(cancel_pending=exc_type is not None)
