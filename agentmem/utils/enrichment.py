"""
Background enrichment of stored records.

Embeddings are attached after the primary write has been made durable. Each
task runs behind its own error boundary so a failing enrichment never affects
the write that scheduled it.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Set

from .logging_config import get_logger

logger = get_logger(__name__)


class EnrichmentQueue:
    """Fire-and-forget task runner with an optional synchronous mode."""

    def __init__(self, max_workers: int = 4, synchronous: bool = False):
        """
        Args:
            max_workers: Background threads
            synchronous: Run tasks inline on submit (tests and one-shot scripts)
        """
        self.synchronous = synchronous
        self._executor = None if synchronous else ThreadPoolExecutor(max_workers=max_workers,
                                                                     thread_name_prefix='enrichment')
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def _guarded(self, name: str, func: Callable, *args) -> None:
        try:
            func(*args)
        except Exception as e:
            logger.warning(f'Enrichment task {name} failed: {e}')

    def submit(self, name: str, func: Callable, *args) -> None:
        """Schedule func(*args); failures are logged and dropped."""
        if self.synchronous:
            self._guarded(name, func, *args)
            return

        future = self._executor.submit(self._guarded, name, func, *args)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: float = 30.0) -> None:
        """Wait for all scheduled tasks to finish."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
