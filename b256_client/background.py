from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)


class BackgroundScope:
    """Owner of fire-and-forget work (session cleanup, cookie persistence).

    Work is best-effort: anything still queued when the process exits without
    ``close()`` is lost.
    """

    def __init__(self, name: str = "b256-background", max_workers: int = 2):
        self._name = name
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    def launch(self, fn: Callable[..., Any], *args: Any) -> Future:
        with self._lock:
            if self._closed:
                future: Future = Future()
                future.set_exception(RuntimeError(f"{self._name} is closed"))
                logger.warning("Dropped background task %s: scope closed", _describe(fn))
                return future
            future = self._executor.submit(fn, *args)
            self._pending.add(future)

        future.add_done_callback(lambda done: self._on_done(fn, done))
        return future

    def _on_done(self, fn: Callable[..., Any], future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning("Background task %s failed: %s", _describe(fn), error)

    def pending(self) -> list[Future]:
        with self._lock:
            return list(self._pending)

    def close(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)


def _describe(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__qualname__", None) or repr(fn)
