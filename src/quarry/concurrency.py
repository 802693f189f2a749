"""Cancellation and single-worker query dispatch.

Interactive queries run one at a time on a dedicated worker thread. Each new
submission cancels the one before it, so typing quickly never queues up a
backlog of stale searches.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Generic, TypeVar

from quarry.exceptions import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a worker."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to *timeout* seconds; returns True early if cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation was cancelled")


class QueryDispatcher(Generic[T]):
    """Run *handler* for the latest submitted query on a single worker thread.

    Every ``submit()`` cancels the token of the previous submission. Unless
    ``immediate=True``, dispatch waits ``debounce`` seconds first and gives up
    if superseded meanwhile. Superseded or cancelled queries resolve to None.
    """

    def __init__(
        self,
        handler: Callable[[str, CancellationToken], T],
        debounce: float = 0.3,
    ) -> None:
        self._handler = handler
        self._debounce = debounce
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="quarry-query")
        self._lock = threading.Lock()
        self._token: CancellationToken | None = None

    def submit(self, query: str, immediate: bool = False) -> Future[T | None]:
        with self._lock:
            if self._token is not None:
                self._token.cancel()
            token = CancellationToken()
            self._token = token
        delay = 0.0 if immediate else self._debounce
        return self._executor.submit(self._run, query, token, delay)

    def cancel(self) -> None:
        """Cancel whatever query is pending or running."""
        with self._lock:
            if self._token is not None:
                self._token.cancel()

    def close(self) -> None:
        self.cancel()
        self._executor.shutdown(wait=True)

    def __enter__(self) -> QueryDispatcher[T]:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _run(self, query: str, token: CancellationToken, delay: float) -> T | None:
        if delay > 0 and token.wait(delay):
            logger.debug("Query superseded during debounce: %r", query)
            return None
        if token.cancelled:
            return None
        try:
            result = self._handler(query, token)
        except OperationCancelled:
            logger.debug("Query cancelled: %r", query)
            return None
        if token.cancelled:
            return None
        return result
