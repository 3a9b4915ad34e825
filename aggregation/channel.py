"""
aggregation/channel.py

Sequential request/response channel to an isolated aggregation worker.

The channel owns a single-worker executor (a process by default so large
batches never compete with the coordinating thread for the GIL) and
allows exactly one batch in flight. Callers block on :meth:`request`
until the batch result arrives, which is what paces the reader feeding it.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable

from aggregation.reducer import BatchRequest, reduce_batch
from aggregation.result import AggregationResult

logger = logging.getLogger(__name__)

EXECUTOR_PROCESS = "process"
EXECUTOR_THREAD = "thread"


class IngestionCancelledError(RuntimeError):
    """
    Raised when an ingestion run is cancelled; callers treat it as a normal stop.
    """


class CancellationToken:
    """
    One-shot cancellation flag scoped to a single ingestion run.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise IngestionCancelledError("Processing aborted")


def _build_executor(kind: str) -> Executor:
    if kind == EXECUTOR_PROCESS:
        return ProcessPoolExecutor(max_workers=1)
    if kind == EXECUTOR_THREAD:
        return ThreadPoolExecutor(max_workers=1, thread_name_prefix="aggregation")
    raise ValueError(f"Unknown aggregation executor kind: {kind!r}")


class AggregationChannel:
    """
    One isolated aggregation worker, one batch at a time.

    Use as a context manager so the worker is always released::

        with AggregationChannel(executor_kind="thread") as channel:
            result = channel.request(batch, token=token)
    """

    def __init__(
        self,
        *,
        executor_kind: str = EXECUTOR_PROCESS,
        poll_interval: float = 0.05,
        executor_factory: Callable[[], Executor] | None = None,
    ) -> None:
        self._executor_kind = executor_kind
        self._poll_interval = max(0.001, poll_interval)
        self._executor_factory = executor_factory
        self._executor: Executor | None = None
        self._in_flight: Future[AggregationResult] | None = None
        self._lock = threading.Lock()
        self.batches_completed = 0

    def __enter__(self) -> AggregationChannel:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> Executor:
        if self._executor is None:
            if self._executor_factory is not None:
                self._executor = self._executor_factory()
            else:
                self._executor = _build_executor(self._executor_kind)
        return self._executor

    def close(self) -> None:
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True, cancel_futures=True)
            logger.debug("Aggregation worker released after %d batches", self.batches_completed)

    def request(
        self,
        batch: BatchRequest,
        *,
        token: CancellationToken | None = None,
    ) -> AggregationResult:
        """
        Send one batch to the worker and wait for its result.

        Raises IngestionCancelledError if ``token`` is cancelled before the
        batch is sent, while it is in flight, or right after it returns.
        """

        if token is not None:
            token.raise_if_cancelled()

        with self._lock:
            if self._in_flight is not None:
                raise RuntimeError("An aggregation batch is already in flight.")
            future = self.open().submit(reduce_batch, batch)
            self._in_flight = future

        try:
            result = self._await(future, token)
        finally:
            with self._lock:
                self._in_flight = None

        if token is not None:
            token.raise_if_cancelled()
        self.batches_completed += 1
        return result

    def _await(
        self,
        future: Future[AggregationResult],
        token: CancellationToken | None,
    ) -> AggregationResult:
        while True:
            try:
                return future.result(timeout=self._poll_interval)
            except FutureTimeoutError:
                if token is not None and token.cancelled:
                    future.cancel()
                    raise IngestionCancelledError("Processing aborted") from None
