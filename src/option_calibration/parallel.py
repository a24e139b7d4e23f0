"""Ordered worker-pool execution for embarrassingly parallel pricing work.

Results always come back in submission order, whatever order the workers
finish in, so floating-point reductions over them are reproducible.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import CancelledError, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
import logging
import threading
import time
from typing import Generic, TypeVar

from .exceptions import NumericalError, PricingError, ValidationError

__all__ = ["TaskOutcome", "ordered_map"]

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True, slots=True)
class TaskOutcome(Generic[R]):
    """Value of one task, or the recoverable error that replaced it."""

    value: R | None = None
    error: NumericalError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _run_one(fn: Callable[[T], R], item: T) -> TaskOutcome[R]:
    try:
        return TaskOutcome(value=fn(item))
    except NumericalError as exc:
        return TaskOutcome(error=exc)


def ordered_map(
    fn: Callable[[T], R],
    items: Iterable[T],
    *,
    max_workers: int | None = None,
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
) -> list[TaskOutcome[R]]:
    """Apply ``fn`` to every item and return the outcomes in input order.

    Parameters
    ==========
    fn:
        Work function. :class:`NumericalError` raised by it is captured in the
        item's outcome; any other exception propagates to the caller.
    items:
        Work items.
    max_workers:
        ``None`` or 1 runs serially in the calling thread; larger values use a
        thread pool of that size.
    timeout:
        Wall-clock budget in seconds for the whole batch. Items not finished in
        time get a :class:`PricingError` outcome.
    cancel_event:
        When set, items that have not started yet get a :class:`PricingError`
        outcome instead of running.

    Notes
    =====
    A running item cannot be interrupted; after a timeout the pool stops
    scheduling new work and running items are abandoned in the background.
    """
    items = list(items)
    if max_workers is not None and max_workers < 1:
        raise ValidationError(f"max_workers must be >= 1, got {max_workers}")
    if timeout is not None and timeout <= 0:
        raise ValidationError(f"timeout must be positive, got {timeout}")
    deadline = None if timeout is None else time.monotonic() + timeout

    def _stopped() -> TaskOutcome | None:
        if cancel_event is not None and cancel_event.is_set():
            return TaskOutcome(error=PricingError("batch cancelled"))
        if deadline is not None and time.monotonic() > deadline:
            return TaskOutcome(error=PricingError(f"batch timed out after {timeout}s"))
        return None

    if max_workers is None or max_workers == 1:
        outcomes: list[TaskOutcome[R]] = []
        for item in items:
            outcomes.append(_stopped() or _run_one(fn, item))
        return outcomes

    def _guarded(item: T) -> TaskOutcome[R]:
        return _stopped() or _run_one(fn, item)

    executor = ThreadPoolExecutor(max_workers=max_workers)
    futures = [executor.submit(_guarded, item) for item in items]
    outcomes = []
    abandoned = False
    try:
        for future in futures:
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            try:
                outcomes.append(future.result(timeout=remaining))
            except (FutureTimeoutError, CancelledError):
                abandoned = True
                future.cancel()
                outcomes.append(
                    TaskOutcome(error=PricingError(f"batch timed out after {timeout}s"))
                )
    finally:
        executor.shutdown(wait=not abandoned, cancel_futures=True)
    if abandoned:
        logger.warning(
            "Batch timed out: %d of %d tasks without a result",
            sum(not o.ok for o in outcomes),
            len(items),
        )
    return outcomes
