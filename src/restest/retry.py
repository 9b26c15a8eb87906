"""Retry/backoff helpers for deadline-bounded polling."""

from __future__ import annotations

import logging as py_logging
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import TypeVar

from restest.errors import OperationCancelledError, RetryTimeoutError

T = TypeVar("T")

logger = py_logging.getLogger(__name__)


class RecoverableError(Exception):
    """Transient failure that can be retried."""


class FatalError(Exception):
    """Non-recoverable failure that should stop immediately."""


@dataclass(frozen=True)
class RetryPolicy:
    initial_backoff_seconds: float = 0.05
    multiplier: float = 2.0
    max_backoff_seconds: float = 1.0

    def delays(self) -> Iterator[float]:
        backoff = min(self.initial_backoff_seconds, self.max_backoff_seconds)
        while True:
            yield backoff
            backoff = min(backoff * self.multiplier, self.max_backoff_seconds)


DEFAULT_POLICY = RetryPolicy()


def _cancelled(cancel_event: threading.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def run_with_retry(
    operation: Callable[[], T],
    *,
    timeout: float,
    policy: RetryPolicy = DEFAULT_POLICY,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    cancel_event: threading.Event | None = None,
) -> T:
    """Call ``operation`` until it returns or ``timeout`` seconds elapse.

    The operation asks for another attempt by raising ``RecoverableError``.
    The first attempt always runs, even with an already expired timeout.
    """
    deadline = clock() + timeout
    delays = policy.delays()
    attempt = 0
    last_error: RecoverableError | None = None

    while attempt == 0 or clock() < deadline:
        if _cancelled(cancel_event):
            raise OperationCancelledError("Retry loop cancelled.", hint=f"Stopped after {attempt} attempt(s).")
        attempt += 1
        try:
            return operation()
        except FatalError:
            raise
        except RecoverableError as exc:
            last_error = exc
            logger.debug("Retry attempt=%s failed: %s", attempt, exc)
        if clock() >= deadline:
            break
        pause = next(delays)
        if cancel_event is not None:
            cancel_event.wait(pause)
        else:
            sleep(pause)

    raise RetryTimeoutError(
        f"Timed out after {attempt} attempt(s) within {timeout:g}s.",
        hint=str(last_error) if last_error is not None else "",
        attempts=attempt,
    ) from last_error
