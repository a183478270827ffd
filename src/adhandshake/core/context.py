"""
adhandshake Request Context

Request-scoped deadline and cancellation signal.

The blocking steps of the handshake (directory login and persistence) run
through ``RequestContext.run`` so that a request-level timeout or an
explicit cancellation aborts the pipeline with ``RequestTimeout`` instead
of hanging on external I/O.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional, TypeVar

import attrs
import structlog

from adhandshake.core.exceptions import RequestTimeout

logger = structlog.get_logger()

T = TypeVar("T")

# Granularity of cancellation checks while waiting on a blocking step.
_POLL_INTERVAL = 0.05


@attrs.define
class RequestContext:
    """
    Deadline and cancellation for one incoming request.

    Attributes:
        deadline: Absolute ``time.monotonic()`` value, or None for no limit
        cancelled: Event set by the caller to abort the request
    """

    deadline: Optional[float] = None
    cancelled: threading.Event = attrs.Factory(threading.Event)

    @classmethod
    def with_timeout(cls, seconds: Optional[float]) -> RequestContext:
        """Create a context expiring ``seconds`` from now."""
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self.cancelled.set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (never negative), or None."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def is_bounded(self) -> bool:
        return self.deadline is not None

    def check(self, step: str) -> None:
        """
        Raise RequestTimeout if the request was cancelled or expired.

        Args:
            step: Name of the step about to run, for the error message
        """
        if self.cancelled.is_set():
            raise RequestTimeout(f"request cancelled before {step}")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise RequestTimeout(f"request deadline exceeded before {step}")

    def run(self, step: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run a blocking call, bounded by the deadline and cancellation.

        The call runs on a single worker thread. If the deadline passes or
        the request is cancelled first, RequestTimeout is raised and the
        worker's result is discarded.

        Exceptions raised by ``fn`` propagate unchanged.
        """
        self.check(step)

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"adhandshake-{step}")
        try:
            future = executor.submit(fn, *args, **kwargs)
            while True:
                remaining = self.remaining()
                interval = _POLL_INTERVAL if remaining is None else min(_POLL_INTERVAL, remaining)
                done, _ = wait([future], timeout=interval, return_when=FIRST_COMPLETED)
                if done:
                    return future.result()
                if self.cancelled.is_set():
                    logger.warning("request_cancelled", step=step)
                    raise RequestTimeout(f"request cancelled during {step}")
                remaining = self.remaining()
                if remaining is not None and remaining <= 0:
                    logger.warning("request_deadline_exceeded", step=step)
                    raise RequestTimeout(f"request deadline exceeded during {step}")
        finally:
            executor.shutdown(wait=False)
