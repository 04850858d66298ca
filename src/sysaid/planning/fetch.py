"""Background dispatch of planning requests with a consume-once poll."""

from __future__ import annotations

import logging
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from ..models.llm_client import Purpose

LOGGER = logging.getLogger(__name__)

CHANNEL_CLOSED_MESSAGE = "plan request ended without producing a result"


class FetchInProgressError(RuntimeError):
    """Raised when a request is submitted while another is outstanding."""

    def __init__(self) -> None:
        super().__init__("a plan request is already running")


@dataclass(slots=True)
class FetchResult:
    """Finished request: exactly one of ``text`` and ``error`` is set."""

    purpose: Purpose
    text: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PlanFetcher:
    """Single-slot worker for planning-service calls.

    The worker only computes the response text.  All task-list mutation
    happens on the caller's thread after :meth:`poll` hands the result over.
    """

    def __init__(self, executor: Optional[ThreadPoolExecutor] = None) -> None:
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="sysaid-plan")
        self._future: Optional[Future[str]] = None
        self._purpose: Optional[Purpose] = None

    @property
    def busy(self) -> bool:
        return self._future is not None

    @property
    def purpose(self) -> Optional[Purpose]:
        return self._purpose

    def submit(self, purpose: Purpose, call: Callable[[], str]) -> None:
        if self._future is not None:
            raise FetchInProgressError()
        LOGGER.debug("Dispatching %s request", purpose)
        self._purpose = purpose
        self._future = self._executor.submit(call)

    def poll(self) -> Optional[FetchResult]:
        """Return the finished result once, or None while nothing is ready."""
        future = self._future
        if future is None or not future.done():
            return None
        purpose = self._purpose or "plan"
        self._future = None
        self._purpose = None
        try:
            text = future.result()
        except CancelledError:
            LOGGER.warning("%s request was cancelled before completing", purpose)
            return FetchResult(purpose=purpose, error=RuntimeError(CHANNEL_CLOSED_MESSAGE))
        except Exception as error:  # noqa: BLE001  # surfaced to the operator via FetchResult
            return FetchResult(purpose=purpose, error=error)
        if text is None:
            return FetchResult(purpose=purpose, error=RuntimeError(CHANNEL_CLOSED_MESSAGE))
        return FetchResult(purpose=purpose, text=text)

    def cancel(self) -> bool:
        """Cancel a request that has not started yet."""
        if self._future is None:
            return False
        return self._future.cancel()

    def shutdown(self) -> None:
        if self._future is not None:
            self._future.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)


__all__ = ["CHANNEL_CLOSED_MESSAGE", "FetchInProgressError", "FetchResult", "PlanFetcher"]
