"""
Finite state machine for Wild Apricot asynchronous query results.

``Queued``/``Processing`` loop back to another poll; ``Complete``,
``Failed`` and ``TimedOut`` are terminal. The first status fetch happens
as soon as the result handle is known and the poller sleeps
``poll_interval_ms`` between subsequent fetches, so N polls cost N-1
sleeps. At most ``max_attempts`` status fetches are made.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping

from .errors import ApiErrorKind, ApiResult
from .transport import HttpExecutor


class PollState(str, enum.Enum):
    QUEUED = "Queued"
    PROCESSING = "Processing"
    COMPLETE = "Complete"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({PollState.COMPLETE, PollState.FAILED, PollState.TIMED_OUT})


@dataclass
class PollOutcome:
    state: PollState
    attempts: int
    items: List[Any] = field(default_factory=list)
    error_details: Any = None


def next_state(payload: Mapping[str, Any] | None) -> PollState:
    """Map a server status payload to the next machine state."""

    raw_state = (payload or {}).get("State")
    if raw_state == PollState.COMPLETE.value:
        return PollState.COMPLETE
    if raw_state == PollState.FAILED.value:
        return PollState.FAILED
    if raw_state == PollState.QUEUED.value:
        return PollState.QUEUED
    # Processing and any state the server adds later keep the loop alive.
    return PollState.PROCESSING


class AsyncQueryPoller:
    """Poll a result URL until the query completes, fails, or runs out of attempts."""

    def __init__(
        self,
        executor: HttpExecutor,
        *,
        poll_interval_ms: int = 2000,
        max_attempts: int = 60,
        sleep_fn: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.executor = executor
        self.poll_interval_ms = poll_interval_ms
        self.max_attempts = max(1, int(max_attempts))
        self.sleep = sleep_fn
        self.logger = logger or logging.getLogger(__name__)

    def run(self, result_url: str) -> tuple[PollOutcome, ApiResult[Any] | None]:
        """
        Drive the state machine. Returns the final outcome and, when a status
        fetch itself failed, the failing result.
        """

        outcome = PollOutcome(state=PollState.QUEUED, attempts=0)
        while not outcome.state.is_terminal:
            if outcome.attempts >= self.max_attempts:
                outcome.state = PollState.TIMED_OUT
                break
            if outcome.attempts > 0:
                self.sleep(self.poll_interval_ms / 1000.0)
            outcome.attempts += 1

            response = self.executor.request("GET", result_url)
            if not response.ok:
                return outcome, response

            payload = response.value if isinstance(response.value, Mapping) else {}
            outcome.state = next_state(payload)
            self.logger.debug(
                "Async query status",
                extra={"wa_async_state": outcome.state.value, "wa_async_attempt": outcome.attempts},
            )
            if outcome.state is PollState.COMPLETE:
                outcome.items = list(payload.get("Contacts") or payload.get("Items") or [])
            elif outcome.state is PollState.FAILED:
                outcome.error_details = payload.get("ErrorDetails")
        return outcome, None

    def poll(self, result_url: str) -> ApiResult[List[Any]]:
        outcome, failed_fetch = self.run(result_url)
        if failed_fetch is not None:
            return ApiResult(error=failed_fetch.error)
        if outcome.state is PollState.COMPLETE:
            return ApiResult.success(outcome.items)
        if outcome.state is PollState.FAILED:
            return ApiResult.failure(
                ApiErrorKind.ASYNC_FAILED,
                f"Async query failed: {outcome.error_details or 'no details provided'}",
                details=outcome.error_details,
            )
        return ApiResult.failure(
            ApiErrorKind.ASYNC_TIMEOUT,
            f"Async query timed out after {outcome.attempts} attempts",
        )


__all__ = ["AsyncQueryPoller", "PollOutcome", "PollState", "TERMINAL_STATES", "next_state"]
