"""Client-side polling of a job until it reaches a terminal state.

The poller adapts its interval to response latency, tolerates the job not
being visible yet (read-after-write lag), drops into an offline mode with
connectivity pings when the network goes away, and gives up after a fixed
number of polls. Timing functions are injectable so tests run instantly.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx

from tripgen.client.http import StatusResponse

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Your itinerary is still being generated, but it's taking longer than usual."

STATUS_MESSAGES = {
    "queued": "Your trip is in our queue. We'll begin planning shortly...",
    "processing": "Creating your personalized travel experience...",
    "completed": "Your itinerary is ready!",
    "failed": "The itinerary generation failed. Please try again.",
    "not_found": "Getting everything ready for your trip...",
}
DEFAULT_STATUS_MESSAGE = "Planning your perfect adventure..."
OFFLINE_MESSAGE = "You appear to be offline. We'll resume as soon as your connection is back."


class PollerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    OFFLINE = "offline"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in (PollerState.COMPLETED, PollerState.FAILED, PollerState.CANCELLED)


class StatusTransport(Protocol):
    async def fetch_status(self, job_id: str) -> StatusResponse: ...

    async def ping(self) -> bool: ...


@dataclass
class PollerConfig:
    interval_s: float = 3.0
    max_polls: int = 120
    max_not_found: int = 20
    not_found_base_s: float = 1.0
    not_found_factor: float = 1.5
    not_found_cap_s: float = 10.0
    max_consecutive_errors: int = 5
    slow_response_s: float = 1.5
    interval_growth: float = 1.25
    max_interval_factor: float = 2.5
    mobile_floor_factor: float = 1.5
    offline_base_s: float = 1.0
    offline_cap_s: float = 30.0


def status_message(status: Optional[str]) -> str:
    """User-facing text for a job status."""
    return STATUS_MESSAGES.get(status or "", DEFAULT_STATUS_MESSAGE)


def progress_percent(poll_count: int, trip_days: int = 5, interval_s: float = 3.0) -> int:
    """Eased progress estimate; longer trips are expected to take longer (30-60 s)."""
    expected_seconds = min(max(30, trip_days * 5), 60)
    expected_polls = expected_seconds / interval_s
    progress = min(poll_count / expected_polls, 0.99)
    if progress < 0.5:
        eased = 2 * progress * progress
    else:
        eased = 1 - (-2 * progress + 2) ** 2 / 2
    return round(eased * 100)


async def _call(callback: Optional[Callable], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class JobStatusPoller:
    """Polls one job. ``await poller.run()`` returns the state it stopped in."""

    def __init__(
        self,
        job_id: str,
        transport: StatusTransport,
        *,
        config: Optional[PollerConfig] = None,
        on_complete: Optional[Callable[[Any], Any]] = None,
        on_error: Optional[Callable[[str], Any]] = None,
        on_timeout: Optional[Callable[[str], Any]] = None,
        on_state_change: Optional[Callable[["PollerState"], Any]] = None,
        is_mobile: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not job_id:
            raise ValueError("job_id is required")
        self.job_id = job_id
        self._transport = transport
        self.config = config or PollerConfig()
        self._on_complete = on_complete
        self._on_error = on_error
        self._on_timeout = on_timeout
        self._on_state_change = on_state_change
        self.is_mobile = is_mobile
        self._sleep = sleep
        self._clock = clock

        self.state = PollerState.IDLE
        self.interval = self._interval_floor()
        self.poll_count = 0
        self.not_found_count = 0
        self.consecutive_errors = 0
        self.last_status: Optional[str] = None
        self.result: Any = None
        self.error: Optional[str] = None
        self.message = status_message("queued")
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    async def __aenter__(self) -> "JobStatusPoller":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.cancel()

    def _interval_floor(self) -> float:
        factor = self.config.mobile_floor_factor if self.is_mobile else 1.0
        return self.config.interval_s * factor

    def _adapt_interval(self, latency: float) -> None:
        ceiling = self.config.interval_s * self.config.max_interval_factor
        if latency > self.config.slow_response_s:
            self.interval = min(self.interval * self.config.interval_growth, ceiling)
        else:
            self.interval = max(self.interval / self.config.interval_growth, self._interval_floor())

    def not_found_backoff(self, attempt: int) -> float:
        delay = self.config.not_found_base_s * self.config.not_found_factor ** (attempt - 1)
        return min(delay, self.config.not_found_cap_s)

    def offline_backoff(self, attempt: int) -> float:
        return min(self.config.offline_base_s * 2**attempt, self.config.offline_cap_s)

    async def _set_state(self, state: PollerState) -> None:
        if state == self.state:
            return
        logger.debug("Job %s poller: %s -> %s", self.job_id, self.state.value, state.value)
        self.state = state
        await _call(self._on_state_change, state)

    async def _finish_failed(self, message: str) -> None:
        self.error = message
        self.message = status_message("failed")
        await self._set_state(PollerState.FAILED)
        await _call(self._on_error, message)

    async def _go_offline(self) -> None:
        await self._set_state(PollerState.OFFLINE)
        self.message = OFFLINE_MESSAGE
        attempt = 0
        while True:
            await self._sleep(self.offline_backoff(attempt))
            try:
                online = await self._transport.ping()
            except Exception as exc:
                logger.debug("Job %s poller: ping failed: %s", self.job_id, exc)
                online = False
            if online:
                logger.info("Job %s poller: connection restored", self.job_id)
                await self._set_state(PollerState.POLLING)
                return
            attempt += 1

    async def _poll_once(self) -> None:
        started = self._clock()
        try:
            response = await self._transport.fetch_status(self.job_id)
        except (httpx.TransportError, ConnectionError, OSError) as exc:
            logger.warning("Job %s poller: network error: %s", self.job_id, exc)
            await self._go_offline()
            return
        except Exception as exc:
            self.poll_count += 1
            self.consecutive_errors += 1
            logger.warning(
                "Job %s poller: error %d/%d: %s",
                self.job_id, self.consecutive_errors, self.config.max_consecutive_errors, exc,
            )
            if self.consecutive_errors >= self.config.max_consecutive_errors:
                await self._finish_failed(str(exc) or "Failed to check job status")
            else:
                self.message = "Connection issue. Retrying..."
            return

        self._adapt_interval(self._clock() - started)
        self.poll_count += 1
        self.consecutive_errors = 0

        if not response.found:
            self.not_found_count += 1
            self.message = status_message("not_found")
            if self.not_found_count >= self.config.max_not_found:
                await self._finish_failed(
                    f"Job {self.job_id} not found after {self.config.max_not_found} attempts."
                )
                return
            await self._sleep(self.not_found_backoff(self.not_found_count))
            return

        self.not_found_count = 0
        self.last_status = response.status
        self.message = status_message(response.status)
        if response.status == "completed":
            self.result = response.result
            await self._set_state(PollerState.COMPLETED)
            await _call(self._on_complete, response.result)
        elif response.status == "failed":
            await self._finish_failed(response.error or "Job failed")

    async def _loop(self) -> PollerState:
        try:
            await self._set_state(PollerState.POLLING)
            while not self.state.is_final:
                if self.poll_count >= self.config.max_polls:
                    self.message = TIMEOUT_MESSAGE
                    await self._set_state(PollerState.TIMED_OUT)
                    await _call(self._on_timeout, TIMEOUT_MESSAGE)
                    break
                await self._sleep(self.interval)
                await self._poll_once()
        except asyncio.CancelledError:
            if not self._cancelled:
                raise
            await self._set_state(PollerState.CANCELLED)
        return self.state

    def start(self) -> asyncio.Task:
        """Start polling in a background task. Calling again after a timeout keeps waiting."""
        if self._task is not None and not self._task.done():
            return self._task
        if self.state.is_final:
            raise RuntimeError(f"Poller for job {self.job_id} already {self.state.value}")
        if self.state == PollerState.TIMED_OUT:
            logger.info("Job %s poller: continuing to wait", self.job_id)
            self.poll_count = 0
        self._task = asyncio.create_task(self._loop())
        return self._task

    async def run(self) -> PollerState:
        if self.state.is_final:
            return self.state
        return await self.start()

    async def cancel(self) -> None:
        """Stop polling and cancel any pending sleep."""
        if self._task is None or self._task.done():
            if not self.state.is_final and self.state != PollerState.TIMED_OUT:
                self._cancelled = True
                await self._set_state(PollerState.CANCELLED)
            return
        self._cancelled = True
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
