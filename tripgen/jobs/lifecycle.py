"""Job lifecycle: submit, background generation, completion and status reads."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from tripgen.config import Settings, settings as default_settings
from tripgen.generation.invoker import GenerationError, GenerationInvoker
from tripgen.generation.policy import TimeoutContext
from tripgen.generation.prompts import build_prompt
from tripgen.jobs.dispatcher import JobDispatcher
from tripgen.jobs.ids import generate_job_id
from tripgen.jobs.models import (
    JobStatus,
    NormalizedResult,
    RawResult,
    StatusResult,
    TripRequest,
)
from tripgen.normalizer.itinerary import normalize_raw_output
from tripgen.normalizer.json_repair import ItineraryParseError
from tripgen.storage.job_store import JobStore

logger = logging.getLogger(__name__)

SHUTDOWN_MESSAGE = "Service restarted before generation finished. Please try again."


class JobCreationError(Exception):
    """The job record could not be created and read back."""


class JobSubmissionError(Exception):
    """The job was created but could not be moved to processing."""

    def __init__(self, job_id: str, message: str):
        super().__init__(message)
        self.job_id = job_id


@dataclass(frozen=True)
class GenerationTask:
    job_id: str
    prompt: str
    context: TimeoutContext


class JobLifecycleManager:
    """Owns every status transition of a job.

    ``submit`` returns as soon as the job is durable and queued; the dispatcher
    later calls ``run`` for the task, and ``handle_worker_error`` for anything
    that escapes it.
    """

    def __init__(
        self,
        store: JobStore,
        invoker: GenerationInvoker,
        dispatcher: Optional[JobDispatcher] = None,
        settings: Settings = default_settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.invoker = invoker
        self.dispatcher = dispatcher
        self._settings = settings
        self._sleep = sleep

    def set_dispatcher(self, dispatcher: JobDispatcher) -> None:
        self.dispatcher = dispatcher

    async def _create_and_verify(self, job_id: str) -> None:
        attempts = max(1, self._settings.create_verify_attempts)
        for attempt in range(attempts):
            created = await self.store.create(job_id)
            if created:
                status = await self.store.get_status(job_id)
                if status.found:
                    logger.info("Job %s created and verified (attempt %d)", job_id, attempt + 1)
                    return
                logger.warning("Job %s not readable after create (attempt %d/%d)", job_id, attempt + 1, attempts)
            else:
                logger.warning("Job %s create failed (attempt %d/%d)", job_id, attempt + 1, attempts)
            if attempt < attempts - 1:
                await self._sleep(self._settings.store_retry_base_ms * 2**attempt / 1000)
        raise JobCreationError(f"Failed to create job {job_id} after {attempts} attempts")

    async def submit(self, request: TripRequest, user_agent: Optional[str] = None) -> str:
        """Create a job for ``request`` and queue its generation. Returns the job id."""
        if self.dispatcher is None:
            raise RuntimeError("Lifecycle manager has no dispatcher")

        job_id = generate_job_id()
        prompt = build_prompt(request)
        context = TimeoutContext.build(prompt, user_agent=user_agent, settings=self._settings)
        logger.info("Submitting job %s for %s (%d days)", job_id, request.destination, request.trip_days)

        await self._create_and_verify(job_id)

        if not await self.store.update_status(job_id, JobStatus.PROCESSING, prompt=prompt):
            message = "Failed to start itinerary generation"
            logger.error("Job %s: could not mark processing", job_id)
            await self.fail(job_id, message)
            raise JobSubmissionError(job_id, message)

        await self.dispatcher.submit(GenerationTask(job_id=job_id, prompt=prompt, context=context))
        return job_id

    async def run(self, task: GenerationTask) -> None:
        """Worker entry point: generate, then complete or fail the job."""
        logger.info("Job %s: generation started", task.job_id)
        try:
            raw = await self.invoker.generate(task.prompt, task.context)
        except GenerationError as exc:
            logger.warning("Job %s: generation failed (%s)", task.job_id, exc.kind.value)
            await self.fail(task.job_id, exc.user_message)
            return
        except Exception as exc:
            logger.exception("Job %s: unexpected generation error", task.job_id)
            await self.fail(task.job_id, f"Unexpected error: {exc}")
            return
        await self.complete(task.job_id, raw)

    async def handle_worker_error(self, task: GenerationTask, exc: BaseException) -> None:
        """Catch-all for exceptions escaping ``run``."""
        await self.fail(task.job_id, f"Unexpected error: {exc}")

    async def abandon(self, task: GenerationTask) -> None:
        """Fail a job whose generation was cut short by shutdown."""
        logger.warning("Job %s abandoned on shutdown", task.job_id)
        await self.fail(task.job_id, SHUTDOWN_MESSAGE)

    async def complete(self, job_id: str, raw_output: str) -> bool:
        """Store the generation output. Never raises."""
        try:
            if not self._settings.normalize_on_completion:
                result = RawResult(raw=raw_output)
            else:
                result = NormalizedResult(itinerary=normalize_raw_output(raw_output))
        except ItineraryParseError as exc:
            logger.warning("Job %s: unparseable output: %s", job_id, exc)
            return await self.fail(job_id, f"Failed to parse itinerary JSON: {exc}")
        except Exception as exc:
            logger.exception("Job %s: output could not be processed", job_id)
            return await self.fail(job_id, f"Error processing response: {exc}")

        try:
            ok = await self.store.update_status(job_id, JobStatus.COMPLETED, result=result)
        except Exception:
            logger.exception("Job %s: failed to store completed result", job_id)
            return False
        if ok:
            logger.info("Job %s completed", job_id)
        else:
            logger.error("Job %s: store rejected completed status", job_id)
        return ok

    async def fail(self, job_id: str, message: str) -> bool:
        """Mark the job failed. Never raises."""
        try:
            ok = await self.store.update_status(job_id, JobStatus.FAILED, error=message)
        except Exception:
            logger.exception("Job %s: failed to store failure '%s'", job_id, message)
            return False
        logger.info("Job %s failed: %s", job_id, message)
        return ok

    async def get_status(self, job_id: str) -> StatusResult:
        """Read a job's status, normalizing raw results on the way out."""
        status = await self.store.get_status(job_id)
        if status.status != JobStatus.COMPLETED.value or not isinstance(status.result, RawResult):
            return status
        try:
            itinerary = normalize_raw_output(status.result.raw)
        except ItineraryParseError as exc:
            logger.warning("Job %s: raw result not parseable on read: %s", job_id, exc)
            return StatusResult(status=JobStatus.FAILED.value, error=f"Error processing response: {exc}")
        return StatusResult(status=status.status, result=NormalizedResult(itinerary=itinerary))
