"""Job state persistence: Supabase-backed store with an in-memory fallback.

Both stores implement ``JobStore``. ``SupabaseJobStore`` keeps its own
``InMemoryJobStore`` and switches to it when the backend is unreachable:
a network-class failure trips a circuit breaker on the store instance, after
which every operation stays in memory until a recovery probe succeeds.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
from supabase import Client

from tripgen.config import Settings
from tripgen.jobs.ids import storage_key
from tripgen.jobs.models import (
    InvalidTransitionError,
    JobRecord,
    JobStatus,
    NormalizedResult,
    RawResult,
    StatusResult,
    parse_result,
    predecessors,
    utcnow,
)

logger = logging.getLogger(__name__)

ResultVariant = Union[RawResult, NormalizedResult]

JOBS_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS jobs (
  id BIGINT PRIMARY KEY,
  job_id TEXT,
  status TEXT NOT NULL,
  prompt TEXT,
  result JSONB,
  error TEXT,
  created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
  updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
);
"""

_NETWORK_ERROR_MARKERS = (
    "fetch failed",
    "network error",
    "connection reset",
    "connection refused",
    "timed out",
    "name or service not known",
    "temporary failure in name resolution",
)


def is_network_error(exc: BaseException) -> bool:
    """True for connectivity-class failures (timeouts, resets, DNS), following the cause chain."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, (httpx.TransportError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
            return True
        if isinstance(current, OSError):
            return True
        message = str(current).lower()
        if any(marker in message for marker in _NETWORK_ERROR_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


class JobStore(ABC):
    """Abstract interface for job persistence."""

    name: str = "abstract"

    @abstractmethod
    async def create(self, job_id: str) -> bool:
        """Insert a new ``queued`` record. Creating an existing id is a no-op."""
        ...

    @abstractmethod
    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        result: Optional[ResultVariant] = None,
        error: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> bool:
        """Write a status and optional payload fields. Returns False if nothing was written."""
        ...

    @abstractmethod
    async def get_status(self, job_id: str) -> StatusResult:
        """Look up a job; unknown ids yield the ``not_found`` sentinel."""
        ...

    @abstractmethod
    async def list_recent(self, limit: int = 50) -> List[JobRecord]:
        ...

    @abstractmethod
    async def count_by_status(self) -> Dict[str, int]:
        ...

    async def verify(self) -> None:
        """Check the backend at startup. Default: nothing to check."""

    def health(self) -> Dict[str, Any]:
        return {"backend": self.name}


class InMemoryJobStore(JobStore):
    """Process-local job store.

    Not locked: all access happens on the event loop thread.
    """

    name = "memory"

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def get(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get(job_id)

    async def create(self, job_id: str) -> bool:
        if job_id not in self._jobs:
            self._jobs[job_id] = JobRecord(id=job_id)
            logger.info("Created in-memory job %s", job_id)
        return True

    async def update_status(self, job_id, status, *, result=None, error=None, prompt=None) -> bool:
        record = self._jobs.get(job_id)
        if record is None:
            # Upsert: the record starts life at the written status
            record = JobRecord(id=job_id, status=status, prompt=prompt, result=result, error=error)
            self._jobs[job_id] = record
            logger.info("Updated in-memory job %s status to %s (new record)", job_id, status.value)
            return True
        try:
            record.transition(status, result=result, error=error, prompt=prompt)
        except InvalidTransitionError as exc:
            logger.warning("Rejected status write: %s", exc)
            return False
        logger.info("Updated in-memory job %s status to %s", job_id, status.value)
        return True

    async def get_status(self, job_id: str) -> StatusResult:
        record = self._jobs.get(job_id)
        if record is None:
            return StatusResult.not_found()
        return StatusResult.from_record(record)

    async def list_recent(self, limit: int = 50) -> List[JobRecord]:
        records = sorted(self._jobs.values(), key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    async def count_by_status(self) -> Dict[str, int]:
        return dict(Counter(r.status.value for r in self._jobs.values()))

    def health(self) -> Dict[str, Any]:
        return {"backend": self.name, "jobs": len(self._jobs)}


class _DurableOperationFailed(Exception):
    def __init__(self, operation: str, cause: BaseException, network: bool):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.network = network


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _record_from_row(row: Dict[str, Any]) -> JobRecord:
    data: Dict[str, Any] = {
        "id": row.get("job_id") or str(row.get("id")),
        "status": row.get("status") or JobStatus.QUEUED.value,
        "prompt": row.get("prompt"),
        "result": parse_result(row.get("result")),
        "error": row.get("error"),
    }
    for field in ("created_at", "updated_at"):
        if row.get(field):
            data[field] = row[field]
    return JobRecord(**data)


class SupabaseJobStore(JobStore):
    """Durable store on a Supabase ``jobs`` table, keyed by the numeric storage key.

    Every durable call runs in the default executor (the supabase client is
    blocking) and is retried with exponential backoff. When a network-class
    error is detected the breaker trips and all further operations use the
    in-memory fallback. With ``store_health_check_interval_s > 0`` the next
    operation after that interval probes the backend and re-enables it on
    success; with 0 the fallback lasts for the life of the process.
    """

    name = "supabase"

    def __init__(
        self,
        client_factory: Callable[[], Client],
        settings: Settings,
        fallback: Optional[InMemoryJobStore] = None,
        sleep: Callable = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client_factory = client_factory
        self._table = settings.supabase_jobs_table
        self._max_retries = max(1, settings.store_max_retries)
        self._retry_base_ms = settings.store_retry_base_ms
        self._health_check_interval = settings.store_health_check_interval_s
        self._memory = fallback if fallback is not None else InMemoryJobStore()
        self._sleep = sleep
        self._clock = clock
        self._disabled_at: Optional[float] = None
        self._disabled_reason: Optional[str] = None

    @property
    def durable_enabled(self) -> bool:
        return self._disabled_at is None

    @property
    def fallback(self) -> InMemoryJobStore:
        return self._memory

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def _trip(self, exc: BaseException) -> None:
        if self._disabled_at is None:
            logger.warning("Disabling Supabase job store due to connection issues: %s", exc)
        self._disabled_at = self._clock()
        self._disabled_reason = str(exc)

    async def _durable_available(self) -> bool:
        if self._disabled_at is None:
            return True
        if self._health_check_interval <= 0:
            return False
        if self._clock() - self._disabled_at < self._health_check_interval:
            return False

        try:
            await self._run(lambda c: c.table(self._table).select("id").limit(1).execute())
        except Exception as exc:
            logger.info("Supabase health probe failed, staying on in-memory store: %s", exc)
            self._disabled_at = self._clock()
            return False

        logger.info("Supabase health probe succeeded, re-enabling durable job store")
        self._disabled_at = None
        self._disabled_reason = None
        return True

    # ------------------------------------------------------------------
    # Durable call plumbing
    # ------------------------------------------------------------------

    async def _run(self, op: Callable[[Client], Any]) -> Any:
        client = self._client_factory()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, op, client)

    async def _with_retries(self, operation: str, op: Callable[[Client], Any]) -> Any:
        last_exc: Optional[BaseException] = None
        for attempt in range(self._max_retries):
            try:
                return await self._run(op)
            except Exception as exc:
                last_exc = exc
                if is_network_error(exc):
                    self._trip(exc)
                    raise _DurableOperationFailed(operation, exc, network=True) from exc
                logger.warning(
                    "Supabase %s failed (attempt %d/%d): %s",
                    operation, attempt + 1, self._max_retries, exc,
                )
                if attempt + 1 < self._max_retries:
                    await self._sleep(self._retry_base_ms * (2 ** attempt) / 1000.0)
        logger.error("Supabase %s failed after %d attempts: %s", operation, self._max_retries, last_exc)
        raise _DurableOperationFailed(operation, last_exc, network=False) from last_exc

    # ------------------------------------------------------------------
    # JobStore
    # ------------------------------------------------------------------

    async def verify(self) -> None:
        """Check connectivity and that the jobs table exists; log the DDL if it does not."""
        try:
            await self._run(lambda c: c.table(self._table).select("id").limit(1).execute())
        except Exception as exc:
            if is_network_error(exc):
                self._trip(exc)
                return
            logger.error("Supabase connection verification failed: %s", exc)
            if "42P01" in str(exc):
                logger.error("Create the jobs table with:%s", JOBS_TABLE_DDL)
            return
        logger.info("Supabase connection verified, table '%s' reachable", self._table)

    async def create(self, job_id: str) -> bool:
        key = storage_key(job_id)
        logger.info("Creating job %s (storage key %s)", job_id, key)

        if await self._durable_available():
            now = _iso(utcnow())
            row = {
                "id": key,
                "job_id": job_id,
                "status": JobStatus.QUEUED.value,
                "created_at": now,
                "updated_at": now,
            }
            try:
                await self._with_retries(
                    "create",
                    lambda c: c.table(self._table)
                    .upsert(row, on_conflict="id", ignore_duplicates=True)
                    .execute(),
                )
                logger.info("Job %s created in Supabase", job_id)
                return True
            except _DurableOperationFailed as exc:
                if not exc.network:
                    return False
                logger.info("Falling back to in-memory storage for job %s creation", job_id)

        return await self._memory.create(job_id)

    async def update_status(self, job_id, status, *, result=None, error=None, prompt=None) -> bool:
        key = storage_key(job_id)
        logger.info(
            "Updating job %s -> %s (storage key %s, result=%s, error=%s)",
            job_id, status.value, key, result is not None, error is not None,
        )

        # Records created during an outage stay in memory for their whole life
        if job_id in self._memory:
            return await self._memory.update_status(job_id, status, result=result, error=error, prompt=prompt)

        if await self._durable_available():
            payload: Dict[str, Any] = {"status": status.value, "updated_at": _iso(utcnow())}
            if result is not None:
                payload["result"] = result.model_dump(mode="json")
                payload["error"] = None
            if error is not None:
                payload["error"] = error
                payload["result"] = None
            if prompt is not None:
                payload["prompt"] = prompt
            allowed = [s.value for s in predecessors(status)]

            try:
                response = await self._with_retries(
                    "update",
                    lambda c: c.table(self._table)
                    .update(payload)
                    .eq("id", key)
                    .in_("status", allowed)
                    .execute(),
                )
            except _DurableOperationFailed as exc:
                if not exc.network:
                    return False
                logger.info("Falling back to in-memory storage for job %s update", job_id)
            else:
                if not response.data:
                    logger.warning(
                        "Job %s not updated to %s: no row in an updatable state", job_id, status.value
                    )
                    return False
                logger.info("Job %s status updated to %s", job_id, status.value)
                return True

        return await self._memory.update_status(job_id, status, result=result, error=error, prompt=prompt)

    async def get_status(self, job_id: str) -> StatusResult:
        if job_id in self._memory:
            return await self._memory.get_status(job_id)

        key = storage_key(job_id)
        if await self._durable_available():
            try:
                response = await self._with_retries(
                    "get_status",
                    lambda c: c.table(self._table)
                    .select("status, result, error, updated_at")
                    .eq("id", key)
                    .limit(1)
                    .execute(),
                )
            except _DurableOperationFailed:
                logger.info("Supabase lookup failed, checking in-memory storage for job %s", job_id)
            else:
                if response.data:
                    row = response.data[0]
                    return StatusResult(
                        status=row["status"],
                        result=parse_result(row.get("result")),
                        error=row.get("error"),
                    )
                logger.info("Job %s not found in Supabase", job_id)

        return await self._memory.get_status(job_id)

    async def list_recent(self, limit: int = 50) -> List[JobRecord]:
        records = await self._memory.list_recent(limit)
        if await self._durable_available():
            try:
                response = await self._run(
                    lambda c: c.table(self._table)
                    .select("*")
                    .order("created_at", desc=True)
                    .limit(limit)
                    .execute()
                )
                for row in response.data or []:
                    try:
                        records.append(_record_from_row(row))
                    except ValueError as exc:
                        logger.debug("Skipping unreadable job row %s: %s", row.get("id"), exc)
            except Exception as exc:
                if is_network_error(exc):
                    self._trip(exc)
                logger.warning("Could not list recent jobs from Supabase: %s", exc)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    async def count_by_status(self) -> Dict[str, int]:
        counts = Counter(await self._memory.count_by_status())
        if await self._durable_available():
            try:
                response = await self._run(
                    lambda c: c.table(self._table)
                    .select("status")
                    .order("created_at", desc=True)
                    .limit(500)
                    .execute()
                )
                counts.update(row["status"] for row in response.data or [])
            except Exception as exc:
                if is_network_error(exc):
                    self._trip(exc)
                logger.warning("Could not count jobs in Supabase: %s", exc)
        return dict(counts)

    def health(self) -> Dict[str, Any]:
        return {
            "backend": self.name,
            "durable_enabled": self.durable_enabled,
            "disabled_reason": self._disabled_reason,
            "memory_jobs": len(self._memory),
        }


def build_job_store(settings: Settings, client_factory: Optional[Callable[[], Client]] = None) -> JobStore:
    """Select the job store from configuration.

    ``job_store_backend``: ``memory`` always uses the in-memory store,
    ``supabase`` requires credentials, ``auto`` uses Supabase when configured.
    """
    backend = settings.job_store_backend.lower()
    if backend not in ("auto", "supabase", "memory"):
        raise ValueError(f"Unknown job_store_backend '{settings.job_store_backend}'")

    if backend == "memory":
        return InMemoryJobStore()

    if not settings.supabase_configured:
        if backend == "supabase":
            raise RuntimeError("job_store_backend=supabase but SUPABASE_URL / keys are not set")
        logger.warning("Supabase not configured. Using in-memory job storage.")
        return InMemoryJobStore()

    if client_factory is None:
        from tripgen.db.supabase_client import get_supabase

        def client_factory() -> Client:
            return get_supabase(settings)

    return SupabaseJobStore(client_factory, settings)
