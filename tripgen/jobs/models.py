"""Job record data model for async itinerary generation."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class LookupStatus(str, Enum):
    """Lookup-only sentinel, never written to a store."""
    NOT_FOUND = "not_found"


NOT_FOUND = LookupStatus.NOT_FOUND.value

_ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.QUEUED, JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class InvalidTransitionError(Exception):
    """Raised when a status change would move a job backwards or out of a terminal state."""

    def __init__(self, job_id: str, current: JobStatus, target: JobStatus):
        super().__init__(f"Job {job_id}: cannot move from {current.value} to {target.value}")
        self.job_id = job_id
        self.current = current
        self.target = target


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """True when ``target`` may be written over ``current``.

    Rewriting the same non-terminal status is allowed so that store updates
    stay idempotent; nothing leaves ``completed`` or ``failed``.
    """
    return target in _ALLOWED_TRANSITIONS[current]


def predecessors(target: JobStatus) -> List[JobStatus]:
    """Statuses a stored record may hold for ``target`` to be written over it."""
    return [s for s, allowed in _ALLOWED_TRANSITIONS.items() if target in allowed]


class RawResult(BaseModel):
    """Unprocessed model output, normalized when the status is read."""
    kind: Literal["raw"] = "raw"
    raw: str
    processed: Literal[False] = False


class NormalizedResult(BaseModel):
    """Canonical itinerary produced by the response normalizer."""
    kind: Literal["normalized"] = "normalized"
    itinerary: Dict[str, Any]
    processed: Literal[True] = True
    prompt: Optional[str] = None
    generated_at: datetime = Field(default_factory=utcnow)


JobResult = Annotated[Union[RawResult, NormalizedResult], Field(discriminator="kind")]


class JobRecord(BaseModel):
    """Tracks the lifecycle of an itinerary generation job."""
    id: str
    status: JobStatus = JobStatus.QUEUED
    prompt: Optional[str] = None
    result: Optional[JobResult] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def transition(
        self,
        status: JobStatus,
        result: Optional[Union[RawResult, NormalizedResult]] = None,
        error: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> None:
        """Apply a status change in place, enforcing monotonic transitions."""
        if not can_transition(self.status, status):
            raise InvalidTransitionError(self.id, self.status, status)
        self.status = status
        if prompt is not None:
            self.prompt = prompt
        if result is not None:
            self.result = result
            self.error = None
        if error is not None:
            self.error = error
            self.result = None
        self.updated_at = utcnow()


class StatusResult(BaseModel):
    """What a status lookup returns: a stored status or the not-found sentinel."""
    status: str
    result: Optional[JobResult] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status != NOT_FOUND

    @classmethod
    def not_found(cls) -> "StatusResult":
        return cls(status=NOT_FOUND)

    @classmethod
    def from_record(cls, record: JobRecord) -> "StatusResult":
        return cls(status=record.status.value, result=record.result, error=record.error)


def parse_result(payload: Optional[Dict[str, Any]]) -> Optional[Union[RawResult, NormalizedResult]]:
    """Rebuild a result variant from its stored JSON form.

    Rows written before results were tagged carry either ``raw`` text or an
    ``itinerary`` object without a ``kind`` field.
    """
    if payload is None:
        return None
    kind = payload.get("kind")
    if kind == "raw" or (kind is None and "raw" in payload and not payload.get("processed")):
        return RawResult(raw=str(payload.get("raw") or ""))
    if kind == "normalized" or "itinerary" in payload:
        data = {k: v for k, v in payload.items() if k in ("itinerary", "prompt", "generated_at")}
        return NormalizedResult(**data)
    # Untagged legacy payload: treat the object itself as the itinerary
    return NormalizedResult(itinerary=payload)


MAX_TRIP_DAYS = 14


class TripRequest(BaseModel):
    """Trip preferences submitted by the client."""
    destination: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    purpose: str = "leisure"
    budget: str = "moderate"
    preferences: List[str] = Field(default_factory=list)
    special_requests: Optional[str] = None

    @field_validator("destination")
    @classmethod
    def destination_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("destination must not be blank")
        return v

    @model_validator(mode="after")
    def check_dates(self) -> "TripRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if self.trip_days > MAX_TRIP_DAYS:
            raise ValueError(
                f"Trip is too long. Please limit your trip to a maximum of {MAX_TRIP_DAYS} days."
            )
        return self

    @property
    def trip_days(self) -> int:
        """Number of days, counting both the start and end date."""
        return (self.end_date - self.start_date).days + 1
