"""Job API: submit itinerary generation, poll status, diagnostics."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from tripgen.client.poller import status_message
from tripgen.errors import describe_failure
from tripgen.jobs.lifecycle import JobCreationError, JobSubmissionError
from tripgen.jobs.models import NOT_FOUND, NormalizedResult, TripRequest

logger = logging.getLogger(__name__)

router = APIRouter()

# Set by main.py during lifespan
_lifecycle = None


def set_lifecycle(lifecycle):
    global _lifecycle
    _lifecycle = lifecycle


def _require_lifecycle():
    if _lifecycle is None:
        raise HTTPException(status_code=503, detail="Job service not initialized")
    return _lifecycle


class JobSubmitResponse(BaseModel):
    job_id: str
    status: str
    message: str


class JobStatusResponse(BaseModel):
    job_id: str
    status: str
    message: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    user_message: Optional[str] = None
    tips: Optional[List[str]] = None


class JobSummary(BaseModel):
    job_id: str
    status: str
    has_result: bool
    error: Optional[str] = None
    created_at: str
    updated_at: str


@router.post("/jobs", response_model=JobSubmitResponse, status_code=202)
async def submit_job(request: TripRequest, user_agent: Optional[str] = Header(default=None)):
    """Create an itinerary generation job. Poll GET /api/v1/jobs/{id} for the result."""
    lifecycle = _require_lifecycle()
    try:
        job_id = await lifecycle.submit(request, user_agent=user_agent)
    except JobCreationError as exc:
        logger.error("Job creation failed: %s", exc)
        raise HTTPException(status_code=503, detail="Failed to create job. Please try again.")
    except JobSubmissionError as exc:
        logger.error("Job %s could not be started: %s", exc.job_id, exc)
        raise HTTPException(status_code=503, detail=str(exc))

    return JobSubmitResponse(
        job_id=job_id,
        status="processing",
        message="Itinerary generation started. Poll GET /api/v1/jobs/{id} for status.",
    )


@router.get("/jobs", response_model=List[JobSummary])
async def list_jobs(limit: int = Query(default=20, ge=1, le=200)):
    """Most recent jobs, newest first."""
    lifecycle = _require_lifecycle()
    records = await lifecycle.store.list_recent(limit=limit)
    return [
        JobSummary(
            job_id=r.id,
            status=r.status.value,
            has_result=r.result is not None,
            error=r.error,
            created_at=r.created_at.isoformat(),
            updated_at=r.updated_at.isoformat(),
        )
        for r in records
    ]


@router.get("/jobs/stats")
async def job_stats():
    """Job counts per status, queue depth and store health."""
    lifecycle = _require_lifecycle()
    counts = await lifecycle.store.count_by_status()
    return {
        "counts": counts,
        "total": sum(counts.values()),
        "queue_pending": lifecycle.dispatcher.pending if lifecycle.dispatcher is not None else 0,
        "store": lifecycle.store.health(),
    }


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str):
    """Get the current status and, once completed, the itinerary."""
    lifecycle = _require_lifecycle()
    status = await lifecycle.get_status(job_id)

    if status.status == NOT_FOUND:
        return JSONResponse(
            status_code=404,
            content={"job_id": job_id, "status": NOT_FOUND, "message": "Job not found"},
        )

    response = JobStatusResponse(job_id=job_id, status=status.status, message=status_message(status.status))
    if isinstance(status.result, NormalizedResult):
        response.result = {
            "itinerary": status.result.itinerary,
            "generated_at": status.result.generated_at.isoformat(),
        }
    if status.error:
        failure = describe_failure(status.error)
        response.error = status.error
        response.user_message = failure.user_message
        response.tips = failure.tips
    return response
