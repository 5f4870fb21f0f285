"""httpx client for the jobs API."""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from tripgen.jobs.models import NOT_FOUND, TripRequest

logger = logging.getLogger(__name__)


class StatusResponse(BaseModel):
    """Body of ``GET /api/v1/jobs/{job_id}`` as seen by a client."""
    job_id: str
    status: str
    message: str = ""
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status != NOT_FOUND


class StatusFetchError(Exception):
    """A status request got a non-404 error response."""

    def __init__(self, status_code: int, detail: str = ""):
        super().__init__(f"HTTP Error {status_code}: {detail}" if detail else f"HTTP Error {status_code}")
        self.status_code = status_code
        self.detail = detail


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("message") or body.get("error") or "")
    return str(body)


class JobsHttpClient:
    """Talks to a running tripgen server.

    Network failures propagate as ``httpx.TransportError`` so callers can tell
    them apart from error responses (``StatusFetchError``).
    """

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(timeout, connect=5.0))
        self._prefix = "/api/v1"

    async def __aenter__(self) -> "JobsHttpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def submit(self, request: TripRequest, user_agent: Optional[str] = None) -> str:
        headers = {"User-Agent": user_agent} if user_agent else None
        response = await self._client.post(
            f"{self._prefix}/jobs", json=request.model_dump(mode="json"), headers=headers
        )
        if response.status_code >= 400:
            raise StatusFetchError(response.status_code, _detail(response))
        return response.json()["job_id"]

    async def fetch_status(self, job_id: str) -> StatusResponse:
        response = await self._client.get(f"{self._prefix}/jobs/{job_id}")
        if response.status_code == 404:
            return StatusResponse(job_id=job_id, status=NOT_FOUND, message=_detail(response))
        if response.status_code >= 400:
            raise StatusFetchError(response.status_code, _detail(response))
        return StatusResponse.model_validate(response.json())

    async def ping(self) -> bool:
        try:
            response = await self._client.get(f"{self._prefix}/ping")
        except httpx.HTTPError as exc:
            logger.debug("Ping failed: %s", exc)
            return False
        return response.status_code == 200
