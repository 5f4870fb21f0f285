"""External LLM call with a bounded, context-aware deadline.

One attempt per job. Every failure is raised as a ``GenerationError`` subclass
carrying the message that ends up on the failed job.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

import httpx

from tripgen.config import Settings, settings as default_settings
from tripgen.generation.policy import TimeoutContext, resolve_timeout
from tripgen.generation.prompts import SYSTEM_PROMPT
from tripgen.storage.job_store import is_network_error

logger = logging.getLogger(__name__)

NETWORK_ERROR_MESSAGE = (
    "Network error while generating your itinerary. "
    "Please check your internet connection and try again."
)
MAX_ERROR_BODY_CHARS = 500
CONNECT_TIMEOUT_S = 10.0


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    UPSTREAM = "upstream"
    EMPTY_RESPONSE = "empty_response"
    NETWORK = "network"


class GenerationError(Exception):
    """Base class for classified generation failures."""

    kind: FailureKind

    def __init__(self, user_message: str):
        super().__init__(user_message)
        self.user_message = user_message


class GenerationTimeoutError(GenerationError):
    kind = FailureKind.TIMEOUT

    def __init__(self, user_message: str, timeout_s: float):
        super().__init__(user_message)
        self.timeout_s = timeout_s


class UpstreamAPIError(GenerationError):
    kind = FailureKind.UPSTREAM

    def __init__(self, status_code: Optional[int], body: str = ""):
        if status_code is None:
            message = body
        else:
            message = f"OpenAI API error: {status_code} - {body[:MAX_ERROR_BODY_CHARS]}".rstrip(" -")
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class EmptyResponseError(GenerationError):
    kind = FailureKind.EMPTY_RESPONSE

    def __init__(self, user_message: str = "No content in OpenAI response"):
        super().__init__(user_message)


class GenerationNetworkError(GenerationError):
    kind = FailureKind.NETWORK

    def __init__(self, user_message: str = NETWORK_ERROR_MESSAGE):
        super().__init__(user_message)


class GenerationInvoker:
    """Calls an OpenAI-compatible chat completions endpoint.

    ``client`` is an optional shared ``httpx.AsyncClient``; when omitted a
    client is opened per call.
    """

    def __init__(self, settings: Settings = default_settings, client: Optional[httpx.AsyncClient] = None):
        self._settings = settings
        self._client = client

    def _payload(self, prompt: str) -> dict:
        return {
            "model": self._settings.openai_model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self._settings.openai_temperature,
            "max_tokens": self._settings.openai_max_tokens,
        }

    async def _post(self, client: httpx.AsyncClient, prompt: str) -> httpx.Response:
        return await client.post(
            f"{self._settings.openai_base_url.rstrip('/')}/chat/completions",
            json=self._payload(prompt),
            headers={"Authorization": f"Bearer {self._settings.openai_api_key}"},
        )

    async def _call(self, prompt: str, timeout_s: float) -> httpx.Response:
        if self._client is not None:
            return await self._post(self._client, prompt)
        # Client-side timeout sits past the deadline so wait_for fires first
        timeout = httpx.Timeout(timeout_s + 5.0, connect=CONNECT_TIMEOUT_S)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await self._post(client, prompt)

    async def generate(self, prompt: str, context: Optional[TimeoutContext] = None) -> str:
        """Return the raw text of the first choice. Raises ``GenerationError``."""
        if not self._settings.openai_api_key:
            logger.error("OpenAI API key not configured")
            raise UpstreamAPIError(None, "OpenAI API key not configured")

        if context is None:
            context = TimeoutContext.build(prompt, settings=self._settings)
        plan = resolve_timeout(context, self._settings)
        logger.info(
            "Calling OpenAI API (model=%s, timeout=%.0fs, mobile=%s, complex=%s)",
            self._settings.openai_model, plan.timeout_s, context.is_mobile, context.is_complex,
        )

        try:
            response = await asyncio.wait_for(self._call(prompt, plan.timeout_s), timeout=plan.timeout_s)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            logger.warning("Generation timed out after %.0fs: %s", plan.timeout_s, type(exc).__name__)
            raise GenerationTimeoutError(plan.message, plan.timeout_s) from exc
        except Exception as exc:
            if is_network_error(exc):
                logger.warning("Network error during generation: %s", exc)
                raise GenerationNetworkError() from exc
            raise

        if response.status_code >= 400:
            logger.error("OpenAI API error: %s - %s", response.status_code, response.text[:MAX_ERROR_BODY_CHARS])
            raise UpstreamAPIError(response.status_code, response.text)

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise EmptyResponseError() from exc
        if not content or not str(content).strip():
            raise EmptyResponseError()
        return str(content)
