import asyncio
import json

import httpx
import pytest

from tripgen.generation.invoker import (
    EmptyResponseError,
    FailureKind,
    GenerationInvoker,
    GenerationNetworkError,
    GenerationTimeoutError,
    NETWORK_ERROR_MESSAGE,
    UpstreamAPIError,
)
from tripgen.generation.policy import TIMEOUT_MESSAGES, TimeoutContext
from tripgen.generation.prompts import SYSTEM_PROMPT


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def make_invoker(settings, handler, **overrides):
    if overrides:
        settings = settings.model_copy(update=overrides)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GenerationInvoker(settings, client=client)


@pytest.mark.anyio
async def test_returns_first_choice_content(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion('{"days": []}'))

    invoker = make_invoker(settings, handler)
    assert await invoker.generate("plan a trip") == '{"days": []}'
    assert seen["url"] == "https://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer test-key"
    body = seen["body"]
    assert body["model"] == "gpt-4o"
    assert body["temperature"] == 0.7
    assert body["max_tokens"] == 10000
    assert body["messages"] == [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": "plan a trip"},
    ]


@pytest.mark.anyio
async def test_non_2xx_is_upstream_error(settings):
    invoker = make_invoker(settings, lambda request: httpx.Response(429, text="rate limited"))
    with pytest.raises(UpstreamAPIError) as excinfo:
        await invoker.generate("plan")
    assert excinfo.value.kind is FailureKind.UPSTREAM
    assert excinfo.value.status_code == 429
    assert "429" in excinfo.value.user_message
    assert "rate limited" in excinfo.value.user_message


@pytest.mark.anyio
@pytest.mark.parametrize("payload", [{"choices": []}, completion(""), completion(None), {"error": "x"}])
async def test_missing_content_is_empty_response(settings, payload):
    invoker = make_invoker(settings, lambda request: httpx.Response(200, json=payload))
    with pytest.raises(EmptyResponseError):
        await invoker.generate("plan")


@pytest.mark.anyio
async def test_network_failure_classified(settings):
    def handler(request):
        raise httpx.ConnectError("connection reset by peer", request=request)

    invoker = make_invoker(settings, handler)
    with pytest.raises(GenerationNetworkError) as excinfo:
        await invoker.generate("plan")
    assert excinfo.value.user_message == NETWORK_ERROR_MESSAGE
    assert "check your internet connection" in excinfo.value.user_message


@pytest.mark.anyio
async def test_deadline_aborts_call_with_tailored_message(settings):
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200, json=completion("{}"))

    invoker = make_invoker(
        settings, handler, generation_base_timeout_s=0.05, generation_timeout_increment_s=0.05
    )
    context = TimeoutContext(is_mobile=True, is_complex=False)
    with pytest.raises(GenerationTimeoutError) as excinfo:
        await invoker.generate("plan", context)
    assert excinfo.value.kind is FailureKind.TIMEOUT
    assert excinfo.value.user_message == TIMEOUT_MESSAGES[(True, False)]
    assert excinfo.value.timeout_s == pytest.approx(0.1)


@pytest.mark.anyio
async def test_missing_api_key_fails_without_calling_out(settings):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=completion("{}"))

    invoker = make_invoker(settings, handler, openai_api_key="")
    with pytest.raises(UpstreamAPIError) as excinfo:
        await invoker.generate("plan")
    assert "not configured" in excinfo.value.user_message
    assert calls == []
