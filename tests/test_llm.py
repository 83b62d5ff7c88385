# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

import json
from typing import Any, Callable, List

import httpx
import pytest

from coreason_fortress.exceptions import LLMAuthenticationError, LLMError
from coreason_fortress.llm import (
    HttpLLMClient,
    LLMClient,
    LLMRequest,
    LLMResponse,
    RetryingLLMClient,
    ToolResult,
    UnconfiguredLLMClient,
    with_tool_results,
)

URL = "http://llm.test/v1/chat"
REQUEST = LLMRequest(system_prompt="sys", messages=[{"role": "user", "content": "hi"}])


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _client(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> HttpLLMClient:
    return HttpLLMClient(URL, transport=httpx.MockTransport(handler), **kwargs)


def test_clients_satisfy_protocol(llm: Any) -> None:
    assert isinstance(UnconfiguredLLMClient(), LLMClient)
    assert isinstance(RetryingLLMClient(llm), LLMClient)
    assert isinstance(llm, LLMClient)


def test_with_tool_results_appends_user_turn() -> None:
    updated = with_tool_results(REQUEST, [ToolResult(tool_use_id="t1", content="42")])
    assert len(REQUEST.messages) == 1
    assert updated.messages[-1] == {
        "role": "user",
        "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "42", "is_error": False}],
    }


@pytest.mark.asyncio
async def test_http_client_posts_request() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"content": "hello", "input_tokens": 5, "output_tokens": 1})

    client = _client(handler, api_key="secret", model="m1", max_tokens=100)
    response = await client.chat(REQUEST)
    await client.aclose()

    assert response.content == "hello"
    assert response.input_tokens == 5
    body = json.loads(seen[0].content)
    assert body["model"] == "m1"
    assert body["system"] == "sys"
    assert body["max_tokens"] == 100
    assert "temperature" not in body
    assert seen[0].headers["authorization"] == "Bearer secret"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_http_client_auth_failure(status: int) -> None:
    client = _client(lambda r: httpx.Response(status))
    with pytest.raises(LLMAuthenticationError):
        await client.chat(REQUEST)


@pytest.mark.asyncio
async def test_http_client_server_error() -> None:
    client = _client(lambda r: httpx.Response(502))
    with pytest.raises(LLMError, match="HTTP 502"):
        await client.chat(REQUEST)


@pytest.mark.asyncio
async def test_http_client_malformed_body() -> None:
    client = _client(lambda r: httpx.Response(200, content=b"not json"))
    with pytest.raises(LLMError, match="malformed"):
        await client.chat(REQUEST)


@pytest.mark.asyncio
async def test_http_client_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = _client(handler)
    with pytest.raises(LLMError, match="LLM request failed"):
        await client.chat(REQUEST)


@pytest.mark.asyncio
async def test_retry_succeeds_after_transient_failures(llm: Any, events: Callable[[], List[str]]) -> None:
    llm.queue.extend([LLMError("boom"), RuntimeError("again"), LLMResponse(content="ok")])
    sleep = RecordingSleep()
    client = RetryingLLMClient(llm, max_attempts=3, base_delay=1.0, sleep=sleep)

    response = await client.chat(REQUEST)

    assert response.content == "ok"
    assert sleep.delays == [1.0, 2.0]
    assert events() == ["llm_request_failed", "llm_request_failed", "llm_request"]


@pytest.mark.asyncio
async def test_retry_gives_up(llm: Any, events: Callable[[], List[str]]) -> None:
    llm.queue.extend([LLMError("a"), LLMError("b"), LLMError("c"), LLMResponse(content="too late")])
    sleep = RecordingSleep()
    client = RetryingLLMClient(llm, max_attempts=3, sleep=sleep)

    with pytest.raises(LLMError, match="after retries"):
        await client.chat(REQUEST)
    assert len(llm.requests) == 3
    # No sleep after the final attempt
    assert len(sleep.delays) == 2
    assert events().count("llm_request_failed") == 3


@pytest.mark.asyncio
async def test_auth_failure_is_not_retried(llm: Any) -> None:
    llm.queue.extend([LLMAuthenticationError("nope"), LLMResponse(content="unused")])
    sleep = RecordingSleep()
    client = RetryingLLMClient(llm, sleep=sleep)

    with pytest.raises(LLMAuthenticationError):
        await client.chat(REQUEST)
    assert len(llm.requests) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_retry_wraps_tool_continuation(llm: Any) -> None:
    llm.queue.extend([LLMError("x"), LLMResponse(content="done")])
    client = RetryingLLMClient(llm, sleep=RecordingSleep())
    results = [ToolResult(tool_use_id="t", content="r")]

    response = await client.continue_with_tool_results(REQUEST, results)

    assert response.content == "done"
    assert llm.tool_results == [results, results]


@pytest.mark.asyncio
async def test_unconfigured_client_always_fails() -> None:
    client = UnconfiguredLLMClient()
    with pytest.raises(LLMError):
        await client.chat(REQUEST)
    with pytest.raises(LLMError):
        await client.continue_with_tool_results(REQUEST, [])
