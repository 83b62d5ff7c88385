# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

"""
LLM client contract and the bounded-retry wrapper.

The gateway depends only on `LLMClient`: an async `chat` and an async
`continue_with_tool_results`, both returning `LLMResponse`. `HttpLLMClient`
speaks that contract as plain JSON over HTTP; vendor adapters sit behind it.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, Field, ValidationError

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.exceptions import LLMAuthenticationError, LLMError
from coreason_fortress.utils.logger import logger

MAX_ATTEMPTS = 3
BASE_DELAY_SECONDS = 1.0
AUTH_FAILURE_STATUS = {401, 403}


class ToolDefinition(BaseModel):
    name: str
    description: str
    input_schema: Dict[str, Any] = Field(default_factory=dict)


class ToolCall(BaseModel):
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    tool_use_id: str
    content: str
    is_error: bool = False


class LLMRequest(BaseModel):
    """
    One chat request.

    `messages` carry only `role` and `content`; identifying metadata is
    stripped before a request is built.
    """

    system_prompt: str
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    tools: List[ToolDefinition] = Field(default_factory=list)
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


class LLMResponse(BaseModel):
    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    stop_reason: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0


@runtime_checkable
class LLMClient(Protocol):
    async def chat(self, request: LLMRequest) -> LLMResponse: ...

    async def continue_with_tool_results(self, request: LLMRequest, tool_results: List[ToolResult]) -> LLMResponse: ...


def with_tool_results(request: LLMRequest, tool_results: List[ToolResult]) -> LLMRequest:
    """Returns a copy of `request` with the tool results appended as a user turn."""
    content = [{"type": "tool_result", **r.model_dump()} for r in tool_results]
    return request.model_copy(update={"messages": [*request.messages, {"role": "user", "content": content}]})


class HttpLLMClient:
    """
    Posts `LLMRequest` as JSON to a single endpoint and parses `LLMResponse`.

    401/403 raise LLMAuthenticationError; other HTTP failures raise LLMError.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        model: str = "default",
        timeout: float = 60.0,
        max_tokens: int = 4096,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.model = model
        self.max_tokens = max_tokens
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport)

    async def chat(self, request: LLMRequest) -> LLMResponse:
        payload = {
            "model": self.model,
            "system": request.system_prompt,
            "messages": request.messages,
            "tools": [t.model_dump() for t in request.tools],
            "max_tokens": request.max_tokens or self.max_tokens,
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature

        try:
            response = await self._client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise LLMError(f"LLM request failed: {e}") from e

        if response.status_code in AUTH_FAILURE_STATUS:
            raise LLMAuthenticationError(f"LLM backend rejected credentials (HTTP {response.status_code})")
        if response.is_error:
            raise LLMError(f"LLM backend returned HTTP {response.status_code}")

        try:
            return LLMResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise LLMError("LLM backend returned a malformed response") from e

    async def continue_with_tool_results(self, request: LLMRequest, tool_results: List[ToolResult]) -> LLMResponse:
        return await self.chat(with_tool_results(request, tool_results))

    async def aclose(self) -> None:
        await self._client.aclose()


class RetryingLLMClient:
    """
    Wraps any LLMClient with bounded retries.

    Up to `max_attempts` attempts with a linear backoff of
    `base_delay * attempt` seconds. Authentication failures are never retried.
    """

    def __init__(
        self,
        inner: LLMClient,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay: float = BASE_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        self.inner = inner
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep
        self.audit_log = audit_logger or get_audit_logger()

    async def _call(self, call: Callable[[], Awaitable[LLMResponse]]) -> LLMResponse:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await call()
            except LLMAuthenticationError as e:
                self.audit_log.error("llm_request_failed", details={"attempt": attempt, "error": str(e)})
                raise
            except Exception as e:
                last_error = e
                self.audit_log.error("llm_request_failed", details={"attempt": attempt, "error": str(e)})
                if attempt < self.max_attempts:
                    delay = self.base_delay * attempt
                    logger.warning(f"LLM attempt {attempt} failed, retrying in {delay:.1f}s")
                    await self._sleep(delay)
                continue

            self.audit_log.info(
                "llm_request",
                details={"inputTokens": response.input_tokens, "outputTokens": response.output_tokens},
            )
            return response

        raise LLMError("LLM request failed after retries") from last_error

    async def chat(self, request: LLMRequest) -> LLMResponse:
        return await self._call(lambda: self.inner.chat(request))

    async def continue_with_tool_results(self, request: LLMRequest, tool_results: List[ToolResult]) -> LLMResponse:
        return await self._call(lambda: self.inner.continue_with_tool_results(request, tool_results))


class UnconfiguredLLMClient:
    """Stands in when no backend URL is set. Every call fails with LLMError."""

    async def chat(self, request: LLMRequest) -> LLMResponse:
        raise LLMError("No LLM backend configured (set OPENCLAW_LLM_URL)")

    async def continue_with_tool_results(self, request: LLMRequest, tool_results: List[ToolResult]) -> LLMResponse:
        raise LLMError("No LLM backend configured (set OPENCLAW_LLM_URL)")
