# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

import io
import json
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List

import pytest
from faker import Faker

from coreason_fortress import audit as audit_module
from coreason_fortress.audit import AuditLogger, configure_audit_log
from coreason_fortress.config import Settings
from coreason_fortress.llm import LLMRequest, LLMResponse, ToolResult

TEST_KEY = "test-master-key-0123456789abcdef0123456789abcdef"


@pytest.fixture
def audit_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture(autouse=True)
def audit_log(tmp_path_factory: pytest.TempPathFactory, audit_stream: io.StringIO) -> Generator[AuditLogger, None, None]:
    """
    Points the process-wide audit logger at a temp file for every test.

    Nothing under the real home directory is ever written.
    """
    previous = audit_module._DEFAULT_AUDIT_LOGGER
    logger = configure_audit_log(tmp_path_factory.mktemp("audit") / "audit.jsonl", stream=audit_stream)
    yield logger
    audit_module._DEFAULT_AUDIT_LOGGER = previous


@pytest.fixture
def read_audit(audit_log: AuditLogger) -> Callable[[], List[Dict[str, Any]]]:
    def _read() -> List[Dict[str, Any]]:
        if not audit_log.path.exists():
            return []
        return [json.loads(line) for line in audit_log.path.read_text(encoding="utf-8").splitlines() if line]

    return _read


@pytest.fixture
def events(read_audit: Callable[[], List[Dict[str, Any]]]) -> Callable[[], List[str]]:
    return lambda: [e["event"] for e in read_audit()]


@pytest.fixture
def fake() -> Faker:
    faker = Faker("en_US")
    faker.seed_instance(1234)
    return faker


@pytest.fixture
def encryption_key() -> str:
    return TEST_KEY


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keeps developer OPENCLAW_* variables out of Settings in tests."""
    import os

    for name in list(os.environ):
        if name.startswith("OPENCLAW_"):
            monkeypatch.delenv(name, raising=False)


class ScriptedLLM:
    """
    In-memory LLMClient.

    Replies with queued responses (or exceptions) in order, then falls back to
    echoing the last user message. Every request is recorded.
    """

    def __init__(self) -> None:
        self.queue: List[Any] = []
        self.requests: List[LLMRequest] = []
        self.tool_results: List[List[ToolResult]] = []

    def _next(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        if self.queue:
            item = self.queue.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        last = request.messages[-1]["content"] if request.messages else ""
        return LLMResponse(content=f"echo: {last}", input_tokens=3, output_tokens=2)

    async def chat(self, request: LLMRequest) -> LLMResponse:
        return self._next(request)

    async def continue_with_tool_results(self, request: LLMRequest, tool_results: List[ToolResult]) -> LLMResponse:
        self.tool_results.append(tool_results)
        return self._next(request)


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Builds Settings rooted in tmp_path, ignoring any .env file."""

    def _make(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            "state_dir": str(tmp_path / "state"),
            "audit_log_path": str(tmp_path / "state" / "audit.jsonl"),
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make
