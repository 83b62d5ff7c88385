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
from pathlib import Path
from typing import Any, Callable
from unittest.mock import patch

import pytest

from coreason_fortress.audit import AuditLogger
from coreason_fortress.config import Settings
from coreason_fortress.exceptions import ConfigurationError
from coreason_fortress.llm import RetryingLLMClient, UnconfiguredLLMClient
from coreason_fortress.main import Fortress, main
from coreason_fortress.models import Allowed, ChannelType, IncomingMessage

STRONG = "s" * 40


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Points the CLI at a temp state directory."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OPENCLAW_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("OPENCLAW_AUDIT_LOG_PATH", str(tmp_path / "state" / "audit.jsonl"))
    return tmp_path / "state"


# Fortress


def test_fortress_without_key_is_memory_only(make_settings: Callable[..., Settings], llm: Any) -> None:
    fortress = Fortress(make_settings(), llm=llm)
    assert fortress.persistence is None
    assert fortress.consent is None
    with pytest.raises(ConfigurationError):
        fortress.erase("someone")


def test_fortress_llm_selection(make_settings: Callable[..., Settings]) -> None:
    assert isinstance(Fortress(make_settings()).agent.llm, UnconfiguredLLMClient)
    assert isinstance(Fortress(make_settings(llm_url="http://127.0.0.1:9/v1")).agent.llm, RetryingLLMClient)


@pytest.mark.asyncio
async def test_fortress_handles_messages(
    make_settings: Callable[..., Settings], llm: Any, encryption_key: str
) -> None:
    fortress = Fortress(make_settings(encryption_key=encryption_key), llm=llm)
    result = await fortress.handle(
        IncomingMessage(channel=ChannelType.WEBCHAT, contact_id="web-1", text="hello", timestamp=0)
    )
    assert isinstance(result, Allowed)
    assert fortress.persistence is not None
    assert len(fortress.persistence.list_sessions()) == 1

    # A second instance restores the conversation from disk
    again = Fortress(make_settings(encryption_key=encryption_key), llm=llm)
    assert again.agent.get_session("web-1", ChannelType.WEBCHAT) is not None
    await fortress.aclose()


@pytest.mark.asyncio
async def test_fortress_aclose_closes_owned_client(make_settings: Callable[..., Settings]) -> None:
    fortress = Fortress(make_settings(llm_url="http://127.0.0.1:9/v1"))
    assert fortress._owned_llm is not None
    await fortress.aclose()
    assert fortress._owned_llm._client.is_closed


def test_fortress_authenticate(make_settings: Callable[..., Settings], llm: Any) -> None:
    fortress = Fortress(make_settings(gateway_token="ab" * 32), llm=llm)
    assert fortress.authenticate("ab" * 32, "127.0.0.1").ok
    assert not fortress.authenticate("nope", "127.0.0.1").ok


def test_fortress_session_binding(make_settings: Callable[..., Settings], llm: Any) -> None:
    fortress = Fortress(make_settings(max_session_age=600), llm=llm)
    session = fortress.create_session("+12025550101", ChannelType.SIGNAL)
    assert session.expires_at - session.created_at == 600_000

    result = fortress.validate_session(session.id, "+12025550101", ChannelType.SIGNAL)
    assert result.valid
    assert result.session is not None and result.session.id == session.id

    assert fortress.validate_session(session.id, "+12025550101", ChannelType.DISCORD).reason == (
        "Channel binding mismatch"
    )
    assert fortress.validate_session("unknown", "+12025550101", ChannelType.SIGNAL).reason == "Session not found"


def test_signal_safety_numbers_only_when_enabled(make_settings: Callable[..., Settings], llm: Any) -> None:
    assert Fortress(make_settings(), llm=llm).pipeline.safety_numbers is None
    assert Fortress(make_settings(signal_enabled=True), llm=llm).pipeline.safety_numbers is not None


# CLI


def test_cli_generate_token(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["generate-token"]) == 0
    token = capsys.readouterr().out.strip()
    assert len(token) == 64
    int(token, 16)

    assert main(["generate-token", "--bytes", "16"]) == 0
    assert len(capsys.readouterr().out.strip()) == 32


def test_cli_requires_command() -> None:
    with pytest.raises(SystemExit):
        main([])


def test_cli_doctor_fails_without_secrets(env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["doctor"]) == 1
    out = capsys.readouterr().out
    assert "Security Doctor" in out
    assert "Score:" in out


def test_cli_doctor_passes_when_hardened(
    env: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("OPENCLAW_PII_HMAC_SECRET", STRONG)
    monkeypatch.setenv("OPENCLAW_ENCRYPTION_KEY", STRONG)
    with patch("coreason_fortress.doctor.check_not_root", return_value=True):
        assert main(["doctor"]) == 0
    assert "0 FAIL" in capsys.readouterr().out


def test_cli_audit_view(env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    log = AuditLogger(env / "audit.jsonl")
    log.info("first")
    log.warn("second")

    assert main(["audit-view", "-n", "1"]) == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert [json.loads(line)["event"] for line in lines] == ["second"]


def test_cli_erase_requires_key(env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["erase", "someone"]) == 2
    assert "OPENCLAW_ENCRYPTION_KEY" in capsys.readouterr().err


def test_cli_erase(env: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("OPENCLAW_ENCRYPTION_KEY", STRONG)
    assert main(["erase", "someone"]) == 0
    assert capsys.readouterr().out.startswith("Erased 0 file(s) from: sessions")


def test_cli_verify(env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["verify", "contact-alpha"]) == 1
    assert "No safety number on record" in capsys.readouterr().err

    settings = Settings(_env_file=None)
    fortress = Fortress(settings)
    fortress.safety_numbers.track("contact-alpha", "a" * 32, True)
    fortress.safety_numbers.track("contact-alpha", "b" * 32, True)
    assert fortress.safety_numbers.is_suspended("contact-alpha")

    assert main(["verify", "contact-alpha"]) == 0
    assert not fortress.safety_numbers.is_suspended("contact-alpha")


def test_cli_retention(env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["retention"]) == 0
    assert capsys.readouterr().out.startswith("Purged 0 file(s)")


def test_cli_serve(env: Path) -> None:
    with patch("uvicorn.run") as run:
        assert main(["serve", "--port", "9999"]) == 0
    _, kwargs = run.call_args
    assert kwargs == {"host": "127.0.0.1", "port": 9999}
