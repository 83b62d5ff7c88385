# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

from pathlib import Path
from typing import Callable

import pytest
from pydantic import ValidationError

from coreason_fortress.config import AllowlistConfig, RetentionConfig, Settings, resolve_path
from coreason_fortress.exceptions import ConfigurationError


def test_defaults(make_settings: Callable[..., Settings]) -> None:
    settings = make_settings()
    assert settings.gateway_host == "127.0.0.1"
    assert settings.gateway_port == 18789
    assert settings.prompt_guard_enabled
    assert settings.retention_days == 90
    assert settings.max_session_age == 86400
    assert settings.signal_api_url == "http://127.0.0.1:8080"
    assert settings.llm_url is None
    assert settings.secret("encryption_key") is None


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("OPENCLAW_GATEWAY_PORT", "9000")
    monkeypatch.setenv("OPENCLAW_PROMPT_GUARD_ENABLED", "false")
    monkeypatch.setenv("OPENCLAW_ENCRYPTION_KEY", "k" * 32)
    monkeypatch.setenv("OPENCLAW_SIGNAL_ALLOWED_NUMBERS", '["+12025550101"]')

    settings = Settings(_env_file=None)
    assert settings.gateway_port == 9000
    assert not settings.prompt_guard_enabled
    assert settings.secret("encryption_key") == "k" * 32
    assert settings.signal_allowed_numbers == ["+12025550101"]


def test_secrets_are_masked_in_repr(make_settings: Callable[..., Settings]) -> None:
    settings = make_settings(gateway_token="super-secret-token")
    assert "super-secret-token" not in repr(settings)
    assert settings.secret("gateway_token") == "super-secret-token"


def test_blank_secret_is_unset(make_settings: Callable[..., Settings]) -> None:
    settings = make_settings(encryption_key="   ", pii_hmac_secret="")
    assert settings.encryption_key is None
    assert settings.secret("pii_hmac_secret") is None


def test_require_secret(make_settings: Callable[..., Settings]) -> None:
    settings = make_settings(session_secret="abc")
    assert settings.require_secret("session_secret") == "abc"
    with pytest.raises(ConfigurationError, match="OPENCLAW_ENCRYPTION_KEY"):
        settings.require_secret("encryption_key")


@pytest.mark.parametrize("field", ["retention_days", "max_session_age", "max_context_messages", "llm_timeout"])
def test_limits_must_be_positive(make_settings: Callable[..., Settings], field: str) -> None:
    with pytest.raises(ValidationError):
        make_settings(**{field: 0})


def test_paths_expand_home(make_settings: Callable[..., Settings], tmp_path: Path) -> None:
    settings = make_settings()
    assert settings.state_path == tmp_path / "state"
    assert resolve_path("~/x") == Path.home() / "x"


def test_signal_allowlist(make_settings: Callable[..., Settings]) -> None:
    settings = make_settings(
        signal_allowed_numbers=["+1", "+1", "+2"],
        signal_allowed_groups=["g"],
        signal_rate_limit_per_minute=5,
    )
    config = settings.signal_allowlist()
    assert config == AllowlistConfig(
        allowed_numbers=frozenset({"+1", "+2"}), allowed_groups=frozenset({"g"}), rate_limit_per_minute=5
    )


def test_retention_config(make_settings: Callable[..., Settings]) -> None:
    retention = make_settings(retention_days=14).retention()
    assert retention.transcript_ttl_days == 14
    assert retention.session_ttl_days == RetentionConfig().session_ttl_days


def test_sub_configs_are_frozen() -> None:
    config = AllowlistConfig()
    with pytest.raises(ValidationError):
        config.rate_limit_per_minute = 1  # type: ignore[misc]
    with pytest.raises(ValidationError):
        AllowlistConfig(rate_limit_per_minute=0)
