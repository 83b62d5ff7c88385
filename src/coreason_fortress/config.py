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
Configuration for CoReason Fortress.

`Settings` is read once at startup from the environment (prefix `OPENCLAW_`)
and an optional `.env` file. Per-concern structs (`AllowlistConfig`,
`RetentionConfig`) are built from it once and passed down; nothing re-parses
configuration per call.
"""

import os
from pathlib import Path
from typing import FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from coreason_fortress.exceptions import ConfigurationError


def resolve_path(path: str) -> Path:
    """Expands a leading `~` to the user's home directory."""
    return Path(os.path.expanduser(path))


class AllowlistConfig(BaseModel):
    """
    Per-channel allowlist policy.

    An empty `allowed_numbers` or `allowed_groups` set means *open mode* for
    that dimension: everybody is allowed.
    `doctor` reports it as a warning.
    """

    model_config = ConfigDict(frozen=True)

    allowed_numbers: FrozenSet[str] = frozenset()
    allowed_groups: FrozenSet[str] = frozenset()
    rate_limit_per_minute: int = Field(default=30, gt=0)


class RetentionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_ttl_days: int = Field(default=30, gt=0)
    transcript_ttl_days: int = Field(default=90, gt=0)
    audit_log_ttl_days: int = Field(default=365, gt=0)


class Settings(BaseSettings):
    """
    Application settings for the Fortress gateway.
    Uses environment variables with OPENCLAW_ prefix.
    """

    model_config = SettingsConfigDict(env_prefix="OPENCLAW_", env_file=".env", env_file_encoding="utf-8", extra="ignore")

    name: str = "OpenClaw Fortress"
    state_dir: str = "~/.openclaw"
    audit_log_path: str = "~/.openclaw/audit.jsonl"

    # Gateway
    gateway_host: str = "127.0.0.1"
    gateway_port: int = 18789
    cors_origin: str = "http://localhost:18789"

    # Security toggles and limits
    prompt_guard_enabled: bool = True
    pii_detection_enabled: bool = True
    retention_days: int = Field(default=90, gt=0)
    max_session_age: int = Field(default=86400, gt=0)
    max_context_messages: int = Field(default=50, gt=0)
    system_prompt: str = "You are a helpful AI assistant. Be concise and accurate."

    # LLM backend
    llm_url: Optional[str] = None
    llm_model: str = "default"
    llm_timeout: float = Field(default=60.0, gt=0)
    llm_max_tokens: int = Field(default=4096, gt=0)

    # Signal channel
    signal_enabled: bool = False
    signal_api_url: str = "http://127.0.0.1:8080"
    signal_allowed_numbers: List[str] = Field(default_factory=list)
    signal_allowed_groups: List[str] = Field(default_factory=list)
    signal_rate_limit_per_minute: int = Field(default=30, gt=0)
    signal_trust_on_first_use: bool = True

    # Secrets
    gateway_token: Optional[SecretStr] = None
    encryption_key: Optional[SecretStr] = None
    pii_hmac_secret: Optional[SecretStr] = None
    session_secret: Optional[SecretStr] = None
    llm_api_key: Optional[SecretStr] = None

    @field_validator(
        "gateway_token", "encryption_key", "pii_hmac_secret", "session_secret", "llm_api_key", mode="before"
    )
    @classmethod
    def blank_secret_is_unset(cls, v: Optional[str]) -> Optional[str]:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def state_path(self) -> Path:
        return resolve_path(self.state_dir)

    @property
    def audit_path(self) -> Path:
        return resolve_path(self.audit_log_path)

    def secret(self, name: str) -> Optional[str]:
        """Returns the plain value of a secret, or None when it is not configured."""
        value: Optional[SecretStr] = getattr(self, name)
        return value.get_secret_value() if value else None

    def require_secret(self, name: str) -> str:
        """
        Returns a secret that a feature cannot run without.

        Raises:
            ConfigurationError: If the secret is not configured.
        """
        value = self.secret(name)
        if not value:
            env_name = f"OPENCLAW_{name.upper()}"
            raise ConfigurationError(f"{env_name} is missing. It is required for this operation.")
        return value

    def signal_allowlist(self) -> AllowlistConfig:
        return AllowlistConfig(
            allowed_numbers=frozenset(self.signal_allowed_numbers),
            allowed_groups=frozenset(self.signal_allowed_groups),
            rate_limit_per_minute=self.signal_rate_limit_per_minute,
        )

    def retention(self) -> RetentionConfig:
        return RetentionConfig(transcript_ttl_days=self.retention_days)
