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
Data models for CoReason Fortress.

This module defines the Pydantic models shared by the security pipeline:
audit entries, PII matches, guard verdicts, managed and persisted sessions,
channel messages, and the result types every gate returns. Gates never raise
for an expected policy rejection; they return one of these models with a
boolean discriminant (`ok`, `allowed`, `valid`, `safe`) and a `reason`.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ChannelType(str, Enum):
    """
    Enumeration of supported inbound channels.

    Attributes:
        SIGNAL: Private messaging via the signal-cli REST daemon.
        DISCORD: Team chat.
        WEBCHAT: Browser chat over the gateway WebSocket.
    """

    SIGNAL = "signal"
    DISCORD = "discord"
    WEBCHAT = "webchat"


class AuditSeverity(str, Enum):
    """Severity of an audit entry."""

    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AuditEntry(BaseModel):
    """
    One line of the JSONL audit log. Immutable once built.

    `contactId` and every string inside `details` are PII-scrubbed by the
    AuditLogger before the entry is constructed.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, use_enum_values=True)

    timestamp: str
    severity: AuditSeverity
    event: str
    channel: Optional[ChannelType] = None
    contact_id: Optional[str] = Field(default=None, alias="contactId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    details: Optional[Dict[str, Any]] = None


class PIIType(str, Enum):
    """Kinds of PII the regex detector recognises."""

    PHONE = "phone"
    SSN = "ssn"
    CREDIT_CARD = "credit_card"
    EMAIL = "email"
    GOV_ID = "gov_id"


class PIIMatch(BaseModel):
    """A single PII hit. `start`/`end` are half-open offsets into the source text."""

    model_config = ConfigDict(frozen=True)

    type: PIIType
    value: str
    start: int
    end: int


class GuardAction(str, Enum):
    """Verdict of the prompt guard, ordered by `rank`."""

    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"
    SUSPEND = "suspend"

    @property
    def rank(self) -> int:
        return _ACTION_RANK[self]


_ACTION_RANK = {
    GuardAction.ALLOW: 0,
    GuardAction.WARN: 1,
    GuardAction.BLOCK: 2,
    GuardAction.SUSPEND: 3,
}


class PromptGuardResult(BaseModel):
    """
    Outcome of a prompt scan.

    Attributes:
        safe: True iff no pattern matched.
        patterns: Matched pattern names in pattern-definition order.
        action: Highest-severity action among all matches.
    """

    safe: bool
    patterns: List[str] = Field(default_factory=list)
    action: GuardAction = GuardAction.ALLOW


class AllowlistResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class AuthResult(BaseModel):
    ok: bool
    reason: Optional[str] = None


class URLValidation(BaseModel):
    """Result of an SSRF check. `hostname` is set whenever the URL parsed."""

    ok: bool
    reason: Optional[str] = None
    url: Optional[str] = None
    hostname: Optional[str] = None


class PathValidation(BaseModel):
    ok: bool
    resolved: Optional[str] = None
    reason: Optional[str] = None


class ManagedSession(BaseModel):
    """
    An ephemeral, cryptographically named session bound to (channel, contact).

    All timestamps are epoch milliseconds.
    """

    id: str
    contact_id: str
    channel: ChannelType
    created_at: int
    last_active_at: int
    expires_at: int
    rotated_from: Optional[str] = None


class SessionValidation(BaseModel):
    valid: bool
    reason: Optional[str] = None
    session: Optional[ManagedSession] = None


class Attachment(BaseModel):
    content_type: str
    filename: Optional[str] = None
    size: Optional[int] = None
    url: Optional[str] = None


class IncomingMessage(BaseModel):
    """The value a channel adapter hands to the pipeline."""

    channel: ChannelType
    contact_id: str
    text: str
    timestamp: int
    group_id: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)


class AgentMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: int
    channel: ChannelType
    contact_id: str


class AgentSession(BaseModel):
    """A conversation with one contact on one channel, as persisted to disk."""

    id: str
    agent_id: str = "default"
    contact_id: str
    channel: ChannelType
    messages: List[AgentMessage] = Field(default_factory=list)
    created_at: int
    last_active_at: int
    expires_at: int
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SafetyNumberRecord(BaseModel):
    """
    Identity-continuity record for one contact (trust on first use).

    A fingerprint change always sets `suspended=True` and `verified=False`;
    only an explicit administrative clearance resets them.
    """

    contact_id: str
    fingerprint: str
    verified: bool
    first_seen: str
    last_seen: str
    suspended: bool = False


class ConsentRecord(BaseModel):
    contact_id: str
    consent_given: bool
    consent_date: str
    purposes: List[str] = Field(default_factory=list)
    version: str = "1.0"


class ValidationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)


class ErasureReport(BaseModel):
    files_deleted: int = 0
    sessions_evicted: int = 0
    locations: List[str] = Field(default_factory=list)


class SkillRiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SkillManifest(BaseModel):
    name: str
    version: str
    description: str
    entry_point: str
    risk_level: SkillRiskLevel = SkillRiskLevel.LOW
    author: Optional[str] = None
    hash: Optional[str] = None


class IntegrityResult(BaseModel):
    valid: bool
    reason: Optional[str] = None


class SecurityCheckStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    WARN = "WARN"
    SKIP = "SKIP"


class SecurityCheckResult(BaseModel):
    id: str
    name: str
    status: SecurityCheckStatus
    message: str


class Allowed(BaseModel):
    """The message passed every gate; `reply` goes back to the sender."""

    kind: Literal["allowed"] = "allowed"
    reply: str
    session_id: Optional[str] = None


class Rejected(BaseModel):
    """
    The message was stopped by a gate.

    Attributes:
        reason: Human-readable reason. Never contains internal detail.
        stage: The gate that rejected the message.
        silent: Whether the channel boundary should drop without replying.
    """

    kind: Literal["rejected"] = "rejected"
    reason: str
    stage: str
    silent: bool = True


PipelineResult = Union[Allowed, Rejected]
