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
Per-message gate composition.

Gates run strictly in order and the first rejection wins:

1. input validation (text and attachments)
2. safety-number suspension
3. allowlist and per-sender rate limit
4. prompt-injection scan (warn passes, block and suspend reject)
5. agent

Gates never reply. The pipeline returns `Allowed` or `Rejected` and the
channel boundary decides what to send back.
"""

from typing import Dict, Optional

from coreason_fortress.agent import Agent
from coreason_fortress.allowlist import AllowlistGate
from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.config import AllowlistConfig
from coreason_fortress.input_validation import validate_attachments, validate_message_text
from coreason_fortress.models import Allowed, ChannelType, GuardAction, IncomingMessage, PipelineResult, Rejected
from coreason_fortress.prompt_guard import scan_prompt
from coreason_fortress.safety_numbers import SafetyNumberStore

BLOCKED_REPLY = "Your message was blocked by a security policy."
INVALID_REPLY = "Your message could not be processed."


class MessagePipeline:
    """Runs every inbound message through the security gates, then the agent."""

    def __init__(
        self,
        agent: Agent,
        allowlist: Optional[AllowlistGate] = None,
        allowlist_configs: Optional[Dict[ChannelType, AllowlistConfig]] = None,
        safety_numbers: Optional[SafetyNumberStore] = None,
        prompt_guard_enabled: bool = True,
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initializes the pipeline.

        Args:
            agent: Produces replies for messages that pass every gate.
            allowlist: Allowlist gate. One is created if not given.
            allowlist_configs: Policy per channel. Channels without one are open.
            safety_numbers: Store consulted for suspended contacts.
            prompt_guard_enabled: Disables the injection scan when False.
            audit_logger: Destination for pipeline events.
        """
        self.audit_log = audit_logger or get_audit_logger()
        self.agent = agent
        self.allowlist = allowlist or AllowlistGate(audit_logger=self.audit_log)
        self.allowlist_configs = allowlist_configs or {}
        self.safety_numbers = safety_numbers
        self.prompt_guard_enabled = prompt_guard_enabled

    async def process(self, msg: IncomingMessage) -> PipelineResult:
        text_check = validate_message_text(msg.text)
        attachment_check = validate_attachments(msg.attachments, audit_logger=self.audit_log)
        if not (text_check.valid and attachment_check.valid):
            self.audit_log.warn(
                "input_validation_failed",
                channel=msg.channel,
                contact_id=msg.contact_id,
                details={"errors": text_check.errors + attachment_check.errors},
            )
            return Rejected(reason=INVALID_REPLY, stage="input_validation", silent=False)

        if self.safety_numbers is not None and self.safety_numbers.is_suspended(msg.contact_id):
            self.audit_log.warn("suspended_contact_message", channel=msg.channel, contact_id=msg.contact_id)
            return Rejected(reason="Contact suspended", stage="safety_number")

        config = self.allowlist_configs.get(ChannelType(msg.channel), AllowlistConfig())
        decision = self.allowlist.check_allowlist(msg.contact_id, msg.group_id, config, channel=msg.channel)
        if not decision.allowed:
            return Rejected(reason=decision.reason or "Not allowed", stage="allowlist")

        if self.prompt_guard_enabled:
            verdict = scan_prompt(msg.text, audit_logger=self.audit_log)
            if verdict.action == GuardAction.SUSPEND:
                # Conversation state may already be poisoned.
                self.agent.clear_session(msg.contact_id, msg.channel)
                self.audit_log.warn("session_suspended", channel=msg.channel, contact_id=msg.contact_id)
            if verdict.action.rank >= GuardAction.BLOCK.rank:
                return Rejected(reason=BLOCKED_REPLY, stage="prompt_guard", silent=False)

        reply = await self.agent.handle_message(msg)
        session = self.agent.get_session(msg.contact_id, msg.channel)
        return Allowed(reply=reply, session_id=session.id if session else None)
