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
Sender and group allowlisting for messaging channels.

Rejections are silent at the channel level; the gate only returns a result
and records a WARN audit entry. Checks run group, then sender, then rate
limit, so a disallowed group cannot be used to probe which senders are on
the list.
"""

import time
from typing import AbstractSet, Callable, Optional

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.config import AllowlistConfig
from coreason_fortress.masking import mask_contact
from coreason_fortress.models import AllowlistResult, ChannelType
from coreason_fortress.rate_limit import SlidingWindowRateLimiter
from coreason_fortress.utils.logger import logger


def is_number_allowed(number: str, allowed_numbers: AbstractSet[str]) -> bool:
    """Empty allowlist means open mode."""
    if not allowed_numbers:
        return True
    return number in allowed_numbers


def is_group_allowed(group_id: str, allowed_groups: AbstractSet[str]) -> bool:
    """Empty allowlist means open mode."""
    if not allowed_groups:
        return True
    return group_id in allowed_groups


class AllowlistGate:
    """Allowlist plus per-sender sliding-window rate limiting."""

    def __init__(
        self,
        audit_logger: Optional[AuditLogger] = None,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.audit_log = audit_logger or get_audit_logger()
        self._limiter = SlidingWindowRateLimiter(timer=timer)

    def check_allowlist(
        self,
        sender: str,
        group_id: Optional[str],
        config: AllowlistConfig,
        channel: Optional[ChannelType] = None,
    ) -> AllowlistResult:
        """
        Full allowlist check for an incoming message.

        Args:
            sender: The sender's contact id (E.164 number for Signal).
            group_id: Group the message was posted to, if any.
            config: Policy for the channel.
            channel: Recorded in audit entries only.
        """
        if group_id:
            if not is_group_allowed(group_id, config.allowed_groups):
                self.audit_log.warn("allowlist_group_blocked", channel=channel, details={"groupId": group_id})
                return AllowlistResult(allowed=False, reason="Group not in allowlist")

        if not is_number_allowed(sender, config.allowed_numbers):
            self.audit_log.warn("allowlist_number_blocked", channel=channel, contact_id=sender)
            return AllowlistResult(allowed=False, reason="Number not in allowlist")

        if not self._limiter.hit(sender, config.rate_limit_per_minute):
            self.audit_log.warn("allowlist_rate_limited", channel=channel, contact_id=sender)
            logger.debug(f"Rate limited {mask_contact(sender)}")
            return AllowlistResult(allowed=False, reason="Rate limited")

        return AllowlistResult(allowed=True)

    def reset_rate_limits(self) -> None:
        self._limiter.reset()
