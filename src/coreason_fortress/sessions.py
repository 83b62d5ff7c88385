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
In-memory managed sessions.

Sessions are bound to a (channel, contact) pair and carry an absolute expiry.
Expiry is a predicate evaluated on read; there is no background sweeper. A
session found expired during validation is deleted before the failure is
returned.
"""

import secrets
import time
from typing import Callable, Dict, List, Optional

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.models import ChannelType, ManagedSession, SessionValidation


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_session_id() -> str:
    """32 random bytes, base64url without padding."""
    return secrets.token_urlsafe(32)


class SessionManager:
    """Table of ManagedSessions keyed by session id."""

    def __init__(
        self,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """
        Initializes an empty session table.

        Args:
            audit_logger: Destination for session lifecycle events.
            clock: Returns the current time in epoch milliseconds.
        """
        self.audit_log = audit_logger or get_audit_logger()
        self._clock = clock
        self._sessions: Dict[str, ManagedSession] = {}

    def create_session(self, contact_id: str, channel: ChannelType, max_age_seconds: float) -> ManagedSession:
        now = self._clock()
        session = ManagedSession(
            id=generate_session_id(),
            contact_id=contact_id,
            channel=channel,
            created_at=now,
            last_active_at=now,
            expires_at=now + int(max_age_seconds * 1000),
        )
        self._sessions[session.id] = session
        self.audit_log.info(
            "session_created_managed", session_id=session.id, channel=channel, contact_id=contact_id
        )
        return session

    def validate_session(self, session_id: str, contact_id: str, channel: ChannelType) -> SessionValidation:
        """
        Checks existence, expiry, then channel binding, then contact binding.

        A successful validation bumps `last_active_at`.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return SessionValidation(valid=False, reason="Session not found")

        now = self._clock()
        if now > session.expires_at:
            del self._sessions[session_id]
            self.audit_log.warn("session_expired_validation", session_id=session_id)
            return SessionValidation(valid=False, reason="Session expired")

        if session.channel != channel:
            self.audit_log.warn(
                "session_channel_mismatch",
                session_id=session_id,
                details={"expected": session.channel.value, "got": ChannelType(channel).value},
            )
            return SessionValidation(valid=False, reason="Channel binding mismatch")

        if session.contact_id != contact_id:
            self.audit_log.warn("session_contact_mismatch", session_id=session_id, contact_id=contact_id)
            return SessionValidation(valid=False, reason="Contact binding mismatch")

        session.last_active_at = now
        return SessionValidation(valid=True, session=session)

    def rotate_session(self, old_session_id: str) -> Optional[ManagedSession]:
        """
        Replaces a session with a freshly named copy.

        Binding and `expires_at` carry over. Unknown ids return None.
        """
        old = self._sessions.get(old_session_id)
        if old is None:
            return None

        rotated = old.model_copy(
            update={
                "id": generate_session_id(),
                "last_active_at": self._clock(),
                "rotated_from": old.id,
            }
        )
        del self._sessions[old_session_id]
        self._sessions[rotated.id] = rotated
        self.audit_log.info("session_rotated", session_id=rotated.id, details={"from": old_session_id})
        return rotated

    def destroy_session(self, session_id: str) -> bool:
        existed = self._sessions.pop(session_id, None) is not None
        if existed:
            self.audit_log.info("session_destroyed", session_id=session_id)
        return existed

    def get_session(self, session_id: str) -> Optional[ManagedSession]:
        """Returns the session if present and not expired."""
        session = self._sessions.get(session_id)
        if session is None or self._clock() > session.expires_at:
            return None
        return session

    def prune_expired_sessions(self) -> int:
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if s.expires_at < now]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def list_sessions(self) -> List[ManagedSession]:
        return list(self._sessions.values())

    def session_count(self) -> int:
        return len(self._sessions)

    def clear_all(self) -> None:
        self._sessions.clear()
