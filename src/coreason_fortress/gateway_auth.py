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
Gateway token authentication.

Constant-time token comparison, token entropy checks and per-IP rate limiting
for WebSocket/HTTP connections to the gateway.
"""

import hashlib
import hmac
import re
import secrets
import time
from typing import Callable, Optional

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.models import AuthResult
from coreason_fortress.rate_limit import SlidingWindowRateLimiter

MIN_TOKEN_ENTROPY_BYTES = 16
MAX_REQUESTS_PER_WINDOW = 60

_NON_HEX = re.compile(r"[^0-9a-fA-F]")


def check_token_entropy(token: str) -> bool:
    """
    Requires at least 32 hex characters (128 bits).

    Non-hex characters do not count, so a long low-entropy token still fails.
    """
    hex_chars = len(_NON_HEX.sub("", token))
    return hex_chars // 2 >= MIN_TOKEN_ENTROPY_BYTES


def verify_token(provided: Optional[str], expected: Optional[str]) -> bool:
    """
    Constant-time token comparison.

    Both values are hashed to fixed-length digests before comparison, so
    neither a length mismatch nor a shared prefix changes the timing. The
    original lengths are compared as well.
    """
    if not provided or not expected:
        return False

    provided_bytes = provided.encode("utf-8")
    expected_bytes = expected.encode("utf-8")
    digests_match = hmac.compare_digest(
        hashlib.sha256(provided_bytes).digest(),
        hashlib.sha256(expected_bytes).digest(),
    )
    return digests_match and len(provided_bytes) == len(expected_bytes)


def generate_token(nbytes: int = 32) -> str:
    """Generates a hex gateway token from `nbytes` of randomness."""
    return secrets.token_hex(nbytes)


class GatewayAuth:
    """
    Authenticates incoming gateway connections.

    Owns the per-IP rate limiter; construct one per process.
    """

    def __init__(
        self,
        audit_logger: Optional[AuditLogger] = None,
        max_requests_per_window: int = MAX_REQUESTS_PER_WINDOW,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.audit_log = audit_logger or get_audit_logger()
        self.max_requests_per_window = max_requests_per_window
        self._limiter = SlidingWindowRateLimiter(timer=timer)

    def check_rate_limit(self, key: str, max_requests: Optional[int] = None) -> bool:
        """Returns True if `key` is still under its budget for the current window."""
        limit = max_requests if max_requests is not None else self.max_requests_per_window
        if not self._limiter.hit(key, limit):
            self.audit_log.warn("rate_limit_exceeded", details={"ip": key})
            return False
        return True

    def reset_rate_limits(self) -> None:
        self._limiter.reset()

    def authenticate_request(self, provided: Optional[str], expected: Optional[str], ip: str) -> AuthResult:
        """
        Decides whether a connection may proceed.

        No configured token means an explicitly open gateway (WARN, allow).
        A missing token is logged at CRITICAL since it suggests probing. The
        rate limit is consumed before any comparison so guesses burn budget.
        """
        if not expected:
            self.audit_log.warn("gateway_no_token_configured")
            return AuthResult(ok=True)

        if not provided:
            self.audit_log.critical("gateway_auth_missing_token", details={"ip": ip})
            return AuthResult(ok=False, reason="Missing authentication token")

        if not self.check_rate_limit(ip):
            return AuthResult(ok=False, reason="Rate limited")

        if not verify_token(provided, expected):
            self.audit_log.critical("gateway_auth_failed", details={"ip": ip})
            return AuthResult(ok=False, reason="Invalid authentication token")

        return AuthResult(ok=True)
