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
Security doctor: a configuration health report.

Each check inspects `Settings` (and a few process facts) and returns a
SecurityCheckResult with PASS, WARN, FAIL or SKIP.
"""

from typing import Callable, List, Optional

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.config import Settings
from coreason_fortress.daemon_guard import assert_loopback, check_not_root
from coreason_fortress.gateway_auth import check_token_entropy
from coreason_fortress.models import SecurityCheckResult, SecurityCheckStatus
from coreason_fortress.safety_numbers import STORE_FILE

MIN_SECRET_LENGTH = 32

PASS = SecurityCheckStatus.PASS
WARN = SecurityCheckStatus.WARN
FAIL = SecurityCheckStatus.FAIL
SKIP = SecurityCheckStatus.SKIP

Check = Callable[[Settings, AuditLogger], SecurityCheckResult]


def _result(check_id: str, name: str, status: SecurityCheckStatus, message: str) -> SecurityCheckResult:
    return SecurityCheckResult(id=check_id, name=name, status=status, message=message)


def _pii_hmac_secret(s: Settings, _: AuditLogger) -> SecurityCheckResult:
    secret = s.secret("pii_hmac_secret")
    if not secret:
        return _result("P-01", "PII HMAC Secret", FAIL, "Not configured")
    if len(secret) < MIN_SECRET_LENGTH:
        return _result("P-01", "PII HMAC Secret", WARN, f"Secret too short (<{MIN_SECRET_LENGTH} chars)")
    return _result("P-01", "PII HMAC Secret", PASS, "Configured with sufficient entropy")


def _pii_detection(s: Settings, _: AuditLogger) -> SecurityCheckResult:
    if s.pii_detection_enabled:
        return _result("P-02", "PII Detection", PASS, "Enabled")
    return _result("P-02", "PII Detection", WARN, "Disabled")


def _encryption_key(s: Settings, _: AuditLogger) -> SecurityCheckResult:
    key = s.secret("encryption_key")
    if not key:
        return _result("P-03", "Encryption Key", FAIL, "Not configured")
    if len(key) < MIN_SECRET_LENGTH:
        return _result("P-03", "Encryption Key", WARN, "Key too short")
    return _result("P-03", "Encryption Key", PASS, "AES-256 key configured")


def _daemon_loopback(s: Settings, audit_log: AuditLogger) -> SecurityCheckResult:
    if not s.signal_enabled:
        return _result("S-01", "Daemon Guard", SKIP, "Signal not enabled")
    if assert_loopback(s.signal_api_url, audit_logger=audit_log):
        return _result("S-01", "Daemon Guard", PASS, "Loopback only")
    return _result("S-01", "Daemon Guard", FAIL, "Not on loopback!")


def _allowlist(s: Settings, _: AuditLogger) -> SecurityCheckResult:
    if not s.signal_enabled:
        return _result("S-02", "Allowlist", SKIP, "Signal not enabled")
    if s.signal_allowed_numbers:
        return _result("S-02", "Allowlist", PASS, f"{len(s.signal_allowed_numbers)} numbers")
    return _result("S-02", "Allowlist", WARN, "Open mode (no allowlist)")


def _safety_numbers(s: Settings, _: AuditLogger) -> SecurityCheckResult:
    if not s.signal_enabled:
        return _result("S-03", "Safety Numbers", SKIP, "Signal not enabled")
    if (s.state_path / STORE_FILE).exists():
        return _result("S-03", "Safety Numbers", PASS, "Tracking active")
    return _result("S-03", "Safety Numbers", WARN, "No safety numbers tracked yet")


def _gateway_token(s: Settings, _: AuditLogger) -> SecurityCheckResult:
    token = s.secret("gateway_token")
    if not token:
        return _result("G-01", "Gateway Auth", WARN, "No gateway token, open access")
    if not check_token_entropy(token):
        return _result("G-01", "Gateway Auth", WARN, "Token entropy too low")
    return _result("G-01", "Gateway Auth", PASS, "Token configured with sufficient entropy")


def _path_security(s: Settings, _: AuditLogger) -> SecurityCheckResult:
    return _result("G-02", "Path Security", PASS, "Jail checks + null byte blocking active")


def _ssrf(s: Settings, _: AuditLogger) -> SecurityCheckResult:
    return _result("G-03", "SSRF Guard", PASS, "Scheme, credential and private address checks active")


def _security_headers(s: Settings, _: AuditLogger) -> SecurityCheckResult:
    return _result("G-04", "Security Headers", PASS, "CSP + HSTS + X-Frame-Options active")


def _prompt_guard(s: Settings, _: AuditLogger) -> SecurityCheckResult:
    if s.prompt_guard_enabled:
        return _result("A-01", "Prompt Guard", PASS, "13 injection patterns active")
    return _result("A-01", "Prompt Guard", WARN, "Disabled")


def _audit_log(s: Settings, _: AuditLogger) -> SecurityCheckResult:
    return _result("A-02", "Audit Logger", PASS, f"Logging to {s.audit_path}")


def _session_secret(s: Settings, _: AuditLogger) -> SecurityCheckResult:
    if not s.secret("session_secret"):
        return _result("A-03", "Session Manager", WARN, "No session secret configured")
    return _result("A-03", "Session Manager", PASS, f"Max age: {s.max_session_age}s")


def _consent(s: Settings, _: AuditLogger) -> SecurityCheckResult:
    if s.secret("encryption_key"):
        return _result("E-01", "PII Consent", PASS, "Encrypted consent store ready")
    return _result("E-01", "PII Consent", WARN, "Needs encryption key")


def _retention(s: Settings, _: AuditLogger) -> SecurityCheckResult:
    return _result("E-04", "Retention Policy", PASS, f"{s.retention_days}-day retention")


def _not_root(s: Settings, audit_log: AuditLogger) -> SecurityCheckResult:
    if check_not_root(audit_logger=audit_log):
        return _result("F-01", "Process Isolation", PASS, "Not running as root")
    return _result("F-01", "Process Isolation", FAIL, "Running as root!")


CHECKS: List[Check] = [
    _pii_hmac_secret,
    _pii_detection,
    _encryption_key,
    _daemon_loopback,
    _allowlist,
    _safety_numbers,
    _gateway_token,
    _path_security,
    _ssrf,
    _security_headers,
    _prompt_guard,
    _audit_log,
    _session_secret,
    _consent,
    _retention,
    _not_root,
]


def run_security_doctor(settings: Settings, audit_logger: Optional[AuditLogger] = None) -> List[SecurityCheckResult]:
    """Runs every check in order."""
    audit_log = audit_logger or get_audit_logger()
    return [check(settings, audit_log) for check in CHECKS]


_ICONS = {PASS: "✓", WARN: "!", FAIL: "✗", SKIP: "-"}


def format_doctor_results(results: List[SecurityCheckResult]) -> str:
    """Renders results as a plain-text table with a summary line."""
    counts = {status: sum(1 for r in results if r.status == status) for status in SecurityCheckStatus}
    lines = ["", "  OpenClaw Fortress: Security Doctor", ""]
    for r in results:
        lines.append(f"  {_ICONS[r.status]} {r.id} {r.name:<22} {r.status.value:<4} {r.message}")
    lines.append("")
    lines.append(
        f"  Results: {counts[PASS]} PASS  {counts[WARN]} WARN  {counts[FAIL]} FAIL  {counts[SKIP]} SKIP"
    )
    lines.append(f"  Score: {counts[PASS]}/{len(results) - counts[SKIP]} checks passed")
    return "\n".join(lines) + "\n"
