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
Append-only structured audit log.

Every call to `AuditLogger.audit` appends exactly one JSON object per line to
the configured file. `contactId` and every string anywhere inside `details`
are passed through the PII redactor first; this is unconditional.

If the file cannot be written, the line goes to stderr prefixed with
`[AUDIT-FALLBACK]` so no event is silently dropped. CRITICAL entries are also
echoed to stderr immediately, whether or not the file write succeeded.
Entries are never retried, batched or reordered.
"""

import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO, Union

from coreason_fortress.config import resolve_path
from coreason_fortress.models import AuditEntry, AuditSeverity, ChannelType
from coreason_fortress.pii_detector import redact_pii
from coreason_fortress.utils.logger import logger

DEFAULT_AUDIT_LOG_PATH = "~/.openclaw/audit.jsonl"
FALLBACK_PREFIX = "[AUDIT-FALLBACK] "
CRITICAL_PREFIX = "[CRITICAL AUDIT] "


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        return redact_pii(value)
    if isinstance(value, dict):
        return {k: _scrub(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub(v) for v in value]
    return value


class AuditLogger:
    """
    Writes PII-scrubbed audit entries to a JSONL file.

    One instance per process, passed by reference to every component that
    records security decisions.
    """

    def __init__(self, path: Union[str, Path] = DEFAULT_AUDIT_LOG_PATH, stream: Optional[TextIO] = None) -> None:
        """
        Initializes the audit logger and creates its parent directory (0700).

        Args:
            path: Audit file location. A leading `~` is expanded.
            stream: Error stream for fallback and CRITICAL echo. Defaults to
                whatever `sys.stderr` is at write time.
        """
        self.path = resolve_path(str(path))
        self._stream = stream
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        except OSError as e:
            # Writes will fall back to stderr.
            logger.warning(f"Cannot create audit directory {self.path.parent}: {e}")

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stderr

    def audit(
        self,
        severity: AuditSeverity,
        event: str,
        *,
        channel: Optional[ChannelType] = None,
        contact_id: Optional[str] = None,
        session_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        """
        Appends one entry to the audit log.

        Returns:
            The entry as written (already scrubbed).
        """
        entry = AuditEntry(
            timestamp=datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            severity=AuditSeverity(severity),
            event=event,
            channel=channel,
            contact_id=redact_pii(contact_id) if contact_id else None,
            session_id=session_id,
            details=_scrub(details) if details else None,
        )
        line = json.dumps(entry.model_dump(by_alias=True, exclude_none=True), default=str, ensure_ascii=False) + "\n"

        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
            with os.fdopen(fd, "a", encoding="utf-8") as fh:
                fh.write(line)
        except OSError:
            self.stream.write(FALLBACK_PREFIX + line)

        if entry.severity == AuditSeverity.CRITICAL:
            self.stream.write(f"\x1b[91m{CRITICAL_PREFIX}{event}\x1b[0m\n")
            self.stream.flush()

        return entry

    def info(self, event: str, **opts: Any) -> AuditEntry:
        return self.audit(AuditSeverity.INFO, event, **opts)

    def warn(self, event: str, **opts: Any) -> AuditEntry:
        return self.audit(AuditSeverity.WARN, event, **opts)

    def error(self, event: str, **opts: Any) -> AuditEntry:
        return self.audit(AuditSeverity.ERROR, event, **opts)

    def critical(self, event: str, **opts: Any) -> AuditEntry:
        return self.audit(AuditSeverity.CRITICAL, event, **opts)

    def tail(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Returns the last `limit` parseable entries, oldest first."""
        if not self.path.exists():
            return []
        entries: List[Dict[str, Any]] = []
        with self.path.open("r", encoding="utf-8") as fh:
            for raw in fh:
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    entries.append(json.loads(raw))
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed audit line.")
        return entries[-limit:] if limit > 0 else entries


_DEFAULT_AUDIT_LOGGER: Optional[AuditLogger] = None


def configure_audit_log(path: Union[str, Path], stream: Optional[TextIO] = None) -> AuditLogger:
    """Replaces the process-wide audit logger used when none is injected."""
    global _DEFAULT_AUDIT_LOGGER
    _DEFAULT_AUDIT_LOGGER = AuditLogger(path, stream=stream)
    return _DEFAULT_AUDIT_LOGGER


def get_audit_logger() -> AuditLogger:
    global _DEFAULT_AUDIT_LOGGER
    if _DEFAULT_AUDIT_LOGGER is None:
        _DEFAULT_AUDIT_LOGGER = AuditLogger(DEFAULT_AUDIT_LOG_PATH)
    return _DEFAULT_AUDIT_LOGGER


def audit(severity: AuditSeverity, event: str, **opts: Any) -> AuditEntry:
    return get_audit_logger().audit(severity, event, **opts)


def audit_info(event: str, **opts: Any) -> AuditEntry:
    return get_audit_logger().info(event, **opts)


def audit_warn(event: str, **opts: Any) -> AuditEntry:
    return get_audit_logger().warn(event, **opts)


def audit_error(event: str, **opts: Any) -> AuditEntry:
    return get_audit_logger().error(event, **opts)


def audit_critical(event: str, **opts: Any) -> AuditEntry:
    return get_audit_logger().critical(event, **opts)
