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
Retention enforcement and data minimization.

Retention purges state files by age (mtime). Minimization trims what is kept
or sent onward: conversation length, message metadata, and identifying keys.
"""

import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.config import RetentionConfig
from coreason_fortress.models import AgentMessage
from coreason_fortress.persistence import SESSIONS_DIR, TRANSCRIPTS_DIR

SENSITIVE_METADATA_KEYS = frozenset({"ip", "email", "phone", "address", "ssn", "name", "useragent"})


class RetentionReport(BaseModel):
    total_purged: int
    breakdown: Dict[str, int]


def purge_dir(directory: Path, ttl_days: float, now: Optional[float] = None) -> int:
    """Deletes regular files in `directory` whose mtime is older than `ttl_days`."""
    if not directory.exists():
        return 0
    cutoff = (now if now is not None else time.time()) - ttl_days * 86400
    purged = 0
    for path in directory.iterdir():
        if path.is_file() and path.stat().st_mtime < cutoff:
            path.unlink()
            purged += 1
    return purged


def enforce_retention(
    state_dir: Path,
    config: Optional[RetentionConfig] = None,
    audit_logger: Optional[AuditLogger] = None,
    now: Optional[float] = None,
) -> RetentionReport:
    """
    Purges expired session and transcript files under `state_dir`.

    Args:
        state_dir: Root of the state tree.
        config: TTLs in days. Defaults to RetentionConfig().
        audit_logger: Destination for the summary event.
        now: Override for the current epoch time in seconds.
    """
    retention = config or RetentionConfig()
    breakdown = {
        "sessions": purge_dir(Path(state_dir) / SESSIONS_DIR, retention.session_ttl_days, now),
        "transcripts": purge_dir(Path(state_dir) / TRANSCRIPTS_DIR, retention.transcript_ttl_days, now),
    }
    total = sum(breakdown.values())
    if total:
        (audit_logger or get_audit_logger()).info(
            "retention_enforced", details={"totalPurged": total, "breakdown": breakdown}
        )
    return RetentionReport(total_purged=total, breakdown=breakdown)


def strip_metadata_for_llm(messages: Sequence[AgentMessage]) -> List[Dict[str, str]]:
    """Keeps only role and content. Timestamps, channel and contact id never leave."""
    return [{"role": m.role, "content": m.content} for m in messages]


def prune_conversation(
    messages: List[AgentMessage],
    max_messages: int,
    audit_logger: Optional[AuditLogger] = None,
) -> List[AgentMessage]:
    """Keeps the most recent `max_messages` messages."""
    if len(messages) <= max_messages:
        return messages
    pruned = messages[-max_messages:] if max_messages > 0 else []
    (audit_logger or get_audit_logger()).info(
        "conversation_pruned", details={"original": len(messages), "remaining": len(pruned)}
    )
    return pruned


def minimize_metadata(metadata: Mapping[str, Any]) -> Dict[str, Any]:
    """Drops identifying keys (case-insensitive) before storage."""
    return {k: v for k, v in metadata.items() if k.lower() not in SENSITIVE_METADATA_KEYS}
