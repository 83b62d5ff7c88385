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
Right to erasure: destroys every stored trace of a contact.

Persisted sessions are encrypted, so they are matched by decrypting each one
and comparing `contact_id`. Transcript and agent-workspace files are matched
by file name and overwritten with random bytes before unlinking.
"""

import os
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.consent import ConsentStore
from coreason_fortress.models import ErasureReport
from coreason_fortress.persistence import StatePersistence
from coreason_fortress.safety_numbers import SafetyNumberStore
from coreason_fortress.utils.logger import logger

if TYPE_CHECKING:
    from coreason_fortress.agent import Agent


def secure_delete(path: Path) -> None:
    """Overwrites a file with random bytes, then unlinks it."""
    if not path.exists():
        return
    try:
        size = path.stat().st_size
        with path.open("r+b") as fh:
            fh.write(os.urandom(size))
            fh.flush()
            os.fsync(fh.fileno())
    except OSError as e:
        logger.warning(f"Overwrite before delete failed for {path.name}: {e}")
    path.unlink(missing_ok=True)


def names_contact(path: Path, contact_id: str) -> bool:
    """
    True if a file is named for `contact_id`.

    Files are named `<contact>.<ext>` or `<prefix>-<contact>.<ext>`. The contact
    part must match exactly, so `1` never matches `signal-+12025550101.jsonl`.
    """
    stem = path.stem
    if stem == contact_id:
        return True
    _, sep, rest = stem.partition("-")
    return bool(sep) and rest == contact_id


def erase_contact(
    contact_id: str,
    persistence: StatePersistence,
    *,
    safety_numbers: Optional[SafetyNumberStore] = None,
    consent: Optional[ConsentStore] = None,
    agent: Optional["Agent"] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> ErasureReport:
    """
    Executes a full erasure for one contact.

    Args:
        contact_id: The contact to erase.
        persistence: State store holding sessions, transcripts and workspaces.
        safety_numbers: Safety-number store to drop the contact from.
        consent: Consent store to drop the contact from.
        agent: Running agent whose in-memory sessions should be evicted.
        audit_logger: Destination for erasure events.

    Returns:
        ErasureReport counting deleted files and listing touched locations.
    """
    audit_log = audit_logger or get_audit_logger()
    audit_log.critical("erasure_started", contact_id=contact_id)
    report = ErasureReport()

    if agent is not None:
        report.sessions_evicted = agent.evict_contact(contact_id)

    for session_id in persistence.find_sessions_for_contact(contact_id):
        if persistence.delete_session(session_id):
            report.files_deleted += 1
    report.locations.append("sessions")

    transcripts = persistence.transcripts_dir
    if transcripts.exists():
        for path in transcripts.iterdir():
            if path.is_file() and names_contact(path, contact_id):
                secure_delete(path)
                report.files_deleted += 1
        report.locations.append("transcripts")

    agents = persistence.agents_dir
    if agents.exists():
        for workspace in agents.iterdir():
            if not workspace.is_dir():
                continue
            for path in workspace.iterdir():
                if path.is_file() and names_contact(path, contact_id):
                    secure_delete(path)
                    report.files_deleted += 1
        report.locations.append("agent-workspaces")

    if safety_numbers is not None and safety_numbers.forget(contact_id):
        report.files_deleted += 1
        report.locations.append("safety-numbers")

    if consent is not None and consent.forget(contact_id):
        report.files_deleted += 1
        report.locations.append("consent")

    audit_log.info(
        "erasure_completed",
        contact_id=contact_id,
        details={
            "filesDeleted": report.files_deleted,
            "sessionsEvicted": report.sessions_evicted,
            "locations": report.locations,
        },
    )
    return report
