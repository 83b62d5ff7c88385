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
Encrypted on-disk state.

Mirrors agent sessions to `<state_dir>/sessions/<id>.enc`, one AEAD-encrypted
JSON file per session. Session ids are validated and every resolved path is
checked against its jail directory before any filesystem access.
"""

import json
import shutil
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

from pydantic import ValidationError

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.exceptions import DecryptionError, EncryptedFileNotFoundError
from coreason_fortress.models import AgentSession
from coreason_fortress.path_jail import is_inside_jail, is_valid_session_id
from coreason_fortress.sessions import now_ms
from coreason_fortress.utils.logger import logger
from coreason_fortress.vault import read_encrypted_json, write_encrypted_json

AGENTS_DIR = "agents"
SESSIONS_DIR = "sessions"
SKILLS_DIR = "skills"
TRANSCRIPTS_DIR = "transcripts"
SESSION_SUFFIX = ".enc"
SESSION_INFO = "openclaw-session"


class StatePersistence:
    """Durable encrypted mirror of agent sessions plus the state directory layout."""

    def __init__(
        self,
        state_dir: Union[str, Path],
        encryption_key: str,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """
        Initializes the store and creates its directories (0700).

        Args:
            state_dir: Root of the state tree.
            encryption_key: Master key for session files.
            audit_logger: Destination for persistence events.
            clock: Returns the current time in epoch milliseconds.
        """
        self.base_dir = Path(state_dir).expanduser()
        self._key = encryption_key
        self.audit_log = audit_logger or get_audit_logger()
        self._clock = clock
        self._ensure_dirs()

    def _ensure_dirs(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        for name in (AGENTS_DIR, SESSIONS_DIR, SKILLS_DIR, TRANSCRIPTS_DIR):
            (self.base_dir / name).mkdir(exist_ok=True, mode=0o700)

    @property
    def sessions_dir(self) -> Path:
        return self.base_dir / SESSIONS_DIR

    @property
    def transcripts_dir(self) -> Path:
        return self.base_dir / TRANSCRIPTS_DIR

    @property
    def agents_dir(self) -> Path:
        return self.base_dir / AGENTS_DIR

    def _session_path(self, session_id: str) -> Optional[Path]:
        if not is_valid_session_id(session_id):
            return None
        path = self.sessions_dir / f"{session_id}{SESSION_SUFFIX}"
        if not is_inside_jail(path, self.sessions_dir):
            return None
        return path

    # Sessions

    def save_session(self, session: AgentSession) -> None:
        """
        Writes a session atomically.

        Raises:
            ValueError: If the session id is not a safe file name.
        """
        path = self._session_path(session.id)
        if path is None:
            raise ValueError("Invalid session ID")
        write_encrypted_json(path, session.model_dump(mode="json"), self._key, SESSION_INFO)

    def load_session(self, session_id: str) -> Optional[AgentSession]:
        """
        Loads a session, or None if the id is invalid, the file is missing, or
        the content fails integrity checks (audited at CRITICAL).
        """
        path = self._session_path(session_id)
        if path is None:
            return None
        try:
            raw = read_encrypted_json(path, self._key, SESSION_INFO, audit_logger=self.audit_log)
        except (EncryptedFileNotFoundError, DecryptionError):
            return None
        try:
            return AgentSession.model_validate(raw)
        except ValidationError as e:
            self.audit_log.error("session_invalid", session_id=session_id, details={"errors": e.error_count()})
            return None

    def delete_session(self, session_id: str) -> bool:
        path = self._session_path(session_id)
        if path is None or not path.exists():
            return False
        path.unlink()
        self.audit_log.info("session_deleted", session_id=session_id)
        return True

    def list_sessions(self) -> List[str]:
        if not self.sessions_dir.exists():
            return []
        return sorted(p.name[: -len(SESSION_SUFFIX)] for p in self.sessions_dir.glob(f"*{SESSION_SUFFIX}"))

    def load_all_sessions(self) -> List[AgentSession]:
        sessions = []
        for sid in self.list_sessions():
            session = self.load_session(sid)
            if session is not None:
                sessions.append(session)
        return sessions

    def prune_expired_sessions(self) -> int:
        """Deletes every persisted session whose `expires_at` is in the past."""
        now = self._clock()
        pruned = 0
        for session in self.load_all_sessions():
            if session.expires_at < now and self.delete_session(session.id):
                pruned += 1
        if pruned:
            self.audit_log.info("sessions_pruned", details={"count": pruned})
        return pruned

    def find_sessions_for_contact(self, contact_id: str) -> List[str]:
        """Decrypts each persisted session and returns the ids belonging to `contact_id`."""
        return [s.id for s in self.load_all_sessions() if s.contact_id == contact_id]

    # Agent workspaces

    def get_agent_dir(self, agent_id: str) -> Path:
        if not is_valid_session_id(agent_id):
            raise ValueError("Invalid agent ID")
        return self.agents_dir / agent_id

    def ensure_agent_dir(self, agent_id: str) -> Path:
        path = self.get_agent_dir(agent_id)
        path.mkdir(parents=True, exist_ok=True, mode=0o700)
        return path

    def delete_agent_dir(self, agent_id: str) -> None:
        path = self.get_agent_dir(agent_id)
        if not is_inside_jail(path, self.agents_dir):
            raise ValueError("Path escape detected")
        if path.exists():
            shutil.rmtree(path)
            self.audit_log.info("agent_workspace_deleted", details={"agentId": agent_id})

    def list_agents(self) -> List[str]:
        if not self.agents_dir.exists():
            return []
        return sorted(p.name for p in self.agents_dir.iterdir() if p.is_dir())

    # Transcripts

    def append_transcript(self, name: str, record: dict) -> Path:
        """Appends one JSON line to `transcripts/<name>.jsonl` (0600)."""
        path = self.transcripts_dir / f"{name}.jsonl"
        if not is_inside_jail(path, self.transcripts_dir):
            raise ValueError("Path escape detected")
        with path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record, default=str) + "\n")
        path.chmod(0o600)
        return path

    def prune_transcripts(self, retention_days: float) -> int:
        """Deletes transcript files whose mtime is older than `retention_days`."""
        if not self.transcripts_dir.exists():
            return 0
        cutoff = time.time() - retention_days * 86400
        pruned = 0
        for path in self.transcripts_dir.iterdir():
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                pruned += 1
        if pruned:
            logger.info(f"Pruned {pruned} transcript file(s) older than {retention_days} days.")
        return pruned
