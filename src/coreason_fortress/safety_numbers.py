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
Safety-number (identity key fingerprint) tracking with trust on first use.

A fingerprint change for a known contact is treated as a possible
man-in-the-middle: the contact is suspended until an operator clears it.
"""

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

from pydantic import TypeAdapter, ValidationError

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.masking import mask_contact
from coreason_fortress.models import SafetyNumberRecord
from coreason_fortress.utils.logger import logger

STORE_FILE = "safety-numbers.json"
FINGERPRINT_PREVIEW = 8

TrackOutcome = Literal["new", "unchanged", "changed"]

_STORE_ADAPTER = TypeAdapter(Dict[str, SafetyNumberRecord])


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _preview(fingerprint: str) -> str:
    return fingerprint[:FINGERPRINT_PREVIEW] + "..."


class SafetyNumberStore:
    """JSON-backed map of contact id to SafetyNumberRecord (file 0600, parent 0700)."""

    def __init__(self, path: Union[str, Path], audit_logger: Optional[AuditLogger] = None) -> None:
        self.path = Path(path).expanduser()
        self.audit_log = audit_logger or get_audit_logger()

    def _load(self) -> Dict[str, SafetyNumberRecord]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return _STORE_ADAPTER.validate_python(raw.get("contacts", {}))
        except (json.JSONDecodeError, ValidationError, AttributeError) as e:
            self.audit_log.error("safety_number_store_corrupt", details={"error": type(e).__name__})
            return {}

    def _save(self, contacts: Dict[str, SafetyNumberRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        payload = {"contacts": {cid: rec.model_dump(mode="json") for cid, rec in contacts.items()}}
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)

    def track(self, contact_id: str, fingerprint: str, trust_on_first_use: bool) -> TrackOutcome:
        """
        Records the fingerprint seen for a contact.

        Args:
            contact_id: The contact the fingerprint belongs to.
            fingerprint: The identity key fingerprint reported by the daemon.
            trust_on_first_use: Whether a first sighting counts as verified.

        Returns:
            "new" for a first sighting, "unchanged" when it matches the stored
            value, "changed" when it differs (the contact is now suspended).
        """
        contacts = self._load()
        existing = contacts.get(contact_id)
        now = _now_iso()

        if existing is None:
            contacts[contact_id] = SafetyNumberRecord(
                contact_id=contact_id,
                fingerprint=fingerprint,
                verified=trust_on_first_use,
                first_seen=now,
                last_seen=now,
            )
            self._save(contacts)
            self.audit_log.info("safety_number_new", contact_id=contact_id)
            return "new"

        if existing.fingerprint == fingerprint:
            existing.last_seen = now
            self._save(contacts)
            return "unchanged"

        self.audit_log.critical(
            "safety_number_changed",
            contact_id=contact_id,
            details={
                "oldFingerprint": _preview(existing.fingerprint),
                "newFingerprint": _preview(fingerprint),
            },
        )
        logger.warning(f"Safety number changed for {mask_contact(contact_id)}; contact suspended")
        existing.fingerprint = fingerprint
        existing.verified = False
        existing.suspended = True
        existing.last_seen = now
        self._save(contacts)
        return "changed"

    def is_suspended(self, contact_id: str) -> bool:
        record = self._load().get(contact_id)
        return record.suspended if record else False

    def clear_suspension(self, contact_id: str) -> bool:
        """Marks a contact verified after out-of-band confirmation. False if unknown."""
        contacts = self._load()
        record = contacts.get(contact_id)
        if record is None:
            return False
        record.suspended = False
        record.verified = True
        self._save(contacts)
        self.audit_log.info("safety_number_cleared", contact_id=contact_id)
        return True

    def get_record(self, contact_id: str) -> Optional[SafetyNumberRecord]:
        return self._load().get(contact_id)

    def list_contacts(self) -> List[SafetyNumberRecord]:
        return list(self._load().values())

    def forget(self, contact_id: str) -> bool:
        contacts = self._load()
        if contacts.pop(contact_id, None) is None:
            return False
        self._save(contacts)
        return True
