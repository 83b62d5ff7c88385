# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

"""Per-contact PII processing consent, stored encrypted."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.exceptions import ConfigurationError
from coreason_fortress.models import ConsentRecord
from coreason_fortress.vault import read_encrypted_json, write_encrypted_json

CONSENT_FILE = "consent.enc"
CONSENT_INFO = "openclaw-consent"


class ConsentStore:
    """
    Encrypted consent records keyed by contact id.

    An unreadable store is an integrity failure: the DecryptionError is
    audited at CRITICAL and propagates rather than being treated as empty.
    """

    def __init__(
        self,
        path: Union[str, Path],
        encryption_key: Optional[str],
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        if not encryption_key:
            raise ConfigurationError("Encryption key is required for the consent store")
        self.path = Path(path).expanduser()
        self._key = encryption_key
        self.audit_log = audit_logger or get_audit_logger()

    def _load(self) -> Dict[str, ConsentRecord]:
        if not self.path.exists():
            return {}
        raw = read_encrypted_json(self.path, self._key, CONSENT_INFO, audit_logger=self.audit_log)
        return {cid: ConsentRecord.model_validate(rec) for cid, rec in raw.get("records", {}).items()}

    def _save(self, records: Dict[str, ConsentRecord]) -> None:
        payload = {"records": {cid: rec.model_dump(mode="json") for cid, rec in records.items()}}
        write_encrypted_json(self.path, payload, self._key, CONSENT_INFO)

    def record_consent(self, contact_id: str, purposes: List[str]) -> ConsentRecord:
        records = self._load()
        record = ConsentRecord(
            contact_id=contact_id,
            consent_given=True,
            consent_date=datetime.now(timezone.utc).isoformat(),
            purposes=list(purposes),
        )
        records[contact_id] = record
        self._save(records)
        self.audit_log.info("consent_recorded", contact_id=contact_id, details={"purposes": list(purposes)})
        return record

    def has_consent(self, contact_id: str) -> bool:
        record = self._load().get(contact_id)
        return bool(record and record.consent_given)

    def withdraw_consent(self, contact_id: str) -> bool:
        records = self._load()
        record = records.get(contact_id)
        if record is None:
            return False
        record.consent_given = False
        self._save(records)
        self.audit_log.info("consent_withdrawn", contact_id=contact_id)
        return True

    def get_record(self, contact_id: str) -> Optional[ConsentRecord]:
        return self._load().get(contact_id)

    def forget(self, contact_id: str) -> bool:
        """Removes the record entirely. Used by right-to-erasure."""
        records = self._load()
        if records.pop(contact_id, None) is None:
            return False
        self._save(records)
        return True
