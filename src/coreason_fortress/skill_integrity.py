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
Skill integrity verification.

Skills are callables loaded from files on disk. A manifest may pin the
SHA-256 of the entry point; the registry re-hashes the source before every
invocation so a file swapped after startup is refused.
"""

import hashlib
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.exceptions import SkillIntegrityError
from coreason_fortress.models import IntegrityResult, SkillManifest
from coreason_fortress.utils.logger import logger


def hash_file(path: Union[str, Path]) -> str:
    digest = hashlib.sha256()
    with Path(path).open("rb") as fh:
        for chunk in iter(lambda: fh.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def hash_string(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def verify_skill_integrity(
    skill_dir: Union[str, Path],
    manifest: SkillManifest,
    audit_logger: Optional[AuditLogger] = None,
) -> IntegrityResult:
    """
    Verifies a skill's entry point against its manifest hash.

    A manifest without a hash is accepted (development mode).
    """
    if not manifest.hash:
        return IntegrityResult(valid=True)

    audit_log = audit_logger or get_audit_logger()
    entry = Path(skill_dir) / manifest.entry_point
    if not entry.is_file():
        audit_log.critical(
            "skill_integrity_missing_entry", details={"skill": manifest.name, "entryPoint": manifest.entry_point}
        )
        return IntegrityResult(valid=False, reason=f"Entry point not found: {manifest.entry_point}")

    actual = hash_file(entry)
    if actual != manifest.hash:
        audit_log.critical(
            "skill_integrity_failed",
            details={"skill": manifest.name, "expected": manifest.hash, "actual": actual},
        )
        return IntegrityResult(
            valid=False, reason=f"Hash mismatch for {manifest.name}: expected {manifest.hash}, got {actual}"
        )

    audit_log.info("skill_integrity_verified", details={"skill": manifest.name})
    return IntegrityResult(valid=True)


class _Capability:
    __slots__ = ("name", "handler", "source_path", "expected_hash")

    def __init__(self, name: str, handler: Callable[..., Any], source_path: Path, expected_hash: str) -> None:
        self.name = name
        self.handler = handler
        self.source_path = source_path
        self.expected_hash = expected_hash


class CapabilityRegistry:
    """Named callables whose source file hash is checked on every call."""

    def __init__(self, audit_logger: Optional[AuditLogger] = None) -> None:
        self.audit_log = audit_logger or get_audit_logger()
        self._capabilities: Dict[str, _Capability] = {}

    def register(
        self,
        name: str,
        handler: Callable[..., Any],
        source_path: Union[str, Path],
        expected_hash: Optional[str] = None,
    ) -> None:
        """
        Registers a capability.

        Args:
            name: Lookup name.
            handler: The callable to invoke.
            source_path: File the handler was loaded from.
            expected_hash: Pinned SHA-256. Defaults to the file's current hash.

        Raises:
            SkillIntegrityError: If the file does not match `expected_hash`.
        """
        path = Path(source_path)
        actual = hash_file(path)
        pinned = expected_hash or actual
        if actual != pinned:
            self.audit_log.critical("skill_integrity_failed", details={"skill": name, "stage": "register"})
            raise SkillIntegrityError(f"Hash mismatch for {name} at registration")
        self._capabilities[name] = _Capability(name, handler, path, pinned)
        logger.info(f"Registered capability {name}")

    def invoke(self, name: str, **kwargs: Any) -> Any:
        """
        Re-verifies the source file and calls the handler.

        Raises:
            KeyError: If no capability is registered under `name`.
            SkillIntegrityError: If the source file changed or disappeared.
        """
        capability = self._capabilities[name]
        try:
            actual = hash_file(capability.source_path)
        except OSError as e:
            self.audit_log.critical("skill_integrity_missing_entry", details={"skill": name})
            raise SkillIntegrityError(f"Source for {name} is unreadable") from e
        if actual != capability.expected_hash:
            self.audit_log.critical(
                "skill_integrity_failed",
                details={"skill": name, "expected": capability.expected_hash, "actual": actual},
            )
            raise SkillIntegrityError(f"Hash mismatch for {name}")
        return capability.handler(**kwargs)

    def names(self) -> list:
        return sorted(self._capabilities)

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities
