# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

"""Validation of inbound message text and attachments."""

import re
from typing import Iterable, Optional

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.models import Attachment, ValidationResult

MAX_MESSAGE_LENGTH = 10_000
MAX_ATTACHMENTS = 5
MAX_ATTACHMENT_SIZE = 10 * 1024 * 1024

ALLOWED_MIME_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
        "text/plain",
        "audio/mpeg",
        "audio/ogg",
    }
)

BLOCKED_EXTENSIONS = frozenset(
    {
        ".exe", ".bat", ".cmd", ".scr", ".pif", ".com",
        ".js", ".vbs", ".wsf", ".ps1", ".sh", ".bash",
        ".dll", ".sys", ".msi", ".jar", ".app",
    }
)  # fmt: skip

# C0 controls and DEL, except tab, newline and carriage return.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def validate_message_text(text: str) -> ValidationResult:
    errors = []
    if not isinstance(text, str):
        return ValidationResult(valid=False, errors=["Message text must be a string"])

    if len(text) > MAX_MESSAGE_LENGTH:
        errors.append(f"Message exceeds max length ({MAX_MESSAGE_LENGTH} chars)")
    if "\0" in text:
        errors.append("Message contains null bytes")
    if _CONTROL_CHARS.search(text):
        errors.append("Message contains invalid control characters")

    return ValidationResult(valid=not errors, errors=errors)


def validate_attachment(
    content_type: str,
    filename: Optional[str] = None,
    size: Optional[int] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> ValidationResult:
    """
    Checks MIME type against the allowlist, the file extension against the
    executable blocklist, and the size against MAX_ATTACHMENT_SIZE.
    """
    audit_log = audit_logger or get_audit_logger()
    errors = []

    if content_type not in ALLOWED_MIME_TYPES:
        errors.append(f"Blocked MIME type: {content_type}")
        audit_log.warn("blocked_mime_type", details={"contentType": content_type})

    if filename and "." in filename:
        ext = filename[filename.rindex(".") :].lower()
        if ext in BLOCKED_EXTENSIONS:
            errors.append(f"Blocked file extension: {ext}")
            audit_log.warn("blocked_extension", details={"filename": filename, "ext": ext})

    if size is not None and size > MAX_ATTACHMENT_SIZE:
        errors.append(f"Attachment too large: {size} bytes (max {MAX_ATTACHMENT_SIZE})")

    return ValidationResult(valid=not errors, errors=errors)


def validate_attachments(
    attachments: Iterable[Attachment],
    audit_logger: Optional[AuditLogger] = None,
) -> ValidationResult:
    items = list(attachments)
    errors = []
    if len(items) > MAX_ATTACHMENTS:
        errors.append(f"Too many attachments: {len(items)} (max {MAX_ATTACHMENTS})")

    for att in items:
        result = validate_attachment(att.content_type, att.filename, att.size, audit_logger=audit_logger)
        errors.extend(result.errors)

    return ValidationResult(valid=not errors, errors=errors)
