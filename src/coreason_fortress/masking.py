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
Masking and hashing helpers for contact identifiers.

Pure functions: HMAC phone hashing for safe storage, display masks for
phone numbers, emails and generic strings, and E.164 validation.
"""

import hashlib
import hmac
import re

from coreason_fortress.exceptions import ConfigurationError

_E164_REGEX = re.compile(r"^\+[1-9]\d{6,14}$", re.ASCII)

INVALID_PHONE_MASK = "***INVALID***"


def is_valid_e164(phone: str) -> bool:
    """`+` then 7 to 15 digits, the first one non-zero."""
    return _E164_REGEX.fullmatch(phone) is not None


def hash_phone(phone: str, secret: str) -> str:
    """
    HMAC-SHA256 of a phone number, hex encoded.

    There is no unkeyed fallback: a bare SHA-256 of a phone number is
    trivially reversible by enumeration.

    Raises:
        ConfigurationError: If `secret` is empty.
    """
    if not secret:
        raise ConfigurationError("PII HMAC secret is required")
    return hmac.new(secret.encode("utf-8"), phone.encode("utf-8"), hashlib.sha256).hexdigest()


def mask_phone(phone: str) -> str:
    """
    Masks a phone number for display, e.g. `+1******1234`.

    Keeps the first 2 and last 4 characters and preserves total length.
    """
    if not is_valid_e164(phone):
        return INVALID_PHONE_MASK
    return phone[:2] + "*" * (len(phone) - 6) + phone[-4:]


def mask_email(email: str) -> str:
    """Masks an email address for display, e.g. `j***@example.com`."""
    at_idx = email.find("@")
    if at_idx <= 0:
        return "***@***"
    return email[0] + "***" + email[at_idx:]


def mask_generic(value: str) -> str:
    """Keeps the first and last 2 characters; short values are fully masked."""
    if len(value) <= 4:
        return "****"
    return value[:2] + "*" * (len(value) - 4) + value[-2:]


def mask_contact(contact_id: str) -> str:
    """Display mask for any contact id: phone numbers keep their country prefix."""
    if is_valid_e164(contact_id):
        return mask_phone(contact_id)
    return mask_generic(contact_id)
