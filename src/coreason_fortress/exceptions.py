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
Exception taxonomy for CoReason Fortress.

Policy rejections (allowlist miss, rate limit, bad token, injection match,
blocked URL, path traversal) are *not* exceptions; they are returned as result
models. Exceptions are reserved for integrity failures and configuration errors
that the immediate caller must not swallow.
"""


class FortressError(Exception):
    """Base class for all Fortress errors."""


class SecurityException(FortressError):
    """Raised when an integrity check fails (tampering or misconfiguration)."""


class DecryptionError(SecurityException):
    """Authenticated decryption failed. Never carries partial plaintext."""

    def __init__(self, message: str = "Decryption failed: wrong key or tampered data") -> None:
        super().__init__(message)


class EncryptedDataTooShortError(DecryptionError):
    """The blob cannot even hold salt, IV and tag."""

    def __init__(self, length: int) -> None:
        super().__init__(f"Encrypted data too short ({length} bytes), possible tampering")
        self.length = length


class SkillIntegrityError(SecurityException):
    """A registered capability no longer matches its recorded hash."""


class EncryptedFileNotFoundError(FortressError, FileNotFoundError):
    """The encrypted file to read does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Encrypted file not found: {path}")
        self.path = path


class ConfigurationError(FortressError, ValueError):
    """A required secret or setting is missing at the point of use."""


class LLMError(FortressError):
    """The LLM backend failed to produce a usable response."""


class LLMAuthenticationError(LLMError):
    """The LLM backend rejected our credentials. Never retried."""
