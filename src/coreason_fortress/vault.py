# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

"""Encrypted-at-rest storage.

AES-256-GCM with a per-write random salt and IV. The AES key is derived from
the master key with HKDF-SHA256 using the salt and a purpose string (`info`),
so one master key yields unrelated keys for different purposes.

On-disk layout::

    salt(16) || iv(12) || tag(16) || ciphertext
"""

import json
import os
import secrets
from pathlib import Path
from typing import Any, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.exceptions import (
    ConfigurationError,
    DecryptionError,
    EncryptedDataTooShortError,
    EncryptedFileNotFoundError,
)

SALT_LENGTH = 16
IV_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32
HEADER_LENGTH = SALT_LENGTH + IV_LENGTH + TAG_LENGTH
DEFAULT_INFO = "openclaw-store"

MasterKey = Union[str, bytes]


def _key_material(master_key: MasterKey) -> bytes:
    if not master_key:
        raise ConfigurationError("Encryption master key is required")
    return master_key.encode("utf-8") if isinstance(master_key, str) else master_key


def derive_key(master_key: MasterKey, salt: bytes, info: str = DEFAULT_INFO) -> bytes:
    """Derives a 256-bit AES key from the master key for one purpose."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        info=info.encode("utf-8"),
    )
    return hkdf.derive(_key_material(master_key))


def encrypt(plaintext: Union[str, bytes], master_key: MasterKey, info: str = DEFAULT_INFO) -> bytes:
    """
    Encrypts plaintext with a fresh salt and IV.

    Two calls with the same plaintext and key never produce the same bytes.

    Raises:
        ConfigurationError: If the master key is empty.
    """
    data = plaintext.encode("utf-8") if isinstance(plaintext, str) else plaintext
    salt = secrets.token_bytes(SALT_LENGTH)
    key = derive_key(master_key, salt, info)
    iv = secrets.token_bytes(IV_LENGTH)

    # AESGCM appends the tag to the ciphertext.
    sealed = AESGCM(key).encrypt(iv, data, None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return salt + iv + tag + ciphertext


def decrypt_bytes(data: bytes, master_key: MasterKey, info: str = DEFAULT_INFO) -> bytes:
    """
    Authenticated decryption of a blob produced by `encrypt`.

    Raises:
        EncryptedDataTooShortError: If the blob is shorter than the header.
            Checked before any key derivation.
        DecryptionError: On wrong key, wrong `info`, or any tampering.
    """
    if len(data) < HEADER_LENGTH:
        raise EncryptedDataTooShortError(len(data))

    salt = data[:SALT_LENGTH]
    iv = data[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
    tag = data[SALT_LENGTH + IV_LENGTH : HEADER_LENGTH]
    ciphertext = data[HEADER_LENGTH:]

    key = derive_key(master_key, salt, info)
    try:
        return AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise DecryptionError() from e


def decrypt(data: bytes, master_key: MasterKey, info: str = DEFAULT_INFO) -> str:
    """Like `decrypt_bytes`, decoding the plaintext as UTF-8."""
    plaintext = decrypt_bytes(data, master_key, info)
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError() from e


def write_encrypted_json(
    path: Union[str, Path],
    value: Any,
    master_key: MasterKey,
    info: str = DEFAULT_INFO,
) -> None:
    """
    Serializes `value` to JSON and writes it encrypted (file 0600, parent 0700).

    The file is replaced atomically so a crash never leaves a torn blob.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    blob = encrypt(json.dumps(value, indent=2), master_key, info)

    tmp = target.with_name(f".{target.name}.{secrets.token_hex(4)}.tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(blob)
        os.replace(tmp, target)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def read_encrypted_json(
    path: Union[str, Path],
    master_key: MasterKey,
    info: str = DEFAULT_INFO,
    audit_logger: Optional[AuditLogger] = None,
) -> Any:
    """
    Reads and decrypts a JSON file written by `write_encrypted_json`.

    Raises:
        EncryptedFileNotFoundError: If the file does not exist.
        DecryptionError: If authentication fails. Logged at CRITICAL.
    """
    source = Path(path)
    if not source.exists():
        raise EncryptedFileNotFoundError(str(source))

    try:
        text = decrypt(source.read_bytes(), master_key, info)
    except DecryptionError as e:
        (audit_logger or get_audit_logger()).critical(
            "decryption_failed", details={"file": source.name, "error": str(e)}
        )
        raise
    return json.loads(text)
