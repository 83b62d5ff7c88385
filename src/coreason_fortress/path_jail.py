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
Filesystem jail primitives.

Session-ID validation, directory containment, null-byte blocking and path
segment sanitization. Paths are resolved lexically (no symlink following),
so the checks are deterministic for files that do not exist yet.
"""

import os
import re
from typing import Union

from coreason_fortress.models import PathValidation

_SESSION_ID_REGEX = re.compile(r"^[A-Za-z0-9-]{8,128}$", re.ASCII)
_UNSAFE_SEGMENT_CHARS = re.compile(r"[^A-Za-z0-9._-]")

PathLike = Union[str, "os.PathLike[str]"]


def contains_null_byte(value: str) -> bool:
    return "\0" in value


def is_valid_session_id(session_id: str) -> bool:
    """
    True iff the ID is safe to use as a file name.

    The traversal and null-byte checks are kept separate from the regex so
    that loosening the regex can never reintroduce either.
    """
    if not _SESSION_ID_REGEX.fullmatch(session_id):
        return False
    if ".." in session_id:
        return False
    if contains_null_byte(session_id):
        return False
    return True


def _absolute(path: PathLike) -> str:
    return os.path.abspath(os.path.normpath(os.fspath(path)))


def is_inside_jail(target_path: PathLike, jail_dir: PathLike) -> bool:
    """
    Checks that `target_path` resolves to `jail_dir` or something below it.

    Besides the `..` prefix test, re-joining the jail with the relative path
    must reproduce the target exactly, which rejects drive and UNC tricks.
    """
    target = _absolute(target_path)
    jail = _absolute(jail_dir)
    try:
        rel = os.path.relpath(target, jail)
    except ValueError:
        # Different drives on Windows.
        return False
    if rel.startswith("..") or os.path.isabs(rel):
        return False
    return os.path.normpath(os.path.join(jail, rel)) == target


def sanitize_path_segment(segment: str) -> str:
    """Drops every character outside `[A-Za-z0-9._-]`."""
    return _UNSAFE_SEGMENT_CHARS.sub("", segment)


def validate_path(user_input: str, jail_dir: PathLike) -> PathValidation:
    """
    Full validation of a user-supplied relative path.

    Checks run in a fixed order so the reason is deterministic: null byte,
    then traversal, then jail containment of the resolved path.
    """
    if contains_null_byte(user_input):
        return PathValidation(ok=False, reason="Null byte in path")

    if ".." in user_input:
        return PathValidation(ok=False, reason="Path traversal detected")

    resolved = _absolute(os.path.join(_absolute(jail_dir), user_input))
    if not is_inside_jail(resolved, jail_dir):
        return PathValidation(ok=False, reason="Path escapes jail directory")

    return PathValidation(ok=True, resolved=resolved)
