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
Operational logging for CoReason Fortress.

Exposes a single pre-configured loguru `logger`. This is separate from the
audit trail (see `coreason_fortress.audit`): operational logs describe what the
service is doing, audit entries record security decisions.
"""

import os
import sys
from pathlib import Path

from loguru import logger

__all__ = ["logger"]

_LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

logger.remove()
logger.add(
    sys.stderr,
    level=os.getenv("OPENCLAW_LOG_LEVEL", "INFO"),
    format=_LOG_FORMAT,
)

_log_dir = os.getenv("OPENCLAW_LOG_DIR")
if _log_dir:
    try:
        Path(_log_dir).mkdir(parents=True, exist_ok=True, mode=0o700)
        logger.add(
            Path(_log_dir) / "fortress.log",
            level="DEBUG",
            rotation="10 MB",
            retention="14 days",
            enqueue=True,
        )
    except OSError as e:
        logger.warning(f"File logging disabled, cannot use {_log_dir}: {e}")
