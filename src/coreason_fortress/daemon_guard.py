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
Guards for the local messaging daemon (signal-cli REST API).

The daemon must listen on loopback only, must answer its health endpoint,
and the gateway must not run as root.
"""

import os
from typing import Optional
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel

from coreason_fortress.audit import AuditLogger, get_audit_logger

LOOPBACK_HOSTS = frozenset({"127.0.0.1", "localhost", "::1"})
HEALTH_PATH = "/v1/about"


class DaemonHealth(BaseModel):
    healthy: bool
    version: Optional[str] = None
    error: Optional[str] = None


def assert_loopback(api_url: str, audit_logger: Optional[AuditLogger] = None) -> bool:
    """True iff `api_url` parses and its host is a loopback name or address."""
    audit_log = audit_logger or get_audit_logger()
    try:
        hostname = urlsplit(api_url).hostname
    except ValueError:
        hostname = None
    if not hostname:
        audit_log.critical("daemon_invalid_url", details={"apiUrl": api_url})
        return False
    if hostname not in LOOPBACK_HOSTS:
        audit_log.critical("daemon_not_loopback", details={"hostname": hostname})
        return False
    return True


def check_not_root(audit_logger: Optional[AuditLogger] = None) -> bool:
    getuid = getattr(os, "getuid", None)
    if getuid is not None and getuid() == 0:
        (audit_logger or get_audit_logger()).critical("running_as_root")
        return False
    return True


async def check_daemon_health(
    api_url: str,
    timeout: float = 5.0,
    client: Optional[httpx.AsyncClient] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> DaemonHealth:
    """
    Queries the daemon's about endpoint.

    Args:
        api_url: Base URL of the daemon.
        timeout: Request timeout in seconds.
        client: Optional shared client. A temporary one is used otherwise.
        audit_logger: Destination for health events.

    Returns:
        DaemonHealth. Transport and HTTP errors are reported, not raised.
    """
    audit_log = audit_logger or get_audit_logger()
    url = api_url.rstrip("/") + HEALTH_PATH
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as temp:
                response = await temp.get(url)
        else:
            response = await client.get(url, timeout=timeout)
        response.raise_for_status()
        version = str(response.json().get("version", "unknown"))
    except (httpx.HTTPError, ValueError) as e:
        audit_log.warn("daemon_unhealthy", details={"error": str(e)})
        return DaemonHealth(healthy=False, error=str(e))

    audit_log.info("daemon_healthy", details={"version": version})
    return DaemonHealth(healthy=True, version=version)
