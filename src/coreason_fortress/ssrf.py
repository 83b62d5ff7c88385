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
SSRF guard for outbound URLs.

Checks run in a fixed order: syntax, scheme, embedded credentials, then
private/loopback/link-local IPs and internal hostnames. `allow_private` only
waives the last group; it never lets a `file:` URL or Basic-Auth credentials
through.
"""

import ipaddress
import re
import socket
from typing import Optional, Union
from urllib.parse import urlsplit

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.models import URLValidation

ALLOWED_SCHEMES = frozenset({"http", "https"})

# Private / reserved IPv4 ranges as inclusive integer bounds.
_PRIVATE_RANGES = [
    (int(net.network_address), int(net.broadcast_address))
    for net in (
        ipaddress.IPv4Network("10.0.0.0/8"),
        ipaddress.IPv4Network("172.16.0.0/12"),
        ipaddress.IPv4Network("192.168.0.0/16"),
        ipaddress.IPv4Network("127.0.0.0/8"),
        ipaddress.IPv4Network("169.254.0.0/16"),  # link-local
        ipaddress.IPv4Network("0.0.0.0/8"),
    )
]

_BLOCKED_HOST_SUFFIXES = (".local", ".internal")

# Hosts an inet_aton-style resolver reads as IPv4: one to four dot-separated
# decimal, octal or hex parts, e.g. `127.1`, `2130706433`, `0x7f000001`.
_NUMERIC_HOST = re.compile(r"^(?:0x[0-9a-f]*|\d+)(?:\.(?:0x[0-9a-f]*|\d+)){0,3}$", re.IGNORECASE)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def _ipv4_in_private_range(ip: ipaddress.IPv4Address) -> bool:
    num = int(ip)
    return any(start <= num <= end for start, end in _PRIVATE_RANGES)


def _looks_numeric(host: str) -> bool:
    return _NUMERIC_HOST.match(host.rstrip(".")) is not None


def parse_ip_host(host: str) -> Optional[IPAddress]:
    """
    Parses a URL host as an IP address the way a socket resolver would.

    Shorthand, integer, octal and hex IPv4 forms are normalized to a single
    `IPv4Address`. Returns None for anything that is not an address.
    """
    host = host.strip("[]")
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass
    if not _looks_numeric(host):
        return None
    try:
        return ipaddress.IPv4Address(socket.inet_aton(host.rstrip(".")))
    except OSError:
        return None


def _ipv6_is_private(addr: ipaddress.IPv6Address) -> bool:
    if addr.ipv4_mapped is not None:
        return _ipv4_in_private_range(addr.ipv4_mapped)
    return addr.is_loopback or addr.is_unspecified or addr.is_link_local or addr.is_site_local or addr.is_private


def is_private_ip(ip: str) -> bool:
    """
    True for IPv4 in 10/8, 172.16/12, 192.168/16, 127/8, 169.254/16, 0/8 in any
    numeric notation, for IPv6 loopback, unspecified, link-local and
    unique-local addresses, and for IPv4-mapped IPv6 addresses inside the IPv4
    ranges.

    Unparseable input is treated as private.
    """
    addr = parse_ip_host(ip)
    if addr is None:
        return True
    if isinstance(addr, ipaddress.IPv6Address):
        return _ipv6_is_private(addr)
    return _ipv4_in_private_range(addr)


def validate_url(
    url: str,
    allow_private: bool = False,
    audit_logger: Optional[AuditLogger] = None,
) -> URLValidation:
    """
    Validates that a URL is safe to fetch.

    Args:
        url: The URL to check.
        allow_private: Waives only the private-IP and internal-hostname checks.
        audit_logger: Where blocked attempts are recorded. Defaults to the
            process-wide audit logger.

    Returns:
        URLValidation with `ok` and, on rejection, a `reason`.
    """
    audit_log = audit_logger or get_audit_logger()

    try:
        parsed = urlsplit(url)
        # Accessing .port validates it; .hostname lowercases and strips brackets.
        _ = parsed.port
        hostname = parsed.hostname
    except ValueError:
        return URLValidation(ok=False, reason="Invalid URL")

    scheme = parsed.scheme.lower()
    if not scheme:
        return URLValidation(ok=False, reason="Invalid URL")

    if scheme not in ALLOWED_SCHEMES:
        audit_log.critical("ssrf_blocked_scheme", details={"url": url, "scheme": f"{scheme}:"})
        return URLValidation(ok=False, reason=f"Blocked scheme: {scheme}:", url=url, hostname=hostname)

    if not hostname:
        return URLValidation(ok=False, reason="Invalid URL")

    if parsed.username is not None or parsed.password is not None:
        audit_log.warn("ssrf_blocked_credentials", details={"hostname": hostname})
        return URLValidation(ok=False, reason="Credentials in URL not allowed", url=url, hostname=hostname)

    addr = parse_ip_host(hostname)
    if addr is None and _looks_numeric(hostname):
        return URLValidation(ok=False, reason="Invalid URL")

    if not allow_private:
        if addr is not None and is_private_ip(str(addr)):
            audit_log.critical("ssrf_blocked_private_ip", details={"url": url, "ip": str(addr)})
            return URLValidation(ok=False, reason=f"Private IP blocked: {hostname}", url=url, hostname=hostname)

        bare = hostname.rstrip(".")
        if bare == "localhost" or bare.endswith(_BLOCKED_HOST_SUFFIXES):
            audit_log.critical("ssrf_blocked_hostname", details={"url": url, "hostname": hostname})
            return URLValidation(ok=False, reason=f"Blocked hostname: {hostname}", url=url, hostname=hostname)

    return URLValidation(ok=True, url=url, hostname=hostname)
