"""Client IP extraction and hashing for anonymous quota identifiers.

Anonymous callers are rate limited per client IP. The raw address is kept on
the scan record for abuse investigation, but quota keys use a keyed hash so
the quota store never holds plain addresses.
"""

from __future__ import annotations

import hashlib
import hmac
import ipaddress

from starlette.requests import Request

UNKNOWN_IP = "unknown"

# Proxy headers checked in priority order
_FORWARDING_HEADERS: tuple[str, ...] = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def get_client_ip(request: Request) -> str:
    """Best-effort client address for *request*.

    ``X-Forwarded-For`` may list a proxy chain; its first entry is the client.
    Falls back to the socket peer, then to ``"unknown"``.
    """
    for header in _FORWARDING_HEADERS:
        value = request.headers.get(header, "")
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first
    if request.client is not None and request.client.host:
        return request.client.host
    return UNKNOWN_IP


def is_valid_ip(ip: str) -> bool:
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        return False
    return True


def hash_ip(ip: str, secret: str) -> str:
    """Return a stable, non-reversible quota identifier for *ip*."""
    digest = hmac.new(secret.encode("utf-8"), ip.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"ip_{digest[:32]}"
