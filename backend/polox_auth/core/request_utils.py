"""Request helpers shared by the authenticator, rate limiter and routes."""

import ipaddress

from fastapi import Request

from polox_auth.core.logging import get_logger

logger = get_logger("request")

_LOOPBACK = ("127.0.0.1", "::1", "localhost")


def _is_valid_ip(ip_str: str) -> bool:
    """Check if a string is a valid IP address."""
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request, trusted_proxies: list[str] | None = None) -> str:
    """Get the client IP address from a request.

    Forwarding headers are only honoured when the direct peer is loopback or
    one of ``trusted_proxies``; otherwise a client could pick its own rate
    limit bucket. X-Forwarded-For is read right to left and the first
    address that is not itself a trusted proxy wins.

    Returns "unknown" when the ASGI server did not report a peer.
    """
    peer = request.client.host if request.client else None
    if peer is None:
        return "unknown"

    trusted = set(trusted_proxies or ()) | set(_LOOPBACK)
    if peer not in trusted:
        return peer

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
        for hop in reversed(hops):
            if not _is_valid_ip(hop):
                logger.warning(f"Invalid X-Forwarded-For hop: {hop!r}")
                break
            if hop not in trusted:
                return hop

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        ip = real_ip.strip()
        if _is_valid_ip(ip):
            return ip
        logger.warning(f"Invalid X-Real-IP: {real_ip!r}")

    return peer


def get_user_agent(request: Request) -> str:
    return request.headers.get("User-Agent", "unknown")[:500]