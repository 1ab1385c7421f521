"""Shared utilities for HTTP transport layer."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from starlette.requests import Request


def get_client_ip(request: Request, trust_proxy: bool = False) -> str:
    """
    Extract client IP from request, optionally trusting proxy headers.

    Args:
        request: Starlette request object
        trust_proxy: If True, check X-Forwarded-For then X-Real-IP first

    Returns:
        Client IP address string, or "unknown" if unavailable
    """
    if trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()
    return request.client.host if request.client else "unknown"
