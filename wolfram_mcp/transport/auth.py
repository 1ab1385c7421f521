"""Bearer token authentication for the HTTP transport."""

from __future__ import annotations

import logging
import re
import secrets
import string
from typing import TYPE_CHECKING, Mapping

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from wolfram_mcp.errors import InvalidTokenError, utc_timestamp
from wolfram_mcp.transport.utils import get_client_ip

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "
AUTH_REALM = "Wolfram MCP Server"
PUBLIC_PATHS = frozenset(["/health", "/info"])

MIN_KEY_LENGTH = 32
_WEAK_PREFIX_RE = re.compile(r"^(1234|password|secret|test|demo)", re.IGNORECASE)
_KEY_ALPHABET = string.ascii_letters + string.digits + "-_"


def extract_bearer_token(authorization: str | None) -> str | None:
    """Token after 'Bearer ', untrimmed. None if missing, malformed or empty."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):]
    return token or None


def tokens_match(provided: str, expected: str) -> bool:
    """
    Constant-time comparison on UTF-8 bytes.

    A length mismatch still runs a full comparison over the expected key, so
    timing depends only on the expected key's length.
    """
    provided_b = provided.encode("utf-8")
    expected_b = expected.encode("utf-8")
    if len(provided_b) != len(expected_b):
        secrets.compare_digest(expected_b, expected_b)
        return False
    return secrets.compare_digest(provided_b, expected_b)


def authorize(headers: Mapping[str, str], expected_key: str | None) -> bool:
    """
    Check the Authorization header against the configured key.

    Args:
        headers: Request headers; names are matched case-insensitively
        expected_key: Configured API key; unset or empty disables auth

    Returns:
        True when auth is disabled or the bearer token equals the key exactly.
    """
    if not expected_key:
        return True
    header = next((v for k, v in headers.items() if k.lower() == "authorization"), None)
    token = extract_bearer_token(header)
    if token is None:
        return False
    return tokens_match(token, expected_key)


def unauthorized_response(message: str = "Unauthorized") -> JSONResponse:
    return JSONResponse(
        {"error": "Unauthorized", "message": message, "timestamp": utc_timestamp()},
        status_code=401,
        headers={"WWW-Authenticate": f'Bearer realm="{AUTH_REALM}"'},
    )


def log_auth_attempt(request: Request, success: bool, trust_proxy: bool = False) -> None:
    ip = get_client_ip(request, trust_proxy)
    if success:
        logger.info(f"[Auth] Success: {request.method} {request.url.path} from {ip}")
    else:
        logger.warning(f"[Auth] Failed: {request.method} {request.url.path} from {ip}")


def validate_api_key_security(api_key: str) -> list[str]:
    """Warnings for short or low-entropy keys. Empty list means no complaints."""
    warnings = []
    if len(api_key) < MIN_KEY_LENGTH:
        warnings.append(
            f"API key is too short ({len(api_key)} characters). "
            f"Recommended: at least {MIN_KEY_LENGTH} characters"
        )

    classes = [
        any(c.isupper() for c in api_key),
        any(c.islower() for c in api_key),
        any(c.isdigit() for c in api_key),
        any(not c.isalnum() for c in api_key),
    ]
    if sum(classes) < 3:
        warnings.append(
            "API key should include uppercase, lowercase, numbers, and special characters"
        )

    if _WEAK_PREFIX_RE.match(api_key):
        warnings.append("API key appears to contain common/weak patterns")

    return warnings


def generate_api_key(length: int = 32) -> str:
    """Random URL-safe key of exactly `length` characters."""
    if length < 1:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(_KEY_ALPHABET) for _ in range(length))


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """
    Bearer token validation middleware for the MCP HTTP transport.

    Validates the Authorization header against the configured API key.
    /health and /info are public. With no key configured every request
    passes; that is logged once here, never per request.
    """

    def __init__(self, app, api_key: str | None = None, trust_proxy: bool = False):
        super().__init__(app)
        self.api_key = api_key or None
        self.trust_proxy = trust_proxy
        if self.api_key:
            logger.info("Authentication: Bearer token (enabled)")
        else:
            logger.warning("Authentication: Disabled (no API key configured)")

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in PUBLIC_PATHS or self.api_key is None:
            return await call_next(request)

        if not authorize(request.headers, self.api_key):
            log_auth_attempt(request, False, self.trust_proxy)
            return unauthorized_response(InvalidTokenError().message)

        log_auth_attempt(request, True, self.trust_proxy)
        return await call_next(request)
