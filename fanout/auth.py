"""Bearer-token authentication for the management API.

Token issuance and validation against an identity provider happen upstream;
this module only checks that the caller presents one of the configured tokens.
"""

import secrets

from fastapi import Header, HTTPException

from fanout.config import settings


def generate_api_token() -> str:
    """Generate a random 48-character token suitable for MANAGEMENT_API_TOKENS."""
    return secrets.token_hex(24)


def _extract_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _is_known_token(token: str) -> bool:
    return any(secrets.compare_digest(token, known) for known in settings.api_tokens)


async def require_management_token(
    authorization: str = Header(default=None),
) -> str | None:
    """Require a valid bearer token. Raises 401 if missing or invalid.

    When no tokens are configured the management API is open and None is returned.
    """
    if not settings.api_tokens:
        return None

    token = _extract_bearer(authorization)
    if not token:
        raise HTTPException(
            401,
            "Bearer token required. Include Authorization: Bearer <token>.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not _is_known_token(token):
        raise HTTPException(401, "Invalid token", headers={"WWW-Authenticate": "Bearer"})
    return token
