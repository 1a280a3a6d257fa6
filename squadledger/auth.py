"""Caller identity at the HTTP boundary.

Identity is issued elsewhere; the engine only verifies the bearer JWT and
takes its ``sub`` claim as the opaque principal.
"""

import jwt
from fastapi import HTTPException, Request, status

from squadledger.config import get_settings
from squadledger.logging_config import bind_request_context
from squadledger.services.access_service import ANONYMOUS_PRINCIPAL


def decode_jwt(token: str) -> dict:
    """Decode and validate a JWT token. Raises HTTPException on failure."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


async def get_caller(request: Request) -> str:
    """
    FastAPI dependency: resolve the calling principal.

    A request without an Authorization header is the anonymous principal,
    which the role gate always treats as a guest.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return ANONYMOUS_PRINCIPAL
    if not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
        )

    token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Empty token")

    payload = decode_jwt(token)
    principal = payload.get("sub")
    if not principal or not isinstance(principal, str) or principal == ANONYMOUS_PRINCIPAL:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no usable subject",
        )

    bind_request_context(getattr(request.state, "request_id", None) or "-", principal=principal)
    return principal
