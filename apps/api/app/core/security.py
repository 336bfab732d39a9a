"""Security utilities for JWT session tokens and shared-secret checks."""

import hmac
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from app.core.config import settings


# =============================================================================
# Session Token (JWT in cookie or bearer header)
# =============================================================================

def create_session_token(
    user_id: UUID,
    org_id: UUID,
    token_version: int,
) -> str:
    """
    Create signed session JWT.

    Always signs with current secret (JWT_SECRET).
    Token contains user identity, org context, and revocation version.
    """
    payload = {
        "sub": str(user_id),
        "org_id": str(org_id),
        "token_version": token_version,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify session JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore


# =============================================================================
# Shared secrets (webhooks, internal cron)
# =============================================================================

def verify_secret(provided: str | None, expected: str | None) -> bool:
    """Constant-time comparison; empty or missing values never match."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an `Authorization: Bearer <token>` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
