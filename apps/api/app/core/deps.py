"""FastAPI dependencies for authentication and database access."""

from typing import Generator

import jwt
from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ForbiddenError, UnauthorizedError
from app.core.security import decode_session_token, extract_bearer_token, verify_secret
from app.db.session import SessionLocal


# Cookie name for staff sessions
COOKIE_NAME = "activation_session"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Get authenticated user from session cookie (or bearer header).

    Validates:
    - Session token exists
    - JWT is valid and not expired
    - User exists and is active
    - Token version matches (for revocation support)

    Raises:
        UnauthorizedError: Authentication failed (reason says why)
    """
    # Import here to avoid circular imports
    from app.db.models import User

    token = request.cookies.get(COOKIE_NAME) or extract_bearer_token(
        request.headers.get("Authorization")
    )
    if not token:
        raise UnauthorizedError("Not authenticated", reason="not_authenticated")

    try:
        payload = decode_session_token(token)
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid session", reason="invalid_session")

    user = db.query(User).filter(User.id == _parse_uuid(payload.get("sub"))).first()
    if not user:
        raise UnauthorizedError("User not found", reason="user_not_found")

    if not user.is_active:
        raise UnauthorizedError("Account disabled", reason="account_disabled")

    if user.token_version != payload.get("token_version"):
        raise UnauthorizedError("Session revoked", reason="session_revoked")

    return user


def get_current_session(
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Get full session context: user_id, org_id, activator flag.

    This is the PRIMARY auth dependency for staff endpoints.
    """
    from app.schemas.auth import UserSession

    user = get_current_user(request, db)
    return UserSession(
        user_id=user.id,
        org_id=user.organization_id,
        email=user.email,
        display_name=user.display_name,
        is_activator=user.is_activator,
    )


def require_activator(session=Depends(get_current_session)):
    """Only activators may manage their own availability."""
    if not session.is_activator:
        raise ForbiddenError("Activator role required", reason="activator_required")
    return session


def verify_webhook_secret(authorization: str | None = Header(default=None)) -> None:
    """
    Optional bearer secret for product lifecycle webhooks.

    When LIFECYCLE_WEBHOOK_SECRET is empty the webhooks are open.
    """
    expected = settings.LIFECYCLE_WEBHOOK_SECRET
    if not expected:
        return
    if not verify_secret(extract_bearer_token(authorization), expected):
        raise UnauthorizedError("Invalid webhook secret", reason="invalid_webhook_secret")


def _parse_uuid(value):
    from uuid import UUID

    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid session", reason="invalid_session")
