"""Bearer-token gate for user and admin routes.

Tokens are verified against the identity provider's signing secret (signature,
expiry and audience) before any claim is read. Admin status comes from the
``user_roles`` table, never from the token.
"""
import logging

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from voice_studio import db
from voice_studio.config import settings
from voice_studio.errors import AppError, AuthError, ForbiddenError

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

security = HTTPBearer(auto_error=False)


def verify_token(token: str) -> dict:
    if not settings.jwt_secret:
        raise AppError("JWT_SECRET is not configured")
    try:
        claims = jwt.decode(
            token.strip(),
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience or None,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        logger.info("auth_invalid_token", extra={"error": type(exc).__name__})
        raise AuthError("Invalid or expired token") from exc

    if not isinstance(claims.get("sub"), str) or not claims["sub"]:
        raise AuthError("Invalid token payload")
    return claims


def get_current_user(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> dict:
    if not credentials or not credentials.credentials:
        raise AuthError("Missing or invalid authorization header")

    claims = verify_token(credentials.credentials)
    metadata = claims.get("user_metadata") or {}
    user = db.ensure_user(
        claims["sub"],
        email=claims.get("email"),
        display_name=metadata.get("full_name") or metadata.get("name"),
    )
    if user["is_blocked"]:
        raise ForbiddenError("Account is blocked")
    return user


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not db.has_role(user["id"], ADMIN_ROLE):
        logger.warning("admin_check_failed", extra={"user_id": user["id"]})
        raise ForbiddenError("Forbidden: Admin access required")
    return user
