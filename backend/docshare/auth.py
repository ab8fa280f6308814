"""
Bearer-token authentication for link owners.

Tokens are issued by the identity collaborator; this module only verifies
them and resolves the principal they name.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .database import get_admin_db
from .errors import AuthorizationError
from .logging_config import get_logger
from .models import User
from .utils import utc_now

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """Verified identity of the caller."""

    user_id: str
    email: Optional[str] = None
    role: str = "user"
    company_id: Optional[str] = None


def create_access_token(
    subject: str,
    expires_minutes: Optional[int] = None,
    extra_claims: Optional[dict[str, Any]] = None,
) -> str:
    """Sign a token for ``subject``. Used by the dev CLI and tests."""
    if expires_minutes is None:
        expires_minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES

    claims: dict[str, Any] = dict(extra_claims or {})
    claims["sub"] = subject
    claims["exp"] = utc_now() + timedelta(minutes=expires_minutes)
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[dict[str, Any]]:
    """Return the token claims, or None if the signature or expiry is invalid."""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def extract_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    """Bearer header first, then the auth cookie."""
    if credentials and credentials.scheme.lower() == "bearer" and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(settings.AUTH_COOKIE_NAME) or None


async def verify_token(db: AsyncSession, token: str) -> Optional[Principal]:
    """Verify a token and load the active user it names."""
    payload = decode_access_token(token)
    if payload is None:
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None

    user = await db.get(User, str(user_id))
    if user is None or not user.is_active:
        return None

    return Principal(
        user_id=user.id,
        email=user.email,
        role=user.role,
        company_id=user.company_id,
    )


async def get_current_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_admin_db),
) -> Principal:
    """
    FastAPI dependency requiring a valid owner token.
    Raises AuthorizationError (401) otherwise.
    """
    token = extract_token(request, credentials)
    if not token:
        raise AuthorizationError("Missing or invalid authorization. Expected: Bearer <token> or cookie")

    principal = await verify_token(db, token)
    if principal is None:
        logger.warning(
            f"Rejected token from {request.client.host if request.client else 'unknown'}"
        )
        raise AuthorizationError("Invalid or expired token")

    return principal
