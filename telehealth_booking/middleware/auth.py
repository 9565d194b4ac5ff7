"""
Caller identity for API endpoints.

Verifies Supabase-issued JWTs with PyJWT and resolves the caller's role from
the profiles table. When SUPABASE_JWT_SECRET is unset every caller is
anonymous.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import jwt  # PyJWT
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import ELEVATED_ROLES
from ..exceptions import AuthenticationError, StoreError

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller as seen by the booking engine."""
    user_id: str
    role: str = "patient"
    email: Optional[str] = None

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES

    def __repr__(self) -> str:
        return f"CallerIdentity(user_id={self.user_id[:8]}, role={self.role})"


def decode_token(token: str, secret: str) -> dict:
    """
    Verify signature, expiry and audience of a bearer token.

    Raises:
        AuthenticationError: For expired or otherwise invalid tokens
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token expired")
        raise AuthenticationError("Token expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid token: {e}")
        raise AuthenticationError("Invalid token") from e

    if not payload.get("sub"):
        raise AuthenticationError("Token has no subject")
    return payload


async def get_current_caller(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[CallerIdentity]:
    """
    Resolve the caller if a bearer token was sent.

    Returns:
        CallerIdentity, or None for anonymous requests
    """
    if not credentials:
        return None

    settings = request.app.state.settings
    if not settings.SUPABASE_JWT_SECRET:
        return None

    payload = decode_token(credentials.credentials, settings.SUPABASE_JWT_SECRET)
    user_id = payload["sub"]

    role = "patient"
    try:
        role = await request.app.state.services.profile_store.get_role(user_id) or role
    except StoreError as e:
        logger.warning(f"Could not load role for {user_id[:8]}, treating as patient: {e}")

    return CallerIdentity(user_id=user_id, role=role, email=payload.get("email"))


def require_caller(caller: Optional[CallerIdentity] = Depends(get_current_caller)) -> CallerIdentity:
    """
    Dependency that requires an authenticated caller.

    Usage:
        @router.get("/calendar/appointments")
        async def list_appointments(caller: CallerIdentity = Depends(require_caller)):
            ...
    """
    if caller is None:
        raise AuthenticationError("Authentication required")
    return caller
