"""Authentication dependencies for API account scoping."""

from dataclasses import dataclass
import logging
import secrets
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import settings
from services.errors import Forbidden, Unauthenticated
from services.session_token import decode_session_token

logger = logging.getLogger(__name__)

auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    account_id: str
    email: Optional[str] = None


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve the verified account id from the Bearer session token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise Unauthenticated("Missing Bearer session token.")

    try:
        payload = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise Unauthenticated(str(exc)) from exc

    return AuthContext(
        account_id=str(payload.get("sub", "")),
        email=str(payload.get("email", "")) or None,
    )


def require_admin(x_admin_key: Optional[str] = Header(default=None)) -> str:
    """Gate admin endpoints on the configured X-Admin-Key."""
    admin_key = (settings.ADMIN_API_KEY or "").strip()
    if not admin_key or not x_admin_key or not secrets.compare_digest(x_admin_key, admin_key):
        logger.warning("Rejected admin request with %s key", "a wrong" if x_admin_key else "no")
        raise Forbidden("Invalid or missing X-Admin-Key header.")
    return x_admin_key
