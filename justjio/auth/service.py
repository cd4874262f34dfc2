"""Bearer token issue and verification.

Tokens are HS256 JWTs carrying the claims the clients rely on:
``user_id``, ``user_email`` and ``username``. The same token authenticates
REST calls (``Authorization: Bearer``) and the streaming connection
(``?token=`` query parameter).
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from justjio.config import get_config
from justjio.responses import ApiException

logger = logging.getLogger(__name__)

# auto_error=False so a missing header becomes our own 401 envelope
bearer_scheme = HTTPBearer(auto_error=False)


class AuthError(Exception):
    """Raised when a token is missing, malformed, expired or forged."""


class TokenClaims(BaseModel):
    user_id: str
    username: str
    user_email: str = ""


def create_access_token(
    user_id: str,
    username: str,
    user_email: str = "",
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Issue a signed access token for a user."""
    config = get_config()
    if expires_delta is None:
        expires_delta = timedelta(minutes=config.auth.token_expire_minutes)

    payload: Dict[str, Any] = {
        "user_id": user_id,
        "username": username,
        "user_email": user_email,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(
        payload,
        config.secrets.jwt.secret_key,
        algorithm=config.secrets.jwt.algorithm,
    )


def decode_access_token(token: str) -> TokenClaims:
    """Verify a token and return its claims.

    Raises:
        AuthError: If the token cannot be verified or lacks required claims.
    """
    if not token:
        raise AuthError("Missing token")

    config = get_config()
    try:
        payload = jwt.decode(
            token,
            config.secrets.jwt.secret_key,
            algorithms=[config.secrets.jwt.algorithm],
        )
    except JWTError as e:
        raise AuthError(f"Invalid token: {e}") from e

    if "user_id" not in payload:
        raise AuthError("Token has no user_id claim")

    return TokenClaims(
        user_id=str(payload["user_id"]),
        username=payload.get("username", ""),
        user_email=payload.get("user_email", ""),
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> TokenClaims:
    """FastAPI dependency resolving the caller from the bearer header."""
    if credentials is None:
        raise ApiException(401, "Missing or malformed JWT")
    try:
        return decode_access_token(credentials.credentials)
    except AuthError as e:
        logger.info(f"[Auth] Rejected bearer token: {e}")
        raise ApiException(401, "Invalid or expired JWT") from e
