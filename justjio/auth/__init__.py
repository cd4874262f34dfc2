"""Authentication module.

Provides:
    - Token issue/verification and the ``get_current_user`` dependency (server).
    - TokenStore: persisted access token and redirect path (client).
"""
from .service import (
    AuthError,
    TokenClaims,
    create_access_token,
    decode_access_token,
    get_current_user,
)
from .token_store import NO_USER, TokenStore, UserIdentity, identity_from_token

__all__ = [
    "AuthError",
    "TokenClaims",
    "create_access_token",
    "decode_access_token",
    "get_current_user",
    "NO_USER",
    "TokenStore",
    "UserIdentity",
    "identity_from_token",
]
