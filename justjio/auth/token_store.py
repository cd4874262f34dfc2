"""Client-side session storage.

Holds the access token and the post-login redirect path in a small JSON
file under the client state directory, so a restarted client resumes the
same session. The token is read at connection-establishment time only.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from jose import JWTError, jwt

logger = logging.getLogger(__name__)

SESSION_FILE_NAME = "session.json"

ACCESS_TOKEN_KEY = "accessToken"
REDIRECT_PATH_KEY = "redirectPath"


@dataclass(frozen=True)
class UserIdentity:
    """Authenticated user as seen by the client."""
    user_id: str
    username: str = ""

    @property
    def is_authenticated(self) -> bool:
        return self.user_id != NO_USER_ID


NO_USER_ID = "-1"

# Logged-out sentinel
NO_USER = UserIdentity(user_id=NO_USER_ID)


def identity_from_token(token: Optional[str]) -> UserIdentity:
    """Read the user out of a token's claims without verifying it.

    The server verifies every token it receives; the client only needs the
    claims to know who is logged in.
    """
    if not token:
        return NO_USER
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        logger.warning("[Auth] Stored token is not a valid JWT")
        return NO_USER
    if "user_id" not in claims:
        return NO_USER
    return UserIdentity(
        user_id=str(claims["user_id"]),
        username=claims.get("username", ""),
    )


class TokenStore:
    """JSON-file key/value store for the session token and redirect path."""

    def __init__(self, state_dir: Path | str) -> None:
        self.path = Path(state_dir).expanduser() / SESSION_FILE_NAME

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            logger.warning(f"[Auth] Could not read session file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(data, fh)
        tmp_path.replace(self.path)

    # ------------------------------------------------------------------
    # Access token
    # ------------------------------------------------------------------

    def get_access_token(self) -> Optional[str]:
        return self._read().get(ACCESS_TOKEN_KEY)

    def set_access_token(self, token: str) -> None:
        data = self._read()
        data[ACCESS_TOKEN_KEY] = token
        self._write(data)

    def clear_access_token(self) -> None:
        data = self._read()
        if data.pop(ACCESS_TOKEN_KEY, None) is not None:
            self._write(data)

    def current_identity(self) -> UserIdentity:
        return identity_from_token(self.get_access_token())

    # ------------------------------------------------------------------
    # Redirect path
    # ------------------------------------------------------------------

    def get_redirect_path(self) -> Optional[str]:
        return self._read().get(REDIRECT_PATH_KEY)

    def set_redirect_path(self, path: str) -> None:
        data = self._read()
        data[REDIRECT_PATH_KEY] = path
        self._write(data)
