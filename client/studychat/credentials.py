"""Bearer token storage for REST calls and the broker handshake."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Dict, Optional

import jwt

from .errors import NotAuthenticatedError

logger = logging.getLogger(__name__)


def token_expired(token: str, now: Optional[float] = None) -> bool:
    """True when ``token`` is a JWT whose ``exp`` claim has passed.

    The signature is not checked here; the server does that. Tokens that are not
    JWTs are opaque to the client and never considered expired.
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return False
    exp = claims.get("exp")
    if exp is None:
        return False
    return float(exp) <= (now if now is not None else time.time())


class TokenStore:
    """Session token first, then the remembered token file."""

    def __init__(self, token_file: Optional[Path] = None, session_token: Optional[str] = None) -> None:
        self.token_file = token_file
        self._session_token = session_token

    def save(self, token: str, remember: bool = False) -> None:
        self._session_token = token
        if remember and self.token_file is not None:
            self.token_file.parent.mkdir(parents=True, exist_ok=True)
            self.token_file.write_text(token, encoding="utf-8")

    def get(self) -> Optional[str]:
        if self._session_token:
            return self._session_token
        if self.token_file is not None and self.token_file.is_file():
            token = self.token_file.read_text(encoding="utf-8").strip()
            return token or None
        return None

    def clear(self) -> None:
        self._session_token = None
        if self.token_file is not None:
            self.token_file.unlink(missing_ok=True)

    def bearer_headers(self) -> Dict[str, str]:
        token = self.get()
        if not token:
            raise NotAuthenticatedError()
        if token_expired(token):
            logger.warning("Stored token has expired")
            raise NotAuthenticatedError("Session expired, please sign in again")
        return {"Authorization": f"Bearer {token}"}

    def broker_headers(self) -> Dict[str, str]:
        """Handshake headers for the broker; anonymous when no usable token exists."""
        try:
            return self.bearer_headers()
        except NotAuthenticatedError:
            return {}
