"""Token issuing/verification and the in-memory signup registry.

The chat core only needs a verifier that maps a presented credential to a
username. ``TokenService`` provides that with HS256-signed JWTs carrying the
username as a claim, matching what ``/login`` and ``/signup`` hand out.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Protocol

import jwt

from app.config import get_config

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when a credential is missing, malformed, expired or forged."""


class DuplicateUserError(Exception):
    """Raised when signing up with a username that is already registered."""


class IdentityVerifier(Protocol):
    """Anything that can turn a presented credential into a username."""

    def verify(self, credential: Optional[str]) -> str:
        ...


class TokenService:
    """Issues and verifies signed session tokens."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expire_minutes: int = 24 * 60,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def issue(self, username: str) -> str:
        """Sign a token for ``username`` that expires after ``expire_minutes``."""
        now = datetime.now(timezone.utc)
        payload = {
            "username": username,
            "iat": now,
            "exp": now + timedelta(minutes=self.expire_minutes),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify(self, credential: Optional[str]) -> str:
        """Return the username carried by ``credential``.

        Raises:
            AuthenticationError: if no credential was presented, the signature
                or expiry check fails, or the token carries no username.
        """
        if not credential:
            raise AuthenticationError("Authentication required")

        try:
            payload = jwt.decode(
                credential, self.secret_key, algorithms=[self.algorithm]
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Token expired") from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Invalid token") from e

        username = payload.get("username")
        if not isinstance(username, str) or not username:
            raise AuthenticationError("Invalid token")
        return username


class UserStore:
    """Registered users, kept in memory for the lifetime of the process.

    Passwords are stored as given. Nothing in the chat core consults this
    store; it only backs ``/signup`` duplicate detection.
    """

    def __init__(self) -> None:
        self._users: Dict[str, str] = {}

    def register(self, username: str, password: str) -> None:
        if username in self._users:
            raise DuplicateUserError(username)
        self._users[username] = password
        logger.info("[Auth] Registered user %s", username)

    def exists(self, username: str) -> bool:
        return username in self._users

    def clear(self) -> None:
        self._users.clear()


_token_service: Optional[TokenService] = None
_user_store = UserStore()


def get_token_service() -> TokenService:
    """Get the global token service, building it from config on first use."""
    global _token_service
    if _token_service is None:
        config = get_config()
        _token_service = TokenService(
            secret_key=config.secrets.jwt.secret_key,
            algorithm=config.auth.algorithm,
            expire_minutes=config.auth.token_expire_minutes,
        )
    return _token_service


def set_token_service(service: Optional[TokenService]) -> None:
    """Set the global token service instance (``None`` rebuilds from config)."""
    global _token_service
    _token_service = service


def get_user_store() -> UserStore:
    """Get the global signup registry."""
    return _user_store
