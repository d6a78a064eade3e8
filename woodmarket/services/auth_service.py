import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from woodmarket.models.entities import USER_ROLES, User
from woodmarket.services.errors import (
    DuplicateEmail,
    DuplicateUsername,
    InvalidCredentials,
    InvalidInput,
    InvalidOrExpiredToken,
    NotFound,
)
from woodmarket.services.passwords import PasswordHasher
from woodmarket.storage.base import Storage

logger = logging.getLogger(__name__)

RESET_REQUESTED_MESSAGE = "If an account with that email exists, a password reset link has been sent."
JWT_ALGORITHM = "HS256"
# bcrypt only looks at the first 72 bytes.
MAX_PASSWORD_BYTES = 72


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    user: User
    token: str
    expires_at: datetime


@dataclass
class ResetRequest:
    message: str
    # Only set when the email matched; never sent to the client in production.
    token: Optional[str] = None


class AuthService:
    """Handles authentication, login sessions and password resets."""

    def __init__(
        self,
        storage: Storage,
        secret: str,
        hasher: PasswordHasher = None,
        session_ttl: timedelta = timedelta(hours=24),
        reset_token_ttl: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = utcnow,
    ):
        if not secret:
            raise ValueError("A JWT secret is required")
        self.storage = storage
        self.secret = secret
        self.hasher = hasher or PasswordHasher()
        self.session_ttl = session_ttl
        self.reset_token_ttl = reset_token_ttl
        self.clock = clock
        self._dummy_hash = None

    # Sessions

    def issue_session(self, user: User) -> Session:
        """Sign a session token for an authenticated user."""
        now = self.clock()
        expires_at = now + self.session_ttl
        payload = {
            "sub": str(user.id),
            "role": user.role,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": expires_at,
        }
        token = jwt.encode(payload, self.secret, algorithm=JWT_ALGORITHM)
        return Session(user=user, token=token, expires_at=expires_at)

    def _decode(self, token: str) -> dict:
        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["sub", "jti", "exp"], "verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError as e:
            logger.debug("Rejected session token: %s", e)
            raise InvalidCredentials()

    def _check_session(self, token: str) -> dict:
        payload = self._decode(token)
        # Expiry is compared against the injectable clock rather than PyJWT's.
        if datetime.fromtimestamp(payload["exp"], tz=timezone.utc) <= self.clock():
            raise InvalidCredentials()
        if self.storage.is_token_revoked(payload["jti"]):
            raise InvalidCredentials()
        return payload

    def login(self, identifier: str, password: str) -> Session:
        """Authenticate by username or email and open a session."""
        user = self.storage.get_user_by_username(identifier)
        if user is None:
            user = self.storage.get_user_by_email(identifier)

        # Unknown identifiers still pay for one bcrypt check.
        password_hash = user.password_hash if user else self._unknown_user_hash()
        if not self.hasher.verify(password, password_hash) or user is None:
            logger.info("Failed login for %s", identifier)
            raise InvalidCredentials()

        logger.info("User %s logged in", user.id)
        return self.issue_session(user)

    def _unknown_user_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self.hasher.hash(secrets.token_hex(16))
        return self._dummy_hash

    def logout(self, token: str) -> None:
        payload = self._check_session(token)
        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        self.storage.revoke_token(payload["jti"], expires_at)
        logger.info("User %s logged out", payload["sub"])

    def current_user(self, token: str) -> User:
        """Resolve a session token to its user; any problem is InvalidCredentials."""
        payload = self._check_session(token)
        try:
            user_id = int(payload["sub"])
        except (TypeError, ValueError):
            raise InvalidCredentials()
        user = self.storage.get_user(user_id)
        if user is None:
            raise InvalidCredentials()
        return user

    # Registration and profile

    def register(
        self,
        username: str,
        email: str,
        password: str,
        full_name: str,
        role: str = "customer",
        avatar: Optional[str] = None,
    ) -> Session:
        """Register a new user and log them in."""
        if role not in USER_ROLES:
            raise InvalidInput(f"Unknown role: {role}")
        self._check_password(password)

        if self.storage.get_user_by_username(username):
            raise DuplicateUsername()
        if self.storage.get_user_by_email(email):
            raise DuplicateEmail()

        user = self.storage.create_user(
            username=username,
            email=email,
            password_hash=self.hasher.hash(password),
            full_name=full_name,
            role=role,
            avatar=avatar,
        )
        logger.info("Registered %s user %s", role, user.id)
        return self.issue_session(user)

    def update_profile(self, user_id: int, **changes) -> User:
        allowed = {k: v for k, v in changes.items() if k in ("full_name", "email", "avatar")}
        if "email" in allowed:
            existing = self.storage.get_user_by_email(allowed["email"])
            if existing and existing.id != user_id:
                raise DuplicateEmail()
        user = self.storage.update_user(user_id, **allowed)
        if user is None:
            raise NotFound("User not found")
        return user

    # Password reset

    def request_password_reset(self, email: str) -> ResetRequest:
        """
        Issue a reset token if ``email`` belongs to a user.

        The returned message is the same either way so the endpoint cannot be
        used to discover registered addresses. A new token replaces any token
        issued before it.
        """
        user = self.storage.get_user_by_email(email)
        if user is None:
            return ResetRequest(message=RESET_REQUESTED_MESSAGE)

        token = secrets.token_hex(32)
        self.storage.set_password_reset_token(user.id, token, self.clock() + self.reset_token_ttl)
        logger.info("Password reset requested for user %s", user.id)
        return ResetRequest(message=RESET_REQUESTED_MESSAGE, token=token)

    def reset_password(self, token: str, new_password: str) -> User:
        """Set a new password with a reset token; the token is consumed."""
        self._check_password(new_password)
        user = self.storage.get_user_by_reset_token(token)
        if user is None or user.reset_token_expiry is None:
            raise InvalidOrExpiredToken()
        if user.reset_token_expiry < self.clock():
            raise InvalidOrExpiredToken()

        if not self.storage.complete_password_reset(user.id, token, self.hasher.hash(new_password)):
            # Consumed by a concurrent request between lookup and update.
            raise InvalidOrExpiredToken()

        logger.info("Password reset completed for user %s", user.id)
        return self.storage.get_user(user.id)

    @staticmethod
    def _check_password(password: str) -> None:
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise InvalidInput(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
