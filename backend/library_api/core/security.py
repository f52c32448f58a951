"""Password hashing and token issuing.

Access tokens are HS256 JWTs carrying the user id, role and mailing flag.
They are self-contained and never stored server-side. Refresh tokens are
opaque random strings stored on the user row; see ``core.sessions``.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from library_api.core.config import Settings
from library_api.core.exceptions import ConfigurationError, InvalidTokenError
from library_api.models import User, UserRole

UNSUBSCRIBE_PURPOSE = "unsubscribe"


def get_password_hash(password: str) -> str:
    """Hash a password with bcrypt."""
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    """Check a plaintext password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


@dataclass(frozen=True)
class AccessClaims:
    """Claims carried by a validated access token."""

    subject: str
    role: str
    mailing: bool
    issued_at: datetime | None = None
    expires_at: datetime | None = None

    @property
    def user_id(self) -> int:
        return int(self.subject)


class TokenIssuer:
    """Mint and verify access tokens, mint refresh tokens."""

    def __init__(self, settings: Settings):
        if not settings.secret_key:
            raise ConfigurationError("SECRET_KEY is not set")
        if settings.access_token_expire_seconds <= 0:
            raise ConfigurationError(
                f"Invalid access token TTL: {settings.access_token_expire_seconds}"
            )
        self._secret = settings.secret_key
        self._algorithm = settings.algorithm
        self.access_ttl = timedelta(seconds=settings.access_token_expire_seconds)

    def issue_access_token(self, user: User, expires_delta: timedelta | None = None) -> str:
        """Create a signed access token for the user.

        Args:
            user: Persisted user; its current role and mailing flag are embedded
            expires_delta: Override for the configured TTL

        Returns:
            Encoded JWT
        """
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta if expires_delta is not None else self.access_ttl)
        role = user.role.value if isinstance(user.role, UserRole) else str(user.role)
        claims = {
            "sub": str(user.id),
            "role": role,
            "mailing": bool(user.mailing),
            "iat": now,
            "exp": expire,
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def validate_access_token(self, token: str) -> AccessClaims:
        """Verify signature and expiry and return the embedded claims.

        Raises:
            InvalidTokenError: If the token is malformed, tampered with or expired
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as e:
            raise InvalidTokenError(str(e)) from e

        subject = payload.get("sub")
        role = payload.get("role")
        mailing = payload.get("mailing")
        if not isinstance(subject, str) or not subject.isdigit():
            raise InvalidTokenError("Token subject is missing or not a user id")
        if not isinstance(role, str) or not isinstance(mailing, bool):
            raise InvalidTokenError("Token claims are incomplete")

        return AccessClaims(
            subject=subject,
            role=role,
            mailing=mailing,
            issued_at=_from_timestamp(payload.get("iat")),
            expires_at=_from_timestamp(payload.get("exp")),
        )

    def issue_unsubscribe_token(self, user_id: int) -> str:
        """Sign a one-click unsubscribe token for the links in mailing emails."""
        claims = {"sub": str(user_id), "purpose": UNSUBSCRIBE_PURPOSE}
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def validate_unsubscribe_token(self, token: str) -> int:
        """Return the user id an unsubscribe token was issued for.

        Raises:
            InvalidTokenError: If the token is not a valid unsubscribe token
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as e:
            raise InvalidTokenError(str(e)) from e

        subject = payload.get("sub")
        if payload.get("purpose") != UNSUBSCRIBE_PURPOSE:
            raise InvalidTokenError("Not an unsubscribe token")
        if not isinstance(subject, str) or not subject.isdigit():
            raise InvalidTokenError("Token subject is missing or not a user id")
        return int(subject)

    @staticmethod
    def issue_refresh_token() -> str:
        """Generate an opaque refresh token (256 bits of entropy)."""
        return secrets.token_urlsafe(32)


def _from_timestamp(value: object) -> datetime | None:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, timezone.utc)
    return None
