"""Password hashing and signed admin session tokens."""

from __future__ import annotations

from datetime import datetime, timedelta

import bcrypt
import jwt

from .config import settings
from .utils import utcnow

ADMIN_COOKIE_NAME = "admin_token"
JWT_ALGORITHM = "HS256"
BCRYPT_ROUNDS = 10
MIN_PASSWORD_LENGTH = 6
# bcrypt only looks at the first 72 bytes of a secret.
MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    """Return a bcrypt hash for ``password``."""
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValueError("Password must be at most 72 bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("ascii")


def verify_password(password: str, password_hash: str) -> bool:
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES or not password_hash:
        return False
    try:
        return bcrypt.checkpw(encoded, password_hash.encode("ascii"))
    except ValueError:
        return False


def create_admin_token(
    admin_id: str,
    *,
    expires_delta: timedelta | None = None,
    now: datetime | None = None,
) -> str:
    """Create a signed session token for an admin."""
    issued = now or utcnow()
    expire = issued + (expires_delta or settings.session_lifetime)
    payload = {"admin_id": admin_id, "iat": issued, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_admin_token(token: str | None) -> str | None:
    """Return the admin id carried by ``token`` or ``None`` when invalid."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None
    admin_id = payload.get("admin_id")
    return admin_id if isinstance(admin_id, str) and admin_id else None
