from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

import bcrypt
from jose import JWTError, jwt

from rollcall.core.config import Settings


# bcrypt only reads the first 72 bytes; newer releases reject longer input
_BCRYPT_MAX_BYTES = 72


def _secret(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """Hash a password for the offline credential cache."""
    return bcrypt.hashpw(_secret(password), bcrypt.gensalt()).decode("ascii")


def verify_password(password: str, stored_hash: Optional[str]) -> bool:
    if not stored_hash:
        return False
    try:
        return bcrypt.checkpw(_secret(password), stored_hash.encode("ascii"))
    except ValueError:
        # Not a bcrypt hash
        return False


def create_access_token(
    settings: Settings, *, subject: Dict, expires_minutes: Optional[int] = None
) -> Tuple[str, datetime]:
    """Sign a token for the local identity provider; returns the token and its expiry."""
    if expires_minutes is None:
        expires_minutes = settings.access_token_expire_minutes

    to_encode = subject.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(
        to_encode, settings.local_jwt_secret_key, algorithm=settings.jwt_algorithm
    )
    return encoded_jwt, expire


def decode_access_token(settings: Settings, token: str) -> Optional[Dict]:
    """Claims of a valid, unexpired local token, or None."""
    try:
        return jwt.decode(token, settings.local_jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
