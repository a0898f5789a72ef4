"""Authentication utilities: password hashing, JWT tokens, TOTP verification."""

import hmac
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt
import pyotp

from alert_relay.config import settings


def hash_password(password: str) -> str:
    pw = password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    pw = plain.encode("utf-8")[:72]
    return bcrypt.checkpw(pw, hashed.encode("utf-8"))


def create_access_token(subject: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes)
    payload = {"sub": subject, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str | None:
    """Decode JWT and return the subject (username). Returns None on failure."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        return payload.get("sub")
    except JWTError:
        return None


def verify_totp(secret: str | None, code: str | None) -> bool:
    """Accounts without a TOTP secret skip the second factor."""
    if not secret:
        return True
    if not code:
        return False
    return pyotp.TOTP(secret).verify(code, valid_window=1)


def generate_totp_secret() -> str:
    return pyotp.random_base32()


def get_totp_uri(secret: str, username: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(
        name=username,
        issuer_name="Trade Alert Relay",
    )


def secrets_match(expected: str, given: str | None) -> bool:
    """Exact shared-secret comparison used by the webhook and relay routes."""
    if given is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), given.encode("utf-8"))
