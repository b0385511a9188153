from __future__ import annotations

import base64
from datetime import datetime, timedelta
import hashlib
import hmac
import secrets

import jwt

from linkvault.core.clock import utc_now
from linkvault.core.config import get_settings
from linkvault.core.errors import AuthError, ConfigError, MissingFieldError


_ALGORITHM = "HS256"
_HASH_SCHEME = "pbkdf2_sha256"
_SALT_BYTES = 16
_DKLEN = 32
_MIN_PASSWORD = 8
_MAX_PASSWORD = 256


def hash_password(password: str) -> str:
    # Stored as pbkdf2_sha256$iterations$salt_b64$hash_b64.
    if not isinstance(password, str) or len(password) < _MIN_PASSWORD:
        raise MissingFieldError(f"password must be at least {_MIN_PASSWORD} characters")
    if len(password) > _MAX_PASSWORD:
        raise MissingFieldError("password is too long")
    iterations = max(1, int(get_settings().password_hash_iterations))
    salt = secrets.token_bytes(_SALT_BYTES)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations, dklen=_DKLEN)
    return "{}${}${}${}".format(
        _HASH_SCHEME,
        iterations,
        base64.b64encode(salt).decode("ascii"),
        base64.b64encode(digest).decode("ascii"),
    )


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, iterations, salt_b64, hash_b64 = stored.split("$", 3)
        if scheme != _HASH_SCHEME:
            return False
        salt = base64.b64decode(salt_b64.encode("ascii"))
        expected = base64.b64decode(hash_b64.encode("ascii"))
        digest = hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), salt, int(iterations), dklen=len(expected)
        )
    except (AttributeError, TypeError, ValueError):
        return False
    return hmac.compare_digest(digest, expected)


def _secret() -> str:
    secret = get_settings().session_secret
    if not secret:
        raise ConfigError("session_secret is not configured")
    return secret


def issue_session_token(partner_id: str, *, now: datetime | None = None) -> str:
    # Short-lived bearer token for the partner dashboard routes.
    issued_at = now or utc_now()
    ttl = timedelta(hours=get_settings().session_ttl_hours)
    payload = {
        "sub": partner_id,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + ttl).timestamp()),
        "typ": "partner",
    }
    return jwt.encode(payload, _secret(), algorithm=_ALGORITHM)


def decode_session_token(token: str) -> str:
    """Return the partner id carried by a valid session token."""
    try:
        claims = jwt.decode(token, _secret(), algorithms=[_ALGORITHM], options={"require": ["sub", "exp"]})
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("session expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError("invalid session token") from exc
    if claims.get("typ") != "partner":
        raise AuthError("invalid session token")
    return str(claims["sub"])
