"""Shared-secret credential checks for the inbound reset trigger."""
from __future__ import annotations

import secrets
import time

from jose import JWTError, jwt

TRIGGER_AUDIENCE = "idle-counter-trigger"


def verify_shared_secret(supplied: str | None, expected: str | None) -> bool:
    """Return True if ``supplied`` matches the configured secret.

    An unset secret on the server side rejects every caller.
    """
    if not expected or not supplied:
        return False
    return secrets.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def create_trigger_token(secret: str, *, ttl_seconds: int = 300, algorithm: str = "HS256") -> str:
    """Issue a short-lived token a scheduler can present instead of the raw secret."""
    now = int(time.time())
    payload = {
        "aud": TRIGGER_AUDIENCE,
        "iat": now,
        "exp": now + ttl_seconds,
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def verify_trigger_token(token: str | None, secret: str | None, *, algorithm: str = "HS256") -> bool:
    """Verify an HS256 trigger token signed with the shared secret."""
    if not token or not secret:
        return False
    try:
        jwt.decode(token, secret, algorithms=[algorithm], audience=TRIGGER_AUDIENCE)
    except JWTError:
        return False
    return True
