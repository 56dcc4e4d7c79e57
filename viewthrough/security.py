"""Security utilities for JWTs.

WHAT:
    Verifies the session JWT issued by the dashboard's auth service and can
    mint tokens for scripts and tests.

WHY:
    Every attribution endpoint is scoped to the workspace of the
    authenticated user; the JWT subject identifies that user.
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import jwt, JWTError

from viewthrough.utils.env import require_env


ALGORITHM = "HS256"
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "10080"))

logger = logging.getLogger(__name__)


JWT_SECRET = require_env("JWT_SECRET")


def create_access_token(subject: str, expires_minutes: int | None = None) -> str:
    """Create a signed JWT for the given subject (e.g., user email)."""
    if expires_minutes is None:
        expires_minutes = JWT_EXPIRES_MINUTES
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes)
    to_encode: Dict[str, Any] = {"sub": subject, "iat": int(now.timestamp()), "exp": int(expire.timestamp())}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT, returning its payload.

    Raises jose.JWTError on failure.
    """
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[ALGORITHM])
    except JWTError:
        logger.debug("[AUTH] Rejected token")
        raise
