"""Dependency providers and settings management."""

from functools import lru_cache
from typing import Dict, Optional

from fastapi import Cookie, Depends, HTTPException, status
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.orm import Session

from .database import get_db
from .models import User
from .security import decode_token


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"

    # Redis Configuration (arq)
    REDIS_URL: str = "redis://localhost:6379/0"

    # View-through model parameters
    # Historical view-to-conversion rates per platform (JSON in env)
    VIEW_THROUGH_BASE_RATES: Dict[str, float] = {
        "meta": 0.15,
        "tiktok": 0.10,
        "google": 0.08,
        "newsbreak": 0.05,
    }
    VIEW_THROUGH_DEFAULT_BASE_RATE: float = 0.05
    VIEW_THROUGH_MAX_PROBABILITY: float = 0.30
    VIEW_THROUGH_MAX_CREDIT_SHARE: float = 0.30
    VIEW_THROUGH_DECAY_DAYS: float = 14.0
    VIEW_THROUGH_LOOKBACK_DAYS: int = 30
    VIEW_THROUGH_MODEL_VERSION: str = "v1"
    VIEW_THROUGH_BATCH_SIZE: int = 500

    # Scheduled run: trailing window and tenant parallelism
    VIEW_THROUGH_WINDOW_DAYS: int = 90
    VIEW_THROUGH_MAX_WORKERS: int = 1

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def get_current_user(
    db: Session = Depends(get_db),
    access_token: Optional[str] = Cookie(default=None, alias="access_token"),
) -> User:
    """Resolve the current user from the `access_token` cookie.

    The cookie value is expected to be in the form: "Bearer <jwt>".
    """
    if not access_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    # Remove optional "Bearer " prefix
    if access_token.startswith("Bearer "):
        token = access_token[len("Bearer ") :]
    else:
        token = access_token

    try:
        payload = decode_token(token)
    except Exception:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")

    user = (
        db.query(User)
        .filter(User.email == subject)
        .first()
    )
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user
