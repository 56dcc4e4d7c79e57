"""Environment helpers shared by the API, the arq worker and alembic.

Local development reads a `.env` file; deployed processes get real
environment variables, which a `.env` file never overrides.
"""

import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)


def load_env_file() -> bool:
    """Load `.env` into os.environ without overwriting existing variables.

    Returns:
        True if a `.env` file was found and read
    """
    from dotenv import load_dotenv

    loaded = load_dotenv(override=False)
    if loaded:
        logger.info("[ENV] Loaded local .env file (existing variables kept)")
    else:
        logger.debug("[ENV] No local .env file found")
    return loaded


def require_env(name: str, example: Optional[str] = None) -> str:
    """Return a mandatory variable, consulting `.env` once if it is unset.

    Raises:
        RuntimeError: If the variable is still missing, so workers fail at
        startup instead of on their first job.
    """
    value = os.getenv(name)
    if not value:
        load_env_file()
        value = os.getenv(name)

    if not value:
        message = f"Missing required environment variable: {name}"
        if example:
            message += f" (e.g. {name}={example})"
        raise RuntimeError(message)
    return value
