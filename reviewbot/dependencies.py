"""FastAPI dependency factories."""

from __future__ import annotations

from functools import lru_cache

from fastapi import HTTPException

from reviewbot.config import Settings, SettingsError, get_settings
from reviewbot.logger import get_logger
from reviewbot.services.review_processor import ReviewProcessor

logger = get_logger()


def settings_dependency() -> Settings:
    """Resolve application settings, surfacing configuration errors via HTTPException."""

    try:
        return get_settings()
    except SettingsError as exc:
        logger.error(f"Failed to load settings: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def webhook_secret_dependency() -> str:
    """Return the shared webhook secret, failing with 500 when it is not configured."""

    settings = settings_dependency()
    if not settings.github_webhook_secret:
        logger.error("GITHUB_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Webhook secret is not configured.")
    return settings.github_webhook_secret


@lru_cache(maxsize=1)
def review_processor_dependency() -> ReviewProcessor:
    """Provide the processor used for inline (dry) runs."""

    return ReviewProcessor()
