"""Application configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, BaseModel, Field, ValidationError

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


class SettingsError(RuntimeError):
    """Raised when application configuration is invalid or incomplete."""


@dataclass(frozen=True)
class ReviewCredentials:
    github_app_id: int
    github_private_key_pem: str
    github_webhook_secret: str


DEFAULT_EXCLUDED_RULES: Final[tuple[str, ...]] = ("INP001", "I001", "EXE001", "EXE002")
DEFAULT_ERROR_RULE_PREFIXES: Final[tuple[str, ...]] = ("E9", "F")


class Settings(BaseModel):
    """Runtime settings loaded from environment variables."""

    github_api_base_url: AnyHttpUrl = "https://api.github.com"
    github_app_id: int | None = None
    github_private_key_pem: str | None = None
    github_webhook_secret: str | None = None
    github_bot_login: str | None = None
    github_timeout: float = Field(default=10.0, gt=0)
    user_agent: str = "reviewbot/1.0"

    file_filter: str = r"\.pyi?$"
    fetch_concurrency: int = Field(default=4, ge=1)
    max_findings_per_file: int = Field(default=300, ge=1)
    excluded_rules: frozenset[str] = frozenset(DEFAULT_EXCLUDED_RULES)
    error_rule_prefixes: tuple[str, ...] = DEFAULT_ERROR_RULE_PREFIXES

    ruff_config_path: str = "ruff.toml"
    ruff_binary: str | None = None
    analyzer_timeout: float = Field(default=30.0, gt=0)

    port: int = 8000

    @property
    def normalized_github_api_base_url(self) -> str:
        """Return the GitHub API base URL without a trailing slash."""
        return str(self.github_api_base_url).rstrip("/")

    def require_review_credentials(self) -> ReviewCredentials:
        """Ensure GitHub App secrets are configured and return them."""

        missing = []
        if self.github_app_id is None:
            missing.append("GITHUB_APP_ID")
        if not self.github_private_key_pem:
            missing.append("GITHUB_PRIVATE_KEY")
        if not self.github_webhook_secret:
            missing.append("GITHUB_WEBHOOK_SECRET")

        if missing:
            missing_vars = ", ".join(missing)
            raise SettingsError(
                "Code review is not configured. Missing environment variables: "
                f"{missing_vars}."
            )

        return ReviewCredentials(
            github_app_id=int(self.github_app_id),
            github_private_key_pem=self.github_private_key_pem,
            github_webhook_secret=self.github_webhook_secret,
        )


_TRUE_VALUES: Final[set[str]] = {"1", "true", "yes", "on"}


def parse_bool(raw_value: str | None, *, default: bool = False) -> bool:
    """Convert an environment or query string value to a boolean."""

    if raw_value is None:
        return default
    return raw_value.strip().lower() in _TRUE_VALUES


def _parse_list_env(raw_value: str | None) -> list[str] | None:
    """Split a comma separated environment variable, ``None`` when unset."""

    if raw_value is None:
        return None
    return [item.strip() for item in raw_value.split(",") if item.strip()]


def _build_settings() -> Settings:
    values: dict[str, object] = {}

    simple_vars = {
        "github_api_base_url": "GITHUB_API_BASE_URL",
        "github_private_key_pem": "GITHUB_PRIVATE_KEY",
        "github_webhook_secret": "GITHUB_WEBHOOK_SECRET",
        "github_bot_login": "GITHUB_BOT_LOGIN",
        "github_timeout": "GITHUB_TIMEOUT",
        "user_agent": "USER_AGENT",
        "file_filter": "FILE_FILTER",
        "fetch_concurrency": "FETCH_CONCURRENCY",
        "max_findings_per_file": "MAX_FINDINGS_PER_FILE",
        "ruff_config_path": "RUFF_CONFIG_PATH",
        "ruff_binary": "RUFF_BINARY",
        "analyzer_timeout": "ANALYZER_TIMEOUT",
        "port": "PORT",
    }
    for field_name, env_name in simple_vars.items():
        raw = os.getenv(env_name)
        if raw is not None and raw.strip():
            values[field_name] = raw

    excluded_rules = _parse_list_env(os.getenv("EXCLUDED_RULES"))
    if excluded_rules is not None:
        values["excluded_rules"] = frozenset(excluded_rules)
    error_prefixes = _parse_list_env(os.getenv("ERROR_RULE_PREFIXES"))
    if error_prefixes is not None:
        values["error_rule_prefixes"] = tuple(error_prefixes)

    github_app_id = os.getenv("GITHUB_APP_ID")
    try:
        if github_app_id and github_app_id.strip():
            values["github_app_id"] = int(github_app_id)
    except ValueError as exc:
        raise SettingsError("Invalid value for GITHUB_APP_ID. It must be an integer.") from exc

    try:
        return Settings(**values)
    except ValidationError as exc:
        raise SettingsError(f"Invalid application configuration: {exc}") from exc


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return _build_settings()


def get_settings() -> Settings:
    """Retrieve cached application settings."""
    return _cached_settings()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for tests)."""
    _cached_settings.cache_clear()
