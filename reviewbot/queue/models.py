"""Data models for review queue jobs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ChangeEvent(BaseModel):
    """A verified pull request notification, immutable for one run."""

    model_config = ConfigDict(frozen=True)

    repository: str
    head_repository: str | None = None
    installation_id: int
    pull_number: int
    action: Literal["opened", "synchronize"]
    base_sha: str
    head_sha: str
    title: str | None = None
    url: str | None = None


class ReviewJob(BaseModel):
    delivery_id: str
    event: ChangeEvent
    dry: bool = False
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
