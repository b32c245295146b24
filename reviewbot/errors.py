"""Failure kinds raised while reviewing a pull request."""

from __future__ import annotations


class ReviewError(RuntimeError):
    """Base class for review pipeline failures."""

    def __init__(self, message: str, *, step: str | None = None, original_error: Exception | None = None):
        super().__init__(message)
        self.step = step
        self.original_error = original_error


class AuthRejected(ReviewError):
    """The inbound notification is not authentic or not actionable."""

    def __init__(self, status_code: int, reason: str):
        super().__init__(reason, step="authenticate")
        self.status_code = status_code
        self.reason = reason


class UpstreamFetchFailed(ReviewError):
    """The diff or a file's content could not be fetched; the run is aborted."""


class AnalysisMissing(ReviewError):
    """The analysis engine produced no result for a file."""


class PublishFailed(ReviewError):
    """A single comment or review event could not be published."""


class ConfigFetchFailed(ReviewError):
    """The project's analyzer configuration could not be fetched."""
