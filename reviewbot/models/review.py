"""Shared data structures for review processing."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Literal

if TYPE_CHECKING:
    from reviewbot.analyzer import AnalyzerConfig

Severity = Literal["error", "warning"]


@dataclass(slots=True)
class ChangedFile:
    path: str
    sha: str | None
    status: str = "modified"
    patch: str | None = None


@dataclass(frozen=True, slots=True)
class LineRange:
    """Inclusive bounds of the in-scope hunk, in new-file line numbers."""

    start: int
    end: int

    @classmethod
    def empty(cls) -> "LineRange":
        return cls(start=0, end=-1)

    @property
    def is_empty(self) -> bool:
        return self.end < self.start

    def __contains__(self, line: object) -> bool:
        return isinstance(line, int) and self.start <= line <= self.end


@dataclass(frozen=True, slots=True)
class Finding:
    severity: Severity
    rule: str | None
    line: int
    column: int
    message: str


@dataclass(frozen=True, slots=True)
class Annotation:
    path: str
    position: int
    rule: str | None
    severity: Severity
    message: str
    line: int | None = None

    @property
    def body(self) -> str:
        """Rendered comment body; existing comments are deduplicated against it verbatim."""
        text = f"**{self.severity}** {self.message.strip()}"
        if self.rule:
            text = f"{text} [{self.rule}]"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "position": self.position,
            "line": self.line,
            "rule": self.rule,
            "severity": self.severity,
            "body": self.body,
        }


@dataclass(frozen=True, slots=True)
class ExistingComment:
    path: str
    position: int | None
    body: str


@dataclass(frozen=True, slots=True)
class ReviewRecord:
    id: int
    author: str | None
    state: str | None


@dataclass(slots=True)
class FileContent:
    file: ChangedFile
    content: str


class ReviewOutcome(str, Enum):
    NO_FILES = "no_files"
    NO_PROBLEMS = "no_problems"
    ANNOTATED = "annotated"


@dataclass(slots=True)
class ReviewReport:
    outcome: ReviewOutcome
    dry: bool = False
    approved: bool = False
    annotations: List[Annotation] = field(default_factory=list)
    published: int = 0
    failures: int = 0

    @property
    def message(self) -> str:
        if self.outcome is ReviewOutcome.NO_FILES:
            return "no files changed"
        if self.outcome is ReviewOutcome.NO_PROBLEMS:
            return "no problems found"
        return f"{len(self.annotations)} annotation(s), {self.published} published, {self.failures} failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "message": self.message,
            "dry": self.dry,
            "approved": self.approved,
            "published": self.published,
            "failures": self.failures,
            "annotations": [annotation.to_dict() for annotation in self.annotations],
        }


@dataclass(slots=True)
class PullRequestReviewContext:
    repository: str
    installation_id: int
    pull_number: int
    head_sha: str
    base_sha: str
    files: List[FileContent] = field(default_factory=list)
    analyzer_config: AnalyzerConfig | None = None
