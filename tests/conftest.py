import os

os.environ.setdefault("APP_LOG_FILE", "0")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

from typing import Any, Dict, List  # noqa: E402

import pytest  # noqa: E402

from reviewbot.config import Settings, reset_settings_cache  # noqa: E402
from reviewbot.github_client import GitHubAPIError  # noqa: E402
from reviewbot.queue.models import ChangeEvent  # noqa: E402

WEBHOOK_SECRET = "test-secret"

# One hunk, lines 11 and 12 added at positions 3 and 4.
SAMPLE_PATCH = "@@ -10,2 +10,4 @@\n context\n-old\n+new1\n+new2\n context"


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        github_app_id=1,
        github_private_key_pem="unused",
        github_webhook_secret=WEBHOOK_SECRET,
        github_bot_login="reviewbot[bot]",
    )


@pytest.fixture
def change_event() -> ChangeEvent:
    return ChangeEvent(
        repository="octo/widgets",
        head_repository="octo/widgets",
        installation_id=42,
        pull_number=7,
        action="opened",
        base_sha="a" * 40,
        head_sha="b" * 40,
    )


class FakeGitHub:
    """In-memory stand-in for GitHubInstallationClient recording every call."""

    def __init__(
        self,
        *,
        files: List[Dict[str, Any]] | None = None,
        contents: Dict[str, bytes] | None = None,
        comments: List[Dict[str, Any]] | None = None,
        reviews: List[Dict[str, Any]] | None = None,
    ) -> None:
        self.files = files or []
        self.contents = contents or {}
        self.comments = list(comments or [])
        self.reviews = list(reviews or [])
        self.fail_paths: set[str] = set()
        self.fail_comment_paths: set[str] = set()
        self.reject_submit = False
        self.calls: List[tuple[str, Dict[str, Any]]] = []

    def _record(self, name: str, **kwargs: Any) -> None:
        self.calls.append((name, kwargs))

    def called(self, name: str) -> List[Dict[str, Any]]:
        return [kwargs for call, kwargs in self.calls if call == name]

    async def get_app_login(self) -> str:
        self._record("get_app_login")
        return "reviewbot[bot]"

    async def get_commit_compare(self, **kwargs: Any) -> Dict[str, Any]:
        self._record("get_commit_compare", **kwargs)
        return {"files": self.files}

    async def get_file_content(self, *, path: str, **kwargs: Any) -> bytes:
        self._record("get_file_content", path=path, **kwargs)
        if path in self.fail_paths:
            raise GitHubAPIError(f"boom {path}", 500)
        if path not in self.contents:
            raise GitHubAPIError(f"missing {path}", 404)
        return self.contents[path]

    async def list_pull_request_comments(self, **kwargs: Any) -> List[Dict[str, Any]]:
        self._record("list_pull_request_comments", **kwargs)
        return list(self.comments)

    async def create_pull_request_comment(self, **kwargs: Any) -> Dict[str, Any]:
        self._record("create_pull_request_comment", **kwargs)
        if kwargs["path"] in self.fail_comment_paths:
            raise GitHubAPIError("comment rejected", 422)
        comment = {"path": kwargs["path"], "position": kwargs["position"], "body": kwargs["body"]}
        self.comments.append(comment)
        return comment

    async def list_pull_request_reviews(self, **kwargs: Any) -> List[Dict[str, Any]]:
        self._record("list_pull_request_reviews", **kwargs)
        return list(self.reviews)

    async def create_pull_request_review(self, **kwargs: Any) -> Dict[str, Any]:
        self._record("create_pull_request_review", **kwargs)
        return {"id": 999, "state": kwargs["event"]}

    async def submit_pull_request_review(self, **kwargs: Any) -> Dict[str, Any]:
        self._record("submit_pull_request_review", **kwargs)
        if self.reject_submit:
            raise GitHubAPIError("review already submitted", 422)
        return {"id": kwargs["review_id"], "state": kwargs["event"]}


class StubAnalyzer:
    def __init__(self, findings_by_path=None, missing=()):
        self.findings_by_path = findings_by_path or {}
        self.missing = set(missing)
        self.calls: List[tuple[str, Any]] = []

    async def analyze(self, content, filename, config=None):
        from reviewbot.errors import AnalysisMissing

        self.calls.append((filename, config))
        if filename in self.missing:
            raise AnalysisMissing(f"no result for {filename}")
        return list(self.findings_by_path.get(filename, []))
