"""End-to-end controller runs against an in-memory GitHub."""

import asyncio

import pytest

from reviewbot.analyzer import AnalyzerConfig
from reviewbot.errors import UpstreamFetchFailed
from reviewbot.models.review import Finding, ReviewOutcome
from reviewbot.services.review_processor import (
    APPROVE_EVENT,
    ReviewController,
    ReviewState,
    latest_review_by,
)

from conftest import SAMPLE_PATCH, FakeGitHub, StubAnalyzer


def error_on(line, rule="F821", message="undefined name"):
    return Finding(severity="error", rule=rule, line=line, column=1, message=message)


def py_file(path="app.py", patch=SAMPLE_PATCH, status="modified"):
    return {"filename": path, "sha": "c" * 40, "status": status, "patch": patch}


def run(controller, event, **kwargs):
    return asyncio.run(controller.run(event, **kwargs))


def test_clean_pull_request_creates_approval(settings, change_event):
    github = FakeGitHub(files=[py_file()], contents={"app.py": b"x = 1\n"})
    controller = ReviewController(github, StubAnalyzer(), settings)

    report = run(controller, change_event)

    assert report.outcome is ReviewOutcome.NO_PROBLEMS
    assert report.approved
    reviews = github.called("create_pull_request_review")
    assert len(reviews) == 1
    assert reviews[0]["event"] == APPROVE_EVENT
    assert reviews[0]["commit_id"] == change_event.head_sha
    assert github.called("submit_pull_request_review") == []
    assert github.called("create_pull_request_comment") == []
    assert controller.history == [
        ReviewState.FETCHING,
        ReviewState.ANALYZING,
        ReviewState.CORRELATING,
        ReviewState.DECIDING,
        ReviewState.DONE,
    ]


def test_clean_pull_request_reuses_latest_own_review(settings, change_event):
    reviews = [
        {"id": 10, "user": {"login": "reviewbot[bot]"}, "state": "PENDING"},
        {"id": 30, "user": {"login": "someone"}, "state": "COMMENTED"},
        {"id": 20, "user": {"login": "reviewbot[bot]"}, "state": "COMMENTED"},
    ]
    github = FakeGitHub(files=[py_file()], contents={"app.py": b"x = 1\n"}, reviews=reviews)

    report = run(ReviewController(github, StubAnalyzer(), settings), change_event)

    assert report.approved
    submitted = github.called("submit_pull_request_review")
    assert len(submitted) == 1
    assert submitted[0]["review_id"] == 20
    assert submitted[0]["event"] == APPROVE_EVENT
    assert github.called("create_pull_request_review") == []


def test_submitted_own_review_falls_back_to_new_approval(settings, change_event):
    reviews = [{"id": 20, "user": {"login": "reviewbot[bot]"}, "state": "COMMENTED"}]
    github = FakeGitHub(files=[py_file()], contents={"app.py": b"x = 1\n"}, reviews=reviews)
    github.reject_submit = True

    report = run(ReviewController(github, StubAnalyzer(), settings), change_event)

    assert report.approved
    assert report.failures == 0
    assert [call["review_id"] for call in github.called("submit_pull_request_review")] == [20]
    created = github.called("create_pull_request_review")
    assert len(created) == 1
    assert created[0]["event"] == APPROVE_EVENT
    assert created[0]["commit_id"] == change_event.head_sha


def test_bot_login_resolved_from_app_when_not_configured(settings, change_event):
    settings = settings.model_copy(update={"github_bot_login": None})
    github = FakeGitHub(
        files=[py_file()],
        contents={"app.py": b"x = 1\n"},
        reviews=[{"id": 5, "user": {"login": "reviewbot[bot]"}, "state": "COMMENTED"}],
    )
    run(ReviewController(github, StubAnalyzer(), settings), change_event)
    assert len(github.called("get_app_login")) == 1
    assert github.called("submit_pull_request_review")[0]["review_id"] == 5


def test_findings_are_published_without_verdict(settings, change_event):
    github = FakeGitHub(files=[py_file()], contents={"app.py": b"print(y)\n"})
    analyzer = StubAnalyzer({"app.py": [error_on(11), error_on(50, rule="E501")]})

    report = run(ReviewController(github, analyzer, settings), change_event)

    assert report.outcome is ReviewOutcome.ANNOTATED
    assert not report.approved
    assert report.published == 1
    comments = github.called("create_pull_request_comment")
    assert comments == [
        {
            "installation_id": 42,
            "full_name": "octo/widgets",
            "pull_number": 7,
            "commit_id": change_event.head_sha,
            "path": "app.py",
            "position": 3,
            "body": "**error** undefined name [F821]",
        }
    ]
    assert github.called("create_pull_request_review") == []
    assert github.called("submit_pull_request_review") == []
    assert github.called("list_pull_request_reviews") == []


def test_second_run_publishes_nothing_new(settings, change_event):
    github = FakeGitHub(files=[py_file()], contents={"app.py": b"print(y)\n"})
    analyzer = StubAnalyzer({"app.py": [error_on(11), error_on(12, rule="F841", message="unused")]})

    first = run(ReviewController(github, analyzer, settings), change_event)
    second = run(ReviewController(github, analyzer, settings), change_event)

    assert first.published == 2
    assert second.published == 0
    assert second.annotations == []
    assert len(github.called("create_pull_request_comment")) == 2


def test_one_failed_comment_does_not_stop_the_rest(settings, change_event):
    github = FakeGitHub(
        files=[py_file("a.py"), py_file("b.py")],
        contents={"a.py": b"", "b.py": b""},
    )
    github.fail_comment_paths.add("a.py")
    analyzer = StubAnalyzer({"a.py": [error_on(11)], "b.py": [error_on(12)]})

    report = run(ReviewController(github, analyzer, settings), change_event)

    assert report.failures == 1
    assert report.published == 1
    assert [c["path"] for c in github.called("create_pull_request_comment")] == ["a.py", "b.py"]


def test_comments_published_in_file_order(settings, change_event):
    files = [py_file(name) for name in ("z.py", "m.py", "a.py")]
    github = FakeGitHub(files=files, contents={name: b"" for name in ("z.py", "m.py", "a.py")})
    analyzer = StubAnalyzer({name: [error_on(12), error_on(11)] for name in ("z.py", "m.py", "a.py")})

    run(ReviewController(github, analyzer, settings), change_event)

    posted = [(c["path"], c["position"]) for c in github.called("create_pull_request_comment")]
    assert posted == [("z.py", 4), ("z.py", 3), ("m.py", 4), ("m.py", 3), ("a.py", 4), ("a.py", 3)]


def test_no_matching_files_reports_no_files(settings, change_event):
    github = FakeGitHub(
        files=[
            py_file("README.md"),
            py_file("gone.py", status="removed"),
            py_file("logo.py", patch=None),
        ]
    )
    controller = ReviewController(github, StubAnalyzer(), settings)

    report = run(controller, change_event)

    assert report.outcome is ReviewOutcome.NO_FILES
    assert report.message == "no files changed"
    assert github.called("get_file_content") == []
    assert github.called("create_pull_request_review") == []
    assert controller.history == [ReviewState.FETCHING, ReviewState.DONE]


def test_fetch_failure_aborts_without_publishing(settings, change_event):
    github = FakeGitHub(files=[py_file("a.py"), py_file("b.py")], contents={"a.py": b""})
    github.fail_paths.add("b.py")

    with pytest.raises(UpstreamFetchFailed):
        run(ReviewController(github, StubAnalyzer({"a.py": [error_on(11)]}), settings), change_event)

    assert github.called("create_pull_request_comment") == []
    assert github.called("create_pull_request_review") == []


def test_missing_analysis_is_skipped(settings, change_event):
    github = FakeGitHub(files=[py_file("a.py"), py_file("b.py")], contents={"a.py": b"", "b.py": b""})
    analyzer = StubAnalyzer({"b.py": [error_on(11)]}, missing={"a.py"})

    report = run(ReviewController(github, analyzer, settings), change_event)

    assert [a.path for a in report.annotations] == ["b.py"]


def test_project_config_is_passed_to_analyzer(settings, change_event):
    github = FakeGitHub(
        files=[py_file()],
        contents={"app.py": b"", "ruff.toml": b"line-length = 120\n"},
    )
    analyzer = StubAnalyzer()

    run(ReviewController(github, analyzer, settings), change_event)

    assert analyzer.calls == [("app.py", AnalyzerConfig(path="ruff.toml", content="line-length = 120\n"))]


def test_missing_project_config_falls_back_to_defaults(settings, change_event):
    github = FakeGitHub(files=[py_file()], contents={"app.py": b""})
    analyzer = StubAnalyzer()

    report = run(ReviewController(github, analyzer, settings), change_event)

    assert analyzer.calls == [("app.py", None)]
    assert report.outcome is ReviewOutcome.NO_PROBLEMS


def test_dry_run_calls_no_mutating_endpoint(settings, change_event):
    github = FakeGitHub(files=[py_file()], contents={"app.py": b""})
    analyzer = StubAnalyzer({"app.py": [error_on(11)]})

    report = run(ReviewController(github, analyzer, settings), change_event, dry=True)

    assert report.dry
    assert [a.position for a in report.annotations] == [3]
    assert report.published == 0
    assert github.called("create_pull_request_comment") == []


def test_dry_run_would_approve(settings, change_event):
    github = FakeGitHub(files=[py_file()], contents={"app.py": b""})

    report = run(ReviewController(github, StubAnalyzer(), settings), change_event, dry=True)

    assert report.approved
    assert github.called("create_pull_request_review") == []
    assert github.called("submit_pull_request_review") == []


def test_latest_review_by_picks_highest_id():
    reviews = [
        {"id": 3, "user": {"login": "bot"}, "state": "APPROVED"},
        {"id": 11, "user": {"login": "bot"}, "state": "COMMENTED"},
        {"id": 12, "user": None, "state": "COMMENTED"},
    ]
    record = latest_review_by(reviews, "bot")
    assert record.id == 11
    assert record.state == "COMMENTED"
    assert latest_review_by(reviews, "nobody") is None
