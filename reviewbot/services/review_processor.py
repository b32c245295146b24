"""Review controller: drives one pull request from diff to published review."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Sequence, Tuple

from reviewbot.analyzer import Analyzer, RuffAnalyzer
from reviewbot.config import Settings, SettingsError, get_settings
from reviewbot.errors import AnalysisMissing, PublishFailed, UpstreamFetchFailed
from reviewbot.github_client import GitHubAPIError, GitHubInstallationClient
from reviewbot.logger import get_logger, log_failure, log_success, log_timing, log_with_context
from reviewbot.models.review import (
    Annotation,
    ExistingComment,
    Finding,
    PullRequestReviewContext,
    ReviewOutcome,
    ReviewRecord,
    ReviewReport,
)
from reviewbot.queue.models import ChangeEvent, ReviewJob
from reviewbot.services.correlator import correlate_files
from reviewbot.services.reconciler import reconcile
from reviewbot.services.review_context import build_review_context

logger = get_logger()

APPROVE_EVENT = "APPROVE"
APPROVAL_BODY = "No problems found in the changed lines."


class ReviewState(str, Enum):
    REJECTED = "rejected"
    FETCHING = "fetching"
    ANALYZING = "analyzing"
    CORRELATING = "correlating"
    DECIDING = "deciding"
    PUBLISHING = "publishing"
    DONE = "done"


def latest_review_by(reviews: Sequence[Dict[str, Any]], login: str) -> ReviewRecord | None:
    """Return the most recent review (highest id) authored by ``login``."""

    own = [
        review
        for review in reviews
        if (review.get("user") or {}).get("login") == login and review.get("id") is not None
    ]
    if not own:
        return None
    latest = max(own, key=lambda review: int(review["id"]))
    return ReviewRecord(id=int(latest["id"]), author=login, state=latest.get("state"))


def existing_comments_from(raw_comments: Sequence[Dict[str, Any]]) -> List[ExistingComment]:
    return [
        ExistingComment(path=comment.get("path") or "", position=comment.get("position"), body=comment.get("body") or "")
        for comment in raw_comments
    ]


class ReviewController:
    """One-shot state machine for a single ``ChangeEvent``."""

    def __init__(
        self,
        github_client: GitHubInstallationClient,
        analyzer: Analyzer,
        settings: Settings,
    ) -> None:
        self._github = github_client
        self._analyzer = analyzer
        self._settings = settings
        self.state: ReviewState | None = None
        self.history: List[ReviewState] = []

    def _transition(self, state: ReviewState, ctx_logger) -> None:
        self.state = state
        self.history.append(state)
        ctx_logger.debug(f"state -> {state.value}")

    async def run(self, event: ChangeEvent, *, dry: bool = False) -> ReviewReport:
        ctx_logger = log_with_context(
            logger, repository=event.repository, pull_number=event.pull_number, head_sha=event.head_sha[:8]
        )

        self._transition(ReviewState.FETCHING, ctx_logger)
        context = await build_review_context(
            self._github,
            event,
            file_filter=self._settings.file_filter,
            concurrency=self._settings.fetch_concurrency,
            config_path=self._settings.ruff_config_path,
        )
        if not context.files:
            self._transition(ReviewState.DONE, ctx_logger)
            ctx_logger.info("done: no files changed")
            return ReviewReport(outcome=ReviewOutcome.NO_FILES, dry=dry)

        self._transition(ReviewState.ANALYZING, ctx_logger)
        analyzed = await self._analyze(context, ctx_logger)

        self._transition(ReviewState.CORRELATING, ctx_logger)
        annotations = correlate_files(
            analyzed,
            excluded_rules=self._settings.excluded_rules,
            max_findings=self._settings.max_findings_per_file,
        )
        ctx_logger.info(f"{len(annotations)} annotation(s) on changed lines")

        self._transition(ReviewState.DECIDING, ctx_logger)
        if not annotations:
            report = ReviewReport(outcome=ReviewOutcome.NO_PROBLEMS, dry=dry)
            if dry:
                report.approved = True
                ctx_logger.info("dry run: would approve")
            else:
                report.approved = await self._approve(event, ctx_logger)
                if not report.approved:
                    report.failures += 1
            self._transition(ReviewState.DONE, ctx_logger)
            ctx_logger.info("done: no problems found")
            return report

        self._transition(ReviewState.PUBLISHING, ctx_logger)
        report = await self._publish(event, annotations, dry, ctx_logger)
        self._transition(ReviewState.DONE, ctx_logger)
        return report

    async def _analyze(
        self, context: PullRequestReviewContext, ctx_logger
    ) -> List[Tuple[str, str | None, List[Finding]]]:
        analyzed: List[Tuple[str, str | None, List[Finding]]] = []
        for item in context.files:
            try:
                findings = await self._analyzer.analyze(item.content, item.file.path, context.analyzer_config)
            except AnalysisMissing as exc:
                ctx_logger.warning(f"No analysis result for {item.file.path}, skipping: {exc}")
                continue
            analyzed.append((item.file.path, item.file.patch, findings))
        return analyzed

    async def _bot_login(self) -> str:
        if self._settings.github_bot_login:
            return self._settings.github_bot_login
        return await self._github.get_app_login()

    async def _submit_approval(self, event: ChangeEvent, previous: ReviewRecord | None, ctx_logger) -> None:
        if previous is not None:
            ctx_logger.info(f"Submitting approval on existing review {previous.id} ({previous.state})")
            try:
                await self._github.submit_pull_request_review(
                    installation_id=event.installation_id,
                    full_name=event.repository,
                    pull_number=event.pull_number,
                    review_id=previous.id,
                    body=APPROVAL_BODY,
                    event=APPROVE_EVENT,
                )
                return
            except GitHubAPIError as exc:
                # Already submitted reviews cannot take another event.
                ctx_logger.warning(f"Review {previous.id} rejected the approval, creating a new one: {exc}")

        try:
            ctx_logger.info("Creating approval review")
            await self._github.create_pull_request_review(
                installation_id=event.installation_id,
                full_name=event.repository,
                pull_number=event.pull_number,
                body=APPROVAL_BODY,
                event=APPROVE_EVENT,
                commit_id=event.head_sha,
            )
        except GitHubAPIError as exc:
            raise PublishFailed(f"Approval failed: {exc}", step="approve", original_error=exc) from exc

    async def _approve(self, event: ChangeEvent, ctx_logger) -> bool:
        """Approve through our latest review when one exists, else with a new review."""

        previous: ReviewRecord | None = None
        try:
            login = await self._bot_login()
            reviews = await self._github.list_pull_request_reviews(
                installation_id=event.installation_id,
                full_name=event.repository,
                pull_number=event.pull_number,
            )
            previous = latest_review_by(reviews, login)
        except GitHubAPIError as exc:
            ctx_logger.warning(f"Could not look up previous reviews, creating a new one: {exc}")

        try:
            await self._submit_approval(event, previous, ctx_logger)
        except PublishFailed as exc:
            log_failure(logger, str(exc), exc.original_error, repository=event.repository, pull_number=event.pull_number)
            return False
        return True

    async def _post_comment(self, event: ChangeEvent, annotation: Annotation) -> None:
        try:
            await self._github.create_pull_request_comment(
                installation_id=event.installation_id,
                full_name=event.repository,
                pull_number=event.pull_number,
                commit_id=event.head_sha,
                path=annotation.path,
                position=annotation.position,
                body=annotation.body,
            )
        except GitHubAPIError as exc:
            raise PublishFailed(
                f"Comment on {annotation.path} at position {annotation.position} failed: {exc}",
                step="publish_comment",
                original_error=exc,
            ) from exc

    async def _publish(
        self, event: ChangeEvent, annotations: List[Annotation], dry: bool, ctx_logger
    ) -> ReviewReport:
        try:
            raw_comments = await self._github.list_pull_request_comments(
                installation_id=event.installation_id,
                full_name=event.repository,
                pull_number=event.pull_number,
            )
        except GitHubAPIError as exc:
            raise UpstreamFetchFailed(
                f"Listing existing comments failed: {exc}", step="list_comments", original_error=exc
            ) from exc

        pending = reconcile(annotations, existing_comments_from(raw_comments))
        ctx_logger.info(f"{len(pending)} new annotation(s), {len(annotations) - len(pending)} already posted")
        report = ReviewReport(outcome=ReviewOutcome.ANNOTATED, dry=dry, annotations=pending)
        if dry:
            return report

        # One at a time, in file and line order.
        for annotation in pending:
            try:
                await self._post_comment(event, annotation)
            except PublishFailed as exc:
                ctx_logger.warning(str(exc))
                report.failures += 1
                continue
            report.published += 1

        ctx_logger.info(f"done: {report.message}")
        return report


class ReviewProcessor:
    """Queue job handler building the collaborators for each run."""

    def __init__(self, analyzer: Analyzer | None = None) -> None:
        self._analyzer = analyzer

    async def __call__(self, job: ReviewJob) -> ReviewReport | None:
        event = job.event
        ctx_logger = log_with_context(
            logger, delivery_id=job.delivery_id, repository=event.repository, pull_number=event.pull_number
        )
        ctx_logger.info("=== PROCESSOR: Starting review processing ===")

        try:
            settings = get_settings()
            credentials = settings.require_review_credentials()
        except SettingsError as exc:  # pragma: no cover - configuration guard
            log_failure(logger, "Configuration missing", exc, delivery_id=job.delivery_id)
            raise

        analyzer = self._analyzer or RuffAnalyzer(
            binary=settings.ruff_binary,
            timeout=settings.analyzer_timeout,
            error_rule_prefixes=settings.error_rule_prefixes,
        )
        github_client = GitHubInstallationClient(
            base_url=settings.normalized_github_api_base_url,
            app_id=credentials.github_app_id,
            private_key_pem=credentials.github_private_key_pem,
            timeout=settings.github_timeout,
            user_agent=settings.user_agent,
        )
        try:
            controller = ReviewController(github_client, analyzer, settings)
            try:
                with log_timing(ctx_logger, "review_pull_request"):
                    report = await controller.run(event, dry=job.dry)
            except UpstreamFetchFailed as exc:
                ctx_logger.warning(f"Review aborted during {exc.step}: {exc}")
                return None
            log_success(
                logger,
                f"{event.repository}#{event.pull_number}: {report.message}",
                delivery_id=job.delivery_id,
            )
            return report
        finally:
            await github_client.aclose()
            ctx_logger.debug("GitHub client closed")
