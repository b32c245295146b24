"""Fetch the changed files of a pull request for analysis."""

from __future__ import annotations

import asyncio
import re
from typing import Any, Dict, List, Pattern

from reviewbot.analyzer import AnalyzerConfig
from reviewbot.errors import ConfigFetchFailed, UpstreamFetchFailed
from reviewbot.github_client import GitHubAPIError, GitHubInstallationClient
from reviewbot.logger import get_logger, log_timing, log_with_context
from reviewbot.models.review import ChangedFile, FileContent, PullRequestReviewContext
from reviewbot.queue.models import ChangeEvent

logger = get_logger()


def _serialize_files(files: List[Dict[str, Any]]) -> List[ChangedFile]:
    serialized: List[ChangedFile] = []
    for file in files:
        # GitHub API may return "filename" or "path" depending on endpoint
        path = file.get("filename") or file.get("path")
        if not path:
            logger.warning(f"Skipping file entry missing filename/path: {file}")
            continue
        serialized.append(
            ChangedFile(
                path=path,
                sha=file.get("sha"),
                status=file.get("status", "modified"),
                patch=file.get("patch"),
            )
        )
    return serialized


def select_files(files: List[ChangedFile], file_filter: Pattern[str] | str) -> List[ChangedFile]:
    """Keep the reviewable files: matching the filter, diffable and still present."""

    pattern = re.compile(file_filter) if isinstance(file_filter, str) else file_filter
    return [
        file
        for file in files
        if pattern.search(file.path) and file.patch and file.status != "removed"
    ]


def _describe(exc: GitHubAPIError) -> str:
    if exc.status_code == 404:
        return f"not found (404): {exc}"
    if exc.status_code == 403:
        return f"permission denied (403): {exc}"
    if exc.status_code == 429:
        return f"rate limit exceeded (429): {exc}"
    return f"GitHub API error ({exc.status_code}): {exc}"


async def fetch_analyzer_config(
    client: GitHubInstallationClient, event: ChangeEvent, config_path: str | None
) -> AnalyzerConfig | None:
    """Fetch the project's Ruff configuration at the head commit, best effort."""

    if not config_path:
        return None
    ctx_logger = log_with_context(logger, repository=event.repository, pull_number=event.pull_number)
    try:
        try:
            raw = await client.get_file_content(
                installation_id=event.installation_id,
                full_name=event.repository,
                path=config_path,
                ref=event.head_sha,
            )
        except GitHubAPIError as exc:
            raise ConfigFetchFailed(f"{config_path}: {_describe(exc)}", step="fetch_config", original_error=exc) from exc
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ConfigFetchFailed(f"{config_path} is not valid UTF-8", step="fetch_config", original_error=exc) from exc
    except ConfigFetchFailed as exc:
        ctx_logger.info(f"Using default analyzer rules: {exc}")
        return None
    ctx_logger.debug(f"Loaded analyzer configuration from {config_path}")
    return AnalyzerConfig(path=config_path, content=content)


async def build_review_context(
    client: GitHubInstallationClient,
    event: ChangeEvent,
    *,
    file_filter: Pattern[str] | str,
    concurrency: int = 4,
    config_path: str | None = None,
) -> PullRequestReviewContext:
    """Compare base and head, then fetch every selected file at the head commit.

    Content fetches run concurrently, at most ``concurrency`` at a time. Any
    failed fetch raises ``UpstreamFetchFailed``; no partial context is returned.
    """

    ctx_logger = log_with_context(logger, repository=event.repository, pull_number=event.pull_number)
    ctx_logger.info(f"Fetching commit compare: base={event.base_sha[:8]}, head={event.head_sha[:8]}")

    try:
        with log_timing(ctx_logger, "fetch_commit_compare"):
            compare = await client.get_commit_compare(
                installation_id=event.installation_id,
                full_name=event.repository,
                base=event.base_sha,
                head=event.head_sha,
            )
    except GitHubAPIError as exc:
        raise UpstreamFetchFailed(f"Compare failed, {_describe(exc)}", step="fetch_commit_compare", original_error=exc) from exc

    changed = _serialize_files(compare.get("files") or [])
    selected = select_files(changed, file_filter)
    ctx_logger.info(f"Compare returned {len(changed)} file(s), {len(selected)} selected for analysis")

    context = PullRequestReviewContext(
        repository=event.repository,
        installation_id=event.installation_id,
        pull_number=event.pull_number,
        head_sha=event.head_sha,
        base_sha=event.base_sha,
    )
    if not selected:
        return context

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _fetch(file: ChangedFile) -> FileContent:
        async with semaphore:
            try:
                raw = await client.get_file_content(
                    installation_id=event.installation_id,
                    full_name=event.repository,
                    path=file.path,
                    ref=event.head_sha,
                )
            except GitHubAPIError as exc:
                raise UpstreamFetchFailed(
                    f"Fetching {file.path} failed, {_describe(exc)}", step="fetch_content", original_error=exc
                ) from exc
        return FileContent(file=file, content=raw.decode("utf-8", errors="replace"))

    with log_timing(ctx_logger, "fetch_file_contents", files=len(selected)):
        context.files = list(await asyncio.gather(*(_fetch(file) for file in selected)))
    context.analyzer_config = await fetch_analyzer_config(client, event, config_path)
    return context
