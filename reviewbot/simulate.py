"""Replay pull requests against a running server as signed webhooks.

Usage: reviewbot-simulate <owner>/<repo> <number> [<number> ...] [--dry]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List

import httpx

from reviewbot.config import SettingsError, get_settings
from reviewbot.github_client import GitHubAPIError, GitHubInstallationClient
from reviewbot.logger import get_logger
from reviewbot.utils.security import build_github_signature, request_token

logger = get_logger()


def build_webhook_payload(pull_request: Dict[str, Any], installation_id: int) -> Dict[str, Any]:
    return {
        "action": "opened",
        "number": pull_request.get("number"),
        "pull_request": pull_request,
        "repository": (pull_request.get("base") or {}).get("repo"),
        "installation": {"id": installation_id},
    }


def build_webhook_request(payload: Dict[str, Any], secret: str) -> tuple[bytes, Dict[str, str]]:
    body = json.dumps(payload).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "X-GitHub-Event": "pull_request",
        "X-GitHub-Delivery": request_token(),
        "X-Hub-Signature-256": build_github_signature(secret, body),
    }
    return body, headers


async def simulate(repository: str, numbers: List[int], *, url: str, dry: bool) -> int:
    settings = get_settings()
    credentials = settings.require_review_credentials()
    github = GitHubInstallationClient(
        base_url=settings.normalized_github_api_base_url,
        app_id=credentials.github_app_id,
        private_key_pem=credentials.github_private_key_pem,
        timeout=settings.github_timeout,
        user_agent=settings.user_agent,
    )
    failures = 0
    try:
        installation_id = await github.get_repository_installation_id(full_name=repository)
        async with httpx.AsyncClient(timeout=None if dry else 10.0) as client:
            for number in numbers:
                try:
                    pull_request = await github.get_pull_request(
                        installation_id=installation_id, full_name=repository, pull_number=number
                    )
                    body, headers = build_webhook_request(
                        build_webhook_payload(pull_request, installation_id), credentials.github_webhook_secret
                    )
                    response = await client.post(url, content=body, headers=headers, params={"dry": "1"} if dry else None)
                except (GitHubAPIError, httpx.HTTPError) as exc:
                    logger.warning(f"{repository}#{number}: {exc}")
                    failures += 1
                    continue
                logger.info(f"{repository}#{number}: {response.status_code} {response.text.strip()}")
                if response.status_code >= 400:
                    failures += 1
    finally:
        await github.aclose()
    return failures


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Send signed pull_request webhooks to a reviewbot server")
    parser.add_argument("repository", help="Repository full name, e.g. owner/repo")
    parser.add_argument("numbers", nargs="+", type=int, help="Pull request number(s)")
    parser.add_argument("--url", default=None, help="Webhook URL (default: http://localhost:$PORT/run)")
    parser.add_argument("--dry", action="store_true", help="Ask the server for a dry run and print its report")
    args = parser.parse_args(argv)

    try:
        url = args.url or f"http://localhost:{get_settings().port}/run"
        failures = asyncio.run(simulate(args.repository, args.numbers, url=url, dry=args.dry))
    except (SettingsError, GitHubAPIError) as exc:
        logger.error(str(exc))
        return 2
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
