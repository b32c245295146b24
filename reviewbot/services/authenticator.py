"""Verification of inbound pull request notifications."""

from __future__ import annotations

import json
from typing import Any, Dict, FrozenSet

from pydantic import ValidationError

from reviewbot.errors import AuthRejected
from reviewbot.queue.models import ChangeEvent
from reviewbot.utils.security import verify_github_signature

HANDLED_EVENT = "pull_request"
ACCEPTED_ACTIONS: FrozenSet[str] = frozenset({"opened", "synchronize"})


def _require(mapping: Dict[str, Any], key: str, description: str) -> Any:
    value = mapping.get(key)
    if value in (None, ""):
        raise AuthRejected(400, f"payload missing {description}")
    return value


def build_change_event(payload: Dict[str, Any]) -> ChangeEvent:
    """Deserialize an accepted ``pull_request`` payload."""

    pull_request = payload.get("pull_request") or {}
    installation = payload.get("installation") or {}
    base = pull_request.get("base") or {}
    head = pull_request.get("head") or {}
    base_repo = base.get("repo") or payload.get("repository") or {}
    head_repo = head.get("repo") or {}

    try:
        return ChangeEvent(
            repository=_require(base_repo, "full_name", "base.repo.full_name"),
            head_repository=head_repo.get("full_name"),
            installation_id=_require(installation, "id", "installation.id"),
            pull_number=_require(pull_request, "number", "pull_request.number"),
            action=payload["action"],
            base_sha=_require(base, "sha", "base.sha"),
            head_sha=_require(head, "sha", "head.sha"),
            title=pull_request.get("title"),
            url=pull_request.get("html_url"),
        )
    except ValidationError as exc:
        raise AuthRejected(400, f"invalid pull request payload: {exc.error_count()} error(s)") from exc


def authenticate(
    *,
    method: str,
    event: str | None,
    body: bytes,
    signature: str | None,
    secret: str,
) -> ChangeEvent:
    """Accept or reject a notification, returning the trusted ``ChangeEvent``.

    Raises ``AuthRejected`` with the HTTP status to answer: 400 for a bad
    method or body, 403 for a wrong event, action or signature. The body is
    only parsed once the signature over the raw bytes has been verified.
    """

    if method.upper() != "POST":
        raise AuthRejected(400, "method not supported")
    if event != HANDLED_EVENT:
        raise AuthRejected(403, f'event not supported: "{event}"')
    if not verify_github_signature(secret, body, signature):
        raise AuthRejected(403, "invalid signature")

    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise AuthRejected(400, "invalid JSON request body") from exc
    if not isinstance(payload, dict):
        raise AuthRejected(400, "invalid JSON request body")

    action = payload.get("action")
    if action not in ACCEPTED_ACTIONS:
        raise AuthRejected(403, f'action not supported: "{event}.{action}"')

    return build_change_event(payload)
