"""GitHub webhook ingestion."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from reviewbot.config import parse_bool
from reviewbot.dependencies import review_processor_dependency, webhook_secret_dependency
from reviewbot.errors import AuthRejected
from reviewbot.logger import get_logger, log_failure, log_with_context
from reviewbot.queue import enqueue_review_job
from reviewbot.queue.models import ReviewJob
from reviewbot.services.authenticator import authenticate
from reviewbot.services.review_processor import ReviewProcessor
from reviewbot.utils.security import request_token

router = APIRouter()

logger = get_logger()

_ALL_METHODS = ["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"]


def _is_dry(request: Request) -> bool:
    raw = request.query_params.get("dry")
    return raw == "" or parse_bool(raw)


@router.api_route("/run", methods=_ALL_METHODS, summary="Receive pull request webhooks")
async def receive_webhook(
    request: Request,
    secret: str = Depends(webhook_secret_dependency),
    processor: ReviewProcessor = Depends(review_processor_dependency),
) -> Any:
    """Verify the notification, then queue the review (or run it inline when dry)."""

    event_name = request.headers.get("X-GitHub-Event")
    delivery_id = request.headers.get("X-GitHub-Delivery") or request_token()
    # Drain the body even when the request is rejected.
    raw_body = await request.body()

    try:
        event = authenticate(
            method=request.method,
            event=event_name,
            body=raw_body,
            signature=request.headers.get("X-Hub-Signature-256"),
            secret=secret,
        )
    except AuthRejected as exc:
        log_failure(logger, f"Webhook rejected: {exc.reason}", delivery_id=delivery_id, event_type=event_name)
        return PlainTextResponse(f"{exc.reason}\n", status_code=exc.status_code)

    dry = _is_dry(request)
    job = ReviewJob(delivery_id=delivery_id, event=event, dry=dry)
    ctx_logger = log_with_context(
        logger, delivery_id=delivery_id, repository=event.repository, pull_number=event.pull_number
    )

    if dry:
        ctx_logger.info(f"Dry run for {event.action} event")
        report = await processor(job)
        body: Dict[str, Any] = {"status": "aborted"} if report is None else {"status": "dry", **report.to_dict()}
        return JSONResponse(body, status_code=status.HTTP_200_OK)

    await enqueue_review_job(job)
    ctx_logger.info(f"Accepted {event.action} event, review queued")
    return JSONResponse({"status": "accepted"}, status_code=status.HTTP_202_ACCEPTED)
