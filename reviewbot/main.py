import sys
import time
from typing import Any

import fastapi
import uvicorn

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from reviewbot.logger import get_logger, log_with_context
from reviewbot.queue import configure_review_handler, shutdown_queue
from reviewbot.services.review_processor import ReviewProcessor
from reviewbot.utils.security import request_token
from reviewbot.webhook import router as webhook_router

logger = get_logger()

app = FastAPI(title="reviewbot")
app.state.closing = False

app.include_router(webhook_router, tags=["webhook"])


@app.middleware("http")
async def _request_lifecycle(request: Request, call_next):
    request_id = request.headers.get("Request-Id") or request_token()
    ctx_logger = log_with_context(logger, request_id=request_id)
    started = time.perf_counter()

    if request.app.state.closing:
        # Let keep-alive clients reconnect elsewhere while we drain.
        response = PlainTextResponse("shutting down\n", status_code=503, headers={"Connection": "close"})
    else:
        response = await call_next(request)

    response.headers["Request-Id"] = request_id
    latency_ms = (time.perf_counter() - started) * 1000
    ctx_logger.info(f"{request.method} {response.status_code} {request.url.path} ({latency_ms:.1f}ms)")
    return response


@app.get("/", response_class=PlainTextResponse)
def root() -> str:
    return "pong"


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "reviewbot is ready to annotate pull requests.",
        "environment": {
            "python version": sys.version,
            "fastapi version": fastapi.__version__,
            "uvicorn version": uvicorn.__version__,
        },
    }


@app.on_event("startup")
async def _configure_queue_worker() -> None:
    app.state.closing = False
    configure_review_handler(ReviewProcessor())


@app.on_event("shutdown")
async def _shutdown_queue_worker() -> None:
    app.state.closing = True
    await shutdown_queue()
