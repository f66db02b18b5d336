"""Prometheus metrics, Sentry integration, and deal document sync tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- track_document_sync(): Context manager timing one deal sync and counting outcomes
- init_sentry(): Initialize Sentry with request-id event tagging
- get_metrics_response(): Prometheus exposition for the /metrics route
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import sentry_sdk
import structlog
from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Document Sync Metrics ────────────────────────────────────────────────────

deal_documents_synced_total = Counter(
    "deal_documents_synced_total",
    "Source files processed by the deal document sync, by outcome",
    ["outcome"],
)

deal_document_sync_duration_seconds = Histogram(
    "deal_document_sync_duration_seconds",
    "Duration of one deal document sync in seconds",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

deal_document_sync_failures_total = Counter(
    "deal_document_sync_failures_total",
    "Deal document syncs that degraded or aborted, by error code",
    ["code"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Document Sync Helper ─────────────────────────────────────────────────────


@asynccontextmanager
async def track_document_sync() -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that records metrics for one deal sync.

    Usage:
        async with track_document_sync() as tracker:
            result = await run_sync(...)
            tracker["outcomes"] = {"uploaded": 2, "skipped": 1}
            tracker["failure_code"] = "DRIVE_DISABLED"  # when degraded

    Automatically records:
    - Duration in histogram
    - Per-outcome file counts (if set in tracker dict)
    - Failure code (if set, or the code of an escaping error)
    """
    tracker: dict[str, Any] = {
        "outcomes": {},
        "failure_code": None,
    }
    start_time = time.perf_counter()

    try:
        yield tracker
    except Exception as exc:
        tracker["failure_code"] = getattr(exc, "code", None) or type(exc).__name__
        raise
    finally:
        deal_document_sync_duration_seconds.observe(time.perf_counter() - start_time)

        for outcome, count in tracker["outcomes"].items():
            if count:
                deal_documents_synced_total.labels(outcome=outcome).inc(count)

        if tracker["failure_code"]:
            deal_document_sync_failures_total.labels(code=tracker["failure_code"]).inc()


# ── Sentry Integration ───────────────────────────────────────────────────────


def tag_request_context(event: dict, hint: dict) -> dict:
    """Copy the request id bound by LoggingMiddleware onto Sentry events."""
    request_id = structlog.contextvars.get_contextvars().get("request_id")
    if request_id:
        event.setdefault("tags", {})["request_id"] = request_id
    return event


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK with request-id event tagging.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    # Set sample rate based on environment
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=tag_request_context,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
