"""Prometheus metrics, Sentry integration, and CRM call tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- track_crm_call(): Context manager recording outbound CRM call metrics
- init_sentry(): Initialize Sentry with tenant-aware before_send callback
- get_metrics_response(): Response for the /metrics route
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code", "tenant_id"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "tenant_id"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── CRM Metrics ──────────────────────────────────────────────────────────────

crm_requests_total = Counter(
    "crm_requests_total",
    "Total outbound CRM API operations",
    ["crm", "operation", "status"],
)

crm_request_duration_seconds = Histogram(
    "crm_request_duration_seconds",
    "Outbound CRM API operation duration in seconds",
    ["crm", "operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

UNMATCHED_ENDPOINT = "<unmatched>"


# ── Metrics Middleware ───────────────────────────────────────────────────────


def _route_template(request: Request) -> str:
    """Matched route path ("/api/v1/badge-photos/{photo_id}") for the endpoint label."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ENDPOINT


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        # tenant_id is set by TenantMiddleware, the route by the router
        tenant_id = getattr(request.state, "tenant_id", None)
        tenant_id = "unknown" if tenant_id is None else str(tenant_id)
        endpoint = _route_template(request)

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
            tenant_id=tenant_id,
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
            tenant_id=tenant_id,
        ).observe(duration)

        return response


# ── CRM Metrics Helper ──────────────────────────────────────────────────────


@asynccontextmanager
async def track_crm_call(crm: str, operation: str) -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that records one outbound CRM operation.

    Usage:
        async with track_crm_call("activecampaign", "create_contact") as tracker:
            ok = await do_call()
            tracker["status"] = "success" if ok else "failure"

    Exceptions are recorded as "error" and re-raised.
    """
    tracker: dict[str, Any] = {"status": "success"}
    start_time = time.perf_counter()

    try:
        yield tracker
    except Exception:
        tracker["status"] = "error"
        raise
    finally:
        crm_requests_total.labels(
            crm=crm,
            operation=operation,
            status=tracker["status"],
        ).inc()
        crm_request_duration_seconds.labels(
            crm=crm,
            operation=operation,
        ).observe(time.perf_counter() - start_time)


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK with tenant-aware event tagging."""
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Add tenant context to Sentry events."""
        try:
            from src.leadsync.core.tenant import get_current_tenant

            ctx = get_current_tenant()
            if "tags" not in event:
                event["tags"] = {}
            event["tags"]["tenant_id"] = str(ctx.tenant_id)
            event["tags"]["tenant_subdomain"] = ctx.subdomain
        except RuntimeError:
            pass
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=before_send,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Render the default Prometheus registry."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
