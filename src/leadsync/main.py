"""FastAPI application factory.

Creates the app with tenant middleware, logging middleware, metrics middleware,
CORS, Sentry, lifespan events for database initialization, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.leadsync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.leadsync.api.middleware.tenant import TenantMiddleware
from src.leadsync.api.v1.router import router as v1_router
from src.leadsync.config import get_settings
from src.leadsync.core.database import close_db, get_session, init_db
from src.leadsync.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.leadsync.core.redis import close_redis, get_redis_pool
from src.leadsync.crm.dynamics import TokenCache
from src.leadsync.leads.repository import LeadRepository
from src.leadsync.leads.service import LeadSubmissionService


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and the CRM client on startup."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # One pooled HTTP client and one token cache shared by every CRM call
    crm_http_client = httpx.AsyncClient(timeout=settings.CRM_HTTP_TIMEOUT)
    app.state.crm_http_client = crm_http_client
    app.state.token_cache = TokenCache()

    repository = LeadRepository(session_factory=get_session)
    app.state.lead_repository = repository
    app.state.lead_service = LeadSubmissionService(
        repository,
        public_base_url=settings.PUBLIC_BASE_URL,
        http_client=crm_http_client,
        token_cache=app.state.token_cache,
    )
    log.info("app.started", environment=settings.ENVIRONMENT.value)

    yield

    await crm_http_client.aclose()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="LeadSync API",
        version="0.1.0",
        description="Trade-show lead capture with ActiveCampaign and Dynamics 365 sync",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # Tenant middleware (inner -- resolves tenant from subdomain/header)
    app.add_middleware(TenantMiddleware, redis_client=get_redis_pool())

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
