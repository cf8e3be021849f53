"""Tenant resolution middleware.

Resolves the tenant for each request from:
1. The Host subdomain ("acme.<ROOT_DOMAIN>" -> subdomain "acme")
2. The X-Tenant-ID header, holding either a numeric id or a subdomain

Lookups are cached in Redis under tenant:lookup:<key> for five minutes.
After resolution, TenantContext is set in contextvars for the request scope
and the tenant id is copied to request.state for outer middleware.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Callable

import redis.asyncio as aioredis
import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.leadsync.config import get_settings
from src.leadsync.core.database import get_session, open_session
from src.leadsync.core.tenant import (
    SKIP_TENANT_PATHS,
    TenantContext,
    reset_tenant_context,
    set_tenant_context,
    subdomain_from_host,
)
from src.leadsync.models import Tenant

logger = structlog.get_logger(__name__)

CACHE_TTL_SECONDS = 300


class TenantMiddleware(BaseHTTPMiddleware):
    """Middleware that resolves the tenant from the Host subdomain or X-Tenant-ID.

    Paths in SKIP_TENANT_PATHS are excluded from tenant resolution.

    Args:
        redis_client: Optional Redis client for the lookup cache.
        session_factory: Async generator yielding an AsyncSession.
        root_domain: Domain under which tenant subdomains live.
    """

    def __init__(
        self,
        app,
        redis_client: aioredis.Redis | None = None,
        session_factory: Callable[[], AsyncGenerator[AsyncSession, None]] = get_session,
        root_domain: str | None = None,
    ):
        super().__init__(app)
        self._redis = redis_client
        self._session_factory = session_factory
        self._root_domain = root_domain if root_domain is not None else get_settings().ROOT_DOMAIN

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if any(path.startswith(skip) for skip in SKIP_TENANT_PATHS):
            return await call_next(request)

        key = subdomain_from_host(request.headers.get("host"), self._root_domain)
        if not key:
            key = (request.headers.get("X-Tenant-ID") or "").strip().lower() or None
        if not key:
            return JSONResponse(
                status_code=400,
                content={"detail": "Missing tenant context. Use a tenant subdomain or the X-Tenant-ID header."},
            )

        tenant_ctx = await self._resolve(key)
        if tenant_ctx is None:
            return JSONResponse(status_code=404, content={"detail": "Tenant not found"})

        request.state.tenant_id = tenant_ctx.tenant_id
        token = set_tenant_context(tenant_ctx)
        try:
            return await call_next(request)
        finally:
            reset_tenant_context(token)

    async def _resolve(self, key: str) -> TenantContext | None:
        """Resolve a tenant id or subdomain, using Redis cache when available."""
        cache_key = f"tenant:lookup:{key}"
        if self._redis:
            try:
                cached = await self._redis.get(cache_key)
                if cached:
                    data = json.loads(cached)
                    return TenantContext(
                        tenant_id=data["tenant_id"],
                        subdomain=data["subdomain"],
                        name=data["name"],
                    )
            except Exception:
                logger.warning("tenant.cache_get_failed", key=key)

        ctx = await self._lookup(key)
        if ctx is None:
            return None

        if self._redis:
            try:
                await self._redis.set(
                    cache_key,
                    json.dumps({"tenant_id": ctx.tenant_id, "subdomain": ctx.subdomain, "name": ctx.name}),
                    ex=CACHE_TTL_SECONDS,
                )
            except Exception:
                logger.warning("tenant.cache_set_failed", key=key)
        return ctx

    async def _lookup(self, key: str) -> TenantContext | None:
        condition = Tenant.id == int(key) if key.isdigit() else Tenant.subdomain == key
        async with open_session(self._session_factory) as session:
            result = await session.execute(
                select(Tenant).where(condition, Tenant.is_active.is_(True))
            )
            tenant = result.scalar_one_or_none()
            if tenant is None:
                return None
            return TenantContext(tenant_id=tenant.id, subdomain=tenant.subdomain, name=tenant.name)
