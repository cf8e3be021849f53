"""Tests for MetricsMiddleware labels and track_crm_call."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import REGISTRY

from src.leadsync.api.middleware.tenant import TenantMiddleware
from src.leadsync.core.monitoring import UNMATCHED_ENDPOINT, MetricsMiddleware, track_crm_call


def _requests(**labels) -> float:
    return REGISTRY.get_sample_value("http_requests_total", labels) or 0.0


def _make_app(session_factory) -> FastAPI:
    app = FastAPI()
    app.add_middleware(TenantMiddleware, redis_client=None, session_factory=session_factory)
    app.add_middleware(MetricsMiddleware)

    @app.get("/api/v1/tradeshows/{slug}/leads")
    async def leads(slug: str):
        return {"slug": slug}

    @app.get("/api/v1/badge-photos/{photo_id}")
    async def photo(photo_id: int):
        return {"id": photo_id}

    return app


@pytest.mark.asyncio
async def test_labels_use_route_template_and_tenant(session_factory, seeded):
    labels = {
        "method": "GET",
        "endpoint": "/api/v1/tradeshows/{slug}/leads",
        "status_code": "200",
        "tenant_id": str(seeded["tenant"].id),
    }
    before = _requests(**labels)

    transport = ASGITransport(app=_make_app(session_factory))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        for slug in ("expo-a", "expo-b", "expo-c"):
            response = await client.get(
                f"/api/v1/tradeshows/{slug}/leads", headers={"X-Tenant-ID": "acme"}
            )
            assert response.status_code == 200

    assert _requests(**labels) == before + 3
    assert _requests(**{**labels, "endpoint": "/api/v1/tradeshows/expo-a/leads"}) == 0.0


@pytest.mark.asyncio
async def test_public_route_without_tenant(session_factory, seeded):
    labels = {
        "method": "GET",
        "endpoint": "/api/v1/badge-photos/{photo_id}",
        "status_code": "200",
        "tenant_id": "unknown",
    }
    before = _requests(**labels)

    transport = ASGITransport(app=_make_app(session_factory))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/api/v1/badge-photos/1")
        await client.get("/api/v1/badge-photos/2")

    assert _requests(**labels) == before + 2


@pytest.mark.asyncio
async def test_unmatched_path_collapses_to_one_label(session_factory, seeded):
    labels = {
        "method": "GET",
        "endpoint": UNMATCHED_ENDPOINT,
        "status_code": "404",
        "tenant_id": str(seeded["tenant"].id),
    }
    before = _requests(**labels)

    transport = ASGITransport(app=_make_app(session_factory))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/api/v1/no-such-thing-1", headers={"X-Tenant-ID": "acme"})
        await client.get("/api/v1/no-such-thing-2", headers={"X-Tenant-ID": "acme"})

    assert _requests(**labels) == before + 2


@pytest.mark.asyncio
async def test_track_crm_call_records_error():
    labels = {"crm": "activecampaign", "operation": "unit_test_op", "status": "error"}
    before = REGISTRY.get_sample_value("crm_requests_total", labels) or 0.0

    with pytest.raises(ValueError):
        async with track_crm_call("activecampaign", "unit_test_op"):
            raise ValueError("boom")

    assert REGISTRY.get_sample_value("crm_requests_total", labels) == before + 1
