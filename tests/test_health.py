"""Tests for the liveness and readiness endpoints."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.leadsync.api.v1 import health
from src.leadsync.api.v1.health import router


def _make_app() -> FastAPI:
    app = FastAPI()
    app.include_router(router)
    return app


async def _get(path: str):
    transport = ASGITransport(app=_make_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.get(path)


@pytest.mark.asyncio
async def test_liveness():
    response = await _get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_readiness_ok(engine, monkeypatch):
    redis = AsyncMock()
    redis.ping.return_value = True
    monkeypatch.setattr(health, "get_engine", lambda: engine)
    monkeypatch.setattr(health, "get_redis_pool", lambda: redis)

    response = await _get("/health/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "ready", "checks": {"database": "ok", "redis": "ok"}}


@pytest.mark.asyncio
async def test_readiness_degraded_when_redis_down(engine, monkeypatch):
    redis = AsyncMock()
    redis.ping.side_effect = ConnectionError("refused")
    monkeypatch.setattr(health, "get_engine", lambda: engine)
    monkeypatch.setattr(health, "get_redis_pool", lambda: redis)

    response = await _get("/health/ready")

    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "degraded"
    assert body["checks"]["database"] == "ok"
    assert body["checks"]["redis_error"] == "refused"
