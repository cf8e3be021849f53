"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.leadsync.api.v1 import crm_connections, dynamics, health, leads

router = APIRouter()

router.include_router(health.router)
router.include_router(leads.router)
router.include_router(crm_connections.router)
router.include_router(dynamics.router)
