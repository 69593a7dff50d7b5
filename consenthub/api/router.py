"""Main API router - aggregates all sub-routers.

Core resources are versioned under /api/v1. The CSR work queue, the
guardian listing and the TM Forum APIs keep their unversioned /api paths.
"""

from __future__ import annotations

from fastapi import APIRouter

from consenthub.api import admin, consents, dsar, guardian, health, preferences, privacy_notices, tmf

# Public router (no auth required)
public_router = APIRouter()
public_router.include_router(health.router)

# Versioned API router
api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(admin.router)
api_v1_router.include_router(admin.audit_router)
api_v1_router.include_router(preferences.router)
api_v1_router.include_router(dsar.router)
api_v1_router.include_router(consents.router)
api_v1_router.include_router(guardian.router)
api_v1_router.include_router(privacy_notices.router)

# Unversioned routes
api_router = APIRouter(prefix="/api")
api_router.include_router(dsar.queue_router)
api_router.include_router(admin.guardians_router)
api_router.include_router(tmf.router)
