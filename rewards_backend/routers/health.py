"""Liveness and status endpoints."""
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from rewards_backend.config import get_settings
from rewards_backend.database import AsyncSessionLocal
from rewards_backend.services.form_service_client import get_form_service_client
from rewards_backend.utils import availability_cache
from rewards_backend.version import APP_VERSION

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _database_reachable() -> bool:
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


@router.get("/health")
async def health_check():
    """Liveness probe; only the database is required for the API to serve."""
    if not await _database_reachable():
        return JSONResponse(
            status_code=503,
            content={"status": "error", "database": "unreachable"},
        )
    return {"status": "ok", "database": "connected"}


@router.get("/status")
async def service_status():
    """Version, languages and form service reachability for the web app footer."""
    settings = get_settings()

    return {
        "version": APP_VERSION,
        "environment": settings.environment,
        "languages": settings.supported_languages,
        "form_service": {
            "url": settings.form_service_url,
            "healthy": await get_form_service_client().health_check(),
        },
        "cached_views": len(availability_cache),
        "diagnostics_enabled": settings.diagnostics_enabled,
    }
