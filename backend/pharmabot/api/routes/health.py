"""Liveness and backend reachability checks."""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from pharmabot.api.deps import get_container
from pharmabot.core.container import ServiceContainer
from pharmabot.core.exceptions import RemoteServiceError, describe_for_log

logger = logging.getLogger(__name__)
router = APIRouter()


async def _probe_backend(container: ServiceContainer):
    """(categories, error). Exactly one of them is None."""
    try:
        return await container.catalog.list_categories(), None
    except RemoteServiceError as e:
        logger.warning(f"[Health] Backend check failed: {describe_for_log(e)}")
        return None, str(e)


@router.get("/health")
async def health(container: ServiceContainer = Depends(get_container)):
    categories, error = await _probe_backend(container)
    timestamp = datetime.now(timezone.utc).isoformat()
    backend_url = container.settings.BACKEND_BASE_URL

    if error is not None:
        return JSONResponse(status_code=503, content={
            "status": "degraded",
            "backend_connection": "failed",
            "error": error,
            "backend_url": backend_url,
            "timestamp": timestamp,
        })
    return {
        "status": "ok",
        "backend_connection": "connected",
        "categories_available": len(categories),
        "backend_url": backend_url,
        "timestamp": timestamp,
    }


@router.get("/api/test-connection")
async def test_connection(container: ServiceContainer = Depends(get_container)):
    categories, error = await _probe_backend(container)
    backend_url = container.settings.BACKEND_BASE_URL
    if error is not None:
        return JSONResponse(status_code=503, content={
            "status": "error",
            "error": error,
            "backend_url": backend_url,
        })
    return {"status": "success", "categories_count": len(categories), "backend_url": backend_url}
