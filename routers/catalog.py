"""Platform catalog routes."""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from errors import CatalogLoadError, ConfigNotFound
from routers.helpers import error_response, get_catalog, get_coordinators

logger = logging.getLogger(__name__)

router = APIRouter(tags=["catalog"])


@router.get("/api/catalog/platforms")
async def list_platforms(request: Request):
    platforms = [
        {
            "id": p.id,
            "name": p.name,
            "url": p.url,
            "icon_url": p.icon_url,
            "default_model": p.default_model,
        }
        for p in get_catalog(request).get_platforms()
    ]
    return {"platforms": platforms}


@router.get("/api/catalog/platforms/{platform_id}/models")
async def list_models(platform_id: str, request: Request):
    """Live model list for a platform, fetched over the request channel."""
    if get_catalog(request).get_platform(platform_id) is None:
        return error_response(ConfigNotFound(f"Platform '{platform_id}' not found in catalog", platform_id))
    response = await request.app.state.services.model_lists.request(platform_id)
    return {"success": response.success, "models": response.models, "error": response.error}


@router.post("/api/catalog/refresh")
async def refresh_catalog(request: Request):
    """Reload the catalog file and re-resolve every interface."""
    catalog = get_catalog(request)
    try:
        catalog.refresh()
    except CatalogLoadError as e:
        logger.error("Catalog reload failed: %s", e)
        return JSONResponse({"error": "Catalog reload failed", "detail": str(e)}, status_code=500)

    for coordinator in get_coordinators(request).values():
        await coordinator.refresh()
    return {"status": "ok", "platforms": len(catalog.get_platforms())}
