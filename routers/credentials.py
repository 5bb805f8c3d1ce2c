"""Per-platform API credential routes (status, store, remove)."""

import asyncio
import logging

from fastapi import APIRouter, Request

from errors import ConfigNotFound, ResolutionError
from schemas import CredentialStatusResponse, CredentialUpdate
from routers.helpers import error_response, get_catalog, get_coordinators, get_credentials

logger = logging.getLogger(__name__)

router = APIRouter(tags=["credentials"])


def _unknown_platform(request: Request, platform_id: str):
    if get_catalog(request).get_platform(platform_id) is None:
        return error_response(ConfigNotFound(f"Platform '{platform_id}' not found in catalog", platform_id))
    return None


async def _refresh_gated(request: Request):
    """Credential changes alter which platforms gated interfaces may offer."""
    gated = [c for c in get_coordinators(request).values() if c.interface_type.requires_credentials]
    await asyncio.gather(*(c.refresh() for c in gated))


@router.get("/api/credentials/{platform_id}", response_model=CredentialStatusResponse)
async def credential_status(platform_id: str, request: Request):
    """Whether a platform has stored credentials (never returns the key)."""
    missing = _unknown_platform(request, platform_id)
    if missing is not None:
        return missing
    try:
        has = await get_credentials(request).has_credentials(platform_id)
    except ResolutionError as e:
        return error_response(e)
    return CredentialStatusResponse(platform_id=platform_id, has_credentials=has)


@router.put("/api/credentials/{platform_id}")
async def store_credentials(platform_id: str, body: CredentialUpdate, request: Request):
    missing = _unknown_platform(request, platform_id)
    if missing is not None:
        return missing
    try:
        await get_credentials(request).store_credentials(platform_id, body.api_key)
    except ResolutionError as e:
        return error_response(e)
    await _refresh_gated(request)
    return {"status": "ok", "platform_id": platform_id}


@router.delete("/api/credentials/{platform_id}")
async def remove_credentials(platform_id: str, request: Request):
    try:
        removed = await get_credentials(request).remove_credentials(platform_id)
    except ResolutionError as e:
        return error_response(e)
    if removed:
        await _refresh_gated(request)
    return {"status": "ok", "platform_id": platform_id, "removed": removed}
