"""Parameter resolution, override editing and derived settings routes."""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from errors import ConfigNotFound, ResolutionError
from parameter_resolver import derive_model_settings, resolve_parameters, validate_overrides
from schemas import Mode, ResolveParametersRequest, UserParameterOverride
from routers.helpers import error_response, get_catalog, get_coordinators, get_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["parameters"])


async def _refresh_affected(request: Request, platform_id: str, model_id: str):
    """Re-resolve coordinators whose committed selection uses this model."""
    for coordinator in get_coordinators(request).values():
        if (
            coordinator.stable_selected_platform_id == platform_id
            and coordinator.stable_selected_model_id == model_id
        ):
            await coordinator.refresh()


@router.post("/api/parameters/resolve")
async def resolve(body: ResolveParametersRequest, request: Request):
    """Resolve the parameter set for an explicit (platform, model) pair."""
    catalog = get_catalog(request)
    try:
        overrides = await get_store(request).get_overrides(body.platform_id, body.model_id)
        params = resolve_parameters(
            catalog,
            body.platform_id,
            body.model_id,
            overrides=overrides,
            tab_id=body.tab_id,
            interface_type=body.interface_type,
            conversation_history=body.conversation_history,
            use_thinking_mode=body.use_thinking_mode,
        )
    except ResolutionError as e:
        return error_response(e, not_found_status=409)
    return params.to_request_dict()


@router.get("/api/parameters/{platform_id}/{model_id}/{mode}")
async def get_override(platform_id: str, model_id: str, mode: Mode, request: Request):
    if get_catalog(request).get_model(platform_id, model_id) is None:
        return error_response(ConfigNotFound(
            f"Model '{model_id}' not found for platform '{platform_id}'", platform_id, model_id,
        ))
    try:
        override = await get_store(request).get_override(platform_id, model_id, mode)
    except ResolutionError as e:
        return error_response(e)
    return {
        "platform_id": platform_id,
        "model_id": model_id,
        "mode": mode.value,
        "override": override.to_storage(),
    }


@router.put("/api/parameters/{platform_id}/{model_id}/{mode}")
async def put_override(platform_id: str, model_id: str, mode: Mode, request: Request):
    """Validate and save a parameter override for one mode."""
    try:
        body = await request.json()
    except Exception:
        logger.debug("Override update: invalid JSON body")
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

    try:
        result = validate_overrides(get_catalog(request), platform_id, model_id, mode, body)
    except ConfigNotFound as e:
        return error_response(e)
    if not result["valid"]:
        return JSONResponse(
            {"error": "Invalid parameter override", "errors": result["errors"]}, status_code=422,
        )

    override = UserParameterOverride.model_validate(result["override"])
    try:
        await get_store(request).set_override(platform_id, model_id, mode, override)
    except ResolutionError as e:
        return error_response(e)
    logger.info("Parameter override saved: platform=%s model=%s mode=%s", platform_id, model_id, mode.value)

    await _refresh_affected(request, platform_id, model_id)
    return {"status": "ok", "override": override.to_storage()}


@router.delete("/api/parameters/{platform_id}/{model_id}/{mode}")
async def reset_override(platform_id: str, model_id: str, mode: Mode, request: Request):
    """Reset one mode back to catalog defaults."""
    try:
        removed = await get_store(request).delete_override(platform_id, model_id, mode)
    except ResolutionError as e:
        return error_response(e)
    if removed:
        await _refresh_affected(request, platform_id, model_id)
    return {"status": "ok", "removed": removed}


@router.get("/api/parameters/{platform_id}/{model_id}/{mode}/settings")
async def get_settings(platform_id: str, model_id: str, mode: Mode, request: Request):
    """Effective config, form defaults and parameter specs for a settings form."""
    try:
        return derive_model_settings(get_catalog(request), platform_id, model_id, mode)
    except ConfigNotFound as e:
        return error_response(e)
