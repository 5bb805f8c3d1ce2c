"""Committed interface state and user selection routes."""

import logging

from fastapi import APIRouter, Request

from errors import ResolutionError
from schemas import InterfaceType, ModelSelect, PlatformSelect, TabChange, ThinkingModeUpdate
from routers.helpers import error_response, get_coordinator, get_coordinators, outcome_payload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["state"])


@router.get("/api/state/{interface}")
async def get_state(interface: InterfaceType, request: Request):
    """Committed state for an interface, plus is_loading and the latest error."""
    return get_coordinator(request, interface).snapshot()


@router.post("/api/state/{interface}/tab")
async def change_tab(interface: InterfaceType, body: TabChange, request: Request):
    coordinator = get_coordinator(request, interface)
    outcome = await coordinator.set_tab(body.tab_id)
    return outcome_payload(coordinator, outcome)


@router.post("/api/state/{interface}/refresh")
async def refresh_state(interface: InterfaceType, request: Request):
    coordinator = get_coordinator(request, interface)
    outcome = await coordinator.refresh()
    return outcome_payload(coordinator, outcome)


@router.post("/api/state/{interface}/platform")
async def select_platform(interface: InterfaceType, body: PlatformSelect, request: Request):
    coordinator = get_coordinator(request, interface)
    try:
        outcome = await coordinator.select_platform(body.platform_id)
    except (ResolutionError, ValueError) as e:
        return error_response(e)
    return outcome_payload(coordinator, outcome)


@router.post("/api/state/{interface}/model")
async def select_model(interface: InterfaceType, body: ModelSelect, request: Request):
    coordinator = get_coordinator(request, interface)
    try:
        outcome = await coordinator.select_model(body.model_id)
    except (ResolutionError, ValueError) as e:
        return error_response(e)
    return outcome_payload(coordinator, outcome)


@router.post("/api/state/{interface}/thinking")
async def set_thinking_mode(interface: InterfaceType, body: ThinkingModeUpdate, request: Request):
    coordinator = get_coordinator(request, interface)
    try:
        outcome = await coordinator.set_thinking_mode(body.enabled)
    except (ResolutionError, ValueError) as e:
        return error_response(e)
    if outcome is None:
        return {"status": "ignored", **coordinator.snapshot()}
    return outcome_payload(coordinator, outcome)


@router.delete("/api/tabs/{tab_id}")
async def close_tab(tab_id: int, request: Request):
    """Drop tab-scoped preferences when a browser tab closes."""
    cleared = False
    try:
        for coordinator in get_coordinators(request).values():
            cleared = await coordinator.close_tab(tab_id) or cleared
    except ResolutionError as e:
        return error_response(e)
    logger.info("Tab closed: tab_id=%d cleared=%s", tab_id, cleared)
    return {"status": "ok", "tab_id": tab_id, "cleared": cleared}
