"""Shared helpers used across routers.

Services are attached to ``app.state`` by app.py (see ``attach_services``);
routers reach them through the request instead of module globals.
"""

import logging

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from catalog import ConfigCache
from coordinator import PassOutcome, StableStateCoordinator
from credentials import CredentialManager
from errors import ConfigNotFound, PreferenceStoreError, ResolutionError, user_message
from schemas import InterfaceType
from store import PreferenceStore

logger = logging.getLogger(__name__)


def get_catalog(request: Request) -> ConfigCache:
    return request.app.state.services.catalog


def get_store(request: Request) -> PreferenceStore:
    return request.app.state.services.store


def get_credentials(request: Request) -> CredentialManager:
    return request.app.state.services.credentials


def get_coordinators(request: Request) -> dict[InterfaceType, StableStateCoordinator]:
    return request.app.state.services.coordinators


def get_coordinator(request: Request, interface: InterfaceType) -> StableStateCoordinator:
    coordinator = get_coordinators(request).get(InterfaceType(interface))
    if coordinator is None:
        raise HTTPException(404, detail=f"No coordinator for interface '{interface}'")
    return coordinator


def error_response(exc: Exception, not_found_status: int = 404) -> JSONResponse:
    """Map resolution errors to HTTP responses.

    ConfigNotFound -> not_found_status, PreferenceStoreError -> 503,
    ValueError -> 400.
    """
    if isinstance(exc, ConfigNotFound):
        status = not_found_status
    elif isinstance(exc, PreferenceStoreError):
        status = 503
    elif isinstance(exc, ResolutionError):
        status = 500
    elif isinstance(exc, ValueError):
        return JSONResponse({"error": str(exc)}, status_code=400)
    else:
        raise exc
    logger.warning("Request failed: %s", exc)
    return JSONResponse({"error": user_message(exc), "detail": str(exc)}, status_code=status)


def outcome_payload(coordinator: StableStateCoordinator, outcome: PassOutcome) -> dict:
    return {
        "generation": outcome.generation,
        "committed": outcome.committed,
        "stale": outcome.stale,
        **coordinator.snapshot(),
    }
