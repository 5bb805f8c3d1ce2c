"""Live model list requests over a message-style request channel.

The model list is fetched with a request/response message
({"action": "get_models", "platform_id": ...}), not a direct call, so the
backing implementation can live behind any transport. A failed response
is treated exactly like an empty model list.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

from catalog import ConfigCache

logger = logging.getLogger(__name__)

GET_MODELS = "get_models"

Handler = Callable[[dict], Awaitable[dict]]


class RequestChannel(Protocol):
    async def send(self, message: dict) -> dict: ...


class LocalRequestChannel:
    """In-process channel dispatching messages to registered action handlers."""

    def __init__(self):
        self._handlers: dict[str, Handler] = {}

    def register_handler(self, action: str, handler: Handler):
        """Register a handler for an action.

        Handler signature:
            async def handler(message: dict) -> dict:
                # Returns {"success": bool, ...}
        """
        self._handlers[action] = handler

    async def send(self, message: dict) -> dict:
        action = message.get("action", "")
        handler = self._handlers.get(action)
        if not handler:
            return {"success": False, "error": f"No handler for {action}"}
        try:
            return await handler(message)
        except Exception as e:
            logger.exception("Request handler failed: action=%s", action)
            return {"success": False, "error": str(e)[:500]}


@dataclass
class ModelListResponse:
    success: bool
    models: list[dict] = field(default_factory=list)
    error: str | None = None

    @property
    def model_ids(self) -> list[str]:
        return [m["id"] for m in self.models if m.get("id")]


class ModelListService:
    def __init__(self, channel: RequestChannel):
        self._channel = channel

    async def request(self, platform_id: str) -> ModelListResponse:
        """Fetch the live model list; failures come back as success=False, models=[]."""
        try:
            response = await self._channel.send({"action": GET_MODELS, "platform_id": platform_id})
        except Exception as e:
            logger.warning("Model list request failed for platform=%s: %s", platform_id, e)
            return ModelListResponse(success=False, error=str(e)[:500])

        if not response or not response.get("success"):
            error = (response or {}).get("error") or f"Failed to load models for {platform_id}"
            logger.warning("Model list unavailable for platform=%s: %s", platform_id, error)
            return ModelListResponse(success=False, error=error)

        models = [m for m in response.get("models") or [] if isinstance(m, dict) and m.get("id")]
        return ModelListResponse(success=True, models=models)


def catalog_model_list_handler(catalog: ConfigCache) -> Handler:
    """Build a get_models handler that answers from the catalog."""

    async def handler(message: dict) -> dict:
        platform_id = message.get("platform_id")
        if not platform_id or catalog.get_platform(platform_id) is None:
            return {"success": False, "error": f"Unknown platform '{platform_id}'"}
        models = [
            {"id": m.id, "name": m.display_name or m.id}
            for m in catalog.get_models(platform_id)
        ]
        return {"success": True, "models": models, "platform_id": platform_id}

    return handler
