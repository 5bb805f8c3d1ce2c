#!/usr/bin/env python3
"""Preference Resolver - platform, model and parameter resolution service.

Usage:
    python app.py                  # Start on port 8502
    python app.py --port 3333      # Custom port
"""

import argparse
import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from catalog import ConfigCache
from config import Settings
from coordinator import StableStateCoordinator
from credentials import CredentialGate, CredentialManager, KeyVault
from model_list import GET_MODELS, LocalRequestChannel, ModelListService, RequestChannel, catalog_model_list_handler
from routers import all_routers
from schemas import InterfaceType
from selection import FallbackPolicy
from store import KeyValueStore, PreferenceStore, SqliteKeyValueStore
from ws_manager import ConnectionManager

APP_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

class _JSONFormatter(logging.Formatter):
    """JSON log formatter for stdout (machine-parseable)."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        # Merge any extra fields passed via extra={...}
        for key in ("interface", "tab_id", "generation", "platform", "model",
                    "method", "path", "status", "duration_ms", "detail"):
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        return json.dumps(log_entry, default=str)


def configure_logging() -> None:
    """Set up application-wide logging.

    Reads LOG_LEVEL from env (default: 'warning').
    """
    level_name = os.environ.get("LOG_LEVEL", "warning").upper()
    level = getattr(logging, level_name, logging.WARNING)

    root = logging.getLogger()
    root.setLevel(level)

    # Remove any existing handlers to avoid duplicates on reload
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(_JSONFormatter())
    root.addHandler(handler)

    # Align uvicorn loggers with our level
    for uv_logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(uv_logger_name).setLevel(level)

    if level > logging.DEBUG:
        logging.getLogger("aiosqlite").setLevel(logging.WARNING)


configure_logging()

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------

@dataclass
class Services:
    catalog: ConfigCache
    store: PreferenceStore
    credentials: CredentialManager
    gate: CredentialGate
    model_lists: ModelListService
    coordinators: dict[InterfaceType, StableStateCoordinator]
    ws_manager: ConnectionManager


def build_services(
    catalog: ConfigCache,
    kv: KeyValueStore,
    vault: KeyVault,
    fallback_policy: FallbackPolicy = FallbackPolicy.FIRST_AVAILABLE,
    channel: Optional[RequestChannel] = None,
    ws_manager: Optional[ConnectionManager] = None,
) -> Services:
    """Wire the resolution engine: one coordinator per interface type."""
    store = PreferenceStore(kv)
    credentials = CredentialManager(store, vault)
    gate = CredentialGate(credentials)

    if channel is None:
        channel = LocalRequestChannel()
        channel.register_handler(GET_MODELS, catalog_model_list_handler(catalog))
    model_lists = ModelListService(channel)

    ws_manager = ws_manager or ConnectionManager()
    coordinators = {}
    for interface_type in InterfaceType:
        coordinator = StableStateCoordinator(
            interface_type, catalog, store, gate, model_lists, fallback_policy,
        )
        coordinator.set_ws_manager(ws_manager)
        coordinators[interface_type] = coordinator

    return Services(
        catalog=catalog,
        store=store,
        credentials=credentials,
        gate=gate,
        model_lists=model_lists,
        coordinators=coordinators,
        ws_manager=ws_manager,
    )


def attach_services(app_instance: FastAPI, services: Services) -> None:
    app_instance.state.services = services


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app_instance):
    """Load the catalog, open the preference store and start coordinators."""
    logger.info("Preference Resolver starting (version=%s)", APP_VERSION)
    if getattr(app_instance.state, "services", None) is None:
        settings = Settings.from_env()
        catalog = ConfigCache(settings.catalog_path, settings.icon_base_url)
        catalog.load()
        kv = SqliteKeyValueStore(settings.db_path)
        await kv.init()
        services = build_services(
            catalog, kv, KeyVault(), FallbackPolicy(settings.model_fallback_policy),
        )
        # Tab ids do not survive a browser or service restart.
        await services.store.clear_all_tabs()
        attach_services(app_instance, services)

    services = app_instance.state.services
    for coordinator in services.coordinators.values():
        await coordinator.refresh()
    yield
    for coordinator in services.coordinators.values():
        await coordinator.shutdown()


# ---------------------------------------------------------------------------
# Request Logging Middleware
# ---------------------------------------------------------------------------

# Paths to skip logging (noisy/health endpoints)
_SKIP_LOG_PATHS = frozenset({"/healthz", "/favicon.ico"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests with method, path, status and duration."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in _SKIP_LOG_PATHS:
            return await call_next(request)

        request_id = uuid.uuid4().hex[:12]
        request.state.request_id = request_id

        method = request.method
        logger.info(
            "REQ %s %s %s",
            request_id, method, path,
            extra={"method": method, "path": path},
        )

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000)

        status = response.status_code
        log_level = logging.INFO
        if 400 <= status < 500:
            log_level = logging.WARNING
        elif status >= 500:
            log_level = logging.ERROR

        logger.log(
            log_level,
            "RES %s %d %dms",
            request_id, status, duration_ms,
            extra={"method": method, "path": path, "status": status, "duration_ms": duration_ms},
        )

        response.headers["X-Request-ID"] = request_id
        return response


def create_app() -> FastAPI:
    app_instance = FastAPI(title="Preference Resolver", version=APP_VERSION, lifespan=lifespan)
    app_instance.add_middleware(RequestLoggingMiddleware)

    @app_instance.get("/healthz")
    async def healthz():
        return {"status": "ok", "version": APP_VERSION}

    for router in all_routers:
        app_instance.include_router(router)
    return app_instance


app = create_app()


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    if not os.environ.get("FERNET_KEY"):
        logger.warning("FERNET_KEY not set. Using auto-generated key from data/.fernet_key")
        logger.warning("Set FERNET_KEY env var in production and BACK UP the key.")

    parser = argparse.ArgumentParser(description="Preference Resolver")
    parser.add_argument("--port", type=int, default=8502, help="Port (default: 8502)")
    parser.add_argument("--host", default="127.0.0.1", help="Host (default: 127.0.0.1)")
    args = parser.parse_args()

    logger.info("Preference Resolver starting on http://localhost:%d", args.port)
    log_level = os.environ.get("LOG_LEVEL", "warning").lower()
    uvicorn.run(app, host=args.host, port=args.port, log_level=log_level)
