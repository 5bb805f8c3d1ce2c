"""WebSocket endpoint streaming committed state for one interface."""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from schemas import InterfaceType

logger = logging.getLogger(__name__)

router = APIRouter()

RECEIVE_TIMEOUT_S = 90


@router.websocket("/ws/{interface}")
async def websocket_endpoint(ws: WebSocket, interface: str):
    """Committed-state stream.

    On connect: sends a 'sync' message with the current committed state.
    Afterwards every commit arrives as 'state_committed' and every failure
    of the latest pass as 'state_failed'.
    Listens for client messages: 'ping' (keep-alive), 'refresh' (re-resolve).
    """
    try:
        interface_type = InterfaceType(interface)
    except ValueError:
        await ws.close(code=4004, reason="Unknown interface")
        return

    services = ws.app.state.services
    ws_manager = services.ws_manager
    coordinator = services.coordinators[interface_type]

    connected = await ws_manager.connect(interface_type.value, ws)
    if not connected:
        return  # Too many connections, already closed by manager

    try:
        await ws.send_json({"type": "sync", **coordinator.snapshot()})
    except Exception:
        logger.exception("WebSocket initial sync failed (interface=%s)", interface_type.value)
        await ws_manager.disconnect(interface_type.value, ws)
        return

    # Clients should send a ping at least every 60s to stay alive.
    try:
        while True:
            try:
                data = await asyncio.wait_for(ws.receive_json(), timeout=RECEIVE_TIMEOUT_S)
            except asyncio.TimeoutError:
                try:
                    await ws.close(code=4002, reason="Receive timeout")
                except Exception:
                    logger.debug("WebSocket close failed during timeout disconnect")
                break

            msg_type = data.get("type")

            if msg_type == "ping":
                await ws.send_json({"type": "pong"})
            elif msg_type == "refresh":
                coordinator.schedule_refresh("ws_refresh")

    except WebSocketDisconnect:
        logger.debug("WebSocket client disconnected (interface=%s)", interface_type.value)
    except Exception:
        logger.exception("WebSocket unexpected error (interface=%s)", interface_type.value)
    finally:
        await ws_manager.disconnect(interface_type.value, ws)
