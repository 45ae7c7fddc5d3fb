"""WebSocket endpoint through which devices connect and receive commands.

A device connects to ``/ws/device?deviceId=AA:BB:CC:DD:EE:FF``. Unknown
devices are refused before the connection is accepted.
"""

import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session
from starlette.websockets import WebSocketState

import doorlink.database as db_module
from doorlink.access.ledger import find_device, normalize_device_id
from doorlink.relay.registry import DeviceConnection, SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["device-socket"])


class WebSocketConnection(DeviceConnection):
    """Adapts a Starlette WebSocket to the registry's connection interface."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, payload: str) -> None:
        await self.websocket.send_text(payload)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        await self.websocket.close(code=code, reason=reason)


def _device_known(device_id: str) -> bool:
    with Session(db_module.engine) as session:
        return find_device(session, device_id) is not None


@router.websocket("/device")
async def device_socket(
    websocket: WebSocket,
    device_id: str | None = Query(default=None, alias="deviceId"),
) -> None:
    if not device_id:
        logger.warning("Connection attempt without deviceId. Closing.")
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA, reason="Missing deviceId query parameter")
        return

    device_id = normalize_device_id(device_id)
    if not await run_in_threadpool(_device_known, device_id):
        logger.warning("Unknown device tried to connect: %s. Closing.", device_id)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Device not registered")
        return

    registry: SessionRegistry = websocket.app.state.registry
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    await registry.register(device_id, connection)

    try:
        while True:
            message = await websocket.receive_text()
            logger.info("Received message from %s: %s", device_id, message)
    except WebSocketDisconnect:
        logger.debug("Device %s closed its connection", device_id)
    except Exception:
        logger.exception("Transport error for device %s", device_id)
    finally:
        registry.unregister(device_id, connection)
