"""In-memory table of live device connections.

The registry knows nothing about users or permissions: it only answers
"is this device reachable" and delivers a text payload if it is.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class DeviceConnection(ABC):
    """A bidirectional text channel opened by a device."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while the channel can be written to."""

    @abstractmethod
    async def send_text(self, payload: str) -> None:
        """Write one text message."""

    @abstractmethod
    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        """Close the channel."""


class SessionRegistry:
    """Maps device identifier to at most one live connection."""

    def __init__(self, send_timeout: float = 5.0) -> None:
        self.send_timeout = send_timeout
        self._sessions: dict[str, DeviceConnection] = {}
        self._lock = threading.Lock()

    async def register(self, device_id: str, connection: DeviceConnection) -> None:
        """Install a connection, closing whatever was registered before it."""
        with self._lock:
            old = self._sessions.get(device_id)
            self._sessions[device_id] = connection
            count = len(self._sessions)

        if old is not None and old is not connection:
            await self._close_quietly(device_id, old, reason="Replaced by a new connection")
        logger.info("Device connected: %s. Total devices online: %d", device_id, count)

    def unregister(self, device_id: str, connection: DeviceConnection | None = None) -> bool:
        """Remove a device's entry. No-op if absent.

        With ``connection`` given, the entry is only removed while it is
        still that connection.
        """
        with self._lock:
            current = self._sessions.get(device_id)
            if current is None or (connection is not None and current is not connection):
                return False
            del self._sessions[device_id]
            count = len(self._sessions)
        logger.info("Device disconnected: %s. Total devices online: %d", device_id, count)
        return True

    async def evict(self, device_id: str) -> bool:
        """Remove and close a device's connection, if any."""
        with self._lock:
            old = self._sessions.pop(device_id, None)
        if old is None:
            return False
        await self._close_quietly(device_id, old, reason="Device removed")
        logger.info("Device evicted: %s", device_id)
        return True

    def is_online(self, device_id: str) -> bool:
        with self._lock:
            connection = self._sessions.get(device_id)
        return connection is not None and connection.is_open

    def online_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    async def send(self, device_id: str, payload: str) -> bool:
        """Deliver a payload to the device. Never raises, never queues.

        Returns False when the device has no writable connection, when the
        write fails, or when it does not complete within ``send_timeout``.
        """
        with self._lock:
            connection = self._sessions.get(device_id)
        if connection is None or not connection.is_open:
            logger.warning("Device %s is offline. Payload not sent.", device_id)
            return False

        try:
            await asyncio.wait_for(connection.send_text(payload), timeout=self.send_timeout)
        except TimeoutError:
            logger.warning("Timed out sending to device %s", device_id)
            return False
        except Exception:
            logger.exception("Failed to send message to device %s", device_id)
            return False

        logger.info("Sent %d-byte message to device %s", len(payload), device_id)
        return True

    async def _close_quietly(self, device_id: str, connection: DeviceConnection, reason: str) -> None:
        if not connection.is_open:
            return
        try:
            await connection.close(code=1000, reason=reason)
        except Exception:
            logger.warning("Error closing session for device %s", device_id, exc_info=True)
