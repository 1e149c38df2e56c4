"""
Realtime broadcaster: connection lifecycle, device registration and fan-out.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from meterhub.core.config import settings
from meterhub.core.exceptions import StoreError
from meterhub.services.device_registry import DeviceEntry, DeviceRegistry, now_ms
from meterhub.services.store import MeterStore

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Push connection states"""
    CONNECTED = "connected"
    REGISTERED = "registered"
    DISCONNECTED = "disconnected"


class ObserverChannel:
    """Outbound side of one push connection.

    Messages are queued and written by a dedicated task, so a broadcast never
    waits on a slow socket. Delivery is best effort.
    """

    def __init__(self, websocket, queue_size: int):
        self.id = uuid4().hex
        self.websocket = websocket
        self.state = ConnectionState.CONNECTED
        self.device_id: Optional[str] = None
        self.rooms: Set[str] = set()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None
        self._send_failed = False

    def start(self):
        self._writer = asyncio.create_task(self._drain())

    @property
    def is_open(self) -> bool:
        return self.state is not ConnectionState.DISCONNECTED and not self._send_failed

    def enqueue(self, message: Dict[str, Any]) -> bool:
        if not self.is_open:
            return False
        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            logger.warning("Outbound queue full for connection %s; dropping %s", self.id, message.get("event"))
            return False

    async def flush(self):
        """Wait until everything queued so far has been written (or discarded)."""
        if self._writer is not None and not self._writer.done():
            await self._queue.join()

    async def close(self):
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
        self._writer = None

    async def _drain(self):
        while True:
            message = await self._queue.get()
            try:
                await self.websocket.send_json(message)
            except Exception as e:
                logger.info(f"Send to connection {self.id} failed: {e}")
                self._send_failed = True
                self._queue.task_done()
                self._discard_pending()
                return
            self._queue.task_done()

    def _discard_pending(self):
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()


class RealtimeBroadcaster:
    """Owns the push connections and the device registry.

    Each connection moves CONNECTED -> REGISTERED -> DISCONNECTED. Registry
    changes are followed by a full ``devices_update`` to every connection;
    accepted readings go to everyone as ``new_readings`` and to the device's
    interest group as ``device_readings``.
    """

    def __init__(self, store: MeterStore, registry: DeviceRegistry, queue_size: Optional[int] = None):
        self.store = store
        self.registry = registry
        self.queue_size = int(queue_size or settings.WS_QUEUE_SIZE)
        self._channels: Dict[str, ObserverChannel] = {}
        self._rooms: Dict[str, Set[str]] = {}
        self._handlers = {
            "register_device": self._on_register_device,
            "submit_readings": self._on_submit_readings,
            "device_readings": self._on_submit_readings,
            "subscribe_device": self._on_subscribe_device,
            "unsubscribe_device": self._on_unsubscribe_device,
        }

    # Connection lifecycle
    async def connect(self, websocket) -> ObserverChannel:
        await websocket.accept()
        channel = ObserverChannel(websocket, self.queue_size)
        channel.start()
        self._channels[channel.id] = channel
        logger.info("Connection %s opened (%d active)", channel.id, len(self._channels))
        return channel

    async def disconnect(self, channel: ObserverChannel):
        if channel.state is ConnectionState.DISCONNECTED:
            return
        channel.state = ConnectionState.DISCONNECTED
        self._channels.pop(channel.id, None)
        for room in list(channel.rooms):
            self._leave(channel, room)

        removed = self.registry.remove_by_connection(channel)
        for entry in removed:
            logger.info("Device %s went offline", entry.device_id)
        self.publish_devices()

        await channel.close()
        logger.info("Connection %s closed (%d active)", channel.id, len(self._channels))

    def register_device(self, channel: ObserverChannel, device_id: Optional[str] = None,
                        name: Optional[str] = None) -> DeviceEntry:
        entry = self.registry.register(device_id, name, channel)
        if channel.device_id and channel.device_id != entry.device_id:
            self._leave(channel, channel.device_id)
        channel.device_id = entry.device_id
        channel.state = ConnectionState.REGISTERED
        self._join(channel, entry.device_id)
        logger.info("Device %s registered on connection %s", entry.device_id, channel.id)
        self.publish_devices()
        return entry

    # Ingestion and settings
    def ingest_readings(self, items: List[Any], default_ts: Optional[int] = None) -> List[Dict[str, Any]]:
        """Persist readings and broadcast the accepted subset."""
        accepted = self.store.append_readings(items, default_ts=default_ts)
        if not accepted:
            return accepted

        for reading in accepted:
            self.registry.note_reading(reading)
        self.publish("new_readings", accepted)
        self.publish_to_room(accepted[0]["device_id"], "device_readings", accepted)
        return accepted

    def update_settings(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        merged = self.store.update_settings(partial)
        self.publish("settings_update", merged)
        return merged

    # Fan-out
    def publish(self, event: str, data: Any) -> int:
        message = {"event": event, "data": data}
        return sum(1 for channel in list(self._channels.values()) if channel.enqueue(message))

    def publish_to_room(self, room: str, event: str, data: Any) -> int:
        message = {"event": event, "data": data}
        delivered = 0
        for channel_id in list(self._rooms.get(room, ())):
            channel = self._channels.get(channel_id)
            if channel is not None and channel.enqueue(message):
                delivered += 1
        return delivered

    def publish_devices(self) -> int:
        return self.publish("devices_update", self.registry.snapshot())

    def connection_count(self) -> int:
        return len(self._channels)

    def room_members(self, room: str) -> Set[str]:
        return set(self._rooms.get(room, ()))

    # Inbound messages
    async def handle_message(self, channel: ObserverChannel, message: Any):
        if channel.state is ConnectionState.DISCONNECTED:
            return
        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            self._send_error(channel, "messages must be objects with an 'event' field")
            return

        event = message["event"]
        handler = self._handlers.get(event)
        if handler is None:
            self._send_error(channel, f"unknown event: {event}")
            return

        try:
            handler(channel, message.get("data"))
        except ValueError as e:
            self._send_error(channel, str(e))
        except StoreError as e:
            logger.error(f"Error handling {event} from connection {channel.id}: {e}")
            self._send_error(channel, "storage unavailable")

    def _on_register_device(self, channel: ObserverChannel, data: Any):
        data = data if isinstance(data, dict) else {}
        self.register_device(channel, data.get("device_id"), data.get("name"))

    def _on_submit_readings(self, channel: ObserverChannel, data: Any):
        items = data if isinstance(data, list) else [data]
        if channel.device_id:
            items = [
                {**item, "device_id": channel.device_id}
                if isinstance(item, dict) and "device_id" not in item else item
                for item in items
            ]
        self.ingest_readings(items, default_ts=now_ms())

    def _on_subscribe_device(self, channel: ObserverChannel, data: Any):
        self._join(channel, self._room_from(data))

    def _on_unsubscribe_device(self, channel: ObserverChannel, data: Any):
        self._leave(channel, self._room_from(data))

    @staticmethod
    def _room_from(data: Any) -> str:
        device_id = data.get("device_id") if isinstance(data, dict) else data
        if not isinstance(device_id, str) or not device_id:
            raise ValueError("device_id is required")
        return device_id

    def _send_error(self, channel: ObserverChannel, message: str):
        channel.enqueue({"event": "error", "data": {"message": message}})

    def _join(self, channel: ObserverChannel, room: str):
        self._rooms.setdefault(room, set()).add(channel.id)
        channel.rooms.add(room)

    def _leave(self, channel: ObserverChannel, room: str):
        members = self._rooms.get(room)
        if members is not None:
            members.discard(channel.id)
            if not members:
                del self._rooms[room]
        channel.rooms.discard(room)
