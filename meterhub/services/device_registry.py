"""
Registry of the devices that are currently connected.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class DeviceEntry:
    """A connected device. ``connection_handle`` identifies the owning connection."""
    device_id: str
    display_name: str
    connected_at: int
    connection_handle: Any
    last_reading: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "name": self.display_name,
            "connected_at": self.connected_at,
            "last_reading": self.last_reading,
        }


def _handle_identity(connection_handle: Any) -> str:
    return str(getattr(connection_handle, "id", None) or id(connection_handle))


class DeviceRegistry:
    """In-memory device map keyed by device id.

    Only the realtime broadcaster mutates it, in response to connection
    lifecycle events. A lock keeps register/remove races from tearing the map.
    """

    def __init__(self):
        self._devices: Dict[str, DeviceEntry] = {}
        self._lock = threading.RLock()

    def register(
        self,
        device_id: Optional[str],
        display_name: Optional[str],
        connection_handle: Any,
        now: Optional[int] = None,
    ) -> DeviceEntry:
        """Insert or replace the entry for ``device_id``; the last registration wins."""
        device_id = str(device_id) if device_id else _handle_identity(connection_handle)
        entry = DeviceEntry(
            device_id=device_id,
            display_name=str(display_name) if display_name else f"Device {device_id[:8]}",
            connected_at=now if now is not None else now_ms(),
            connection_handle=connection_handle,
        )
        with self._lock:
            # A connection speaks for one device at a time.
            for key in [k for k, v in self._devices.items() if v.connection_handle is connection_handle]:
                del self._devices[key]
            replaced = self._devices.get(device_id)
            self._devices[device_id] = entry
        if replaced is not None and replaced.connection_handle is not connection_handle:
            logger.info("Device %s re-registered from a new connection", device_id)
        return entry

    def remove_by_connection(self, connection_handle: Any) -> List[DeviceEntry]:
        with self._lock:
            removed = [v for v in self._devices.values() if v.connection_handle is connection_handle]
            for entry in removed:
                del self._devices[entry.device_id]
        return removed

    def note_reading(self, reading: Dict[str, Any]) -> bool:
        """Record ``reading`` as the latest for its device, if that device is connected."""
        with self._lock:
            entry = self._devices.get(reading.get("device_id"))
            if entry is None:
                return False
            entry.last_reading = dict(reading)
            return True

    def get(self, device_id: str) -> Optional[DeviceEntry]:
        with self._lock:
            return self._devices.get(device_id)

    def snapshot(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [entry.to_dict() for entry in self._devices.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)
