"""
Device Models

Persistent identity plus runtime connection state for one tail.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TYPE_CHECKING

from tailhub.common.addresses import normalize_device_id

if TYPE_CHECKING:
    from .transport import Transport


class DeviceStatus(str, Enum):
    """Status labels shown next to each device"""
    ONLINE = "Online"
    OFFLINE = "Offline"
    MALFUNCTION = "Malfunction"
    DISABLED = "Disabled"
    PENDING = "Pending"


@dataclass
class Device:
    """A managed tail.

    Only id, name, enabled and event_binding are persisted. The remaining
    fields describe the live connection and are reset on every load.
    """
    id: str
    name: str = ""
    enabled: bool = True
    event_binding: str = ""

    # Runtime-only
    online: bool = field(default=False, compare=False)
    transport: "Transport | None" = field(default=None, compare=False, repr=False)
    status: DeviceStatus = field(default=DeviceStatus.PENDING, compare=False)

    def reset_runtime(self) -> None:
        self.online = False
        self.transport = None
        self.status = DeviceStatus.PENDING

    def to_record(self) -> dict[str, Any]:
        """Persisted form"""
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "event": self.event_binding,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Device":
        """
        Build a device from a persisted record.

        Missing or mistyped fields default to empty string / False.

        Raises:
            AddressError: the stored id is not a usable address
        """
        def text(key: str) -> str:
            value = record.get(key)
            return value if isinstance(value, str) else ""

        enabled = record.get("enabled")

        return cls(
            id=normalize_device_id(text("id")),
            name=text("name"),
            enabled=enabled if isinstance(enabled, bool) else False,
            event_binding=text("event"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Runtime view used by the HTTP API"""
        return {
            **self.to_record(),
            "online": self.online,
            "connected": self.transport is not None,
            "status": self.status.value,
        }
