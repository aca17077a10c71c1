"""
Device Service - BLE connection lifecycle

Responsibilities:
- Hold the device registry (persisted list + runtime connection state)
- Run one connection supervisor per enabled device
- Heartbeat connected tails and retry failed connections
- Bounded writes shared with the event router

DeviceService itself lives in .service (it composes the event and
discovery services as well).
"""

from .models import Device, DeviceStatus
from .registry import DeviceRegistry
from .transport import Transport, TransportFactory
from .connection import ConnectionState, ConnectionSupervisor, bounded_write
from .fleet import FleetSupervisor
from .console import ConsoleSink, LogConsole

__all__ = [
    "Device",
    "DeviceStatus",
    "DeviceRegistry",
    "Transport",
    "TransportFactory",
    "ConnectionState",
    "ConnectionSupervisor",
    "bounded_write",
    "FleetSupervisor",
    "ConsoleSink",
    "LogConsole",
]
