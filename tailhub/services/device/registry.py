"""
Device Registry

Single source of truth for the managed devices: enablement, online state
and the active transport of each device.

Lock discipline:
- One registry-wide threading.Lock guards the collection.
- Every accessor holds it only for the in-memory read or update.
- Nothing that awaits or touches the transport or the disk runs under it.
"""

import asyncio
import threading
from dataclasses import replace
from typing import Awaitable, Callable

from tailhub.common.addresses import normalize_device_id
from tailhub.common.exceptions import AddressError, PersistenceError
from tailhub.common.logging_setup import get_service_logger
from tailhub.common.storage import DeviceStore
from .console import ConsoleSink
from .models import Device, DeviceStatus
from .transport import Transport

logger = get_service_logger("device.registry")

TeardownHook = Callable[[str], Awaitable[None]]


class DeviceRegistry:
    """
    Concurrency-safe device collection.

    Snapshots returned by all()/find() are copies: mutating them has no
    effect, and they do not follow later changes.
    """

    def __init__(
        self,
        store: DeviceStore | None = None,
        console: ConsoleSink | None = None,
        disconnect_timeout: float = 10.0,
    ):
        self._devices: dict[str, Device] = {}
        self._lock = threading.Lock()
        self._store = store
        self._console = console
        self._disconnect_timeout = disconnect_timeout
        self._teardown: TeardownHook | None = None

    def set_teardown_hook(self, hook: TeardownHook | None) -> None:
        """Register the owner of connection supervisors (called by remove())"""
        self._teardown = hook

    def _notify(self, message: str) -> None:
        logger.warning(message)
        if self._console is not None:
            self._console.append(message)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def all(self) -> list[Device]:
        with self._lock:
            return [replace(d) for d in self._devices.values()]

    def find(self, device_id: str) -> Device | None:
        with self._lock:
            device = self._devices.get(device_id)
            return replace(device) if device else None

    def find_by_name(self, name: str) -> Device | None:
        with self._lock:
            for device in self._devices.values():
                if device.name == name:
                    return replace(device)
        return None

    def count(self) -> int:
        with self._lock:
            return len(self._devices)

    def exists(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._devices

    def is_enabled(self, device_id: str) -> bool:
        with self._lock:
            device = self._devices.get(device_id)
            return device.enabled if device else False

    def is_online(self, device_id: str) -> bool:
        with self._lock:
            device = self._devices.get(device_id)
            return device.online if device else False

    def get_transport(self, device_id: str) -> Transport | None:
        with self._lock:
            device = self._devices.get(device_id)
            return device.transport if device else None

    def targets_for(self, event_name: str) -> list[tuple[Device, Transport]]:
        """Enabled, online, connected devices bound to an event"""
        if not event_name:
            return []

        with self._lock:
            return [
                (replace(d), d.transport)
                for d in self._devices.values()
                if d.enabled
                and d.online
                and d.transport is not None
                and d.event_binding == event_name
            ]

    def next_default_name(self) -> str:
        """First free name of "Device A" .. "Device Z", else "Device <count+1>" """
        with self._lock:
            taken = {d.name for d in self._devices.values()}
            for i in range(26):
                name = f"Device {chr(ord('A') + i)}"
                if name not in taken:
                    return name
            return f"Device {len(self._devices) + 1}"

    # ------------------------------------------------------------------
    # Collection changes
    # ------------------------------------------------------------------

    def add(self, device: Device) -> bool:
        """
        Insert a device under its canonical id; a no-op if that id is
        already present.

        Raises:
            AddressError: if the id is neither a MAC nor a CoreBluetooth UUID
        """
        stored = replace(device, id=normalize_device_id(device.id))
        stored.reset_runtime()

        with self._lock:
            if stored.id in self._devices:
                return False
            self._devices[stored.id] = stored

        logger.info(f"Added device {stored.name} ({stored.id})")
        return True

    async def remove(self, device_id: str) -> bool:
        """
        Remove a device, disconnecting it first.

        The device is disabled so its supervisor stops reconnecting, the
        supervisor is torn down through the registered hook, and any
        transport still attached is released before the record is dropped.

        Returns:
            False if the device was not present
        """
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                return False
            device.enabled = False

        if self._teardown is not None:
            await self._teardown(device_id)

        with self._lock:
            device = self._devices.pop(device_id, None)
            if device is None:
                return False
            transport = device.transport
            device.reset_runtime()

        if transport is not None:
            try:
                await asyncio.wait_for(transport.disconnect(), self._disconnect_timeout)
            except Exception as e:
                logger.warning(f"Disconnect of removed device {device_id} failed: {e}")

        logger.info(f"Removed device {device.name} ({device_id})")
        return True

    # ------------------------------------------------------------------
    # Connection supervisor mutators (own device only)
    # ------------------------------------------------------------------

    def set_transport(self, device_id: str, transport: Transport) -> None:
        with self._lock:
            device = self._devices.get(device_id)
            if device is not None:
                device.transport = transport

    def clear_transport(self, device_id: str) -> None:
        with self._lock:
            device = self._devices.get(device_id)
            if device is not None:
                device.transport = None

    def set_online(self, device_id: str, online: bool) -> None:
        with self._lock:
            device = self._devices.get(device_id)
            if device is not None:
                device.online = online

    def set_status(self, device_id: str, status: DeviceStatus) -> Device | None:
        """Record the status label; returns a snapshot for the console sink"""
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                return None
            device.status = status
            return replace(device)

    # ------------------------------------------------------------------
    # User edits
    # ------------------------------------------------------------------

    def set_enabled(self, device_id: str, enabled: bool) -> bool:
        """Returns True if the flag changed"""
        with self._lock:
            device = self._devices.get(device_id)
            if device is None or device.enabled == enabled:
                return False
            device.enabled = enabled
            return True

    def rename(self, device_id: str, name: str) -> bool:
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                return False
            device.name = name
            return True

    def bind_event(self, device_id: str, event_name: str) -> bool:
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                return False
            device.event_binding = event_name
            return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """
        Replace the collection with the persisted device list.

        Meant for start-up, before any supervisor runs. Read errors are
        reported and leave the registry empty; records with a malformed
        address are reported and skipped.

        Returns:
            Number of devices loaded
        """
        records: list[dict] = []
        if self._store is not None:
            try:
                records = self._store.read_records()
            except PersistenceError as e:
                self._notify(f"Failed to load devices: {e}")

        devices: dict[str, Device] = {}
        for record in records:
            try:
                device = Device.from_record(record)
            except AddressError as e:
                self._notify(f"Skipping device record: {e}")
                continue
            devices.setdefault(device.id, device)

        with self._lock:
            self._devices = devices

        logger.info(f"Loaded {len(devices)} devices")
        return len(devices)

    def save(self) -> bool:
        """Persist id/name/enabled/event of every device"""
        if self._store is None:
            return False

        with self._lock:
            records = [d.to_record() for d in self._devices.values()]

        try:
            self._store.write_records(records)
        except PersistenceError as e:
            self._notify(f"Failed to save devices: {e}")
            return False
        return True
