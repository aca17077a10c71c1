"""
Shared fixtures and in-memory fakes for the tailhub tests.

Fakes:
    - FakeTransport / FakeTransportFactory: scripted connect and write outcomes
    - FakeScanner: replays advertisements when started
    - RecordingConsole: captures console lines and status labels
"""

import asyncio
from pathlib import Path

import pytest

from tailhub.common.config import ConnectionSettings
from tailhub.common.exceptions import ConnectError, WriteError
from tailhub.common.storage import DeviceStore
from tailhub.services.device.models import Device, DeviceStatus
from tailhub.services.device.registry import DeviceRegistry
from tailhub.services.device.transport import Transport
from tailhub.services.discovery.scanner import AdvertisementScanner

ADDR_A = "AA:BB:CC:DD:EE:01"
ADDR_B = "AA:BB:CC:DD:EE:02"


# ============================================================================
# Fakes
# ============================================================================

class FakeTransport(Transport):
    """In-memory transport with scripted failures"""

    def __init__(
        self,
        connect_error: Exception | None = None,
        write_error: Exception | None = None,
        write_delay: float = 0.0,
        connect_gate: asyncio.Event | None = None,
        disconnect_gate: asyncio.Event | None = None,
    ):
        self.connect_error = connect_error
        self.write_error = write_error
        self.write_delay = write_delay
        self.connect_gate = connect_gate
        self.disconnect_gate = disconnect_gate

        self.address: str | None = None
        self.connected = False
        self._ready = False
        self.writes: list[bytes] = []
        self.connect_calls = 0
        self.disconnect_calls = 0

    async def connect(self, address: str) -> None:
        self.connect_calls += 1
        self.address = address
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def discover_write_target(self) -> None:
        if not self.connected:
            raise ConnectError("not connected", self.address)
        self._ready = True

    async def write(self, payload: bytes) -> None:
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(payload)

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        if self.disconnect_gate is not None:
            await self.disconnect_gate.wait()
        self.connected = False
        self._ready = False

    @property
    def is_ready(self) -> bool:
        return self._ready and self.connected

    def mark_not_ready(self) -> None:
        self._ready = False


class FakeTransportFactory:
    """
    Transport factory; the first `fail_connects` transports refuse to
    connect and the first `fail_writes` connected ones fail every write.
    """

    def __init__(
        self,
        fail_connects: int = 0,
        fail_writes: int = 0,
        write_delay: float = 0.0,
        connect_gate: asyncio.Event | None = None,
    ):
        self.fail_connects = fail_connects
        self.fail_writes = fail_writes
        self.write_delay = write_delay
        self.connect_gate = connect_gate
        self.created: list[FakeTransport] = []

    def __call__(self) -> FakeTransport:
        index = len(self.created)
        connect_error = None
        write_error = None
        if index < self.fail_connects:
            connect_error = ConnectError("device not found")
        elif index - self.fail_connects < self.fail_writes:
            write_error = WriteError("link dropped")

        transport = FakeTransport(
            connect_error=connect_error,
            write_error=write_error,
            write_delay=self.write_delay,
            connect_gate=self.connect_gate,
        )
        self.created.append(transport)
        return transport

    @property
    def writes(self) -> list[bytes]:
        return [w for t in self.created for w in t.writes]


class FakeScanner(AdvertisementScanner):
    """Replays (name, address) advertisements once started"""

    def __init__(self, advertisements=(), start_error: Exception | None = None):
        self.advertisements = list(advertisements)
        self.start_error = start_error
        self.started = 0
        self.stopped = 0

    async def start(self, callback) -> None:
        self.started += 1
        if self.start_error is not None:
            raise self.start_error
        for name, address in self.advertisements:
            callback(name, address)

    async def stop(self) -> None:
        self.stopped += 1


class RecordingConsole:
    """Console sink that keeps everything it is told"""

    def __init__(self):
        self.messages: list[str] = []
        self.statuses: list[tuple[str, DeviceStatus]] = []

    def append(self, message: str) -> None:
        self.messages.append(message)

    def apply_status(self, device: Device, status: DeviceStatus) -> None:
        self.statuses.append((device.id, status))

    def matching(self, text: str) -> list[str]:
        return [m for m in self.messages if text in m]

    def last_status(self, device_id: str) -> DeviceStatus | None:
        for seen_id, status in reversed(self.statuses):
            if seen_id == device_id:
                return status
        return None


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


def connect_device(registry: DeviceRegistry, device_id: str, transport: FakeTransport) -> None:
    """Put a device in the state its supervisor leaves it in after connecting"""
    transport.connected = True
    transport._ready = True
    registry.set_transport(device_id, transport)
    registry.set_online(device_id, True)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def console():
    return RecordingConsole()


@pytest.fixture
def devices_path(tmp_path) -> Path:
    return tmp_path / "devices.json"


@pytest.fixture
def store(devices_path):
    return DeviceStore(devices_path)


@pytest.fixture
def registry(store, console):
    return DeviceRegistry(store=store, console=console, disconnect_timeout=1.0)


@pytest.fixture
def settings():
    """Distinct retry and heartbeat intervals so recorded sleeps are unambiguous"""
    return ConnectionSettings(
        connect_timeout_s=1.0,
        retry_delay_s=5.0,
        heartbeat_interval_s=2.0,
        write_timeout_s=0.05,
    )
