"""
Discovery Service

Time-bounded scan for tails by advertised name, exposed as an async stream
of discovery events. The scan stops on the first match or when the timeout
elapses, and the underlying scanner is always stopped on exit.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from tailhub.common.addresses import normalize_device_id
from tailhub.common.config import DiscoverySettings
from tailhub.common.exceptions import AddressError, DiscoveryError
from tailhub.common.logging_setup import get_service_logger

logger = get_service_logger("discovery")

AdvertisementCallback = Callable[[str, str], None]


class AdvertisementScanner(ABC):
    """Discovery capability: reports (local_name, address) per advertisement"""

    @abstractmethod
    async def start(self, callback: AdvertisementCallback) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...


class BleakAdvertisementScanner(AdvertisementScanner):
    """bleak-backed advertisement scanner"""

    def __init__(self):
        self._scanner: BleakScanner | None = None

    async def start(self, callback: AdvertisementCallback) -> None:
        def detection(device: BLEDevice, advertisement: AdvertisementData) -> None:
            callback(advertisement.local_name or device.name or "", device.address)

        self._scanner = BleakScanner(detection_callback=detection)
        try:
            await self._scanner.start()
        except BleakError as e:
            self._scanner = None
            raise DiscoveryError(str(e))

    async def stop(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is not None:
            await scanner.stop()


class DiscoveryEventType(str, Enum):
    PROGRESS = "progress"
    FOUND = "found"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(frozen=True)
class DiscoveryEvent:
    type: DiscoveryEventType
    message: str
    address: str | None = None
    name: str | None = None


@dataclass
class DiscoveryHandlers:
    """Caller-supplied handlers for a scan"""
    on_progress: Callable[[str], None] | None = None
    on_found: Callable[[str], None] | None = None
    on_timeout: Callable[[str], None] | None = None
    on_error: Callable[[str], None] | None = None


class DiscoveryService:
    """
    On-demand scanner.

    Does not consult the device registry: callers check membership before
    adding a found address.
    """

    STOP_TIMEOUT_S = 5.0

    def __init__(
        self,
        scanner: AdvertisementScanner | None = None,
        settings: DiscoverySettings | None = None,
    ):
        self._scanner = scanner or BleakAdvertisementScanner()
        self._settings = settings or DiscoverySettings()
        self._lock = asyncio.Lock()

    @property
    def scanning(self) -> bool:
        return self._lock.locked()

    async def scan(
        self,
        target_name: str | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[DiscoveryEvent]:
        """
        Scan for a device advertising `target_name`.

        Yields a progress event for every advertisement. The stream ends
        with a single FOUND or TIMEOUT event, or with an ERROR event if
        the scanner could not start. Consume it with contextlib.aclosing
        (or run()) so an early exit still stops the scanner.
        """
        target = target_name or self._settings.target_name
        timeout = timeout or self._settings.timeout_s
        loop = asyncio.get_running_loop()
        advertisements: asyncio.Queue[tuple[str, str]] = asyncio.Queue()

        def on_advertisement(name: str, address: str) -> None:
            loop.call_soon_threadsafe(advertisements.put_nowait, (name, address))

        async with self._lock:
            yield DiscoveryEvent(DiscoveryEventType.PROGRESS, f"Starting scan for {target}...")

            try:
                await self._scanner.start(on_advertisement)
            except Exception as e:
                logger.error(f"Failed to start scan: {e}")
                yield DiscoveryEvent(DiscoveryEventType.ERROR, f"Failed to start scan: {e}")
                return

            try:
                deadline = loop.time() + timeout
                while True:
                    remaining = deadline - loop.time()
                    try:
                        if remaining <= 0:
                            raise asyncio.TimeoutError
                        name, address = await asyncio.wait_for(advertisements.get(), remaining)
                    except asyncio.TimeoutError:
                        yield DiscoveryEvent(DiscoveryEventType.TIMEOUT, "Scanning done (timeout)")
                        return

                    yield DiscoveryEvent(
                        DiscoveryEventType.PROGRESS,
                        f"Found: {name} [{address}]",
                        address=address,
                        name=name,
                    )
                    if name != target:
                        continue

                    try:
                        normalized = normalize_device_id(address)
                    except AddressError as e:
                        logger.warning(f"Ignoring {name}: {e}")
                        yield DiscoveryEvent(DiscoveryEventType.ERROR, str(e), address=address)
                        continue

                    yield DiscoveryEvent(
                        DiscoveryEventType.FOUND,
                        f"Found target: {name} [{normalized}]",
                        address=normalized,
                        name=name,
                    )
                    return
            finally:
                await self._stop_scanner()

    async def _stop_scanner(self) -> None:
        try:
            await asyncio.wait_for(self._scanner.stop(), self.STOP_TIMEOUT_S)
        except Exception as e:
            logger.warning(f"Failed to stop scan: {e}")

    async def run(
        self,
        handlers: DiscoveryHandlers,
        target_name: str | None = None,
        timeout: float | None = None,
    ) -> str | None:
        """
        Run one scan, dispatching events to handlers.

        Returns:
            The found address, or None on timeout or error
        """
        found = None
        async with aclosing(self.scan(target_name, timeout)) as events:
            async for event in events:
                if event.type == DiscoveryEventType.PROGRESS:
                    if handlers.on_progress:
                        handlers.on_progress(event.message)
                elif event.type == DiscoveryEventType.FOUND:
                    found = event.address
                    if handlers.on_found:
                        handlers.on_found(event.address)
                elif event.type == DiscoveryEventType.TIMEOUT:
                    if handlers.on_timeout:
                        handlers.on_timeout(event.message)
                elif handlers.on_error:
                    handlers.on_error(event.message)
        return found
