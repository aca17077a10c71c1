"""
Event Router

Turns one inbound (name, value) event into zero or more bounded device
writes. Runs as a single task over the latest-value slot, so deliveries to
the same device are never reordered.
"""

import asyncio
import math

from tailhub.common.config import ConnectionSettings
from tailhub.common.logging_setup import get_service_logger
from tailhub.services.device.connection import bounded_write
from tailhub.services.device.console import ConsoleSink
from tailhub.services.device.registry import DeviceRegistry
from .slot import EventMessage, LatestValueSlot

logger = get_service_logger("events.router")

# The tail motors ignore anything weaker than this
INTENSITY_FLOOR = 0.4
INTENSITY_SPAN = 0.6


def remap_intensity(value: float) -> float:
    """Map (0, 1] onto [0.4, 1.0]"""
    # Unreachable floor once non-positive values are filtered; kept as a guard
    return max(INTENSITY_FLOOR, INTENSITY_FLOOR + value * INTENSITY_SPAN)


def coerce_value(value: object) -> float | None:
    """Numeric event value, or None for anything unusable"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def format_intensity(value: float) -> str:
    return f"{value:.2f}"


class EventRouter:
    """
    Dispatches events to bound devices.

    A device receives an event when it is enabled, online, connected and
    bound to the event name. Writes to different devices for one event run
    concurrently, each bounded by the write timeout.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        console: ConsoleSink,
        slot: LatestValueSlot | None = None,
        settings: ConnectionSettings | None = None,
    ):
        self._registry = registry
        self._console = console
        self.slot = slot or LatestValueSlot()
        self._settings = settings or ConnectionSettings()

        self._running = False
        self._task: asyncio.Task | None = None
        self.dispatched = 0

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._route_loop())
        logger.info("Event router started")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Event router stopped")

    def submit(self, name: str, value: object) -> bool:
        """Offer an event; returns True if it replaced a pending one"""
        return self.slot.put(EventMessage(name=name, value=value))

    async def _route_loop(self) -> None:
        """Main routing loop"""
        while self._running:
            event = await self.slot.get()
            try:
                await self.dispatch(event)
            except Exception as e:
                logger.error(f"Error dispatching {event.name}: {e}", exc_info=True)

    async def dispatch(self, event: EventMessage) -> int:
        """
        Deliver one event.

        Returns:
            Number of devices written successfully
        """
        value = coerce_value(event.value)
        if value is None or value <= 0:
            return 0

        payload = format_intensity(remap_intensity(value))
        targets = self._registry.targets_for(event.name)
        if not targets:
            logger.debug(f"No device bound to {event.name}")
            return 0

        results = await asyncio.gather(*(
            bounded_write(
                self._registry,
                device.id,
                transport,
                payload.encode("utf-8"),
                self._settings.write_timeout_s,
            )
            for device, transport in targets
        ))

        sent = 0
        for (device, _), ok in zip(targets, results):
            if ok:
                sent += 1
                self._console.append(f"{device.name}: {event.name} -> {payload}")

        self.dispatched += sent
        return sent
