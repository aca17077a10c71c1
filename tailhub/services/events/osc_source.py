"""
OSC Event Source

Listens for OSC messages over UDP and feeds them into the router's
latest-value slot. Only messages under the configured address prefix are
events; the rest of the address is the event name.
"""

import asyncio

from pythonosc.dispatcher import Dispatcher
from pythonosc.osc_server import AsyncIOOSCUDPServer

from tailhub.common.config import EventSettings
from tailhub.common.logging_setup import get_service_logger
from .slot import EventMessage, LatestValueSlot

logger = get_service_logger("events.osc")


class OscEventSource:
    """UDP OSC listener producing (name, value) events"""

    def __init__(self, slot: LatestValueSlot, settings: EventSettings | None = None):
        self._slot = slot
        self._settings = settings or EventSettings()
        self._transport: asyncio.DatagramTransport | None = None

        self.dispatcher = Dispatcher()
        self.dispatcher.set_default_handler(self.handle_message)

        self.received = 0

    async def start(self) -> None:
        """Bind the UDP endpoint on the running loop"""
        server = AsyncIOOSCUDPServer(
            (self._settings.host, self._settings.port),
            self.dispatcher,
            asyncio.get_running_loop(),
        )
        self._transport, _ = await server.create_serve_endpoint()
        logger.info(f"Listening for OSC on {self._settings.host}:{self._settings.port}")

    async def stop(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None
            logger.info("OSC listener stopped")

    def handle_message(self, address: str, *args) -> None:
        """Dispatcher callback; malformed messages are dropped silently"""
        prefix = self._settings.address_prefix
        if not address.startswith(prefix) or not args:
            return

        name = address[len(prefix):]
        value = args[0]
        if not name or isinstance(value, bool) or not isinstance(value, (int, float)):
            return

        self.received += 1
        self._slot.put(EventMessage(name=name, value=float(value)))
