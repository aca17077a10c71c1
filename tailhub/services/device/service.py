"""
Device Service - BLE tail hub

Responsible for:
- Loading and saving the device list
- Running the fleet supervisor (one connection supervisor per device)
- Routing OSC events to bound devices
- On-demand discovery of new tails
- Health / control HTTP endpoint
"""

import asyncio
import random
import signal
from datetime import datetime, timezone
from typing import Any

from aiohttp import web

from tailhub.common.addresses import normalize_device_id
from tailhub.common.config import AppConfig
from tailhub.common.exceptions import AddressError
from tailhub.common.logging_setup import get_service_logger
from tailhub.common.storage import DeviceStore
from tailhub.services.discovery.scanner import (
    AdvertisementScanner,
    DiscoveryHandlers,
    DiscoveryService,
)
from tailhub.services.events.osc_source import OscEventSource
from tailhub.services.events.router import INTENSITY_FLOOR, INTENSITY_SPAN, EventRouter, format_intensity
from .ble_transport import BleakTransport
from .connection import bounded_write
from .console import ConsoleSink, LogConsole
from .fleet import FleetSupervisor
from .models import Device, DeviceStatus
from .registry import DeviceRegistry
from .transport import TransportFactory

logger = get_service_logger("device")


class DeviceService:
    """
    Device Service

    Composes the registry, fleet supervisor, event router, OSC listener
    and discovery, and exposes the user operations (enable, rename, bind,
    remove, beep, scan) the GUI or HTTP API call.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        transport_factory: TransportFactory | None = None,
        scanner: AdvertisementScanner | None = None,
        console: ConsoleSink | None = None,
    ):
        self.config = config or AppConfig()

        # Initialize components
        self.console = console or LogConsole(self.config.console.history_limit)
        self.registry = DeviceRegistry(
            store=DeviceStore(self.config.devices_file),
            console=self.console,
            disconnect_timeout=self.config.connection.connect_timeout_s,
        )
        self.fleet = FleetSupervisor(
            registry=self.registry,
            transport_factory=transport_factory or BleakTransport.factory(self.config.connection),
            console=self.console,
            connection_settings=self.config.connection,
            fleet_settings=self.config.fleet,
        )
        self.router = EventRouter(
            registry=self.registry,
            console=self.console,
            settings=self.config.connection,
        )
        self.event_source = OscEventSource(self.router.slot, self.config.events)
        self.discovery = DiscoveryService(scanner, self.config.discovery)

        self._start_time = datetime.now(timezone.utc)

        # Health server
        self._health_app: web.Application | None = None
        self._health_runner: web.AppRunner | None = None

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def start(self, serve_http: bool = True) -> None:
        """Start the device service"""
        logger.info("Starting Device Service")
        self._running = True
        self._start_time = datetime.now(timezone.utc)

        self.registry.load()
        for device in self.registry.all():
            status = DeviceStatus.PENDING if device.enabled else DeviceStatus.DISABLED
            self._apply_status(device.id, status)

        await self.fleet.start()
        await self.router.start()

        if self.config.events.enabled:
            try:
                await self.event_source.start()
            except OSError as e:
                logger.error(f"OSC listener failed to start: {e}")
                self.console.append(f"OSC listener failed to start: {e}")

        if serve_http:
            await self._start_health_server()

        logger.info(
            f"Device Service started ({self.registry.count()} devices)",
            extra={"device_count": self.registry.count()},
        )

    async def stop(self) -> None:
        """Stop the device service"""
        logger.info("Stopping Device Service")
        self._running = False

        await self.event_source.stop()
        await self.router.stop()
        await self.fleet.stop()

        self.registry.save()

        await self._stop_health_server()

        logger.info("Device Service stopped")

    async def run(self) -> None:
        """Start, wait for SIGINT/SIGTERM, stop"""
        try:
            await self.start()
            self._setup_signal_handlers()
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                signal.signal(sig, lambda s, f: self._handle_shutdown())

    def _handle_shutdown(self) -> None:
        """Handle shutdown signal"""
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    def _apply_status(self, device_id: str, status: DeviceStatus) -> None:
        device = self.registry.set_status(device_id, status)
        if device is not None:
            self.console.apply_status(device, status)

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------

    async def discover_and_add(self) -> Device | None:
        """
        Scan for a tail and add it when it is new.

        Returns:
            The found device (new or already known), or None
        """
        address = await self.discovery.run(DiscoveryHandlers(
            on_progress=self.console.append,
            on_timeout=self.console.append,
            on_error=self.console.append,
        ))
        if address is None:
            return None

        if self.registry.exists(address):
            self.console.append(f"Device already known: {address}")
            return self.registry.find(address)

        device = Device(id=address, name=self.registry.next_default_name(), enabled=True)
        self.registry.add(device)
        self.registry.save()
        self.console.append(f"Added {device.name} ({address})")
        self._apply_status(address, DeviceStatus.PENDING)

        if self._running:
            self.fleet.poll_once()
        return self.registry.find(address)

    def set_enabled(self, device_id: str, enabled: bool) -> bool:
        """Toggle the user's intent to keep a device connected"""
        if not self.registry.exists(device_id):
            return False

        if self.registry.set_enabled(device_id, enabled):
            self.registry.save()

        if not enabled:
            status = DeviceStatus.DISABLED
        elif self.registry.is_online(device_id):
            status = DeviceStatus.ONLINE
        else:
            status = DeviceStatus.PENDING
        self._apply_status(device_id, status)
        self.console.append(f"{status.value} for {device_id}")

        if enabled and self._running:
            self.fleet.poll_once()
        return True

    def rename(self, device_id: str, name: str) -> bool:
        if not self.registry.rename(device_id, name):
            return False
        self.registry.save()
        self.console.append(f"Name updated for {device_id}")
        return True

    def bind_event(self, device_id: str, event_name: str) -> bool:
        if not self.registry.bind_event(device_id, event_name):
            return False
        self.registry.save()
        self.console.append(f"Event updated for {device_id}")
        return True

    async def remove(self, device_id: str) -> bool:
        """Disconnect and forget a device; a no-op for unknown ids"""
        if not await self.registry.remove(device_id):
            return False
        self.registry.save()
        if isinstance(self.console, LogConsole):
            self.console.forget(device_id)
        self.console.append(f"Removed {device_id}")
        return True

    async def beep(self, device_id: str) -> str | None:
        """
        Send a random test intensity to an online device.

        Returns:
            The payload written, or None if the device is offline or the
            write failed
        """
        transport = self.registry.get_transport(device_id)
        if transport is None or not self.registry.is_online(device_id):
            self.console.append(f"Device offline, cannot beep: {device_id}")
            return None

        payload = format_intensity(INTENSITY_FLOOR + random.random() * INTENSITY_SPAN)
        ok = await bounded_write(
            self.registry,
            device_id,
            transport,
            payload.encode("utf-8"),
            self.config.connection.write_timeout_s,
        )
        if not ok:
            self.console.append(f"Beep failed for {device_id}")
            return None

        self.console.append(f"Beep: {payload} for {device_id}")
        return payload

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_device_count(self) -> dict[str, int]:
        devices = self.registry.all()
        online = sum(1 for d in devices if d.online)
        return {
            "total": len(devices),
            "enabled": sum(1 for d in devices if d.enabled),
            "online": online,
            "offline": len(devices) - online,
        }

    def get_health(self) -> dict[str, Any]:
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        return {
            "status": "healthy" if self._running else "unhealthy",
            "service": "device",
            "uptime": int(uptime),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "devices": self.get_device_count(),
            "supervisors": len(self.fleet.active_ids()),
            "events": {
                "received": self.event_source.received,
                "dispatched": self.router.dispatched,
                "dropped": self.router.slot.dropped,
            },
            "scanning": self.discovery.scanning,
        }

    # ------------------------------------------------------------------
    # Health / control server
    # ------------------------------------------------------------------

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/devices", self._devices_handler)
        app.router.add_get("/console", self._console_handler)
        app.router.add_post("/scan", self._scan_handler)
        app.router.add_post("/devices/{device_id}/enabled", self._enabled_handler)
        app.router.add_post("/devices/{device_id}/name", self._name_handler)
        app.router.add_post("/devices/{device_id}/event", self._event_handler)
        app.router.add_post("/devices/{device_id}/beep", self._beep_handler)
        app.router.add_delete("/devices/{device_id}", self._remove_handler)
        return app

    async def _start_health_server(self) -> None:
        """Start the health check HTTP server"""
        self._health_app = self.create_app()
        self._health_runner = web.AppRunner(self._health_app)
        await self._health_runner.setup()

        site = web.TCPSite(self._health_runner, self.config.health.host, self.config.health.port)
        await site.start()

        logger.info(f"Health server started on port {self.config.health.port}")

    async def _stop_health_server(self) -> None:
        """Stop the health check HTTP server"""
        if self._health_runner:
            await self._health_runner.cleanup()
            self._health_runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        return web.json_response(self.get_health())

    async def _devices_handler(self, request: web.Request) -> web.Response:
        return web.json_response([d.to_dict() for d in self.registry.all()])

    async def _console_handler(self, request: web.Request) -> web.Response:
        lines = self.console.lines() if isinstance(self.console, LogConsole) else []
        return web.json_response({"lines": lines})

    async def _scan_handler(self, request: web.Request) -> web.Response:
        if self.discovery.scanning:
            return web.json_response({"error": "scan already running"}, status=409)
        device = await self.discover_and_add()
        if device is None:
            return web.json_response({"found": False})
        return web.json_response({"found": True, "device": device.to_dict()})

    async def _read_field(self, request: web.Request, key: str, kind: type) -> Any:
        try:
            body = await request.json()
        except ValueError:
            raise web.HTTPBadRequest(text="body must be JSON")
        if not isinstance(body, dict) or not isinstance(body.get(key), kind):
            raise web.HTTPBadRequest(text=f"'{key}' must be a {kind.__name__}")
        return body[key]

    def _path_device_id(self, request: web.Request) -> str:
        """Canonical device id from the URL; 400 if it is not an address"""
        try:
            return normalize_device_id(request.match_info["device_id"])
        except AddressError as e:
            raise web.HTTPBadRequest(text=str(e))

    def _device_response(self, device_id: str) -> web.Response:
        device = self.registry.find(device_id)
        if device is None:
            raise web.HTTPNotFound(text=f"unknown device {device_id}")
        return web.json_response(device.to_dict())

    async def _enabled_handler(self, request: web.Request) -> web.Response:
        device_id = self._path_device_id(request)
        enabled = await self._read_field(request, "enabled", bool)
        self.set_enabled(device_id, enabled)
        return self._device_response(device_id)

    async def _name_handler(self, request: web.Request) -> web.Response:
        device_id = self._path_device_id(request)
        name = await self._read_field(request, "name", str)
        self.rename(device_id, name)
        return self._device_response(device_id)

    async def _event_handler(self, request: web.Request) -> web.Response:
        device_id = self._path_device_id(request)
        event_name = await self._read_field(request, "event", str)
        self.bind_event(device_id, event_name)
        return self._device_response(device_id)

    async def _beep_handler(self, request: web.Request) -> web.Response:
        device_id = self._path_device_id(request)
        if not self.registry.exists(device_id):
            raise web.HTTPNotFound(text=f"unknown device {device_id}")
        payload = await self.beep(device_id)
        return web.json_response({"sent": payload is not None, "payload": payload})

    async def _remove_handler(self, request: web.Request) -> web.Response:
        device_id = self._path_device_id(request)
        removed = await self.remove(device_id)
        return web.json_response({"removed": removed})
