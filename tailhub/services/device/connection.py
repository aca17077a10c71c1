"""
Connection Supervisor

Drives one device through connect / heartbeat / retry. Every transport call
is bounded by a timeout and every transport failure becomes a state
transition plus a console line; nothing escapes to the fleet supervisor.

    IDLE -> CONNECTING -> READY -> HEARTBEATING -> DISCONNECTING -> IDLE
                 |                                                   |
                 +--(failure, back off)--> IDLE      DISABLED <------+
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable

from tailhub.common.config import ConnectionSettings
from tailhub.common.logging_setup import (
    get_service_logger,
    log_connection_change,
    log_device_write,
)
from .console import ConsoleSink
from .models import DeviceStatus
from .registry import DeviceRegistry
from .transport import Transport, TransportFactory

logger = get_service_logger("device.connection")

Sleep = Callable[[float], Awaitable[None]]


class ConnectionState(str, Enum):
    """Connection supervisor states"""
    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"
    HEARTBEATING = "heartbeating"
    DISCONNECTING = "disconnecting"
    DISABLED = "disabled"


def _consume_abandoned(task: asyncio.Task) -> None:
    """Collect the outcome of a transport call that outlived its caller"""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Abandoned transport call finished with error: {error}")


async def bounded_write(
    registry: DeviceRegistry,
    device_id: str,
    transport: Transport,
    payload: bytes,
    timeout: float,
) -> bool:
    """
    Write through a transport on its own task, bounded by a timeout.

    The transport offers no timeout, so the write runs as a separate task
    and is abandoned (not cancelled) if it outlives `timeout`. On timeout
    or error the transport is marked not ready and the device goes
    offline, which makes the next heartbeat tick tear the link down.

    Returns:
        True if the write completed in time
    """
    task = asyncio.ensure_future(transport.write(payload))
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    finally:
        if not task.done():
            task.add_done_callback(_consume_abandoned)

    text = payload.decode("utf-8", errors="replace")

    if not done:
        error = f"timeout after {timeout:g}s"
    elif task.cancelled():
        error = "write cancelled"
    elif task.exception() is not None:
        error = str(task.exception()) or type(task.exception()).__name__
    else:
        log_device_write(logger, device_id, text)
        return True

    log_device_write(logger, device_id, text, success=False, error=error)
    transport.mark_not_ready()
    registry.set_online(device_id, False)
    return False


class ConnectionSupervisor:
    """
    Per-device connection state machine.

    Reads and writes device state only through the registry. Disabling the
    device is observed at the top of every loop iteration and after every
    failure, so teardown completes within one heartbeat or retry period.
    The supervisor exits in DISABLED; re-enabling is handled by the fleet
    supervisor spawning a new one.
    """

    def __init__(
        self,
        device_id: str,
        registry: DeviceRegistry,
        transport_factory: TransportFactory,
        console: ConsoleSink,
        settings: ConnectionSettings | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.device_id = device_id
        self._registry = registry
        self._transport_factory = transport_factory
        self._console = console
        self._settings = settings or ConnectionSettings()
        self._sleep = sleep

        self.state = ConnectionState.IDLE
        self.connect_attempts = 0
        self.connect_failures = 0
        self._transport: Transport | None = None

    async def run(self) -> None:
        """Main supervisor loop; returns once the device is disabled or removed"""
        try:
            while True:
                if not self._registry.exists(self.device_id):
                    logger.info(f"Device {self.device_id} removed, supervisor exiting")
                    return

                if not self._registry.is_enabled(self.device_id):
                    self._enter_disabled()
                    return

                transport = await self._connect()
                if transport is None:
                    if self._registry.is_enabled(self.device_id):
                        await self._sleep(self._settings.retry_delay_s)
                    continue

                reason = await self._heartbeat(transport)
                await self._disconnect(transport, reason)
        finally:
            # Cancelled mid-connect or mid-heartbeat: never leave a live link behind
            if self._transport is not None:
                transport, self._transport = self._transport, None
                try:
                    await self._release(transport)
                finally:
                    self._registry.clear_transport(self.device_id)
                    self._registry.set_online(self.device_id, False)

    def _transition(self, state: ConnectionState, detail: str | None = None) -> None:
        if state != self.state:
            self.state = state
            log_connection_change(logger, self.device_id, state.value, detail)

    def _name(self) -> str:
        device = self._registry.find(self.device_id)
        return device.name if device and device.name else self.device_id

    def _report(self, status: DeviceStatus) -> None:
        device = self._registry.set_status(self.device_id, status)
        if device is not None:
            self._console.apply_status(device, status)

    async def _release(self, transport: Transport) -> None:
        """
        Idempotent, bounded disconnect.

        The disconnect runs on its own shielded task: cancelling the
        supervisor while it waits here still lets the link go down.
        """
        task = asyncio.ensure_future(transport.disconnect())
        try:
            await asyncio.wait_for(asyncio.shield(task), self._settings.connect_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"Disconnect of {self.device_id} timed out")
        except Exception as e:
            logger.warning(f"Disconnect of {self.device_id} failed: {e}")
        finally:
            if not task.done():
                task.add_done_callback(_consume_abandoned)

    async def _open(self, transport: Transport) -> None:
        await transport.connect(self.device_id)
        await transport.discover_write_target()

    async def _connect(self) -> Transport | None:
        """
        One connect attempt.

        Returns:
            The ready transport, or None if the attempt failed or the device
            was disabled while connecting
        """
        name = self._name()
        self._transition(ConnectionState.CONNECTING)
        self.connect_attempts += 1
        self._console.append(f"Scanning/connecting to {name} ({self.device_id})...")
        self._report(DeviceStatus.PENDING)

        transport = self._transport_factory()
        self._transport = transport
        timeout = self._settings.connect_timeout_s

        try:
            await asyncio.wait_for(self._open(transport), timeout)
        except asyncio.TimeoutError:
            reason = f"timed out after {timeout:g}s"
        except Exception as e:
            reason = str(e) or type(e).__name__
        else:
            reason = None

        if reason is None and not self._registry.is_enabled(self.device_id):
            reason = "disabled while connecting"

        if reason is not None:
            self._transport = None
            await self._release(transport)
            self._transition(ConnectionState.IDLE, reason)
            if self._registry.is_enabled(self.device_id):
                self.connect_failures += 1
                self._console.append(f"Failed to connect {name}: {reason}")
                self._report(DeviceStatus.OFFLINE)
            return None

        self._registry.set_transport(self.device_id, transport)
        self._registry.set_online(self.device_id, True)
        self._transition(ConnectionState.READY)
        self._console.append(f"{name} connected!")
        self._report(DeviceStatus.ONLINE)
        return transport

    async def _heartbeat(self, transport: Transport) -> str:
        """
        Keep-alive loop.

        Returns:
            Why the loop ended: "disabled", "not ready" or "heartbeat failed"
        """
        self._transition(ConnectionState.HEARTBEATING)
        payload = self._settings.heartbeat_payload.encode("utf-8")

        while True:
            if not self._registry.is_enabled(self.device_id):
                return "disabled"
            if not transport.is_ready or not self._registry.is_online(self.device_id):
                return "not ready"

            ok = await bounded_write(
                self._registry,
                self.device_id,
                transport,
                payload,
                self._settings.write_timeout_s,
            )
            if not ok:
                return "heartbeat failed"

            await self._sleep(self._settings.heartbeat_interval_s)

    async def _disconnect(self, transport: Transport, reason: str) -> None:
        self._transition(ConnectionState.DISCONNECTING, reason)
        self._transport = None
        try:
            await self._release(transport)
        finally:
            # Runs even when cancelled mid-release; the registry must not keep a dead link
            self._registry.clear_transport(self.device_id)
            self._registry.set_online(self.device_id, False)
        self._transition(ConnectionState.IDLE)

        if reason != "disabled" and self._registry.is_enabled(self.device_id):
            self._console.append(f"{self._name()} connection lost ({reason}), reconnecting")
            self._report(DeviceStatus.MALFUNCTION)
        else:
            self._report(DeviceStatus.OFFLINE)

    def _enter_disabled(self) -> None:
        self._transition(ConnectionState.DISABLED)
        self._report(DeviceStatus.DISABLED)
