"""
Fleet Supervisor

The only component that creates connection supervisors. Membership in the
active set is checked and inserted in the same synchronous step as the task
is spawned, so a device never gets two supervisors.
"""

import asyncio

from tailhub.common.config import ConnectionSettings, FleetSettings
from tailhub.common.logging_setup import get_service_logger
from .connection import ConnectionSupervisor, Sleep
from .console import ConsoleSink
from .registry import DeviceRegistry
from .transport import TransportFactory

logger = get_service_logger("device.fleet")


class FleetSupervisor:
    """
    Spawns one ConnectionSupervisor per enabled, unconnected device.

    Features:
    - Periodic registry scan (default every 3s)
    - Active set keyed by device id, cleared by the supervisor task on exit
    - Teardown hook used by DeviceRegistry.remove()
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        transport_factory: TransportFactory,
        console: ConsoleSink,
        connection_settings: ConnectionSettings | None = None,
        fleet_settings: FleetSettings | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._registry = registry
        self._transport_factory = transport_factory
        self._console = console
        self._connection_settings = connection_settings or ConnectionSettings()
        self._fleet_settings = fleet_settings or FleetSettings()
        self._sleep = sleep

        self._active: dict[str, asyncio.Task] = {}
        self._supervisors: dict[str, ConnectionSupervisor] = {}
        self._running = False
        self._task: asyncio.Task | None = None

        registry.set_teardown_hook(self.teardown)

    async def start(self) -> None:
        """Start the polling loop"""
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(
            f"Fleet supervisor started (poll: {self._fleet_settings.poll_interval_s:g}s)"
        )

    async def stop(self) -> None:
        """Stop polling and tear down every connection supervisor"""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        for device_id in list(self._active):
            await self.teardown(device_id)

        logger.info("Fleet supervisor stopped")

    async def _poll_loop(self) -> None:
        """Main polling loop"""
        while self._running:
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Error in fleet poll: {e}", exc_info=True)

            await self._sleep(self._fleet_settings.poll_interval_s)

    def poll_once(self) -> list[str]:
        """
        Spawn supervisors for enabled devices that have none.

        Returns:
            Ids of the devices a supervisor was spawned for
        """
        spawned = []
        for device in self._registry.all():
            if not device.enabled or device.transport is not None:
                continue
            if self._spawn(device.id):
                spawned.append(device.id)
        return spawned

    def _spawn(self, device_id: str) -> bool:
        # Check-and-insert with no await in between
        if device_id in self._active:
            return False

        supervisor = ConnectionSupervisor(
            device_id=device_id,
            registry=self._registry,
            transport_factory=self._transport_factory,
            console=self._console,
            settings=self._connection_settings,
            sleep=self._sleep,
        )
        task = asyncio.create_task(self._supervise(supervisor), name=f"connection:{device_id}")
        self._active[device_id] = task
        self._supervisors[device_id] = supervisor
        logger.debug(f"Spawned connection supervisor for {device_id}")
        return True

    async def _supervise(self, supervisor: ConnectionSupervisor) -> None:
        device_id = supervisor.device_id
        try:
            await supervisor.run()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Connection supervisor for {device_id} crashed: {e}", exc_info=True)
        finally:
            if self._active.get(device_id) is asyncio.current_task():
                del self._active[device_id]
                self._supervisors.pop(device_id, None)

    async def teardown(self, device_id: str) -> None:
        """Cancel a device's supervisor and wait until its link is released"""
        task = self._active.get(device_id)
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        # A task cancelled before its first step never reaches _supervise's finally
        if self._active.get(device_id) is task:
            del self._active[device_id]
            self._supervisors.pop(device_id, None)

    def is_active(self, device_id: str) -> bool:
        return device_id in self._active

    def active_ids(self) -> list[str]:
        return list(self._active)

    def supervisor_for(self, device_id: str) -> ConnectionSupervisor | None:
        return self._supervisors.get(device_id)
