"""
Fleet Supervisor Tests

At most one connection supervisor per device, under racing polls and
enable toggles; teardown through the registry; active-set cleanup.

Run with: python -m pytest tests/test_fleet.py -v
"""

import asyncio

from conftest import ADDR_A, ADDR_B, FakeTransportFactory, wait_until

from tailhub.services.device.fleet import FleetSupervisor
from tailhub.services.device.models import Device


async def idle_sleep(delay: float) -> None:
    await asyncio.sleep(0.001)


def make_fleet(registry, factory, console, settings):
    return FleetSupervisor(
        registry=registry,
        transport_factory=factory,
        console=console,
        connection_settings=settings,
        sleep=idle_sleep,
    )


def test_poll_spawns_only_for_enabled_devices(registry, console, settings):
    registry.add(Device(id=ADDR_A))
    registry.add(Device(id=ADDR_B, enabled=False))
    gate = asyncio.Event()
    factory = FakeTransportFactory(connect_gate=gate)

    async def scenario():
        fleet = make_fleet(registry, factory, console, settings)
        spawned = fleet.poll_once()
        active = fleet.active_ids()
        await fleet.stop()
        return spawned, active, fleet.active_ids()

    spawned, active, after_stop = asyncio.run(scenario())

    assert spawned == [ADDR_A]
    assert active == [ADDR_A]
    assert after_stop == []


def test_racing_polls_and_toggles_spawn_one_supervisor(registry, console, settings):
    registry.add(Device(id=ADDR_A))
    gate = asyncio.Event()
    factory = FakeTransportFactory(connect_gate=gate)

    async def scenario():
        fleet = make_fleet(registry, factory, console, settings)
        spawned = []
        for _ in range(10):
            spawned += fleet.poll_once()
            registry.set_enabled(ADDR_A, False)
            registry.set_enabled(ADDR_A, True)
            spawned += fleet.poll_once()
            await asyncio.sleep(0)

        active = fleet.active_ids()
        await fleet.stop()
        return spawned, active

    spawned, active = asyncio.run(scenario())

    assert spawned == [ADDR_A]
    assert active == [ADDR_A]
    assert len(factory.created) == 1
    # Cancelled mid-connect: the transport is still released
    assert factory.created[0].disconnect_calls == 1


def test_connected_device_is_not_respawned(registry, console, settings):
    registry.add(Device(id=ADDR_A))
    factory = FakeTransportFactory()

    async def scenario():
        fleet = make_fleet(registry, factory, console, settings)
        fleet.poll_once()
        await wait_until(lambda: registry.is_online(ADDR_A))

        respawned = fleet.poll_once()
        await fleet.stop()
        return respawned

    assert asyncio.run(scenario()) == []
    assert len(factory.created) == 1


def test_supervisor_exit_clears_active_set_and_reenable_respawns(registry, console, settings):
    registry.add(Device(id=ADDR_A))
    factory = FakeTransportFactory()

    async def scenario():
        fleet = make_fleet(registry, factory, console, settings)
        fleet.poll_once()
        await wait_until(lambda: registry.is_online(ADDR_A))

        registry.set_enabled(ADDR_A, False)
        await wait_until(lambda: not fleet.is_active(ADDR_A))
        assert fleet.poll_once() == []
        assert not registry.is_online(ADDR_A)
        writes_after_disable = len(factory.created[0].writes)

        registry.set_enabled(ADDR_A, True)
        respawned = fleet.poll_once()
        await wait_until(lambda: registry.is_online(ADDR_A))
        await fleet.stop()
        return respawned, writes_after_disable

    respawned, writes_after_disable = asyncio.run(scenario())

    assert respawned == [ADDR_A]
    assert len(factory.created) == 2
    # No writes went to the first link once it was torn down
    assert len(factory.created[0].writes) == writes_after_disable


def test_remove_tears_down_supervisor(registry, console, settings):
    registry.add(Device(id=ADDR_A))
    factory = FakeTransportFactory()

    async def scenario():
        fleet = make_fleet(registry, factory, console, settings)
        fleet.poll_once()
        await wait_until(lambda: registry.is_online(ADDR_A))

        removed = await registry.remove(ADDR_A)
        return removed, fleet.is_active(ADDR_A)

    removed, still_active = asyncio.run(scenario())

    assert removed
    assert not still_active
    assert not registry.exists(ADDR_A)
    assert factory.created[0].disconnect_calls >= 1


def test_poll_loop_spawns_added_devices(registry, console, settings):
    factory = FakeTransportFactory()

    async def scenario():
        fleet = make_fleet(registry, factory, console, settings)
        await fleet.start()
        registry.add(Device(id=ADDR_A))
        await wait_until(lambda: registry.is_online(ADDR_A))
        supervisor = fleet.supervisor_for(ADDR_A)
        await fleet.stop()
        return supervisor

    supervisor = asyncio.run(scenario())

    assert supervisor is not None
    assert supervisor.device_id == ADDR_A
    assert not registry.is_online(ADDR_A)
