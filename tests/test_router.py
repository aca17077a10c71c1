"""
Event Router Tests

Intensity remap, payload formatting, target selection, latest-value-wins
delivery and write failure handling.

Run with: python -m pytest tests/test_router.py -v
"""

import asyncio

import pytest

from conftest import ADDR_A, ADDR_B, FakeTransport, connect_device, wait_until

from tailhub.common.exceptions import WriteError
from tailhub.services.device.models import Device
from tailhub.services.events.router import (
    EventRouter,
    coerce_value,
    format_intensity,
    remap_intensity,
)
from tailhub.services.events.slot import EventMessage, LatestValueSlot


@pytest.fixture
def bound_device(registry):
    """Connected device "D" bound to the "Touch" event"""
    transport = FakeTransport()
    registry.add(Device(id=ADDR_A, name="D", event_binding="Touch"))
    connect_device(registry, ADDR_A, transport)
    return transport


# ============================================================================
# Remap
# ============================================================================

@pytest.mark.parametrize("value, payload", [
    (0.001, "0.40"),
    (0.5, "0.70"),
    (1.0, "1.00"),
])
def test_remap_boundaries(value, payload):
    assert format_intensity(remap_intensity(value)) == payload


def test_remap_never_below_floor():
    assert remap_intensity(-5.0) == pytest.approx(0.4)


@pytest.mark.parametrize("value", ["abc", None, True, float("nan"), float("inf")])
def test_coerce_rejects_unusable_values(value):
    assert coerce_value(value) is None


def test_coerce_accepts_ints():
    assert coerce_value(1) == 1.0


# ============================================================================
# Dispatch
# ============================================================================

def test_dispatch_writes_remapped_payload(registry, console, bound_device):
    router = EventRouter(registry, console)

    sent = asyncio.run(router.dispatch(EventMessage("Touch", 0.5)))

    assert sent == 1
    assert bound_device.writes == [b"0.70"]
    assert console.messages == ["D: Touch -> 0.70"]
    assert router.dispatched == 1


@pytest.mark.parametrize("value", [0.0, -0.3, "abc", False])
def test_dispatch_drops_non_positive_and_non_numeric(registry, console, bound_device, value):
    router = EventRouter(registry, console)

    assert asyncio.run(router.dispatch(EventMessage("Touch", value))) == 0
    assert bound_device.writes == []
    assert console.messages == []


def test_dispatch_skips_unbound_disabled_and_offline(registry, console, bound_device):
    other = FakeTransport()
    registry.add(Device(id=ADDR_B, name="E", event_binding="Wag"))
    connect_device(registry, ADDR_B, other)
    router = EventRouter(registry, console)

    asyncio.run(router.dispatch(EventMessage("Wag", 1.0)))
    assert bound_device.writes == []
    assert other.writes == [b"1.00"]

    registry.set_enabled(ADDR_B, False)
    asyncio.run(router.dispatch(EventMessage("Wag", 1.0)))
    assert other.writes == [b"1.00"]

    registry.set_online(ADDR_A, False)
    assert asyncio.run(router.dispatch(EventMessage("Touch", 1.0))) == 0
    assert bound_device.writes == []


def test_dispatch_to_several_devices(registry, console, bound_device):
    second = FakeTransport()
    registry.add(Device(id=ADDR_B, name="E", event_binding="Touch"))
    connect_device(registry, ADDR_B, second)
    router = EventRouter(registry, console)

    assert asyncio.run(router.dispatch(EventMessage("Touch", 1.0))) == 2
    assert bound_device.writes == [b"1.00"]
    assert second.writes == [b"1.00"]
    assert sorted(console.messages) == ["D: Touch -> 1.00", "E: Touch -> 1.00"]


def test_failed_write_takes_device_offline(registry, console):
    transport = FakeTransport(write_error=WriteError("gatt error"))
    registry.add(Device(id=ADDR_A, name="D", event_binding="Touch"))
    connect_device(registry, ADDR_A, transport)
    router = EventRouter(registry, console)

    assert asyncio.run(router.dispatch(EventMessage("Touch", 0.5))) == 0
    assert console.messages == []
    assert not registry.is_online(ADDR_A)
    assert not transport.is_ready


# ============================================================================
# Latest value wins
# ============================================================================

def test_slot_keeps_only_latest():
    slot = LatestValueSlot()

    assert not slot.put(EventMessage("Touch", 0.1))
    assert slot.put(EventMessage("Touch", 0.2))
    assert slot.put(EventMessage("Touch", 0.3))

    assert slot.pending() == EventMessage("Touch", 0.3)
    assert slot.dropped == 2
    assert asyncio.run(slot.get()) == EventMessage("Touch", 0.3)
    assert slot.empty()


def test_router_delivers_latest_pending_event(registry, console, bound_device):
    async def scenario():
        router = EventRouter(registry, console)
        router.submit("Touch", 0.1)
        router.submit("Touch", 1.0)

        await router.start()
        await wait_until(lambda: router.dispatched == 1)
        await asyncio.sleep(0.01)
        await router.stop()

    asyncio.run(scenario())

    assert bound_device.writes == [b"1.00"]
    assert console.messages == ["D: Touch -> 1.00"]
