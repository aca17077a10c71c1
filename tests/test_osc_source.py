"""
OSC event source tests (message handling, no sockets)
"""

import pytest

from tailhub.common.config import EventSettings
from tailhub.services.events.osc_source import OscEventSource
from tailhub.services.events.slot import EventMessage, LatestValueSlot


@pytest.fixture
def slot():
    return LatestValueSlot()


@pytest.fixture
def source(slot):
    return OscEventSource(slot, EventSettings())


def test_parameter_message_becomes_event(source, slot):
    source.handle_message("/avatar/parameters/Touch", 0.5)

    assert slot.pending() == EventMessage("Touch", 0.5)
    assert source.received == 1


def test_int_values_are_accepted(source, slot):
    source.handle_message("/avatar/parameters/Touch", 1)

    assert slot.pending() == EventMessage("Touch", 1.0)


@pytest.mark.parametrize("address, args", [
    ("/chatbox/input", (0.5,)),
    ("/avatar/parameters/", (0.5,)),
    ("/avatar/parameters/Touch", ()),
    ("/avatar/parameters/Touch", ("high",)),
    ("/avatar/parameters/Touch", (True,)),
])
def test_malformed_messages_are_dropped(source, slot, address, args):
    source.handle_message(address, *args)

    assert slot.empty()
    assert source.received == 0


def test_newer_message_replaces_pending(source, slot):
    source.handle_message("/avatar/parameters/Touch", 0.2)
    source.handle_message("/avatar/parameters/Wag", 0.9)

    assert slot.pending() == EventMessage("Wag", 0.9)
    assert slot.dropped == 1


def test_custom_prefix(slot):
    source = OscEventSource(slot, EventSettings(address_prefix="/tail/"))

    source.handle_message("/tail/Touch", 0.3)

    assert slot.pending() == EventMessage("Touch", 0.3)
