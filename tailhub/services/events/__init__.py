"""
Event Service - inbound named events to device writes

Responsibilities:
- Receive OSC events into a single-slot, latest-value-wins channel
- Remap intensities for the tail motors
- Dispatch bounded writes to bound, online devices
"""

from .router import EventRouter, remap_intensity, format_intensity
from .slot import EventMessage, LatestValueSlot
from .osc_source import OscEventSource

__all__ = [
    "EventRouter",
    "EventMessage",
    "LatestValueSlot",
    "OscEventSource",
    "remap_intensity",
    "format_intensity",
]
