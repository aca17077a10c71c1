"""
Discovery Service - on-demand BLE scans for tails

Responsibilities:
- Time-bounded scan filtered by advertised name
- De-duplicated FOUND result per scan
- Address normalization of the match
"""

from .scanner import (
    AdvertisementScanner,
    BleakAdvertisementScanner,
    DiscoveryEvent,
    DiscoveryEventType,
    DiscoveryHandlers,
    DiscoveryService,
)

__all__ = [
    "AdvertisementScanner",
    "BleakAdvertisementScanner",
    "DiscoveryEvent",
    "DiscoveryEventType",
    "DiscoveryHandlers",
    "DiscoveryService",
]
