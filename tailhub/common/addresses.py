"""
Device Address Normalization

Bluetooth addresses arrive as MAC strings on Linux/Windows and as
CoreBluetooth UUIDs on macOS. Both are normalized to one canonical,
uppercase form so the registry keys stay stable across scans.
"""

import re

from .exceptions import AddressError

_MAC_RE = re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}[0-9A-Fa-f]{2}$")
_UUID_RE = re.compile(
    r"^[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}$"
)


def normalize_device_id(raw: str) -> str:
    """
    Normalize a platform-specific address.

    Raises:
        AddressError: if the value is neither MAC-like nor UUID-like
    """
    if not isinstance(raw, str):
        raise AddressError(repr(raw))

    value = raw.strip()
    if _MAC_RE.match(value):
        return value.replace("-", ":").upper()
    if _UUID_RE.match(value):
        return value.upper()
    raise AddressError(raw)
