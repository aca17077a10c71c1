"""
Transport Capability

Abstract connection to one peripheral. Implementations wrap a wireless
stack and offer no timeouts of their own; the connection supervisor bounds
every call.
"""

from abc import ABC, abstractmethod
from typing import Callable


class Transport(ABC):
    """One physical connection to a peripheral.

    A fresh instance is created for every connect attempt. `disconnect()`
    must be safe to call repeatedly and before a successful connect.
    """

    @abstractmethod
    async def connect(self, address: str) -> None:
        """Connect by address. Raises on failure."""

    @abstractmethod
    async def discover_write_target(self) -> None:
        """Resolve the characteristic writes go to. Raises ServiceNotFoundError."""

    @abstractmethod
    async def write(self, payload: bytes) -> None:
        """Write to the resolved characteristic. Raises on failure."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the connection (idempotent)."""

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """Liveness probe: connected, target resolved and not marked failed."""

    @abstractmethod
    def mark_not_ready(self) -> None:
        """Flag the link as failed so the heartbeat loop tears it down."""


TransportFactory = Callable[[], Transport]
