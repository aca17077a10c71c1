"""
Bluetooth LE Transport

bleak-backed implementation of the Transport capability. Writes go to a
single characteristic inside the tail's vendor service.
"""

import asyncio

from bleak import BleakClient
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.exc import BleakError

from tailhub.common.config import ConnectionSettings
from tailhub.common.exceptions import ConnectError, ServiceNotFoundError, WriteError
from tailhub.common.logging_setup import get_service_logger
from .transport import Transport

logger = get_service_logger("device.ble")


class BleakTransport(Transport):
    """
    BLE connection to one tail.

    Handles:
    - Connect by address
    - Service / characteristic resolution
    - Serialized characteristic writes
    - Disconnect notifications from the BLE stack
    """

    def __init__(
        self,
        service_uuid: str,
        characteristic_uuid: str,
        connect_timeout: float = 10.0,
    ):
        self.service_uuid = service_uuid.lower()
        self.characteristic_uuid = characteristic_uuid.lower()
        self.connect_timeout = connect_timeout

        self.address: str | None = None
        self._client: BleakClient | None = None
        self._target: BleakGATTCharacteristic | None = None
        self._ready = False
        self._write_lock = asyncio.Lock()

    @classmethod
    def factory(cls, settings: ConnectionSettings):
        """Transport factory bound to the configured GATT layout"""
        def create() -> "BleakTransport":
            return cls(
                service_uuid=settings.service_uuid,
                characteristic_uuid=settings.characteristic_uuid,
                connect_timeout=settings.connect_timeout_s,
            )
        return create

    @property
    def is_ready(self) -> bool:
        return (
            self._ready
            and self._target is not None
            and self._client is not None
            and self._client.is_connected
        )

    def mark_not_ready(self) -> None:
        self._ready = False

    def _on_disconnected(self, client: BleakClient) -> None:
        """Called by bleak when the peripheral drops the link"""
        if self._ready:
            logger.info(f"BLE link lost: {self.address}")
        self._ready = False

    async def connect(self, address: str) -> None:
        """Establish the BLE connection"""
        self.address = address
        self._client = BleakClient(
            address,
            disconnected_callback=self._on_disconnected,
            timeout=self.connect_timeout,
        )

        try:
            await self._client.connect()
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            raise ConnectError(f"failed to connect: {e}", address)

        logger.debug(f"Connected to {address}")

    async def discover_write_target(self) -> None:
        """Resolve the vendor characteristic used for writes"""
        if self._client is None or not self._client.is_connected:
            raise ConnectError("not connected", self.address)

        service = self._client.services.get_service(self.service_uuid)
        if service is None:
            raise ServiceNotFoundError(f"service {self.service_uuid}", self.address)

        characteristic = service.get_characteristic(self.characteristic_uuid)
        if characteristic is None:
            raise ServiceNotFoundError(
                f"characteristic {self.characteristic_uuid}", self.address
            )

        self._target = characteristic
        self._ready = True
        logger.debug(f"Ready to send data to {self.address}")

    async def write(self, payload: bytes) -> None:
        """Write without response to the resolved characteristic"""
        if not self.is_ready:
            raise WriteError("device not ready", self.address, payload)

        async with self._write_lock:
            try:
                await self._client.write_gatt_char(self._target, payload, response=False)
            except (BleakError, OSError) as e:
                self._ready = False
                raise WriteError(str(e), self.address, payload)

    async def disconnect(self) -> None:
        """Disconnect safely; a no-op when never connected"""
        self._ready = False
        client, self._client = self._client, None
        self._target = None

        if client is None:
            return

        try:
            await client.disconnect()
        except (BleakError, OSError) as e:
            logger.debug(f"Disconnect from {self.address} raised: {e}")
