"""
Custom Exception Classes for tailhub

Hierarchical exception structure for error handling across services.
Transport errors are always recoverable: the connection supervisor
converts them into retries and never lets them escape.
"""


class TailHubError(Exception):
    """Base exception for all tailhub errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(TailHubError):
    """Configuration-related errors"""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(f"Config Error: {message}", recoverable)


class AddressError(ConfigError):
    """Malformed persisted or discovered device address"""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"invalid device address '{address}'")


class DeviceError(TailHubError):
    """Device-level errors"""

    def __init__(
        self,
        message: str,
        device_id: str | None = None,
        recoverable: bool = True,
    ):
        self.device_id = device_id
        super().__init__(f"Device Error: {message}", recoverable)


class TransportError(DeviceError):
    """Wireless transport errors (always retried)"""

    def __init__(self, message: str, device_id: str | None = None):
        super().__init__(message, device_id, recoverable=True)


class ConnectError(TransportError):
    """Connect-by-address failed or timed out"""


class WriteError(TransportError):
    """Characteristic write failed or timed out"""

    def __init__(
        self,
        message: str,
        device_id: str | None = None,
        payload: bytes | None = None,
    ):
        self.payload = payload
        super().__init__(message, device_id)


class ServiceNotFoundError(TransportError):
    """Expected GATT service or characteristic is absent on the peripheral"""

    def __init__(self, uuid: str, device_id: str | None = None):
        self.uuid = uuid
        super().__init__(f"{uuid} not found", device_id)


class DiscoveryError(TailHubError):
    """Scanning could not be started or failed mid-scan"""

    def __init__(self, message: str):
        super().__init__(f"Discovery Error: {message}", recoverable=True)


class PersistenceError(TailHubError):
    """Device list could not be read or written"""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(f"Persistence Error: {message}", recoverable=True)
