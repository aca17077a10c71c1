"""
Common Utilities

Shared modules used across all services:
- config.py - Configuration dataclasses and YAML loading
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- storage.py - Persisted device list
- addresses.py - Device address normalization
"""

from .addresses import normalize_device_id
from .config import (
    AppConfig,
    ConnectionSettings,
    FleetSettings,
    DiscoverySettings,
    EventSettings,
    HealthSettings,
    ConsoleSettings,
    load_app_config,
    load_config_file,
)
from .exceptions import (
    TailHubError,
    ConfigError,
    AddressError,
    DeviceError,
    TransportError,
    ConnectError,
    WriteError,
    ServiceNotFoundError,
    DiscoveryError,
    PersistenceError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    set_log_level,
    log_device_write,
    log_connection_change,
)
from .storage import DeviceStore

__all__ = [
    # Addresses
    "normalize_device_id",
    # Config
    "AppConfig",
    "ConnectionSettings",
    "FleetSettings",
    "DiscoverySettings",
    "EventSettings",
    "HealthSettings",
    "ConsoleSettings",
    "load_app_config",
    "load_config_file",
    # Exceptions
    "TailHubError",
    "ConfigError",
    "AddressError",
    "DeviceError",
    "TransportError",
    "ConnectError",
    "WriteError",
    "ServiceNotFoundError",
    "DiscoveryError",
    "PersistenceError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "set_log_level",
    "log_device_write",
    "log_connection_change",
    # Storage
    "DeviceStore",
]
