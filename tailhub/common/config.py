"""
Configuration Dataclasses

Type-safe configuration structures for the tail hub.
Loaded from a YAML file; every key is optional.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

DEFAULT_CONFIG_PATH = "config.yaml"

# GATT layout exposed by the tail firmware
SERVICE_UUID = "0000ab00-0000-1000-8000-00805f9b34fb"
CHARACTERISTIC_UUID = "0000ab01-0000-1000-8000-00805f9b34fb"


@dataclass
class ConnectionSettings:
    """Per-device connection lifecycle timing"""
    connect_timeout_s: float = 10.0
    retry_delay_s: float = 5.0
    heartbeat_interval_s: float = 2.0
    write_timeout_s: float = 1.0
    heartbeat_payload: str = "ping"
    service_uuid: str = SERVICE_UUID
    characteristic_uuid: str = CHARACTERISTIC_UUID


@dataclass
class FleetSettings:
    """Fleet supervisor polling"""
    poll_interval_s: float = 3.0


@dataclass
class DiscoverySettings:
    """On-demand scan settings"""
    target_name: str = "TouchyTails"
    timeout_s: float = 10.0


@dataclass
class EventSettings:
    """OSC event source"""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 9000
    address_prefix: str = "/avatar/parameters/"


@dataclass
class HealthSettings:
    """Health / control HTTP server"""
    host: str = "127.0.0.1"
    port: int = 8090


@dataclass
class ConsoleSettings:
    """Console history kept for the GUI collaborator"""
    history_limit: int = 200


@dataclass
class AppConfig:
    """Complete service configuration"""
    devices_file: str = "devices.json"
    log_level: str = "INFO"
    connection: ConnectionSettings = field(default_factory=ConnectionSettings)
    fleet: FleetSettings = field(default_factory=FleetSettings)
    discovery: DiscoverySettings = field(default_factory=DiscoverySettings)
    events: EventSettings = field(default_factory=EventSettings)
    health: HealthSettings = field(default_factory=HealthSettings)
    console: ConsoleSettings = field(default_factory=ConsoleSettings)

    @property
    def health_url(self) -> str:
        return f"http://{self.health.host}:{self.health.port}"


def _positive(section: str, key: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
    if number <= 0:
        raise ConfigError(f"{section}.{key} must be positive, got {value!r}")
    return number


def _port(section: str, value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.port must be an integer, got {value!r}")
    if not 0 < port < 65536:
        raise ConfigError(f"{section}.port out of range: {port}")
    return port


def _section(data: dict, key: str) -> dict:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping")
    return value


# Helper function to load config from dict
def load_app_config(data: dict | None) -> AppConfig:
    """Load AppConfig from dictionary (e.g., parsed YAML)"""
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError("top level of the configuration must be a mapping")

    conn_data = _section(data, "connection")
    defaults = ConnectionSettings()
    connection = ConnectionSettings(
        connect_timeout_s=_positive(
            "connection", "connect_timeout_s",
            conn_data.get("connect_timeout_s", defaults.connect_timeout_s),
        ),
        retry_delay_s=_positive(
            "connection", "retry_delay_s",
            conn_data.get("retry_delay_s", defaults.retry_delay_s),
        ),
        heartbeat_interval_s=_positive(
            "connection", "heartbeat_interval_s",
            conn_data.get("heartbeat_interval_s", defaults.heartbeat_interval_s),
        ),
        write_timeout_s=_positive(
            "connection", "write_timeout_s",
            conn_data.get("write_timeout_s", defaults.write_timeout_s),
        ),
        heartbeat_payload=str(conn_data.get("heartbeat_payload", defaults.heartbeat_payload)),
        service_uuid=str(conn_data.get("service_uuid", SERVICE_UUID)).lower(),
        characteristic_uuid=str(conn_data.get("characteristic_uuid", CHARACTERISTIC_UUID)).lower(),
    )

    fleet_data = _section(data, "fleet")
    fleet = FleetSettings(
        poll_interval_s=_positive(
            "fleet", "poll_interval_s",
            fleet_data.get("poll_interval_s", FleetSettings.poll_interval_s),
        ),
    )

    discovery_data = _section(data, "discovery")
    discovery = DiscoverySettings(
        target_name=str(discovery_data.get("target_name", DiscoverySettings.target_name)),
        timeout_s=_positive(
            "discovery", "timeout_s",
            discovery_data.get("timeout_s", DiscoverySettings.timeout_s),
        ),
    )

    events_data = _section(data, "events")
    events = EventSettings(
        enabled=bool(events_data.get("enabled", True)),
        host=str(events_data.get("host", EventSettings.host)),
        port=_port("events", events_data.get("port", EventSettings.port)),
        address_prefix=str(events_data.get("address_prefix", EventSettings.address_prefix)),
    )

    health_data = _section(data, "health")
    health = HealthSettings(
        host=str(health_data.get("host", HealthSettings.host)),
        port=_port("health", health_data.get("port", HealthSettings.port)),
    )

    console_data = _section(data, "console")
    console = ConsoleSettings(
        history_limit=int(_positive(
            "console", "history_limit",
            console_data.get("history_limit", ConsoleSettings.history_limit),
        )),
    )

    return AppConfig(
        devices_file=str(data.get("devices_file", "devices.json")),
        log_level=str(data.get("log_level", "INFO")).upper(),
        connection=connection,
        fleet=fleet,
        discovery=discovery,
        events=events,
        health=health,
        console=console,
    )


def load_config_file(config_path: str | None = None) -> AppConfig:
    """
    Load configuration from a YAML file.

    A missing file yields the defaults; an unreadable or malformed file
    raises ConfigError.
    """
    path = Path(config_path or os.environ.get("TAILHUB_CONFIG", DEFAULT_CONFIG_PATH))
    if not path.exists():
        return load_app_config({})

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read {path}: {e}", recoverable=False)

    return load_app_config(data)
