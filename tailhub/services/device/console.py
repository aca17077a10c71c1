"""
Console / Status Sink

The core reports every connect, retry and dispatch as a console line and a
status label. A GUI can supply its own sink; LogConsole is the headless one.
"""

from collections import deque
from typing import Protocol

from tailhub.common.logging_setup import get_service_logger
from .models import Device, DeviceStatus

logger = get_service_logger("console")


class ConsoleSink(Protocol):
    """Notification sink consumed by the supervisors and the router"""

    def append(self, message: str) -> None:
        ...

    def apply_status(self, device: Device, status: DeviceStatus) -> None:
        ...


class LogConsole:
    """
    Console that writes to the service log.

    Keeps the most recent lines and the last status per device so the
    HTTP API can show them.
    """

    def __init__(self, history_limit: int = 200):
        self._lines: deque[str] = deque(maxlen=history_limit)
        self._statuses: dict[str, DeviceStatus] = {}

    def append(self, message: str) -> None:
        self._lines.append(message)
        logger.info(message)

    def apply_status(self, device: Device, status: DeviceStatus) -> None:
        previous = self._statuses.get(device.id)
        self._statuses[device.id] = status
        if previous != status:
            logger.debug(
                f"{device.name or device.id}: {status.value}",
                extra={"device": device.id, "status": status.value},
            )

    def lines(self, limit: int | None = None) -> list[str]:
        lines = list(self._lines)
        if limit is not None:
            lines = lines[-limit:] if limit > 0 else []
        return lines

    def status_of(self, device_id: str) -> DeviceStatus | None:
        return self._statuses.get(device_id)

    def forget(self, device_id: str) -> None:
        self._statuses.pop(device_id, None)
