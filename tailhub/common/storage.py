"""
Device List Storage

File-backed JSON array of device records. Writes go to a temp file that is
then renamed over the target, so a crash mid-write never leaves a truncated
device list behind.
"""

import json
import os
from pathlib import Path
from typing import Any

from .exceptions import PersistenceError
from .logging_setup import get_service_logger

logger = get_service_logger("storage")


class DeviceStore:
    """Reads and writes the persisted device list"""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def read_records(self) -> list[dict[str, Any]]:
        """
        Read raw device records.

        Returns:
            List of record dicts, empty if the file does not exist yet

        Raises:
            PersistenceError: unreadable file or malformed JSON
        """
        if not self.path.exists():
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(str(e), str(self.path))

        if data is None:
            return []
        if not isinstance(data, list):
            raise PersistenceError("device list must be a JSON array", str(self.path))

        return [record for record in data if isinstance(record, dict)]

    def write_records(self, records: list[dict[str, Any]]) -> None:
        """
        Write device records atomically.

        Raises:
            PersistenceError: the file could not be written
        """
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")

        try:
            if self.path.parent and not self.path.parent.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(self.path)
        except OSError as e:
            raise PersistenceError(str(e), str(self.path))

        logger.debug(f"Saved {len(records)} devices to {self.path}")
