"""
File-backed key-value store for store state and the outbox.

One JSON file per key under a data directory. Writes go to a temp file that
is then renamed over the target, so a crash mid-write leaves the previous
version intact.
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.:-]+$")


class JsonFileStore:
    """
    JSON document store on the local filesystem.

    Same interface as ValkeyStore.

    Usage:
        store = JsonFileStore("/var/lib/invoices")
        store.set_json("outbox", [...])
        entries = store.get_json("outbox")  # Returns None if missing
    """

    def __init__(self, directory: str | Path):
        """
        Args:
            directory: Data directory, created if missing

        Raises:
            OSError: If the directory cannot be created
        """
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid store key: {key!r}")
        return self._directory / f"{key.replace(':', '_')}.json"

    def set_json(self, key: str, value: Any) -> None:
        """
        Atomically replace the value stored under key.

        Raises:
            OSError: On write failure (disk full, permissions)
        """
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def get_json(self, key: str) -> Any:
        """
        Get and deserialize the value under key.

        Returns None if key doesn't exist.
        Raises ValueError if the file is not valid JSON.
        """
        path = self._path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}")

    def delete(self, key: str) -> bool:
        """Returns True if key existed and was deleted."""
        try:
            self._path(key).unlink()
            return True
        except FileNotFoundError:
            return False
