"""
Key-value JSON persistence, one file per key.

Last write wins per key; there is no cross-key transaction.
"""

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class JsonFileStore:
    """Stores JSON-serializable blobs under ``<data_dir>/<key>.json``."""

    def __init__(self, data_dir):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def load(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if path.exists():
            try:
                with open(path) as f:
                    return json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                logger.error(f"Error loading '{key}' from {path}: {e}")
        return default

    def save(self, key: str, blob: Any) -> None:
        path = self._path(key)
        try:
            with open(path, "w") as f:
                json.dump(blob, f, indent=2, default=str)
        except OSError as e:
            logger.error(f"Error saving '{key}' to {path}: {e}")

    def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Error removing '{key}' at {path}: {e}")
