import json
import os
from typing import Dict, Optional

from loguru import logger

from .errors import ConfigurationError


class ImportTracker:
    """Source ids already imported (or merged), mapped to the artwork they landed on.

    Optionally backed by a JSON file so that idempotency survives across
    separate runs of the import job.
    """

    def __init__(self, path: Optional[str] = None, entries: Optional[Dict[str, str]] = None):
        self.path = path
        self._entries: Dict[str, str] = dict(entries or {})
        if path and entries is None:
            self._entries = self._load(path)

    @staticmethod
    def _load(path: str) -> Dict[str, str]:
        if not os.path.exists(path):
            return {}
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ConfigurationError(f"Tracker file {path} must contain a JSON object", {"path": path})
        logger.debug(f"Loaded {len(data)} tracked imports from {path}")
        return {str(k): str(v) for k, v in data.items()}

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[str]:
        return self._entries.get(key)

    def mark(self, key: str, artwork_id: str) -> None:
        self._entries[key] = artwork_id

    def fork(self) -> "ImportTracker":
        """In-memory copy for dry runs; never written back to disk."""
        return ImportTracker(path=None, entries=self._entries)

    def save(self) -> None:
        if not self.path:
            return
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self._entries, f, indent=2, sort_keys=True)
