"""
Local key-value storage

The on-disk counterpart of a browser's local storage: string keys mapped to
JSON values, kept in a single file (or only in memory when no path is given).
"""

import copy
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from errors import BackendUnavailable

logger = logging.getLogger(__name__)


class LocalStorage:
    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self._lock = threading.RLock()
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            logger.warning("Could not read local storage %s: %s", self.path, e)
            raise BackendUnavailable(f"Local storage unreadable: {e}")

    def _write(self, data: Dict[str, Any]) -> None:
        if self.path is None:
            return
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data), encoding="utf-8")
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Could not write local storage %s: %s", self.path, e)
            raise BackendUnavailable(f"Local storage write failed: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def update(self, values: Dict[str, Any]) -> None:
        """Write several keys at once; either all land or none do."""
        with self._lock:
            data = dict(self._data)
            data.update(copy.deepcopy(values))
            self._write(data)
            self._data = data

    def remove(self, key: str) -> None:
        with self._lock:
            if key not in self._data:
                return
            data = dict(self._data)
            del data[key]
            self._write(data)
            self._data = data
