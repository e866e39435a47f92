"""Key -> JSON value persistence backends used by the history store."""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from quota_sentinel.core import StorageError

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Durable mapping of string keys to JSON-serializable values."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Process-local store. Values are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileKeyValueStore:
    """All keys kept in one JSON document on disk.

    The file is read on first access. Every ``set``/``delete`` rewrites the
    whole document through a temporary file and ``os.replace``.

    Parameters
    ----------
    path : str | Path
        Location of the JSON file. Parent directories are created on write.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()
        self._data: dict[str, Any] | None = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            data = self._load()
            if key not in data:
                return default
            return copy.deepcopy(data[key])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = {**self._load(), key: copy.deepcopy(value)}
            self._write(data)
            self._data = data

    def delete(self, key: str) -> None:
        with self._lock:
            data = dict(self._load())
            if key in data:
                del data[key]
                self._write(data)
                self._data = data

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        if not self._path.exists():
            self._data = {}
            return self._data
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StorageError(
                f"Failed to read {self._path}: {e}",
                context={"operation": "load", "path": str(self._path)},
            ) from e
        if not isinstance(raw, dict):
            raise StorageError(
                f"Expected a JSON object in {self._path}, got {type(raw).__name__}",
                context={"operation": "load", "path": str(self._path)},
            )
        self._data = raw
        return self._data

    def _write(self, data: dict[str, Any]) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as handle:
                json.dump(data, handle)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(
                f"Failed to write {self._path}: {e}",
                context={"operation": "save", "path": str(self._path)},
            ) from e
