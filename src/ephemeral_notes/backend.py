"""Key-value persistence backends.

Stores and the vault never touch files directly; they are handed a backend
per collection. Two implementations are provided:

- MemoryBackend: dict-backed, used by tests and ephemeral sessions
- JsonFileBackend: one JSON document per collection, atomic rewrites

File structure for file-backed storage:
    <storage_dir>/
        records.json   # message id -> serialized Record
        keys.json      # message id (and id prefix) -> exported key
        meta.json      # GC timestamp marker
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from ephemeral_notes.errors import StorageError

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueBackend(Protocol):
    """Protocol for a single keyed collection of JSON-compatible values."""

    def get(self, key: str) -> Optional[Any]:
        """Return the value stored under key, or None."""
        ...

    def put(self, key: str, value: Any) -> None:
        """Store value under key, replacing any previous value.

        Raises:
            StorageError: If the write fails.
        """
        ...

    def delete(self, key: str) -> bool:
        """Remove key. Returns True if it existed."""
        ...

    def keys(self) -> List[str]:
        """Return all stored keys."""
        ...


class MemoryBackend:
    """In-memory backend. Values are JSON round-tripped to mimic persistence."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def put(self, key: str, value: Any) -> None:
        encoded = json.dumps(value, ensure_ascii=False, default=str)
        with self._lock:
            self._data[key] = encoded

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())


class JsonFileBackend:
    """File-backed collection stored as a single JSON object.

    Every operation re-reads the file so separate processes observe each
    other's writes. Writes use the temp file + rename pattern so a reader
    never sees a partial document.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt collection file {self.path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to read {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise StorageError(
                f"Corrupt collection file {self.path}: expected object, got {type(data).__name__}"
            )
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".json.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, default=str)
                f.flush()
                os.fsync(f.fileno())
            tmp_path.replace(self.path)
        except OSError as e:
            if tmp_path.exists():
                tmp_path.unlink()
            raise StorageError(f"Failed to write {self.path}: {e}") from e

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._load().get(key)

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> bool:
        with self._lock:
            data = self._load()
            if key not in data:
                return False
            del data[key]
            self._write(data)
            return True

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._load().keys())


class LocalStorage:
    """The three persisted collections: records, keys and the GC marker."""

    RECORDS_FILENAME = "records.json"
    KEYS_FILENAME = "keys.json"
    META_FILENAME = "meta.json"

    def __init__(
        self,
        records: KeyValueBackend,
        keys: KeyValueBackend,
        meta: KeyValueBackend,
    ):
        self.records = records
        self.keys = keys
        self.meta = meta

    @classmethod
    def in_memory(cls) -> "LocalStorage":
        return cls(MemoryBackend(), MemoryBackend(), MemoryBackend())

    @classmethod
    def on_disk(cls, storage_dir: Path) -> "LocalStorage":
        storage_dir = Path(storage_dir)
        if not storage_dir.exists():
            storage_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created storage directory: {storage_dir}")
        return cls(
            JsonFileBackend(storage_dir / cls.RECORDS_FILENAME),
            JsonFileBackend(storage_dir / cls.KEYS_FILENAME),
            JsonFileBackend(storage_dir / cls.META_FILENAME),
        )
