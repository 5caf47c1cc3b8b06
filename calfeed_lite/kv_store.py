"""Byte-oriented key-value stores used to persist the month cache."""

from __future__ import annotations

import contextlib
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class KeyValueStore(Protocol):
    """Persistence collaborator: ``get`` returns None for a missing key."""

    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes) -> None: ...


class MemoryKeyValueStore:
    """In-process store, mainly for tests and one-shot CLI runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)


class JsonFileKeyValueStore:
    """Directory-backed store: one file per key, written atomically.

    Each value is written to a temporary file in the same directory, then
    os.replace()d into place so readers never observe a partial write.
    """

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        """Create a store rooted at ``directory`` (created if missing)."""
        self._dir = Path(directory)
        self._lock = threading.Lock()
        self._dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        if not key:
            raise ValueError("key must be a non-empty string")
        return self._dir / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def get(self, key: str) -> bytes | None:
        """Return stored bytes for ``key``, or None if absent or unreadable."""
        path = self._path_for(key)
        with self._lock:
            if not path.exists():
                return None
            try:
                return path.read_bytes()
            except OSError as exc:
                logger.warning("Failed to read %s: %s", path, exc)
                return None

    def set(self, key: str, value: bytes) -> None:
        """Persist ``value`` under ``key`` atomically.

        Raises:
            OSError: If the value cannot be written
        """
        path = self._path_for(key)
        with self._lock:
            tmp_path: Path | None = None
            try:
                with tempfile.NamedTemporaryFile("wb", dir=self._dir, delete=False) as tf:
                    tmp_path = Path(tf.name)
                    tf.write(value)
                    tf.flush()
                    with contextlib.suppress(OSError):
                        os.fsync(tf.fileno())
                tmp_path.replace(path)
            except OSError:
                if tmp_path is not None:
                    with contextlib.suppress(OSError):
                        tmp_path.unlink()
                raise
        logger.debug("Persisted %d bytes to %s", len(value), path)
