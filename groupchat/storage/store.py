"""
Persistent key/value store contract + in-memory and file backends.

A store maps opaque string keys to bytes:

    get(key) -> bytes | None
    set(key, value)
    remove(key)

Only single-key operations are atomic. Nothing here offers compare-and-swap,
so two writers doing read-modify-write on the same key can lose an update.
"""

import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from groupchat import config

logger = logging.getLogger(__name__)


class MemoryStore:
    """
    Process-local store. Several sessions sharing one instance observe the
    same log, which is how tests and demos simulate a group.
    """

    def __init__(self):
        self._data: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class FileStore:
    """
    One file per key under a directory. Writes go to a temp file and are
    renamed into place, so readers never see a half-written value.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)
        # Ensure the store directory exists
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.directory / f"{safe}.dat"

    def get(self, key: str) -> Optional[bytes]:
        try:
            with open(self._path(key), "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Could not read %s: %s", key, e)
            return None

    def set(self, key: str, value: bytes) -> None:
        target = self._path(key)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(value)
            os.replace(tmp, target)
        except OSError:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass


def open_store(backend: str = None):
    """Builds the store named by config.STORE_BACKEND (or `backend`)."""
    backend = backend or config.STORE_BACKEND
    if backend == "memory":
        return MemoryStore()
    if backend == "file":
        return FileStore(config.STORE_DIR)
    if backend == "mysql":
        from groupchat.storage.db import MySQLStore
        return MySQLStore()
    raise ValueError(f"Unknown store backend: {backend}")
