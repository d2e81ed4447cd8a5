"""
Key-value persistence port for the learning loop state.

get(key) -> bytes | None, set(key, bytes). No transactions; last writer
wins, which is fine under the learning loop's single-writer discipline.
Every implementation raises PersistenceFailure on I/O errors and leaves the
decision to swallow it to the caller.
"""

import asyncio
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.errors import PersistenceFailure
from app.models import KeyValueEntry

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStore(ABC):
    name: str = "kv"

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Stored bytes for key, or None when never written."""

    @abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        """Store bytes under key, replacing any previous value."""


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store (tests, ephemeral runs)."""

    name = "memory"

    def __init__(self):
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)


class FileKeyValueStore(KeyValueStore):
    """One file per key under a directory; writes go through an atomic replace."""

    name = "file"

    def __init__(self, directory):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.bin"

    def _read(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def _write(self, key: str, value: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(value)
            os.replace(tmp_path, self._path(key))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def get(self, key: str) -> Optional[bytes]:
        try:
            return await asyncio.to_thread(self._read, key)
        except OSError as e:
            raise PersistenceFailure(self.name, f"get {key}", e) from e

    async def set(self, key: str, value: bytes) -> None:
        try:
            await asyncio.to_thread(self._write, key, value)
        except OSError as e:
            raise PersistenceFailure(self.name, f"set {key}", e) from e


class SQLKeyValueStore(KeyValueStore):
    """kv_store table through the async SQLAlchemy session factory."""

    name = "sql"

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def get(self, key: str) -> Optional[bytes]:
        try:
            async with self._session_factory() as session:
                entry = await session.get(KeyValueEntry, key)
                return bytes(entry.value) if entry is not None else None
        except SQLAlchemyError as e:
            raise PersistenceFailure(self.name, f"get {key}", e) from e

    async def set(self, key: str, value: bytes) -> None:
        try:
            async with self._session_factory() as session:
                entry = await session.get(KeyValueEntry, key)
                if entry is None:
                    session.add(KeyValueEntry(key=key, value=value))
                else:
                    entry.value = value
                    entry.updated_at = datetime.utcnow()
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(self.name, f"set {key}", e) from e
