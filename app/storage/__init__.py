"""Persistence ports: key-value state, prediction log, match archive."""

from app.storage.archive import MatchArchive
from app.storage.kv import (
    FileKeyValueStore,
    InMemoryKeyValueStore,
    KeyValueStore,
    SQLKeyValueStore,
)
from app.storage.repository import PredictionRepository

__all__ = [
    "FileKeyValueStore",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "MatchArchive",
    "PredictionRepository",
    "SQLKeyValueStore",
]
