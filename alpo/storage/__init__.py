"""Persistence backends.

- Database: SQLite relational store (users, sessions, messages, news)
- KeyValueStore implementations for the local device store
"""

from alpo.storage.database import Database
from alpo.storage.kv_store import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore

__all__ = ["Database", "InMemoryKeyValueStore", "JsonFileKeyValueStore", "KeyValueStore"]
