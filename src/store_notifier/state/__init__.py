"""
State management for the Store Notifier.

Namespaced key-value persistence of the last observed state of every tracked
entity, with in-memory and SQLite backends.
"""

from .keys import make_key, split_key
from .manager import (
    SqliteStateStore,
    InMemoryStateStore,
    StateStore,
    StateStoreFactory,
)

__all__ = [
    "StateStore",
    "StateStoreFactory",
    "InMemoryStateStore",
    "SqliteStateStore",
    "make_key",
    "split_key",
]
