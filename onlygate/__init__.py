"""OnlyGate: persisted invocation budgets.

Runs an action only the first N times it is reached under a name, across
process restarts, then runs a fallback instead. A version bump starts a new
budget.
"""

from .core import (
    MISSING,
    CounterRecord,
    InvalidConfigurationError,
    NotInitializedError,
    OnlyGateError,
    Outcome,
    Result,
    Session,
    Status,
    StorageError,
)
from .engine import Registry
from .store import FileStore, MemoryStore, SqliteStore, Store

__all__ = [
    # Core types
    "CounterRecord",
    "Session",
    "Outcome",
    "Result",
    "MISSING",
    # Enums
    "Status",
    # Errors
    "OnlyGateError",
    "InvalidConfigurationError",
    "NotInitializedError",
    "StorageError",
    # Engine
    "Registry",
    # Store
    "Store",
    "MemoryStore",
    "FileStore",
    "SqliteStore",
]

__version__ = "0.1.0"
