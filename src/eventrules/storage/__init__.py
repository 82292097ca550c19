"""Rule catalog and event history stores."""

from typing import Optional, Union

from ..conditions.evaluator import ConditionEvaluator
from .memory import MemoryStore
from .sqlite import SqliteStore

Store = Union[MemoryStore, SqliteStore]


def create_store(backend: str, db_path: str, evaluator: Optional[ConditionEvaluator] = None) -> Store:
    """Build the store named by the ``storage.backend`` setting."""
    if backend == "sqlite":
        return SqliteStore(db_path, evaluator)
    return MemoryStore(evaluator)


__all__ = ["MemoryStore", "SqliteStore", "Store", "create_store"]
