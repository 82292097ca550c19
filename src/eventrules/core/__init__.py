"""Core engine components: errors, configuration and logging."""

from .errors import (
    EngineError,
    ConfigError,
    RuleError,
    AmbiguousExtractionError,
    PersistenceError,
    ActionError,
)
from .logging import configure_logging

__all__ = [
    "configure_logging",
    "EngineError",
    "ConfigError",
    "RuleError",
    "AmbiguousExtractionError",
    "PersistenceError",
    "ActionError",
]
