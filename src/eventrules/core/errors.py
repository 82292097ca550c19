"""Engine error definitions."""

from typing import Optional, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for classification."""
    LOW = "low"           # Transient, ignore for this event
    MEDIUM = "medium"     # Rule excluded for this event
    HIGH = "high"         # Operator attention needed
    CRITICAL = "critical" # Engine cannot continue


class ErrorCategory(Enum):
    """Error categories for routing and handling."""
    TRANSIENT = "transient"       # Store or action hiccup - will likely resolve
    PERMANENT = "permanent"       # Config error - won't resolve without an edit
    EXTERNAL = "external"         # Collaborator failure (store, executor, bus)
    VALIDATION = "validation"     # Rule or definition validation failure


class EngineError(Exception):
    """Base exception for all engine errors."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        context: Optional[dict[str, Any]] = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.context = context or {}
        self.retryable = retryable

    def fingerprint(self) -> str:
        """Generate error fingerprint for deduplication."""
        import hashlib
        components = [
            self.__class__.__name__,
            self.category.value,
            str(self.context.get("rule_id", "")),
            str(self.context.get("tag", "")),
        ]
        return hashlib.sha256(":".join(components).encode()).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging/reporting."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context,
            "retryable": self.retryable,
            "fingerprint": self.fingerprint(),
        }


class ConfigError(EngineError):
    """Configuration loading or validation error."""

    def __init__(self, message: str, config_path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["config_path"] = config_path


class RuleError(EngineError):
    """Rule parsing or evaluation error."""

    def __init__(self, message: str, rule_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        super().__init__(message, **kwargs)
        self.context["rule_id"] = rule_id


class AmbiguousExtractionError(RuleError):
    """A tag matched only part of a non-conjunctive composite condition."""

    def __init__(
        self,
        message: str,
        tag: Optional[str] = None,
        operator: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["tag"] = tag
        self.context["operator"] = operator


class PersistenceError(EngineError):
    """Failure surfaced by the persistence layer."""

    def __init__(self, message: str, item_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.EXTERNAL)
        super().__init__(message, **kwargs)
        self.context["item_id"] = item_id


class ActionError(EngineError):
    """Action execution error."""

    def __init__(
        self,
        message: str,
        action_type: Optional[str] = None,
        rule_id: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("category", ErrorCategory.EXTERNAL)
        super().__init__(message, **kwargs)
        self.context["action_type"] = action_type
        self.context["rule_id"] = rule_id
