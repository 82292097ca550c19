"""Rules module."""

from .service import RulesService, MatchResult, RULE_FIRED_EVENT_TYPE
from .actions import ActionExecutorDispatcher

__all__ = ["RulesService", "MatchResult", "RULE_FIRED_EVENT_TYPE", "ActionExecutorDispatcher"]
