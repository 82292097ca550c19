"""Condition trees: model, type resolution, tag extraction and evaluation."""

from .model import (
    Action,
    ActionType,
    Condition,
    ConditionType,
    Event,
    Item,
    Metadata,
    Profile,
    Rule,
    Session,
    TypeResolution,
    SYSTEM_SCOPE,
)
from .tags import extract_condition_by_tag, extract_conditions_by_type
from .resolver import resolve_condition_type, resolve_action_types, get_condition_type_ids
from .evaluator import ConditionEvaluator

__all__ = [
    "Action",
    "ActionType",
    "Condition",
    "ConditionType",
    "Event",
    "Item",
    "Metadata",
    "Profile",
    "Rule",
    "Session",
    "TypeResolution",
    "SYSTEM_SCOPE",
    "extract_condition_by_tag",
    "extract_conditions_by_type",
    "resolve_condition_type",
    "resolve_action_types",
    "get_condition_type_ids",
    "ConditionEvaluator",
]
