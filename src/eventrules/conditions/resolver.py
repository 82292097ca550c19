"""Attach registry type descriptors to condition trees and actions."""

from typing import Iterable, Optional, Protocol

from .model import Action, Condition, TypeResolution


class TypeResolver(Protocol):
    """The part of the type registry resolution needs."""

    def resolve_condition_type(self, type_id: str) -> TypeResolution: ...

    def resolve_action_type(self, type_id: str) -> TypeResolution: ...


def resolve_condition_type(registry: TypeResolver, condition: Optional[Condition]) -> bool:
    """
    Resolve every node of a condition tree against the registry.

    Nodes whose type is not registered get ``condition_type = None``. The
    tree shape is never changed, so this is safe to run on every match.

    Returns True when every node resolved (vacuously for a missing tree).
    """
    if condition is None:
        return True

    resolution = registry.resolve_condition_type(condition.condition_type_id)
    condition.condition_type = resolution.descriptor
    resolved = resolution.resolved

    for sub_condition in condition.sub_conditions:
        # Resolve every child even after a failure
        resolved = resolve_condition_type(registry, sub_condition) and resolved

    return resolved


def resolve_action_types(registry: TypeResolver, actions: Iterable[Action]) -> bool:
    """Resolve action types; True when all of them resolved."""
    resolved = True
    for action in actions:
        resolution = registry.resolve_action_type(action.action_type_id)
        action.action_type = resolution.descriptor
        resolved = resolved and resolution.resolved
    return resolved


def get_condition_type_ids(condition: Optional[Condition]) -> list[str]:
    """Every condition type id referenced anywhere in the tree."""
    if condition is None:
        return []
    type_ids = [condition.condition_type_id]
    for sub_condition in condition.sub_conditions:
        for type_id in get_condition_type_ids(sub_condition):
            if type_id not in type_ids:
                type_ids.append(type_id)
    return type_ids
