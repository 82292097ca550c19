"""
Tag-based extraction of condition sub-trees.

A rule is authored as one condition tree mixing event, profile and session
predicates. Matching evaluates each phase separately, so the tree is reduced
to the part whose leaf types carry the phase tag:

- a leaf is kept when its resolved type carries the tag
- a composite keeps the children that survive, in their original order
- when every child survives the composite itself is returned untouched
- a partial survivor list can only be narrowed under ``and``; under any
  other operator the reduced tree would not have the same truth value, so
  extraction fails with ``AmbiguousExtractionError``
"""

from typing import Optional

from ..core.errors import AmbiguousExtractionError
from .model import Condition, OPERATOR, SUB_CONDITIONS


EVENT_CONDITION = "eventCondition"
PROFILE_CONDITION = "profileCondition"
SESSION_CONDITION = "sessionCondition"
TRACKED_CONDITION = "trackedCondition"
SOURCE_EVENT_PROPERTY_CONDITION = "sourceEventPropertyCondition"

MATCHING_PHASE_TAGS = (EVENT_CONDITION, PROFILE_CONDITION, SESSION_CONDITION)


def extract_condition_by_tag(
    condition: Condition,
    tag: str,
    rule_id: Optional[str] = None,
) -> Optional[Condition]:
    """
    Reduce ``condition`` to the sub-tree relevant to ``tag``.

    Returns the original node when the whole tree is relevant, a new
    ``and`` node when only some children of an ``and`` are, and None when
    nothing is. Unresolved leaves never match.

    Raises:
        AmbiguousExtractionError: partial match under a non-``and`` operator
    """
    if not condition.is_composite:
        condition_type = condition.condition_type
        if condition_type is not None and tag in condition_type.tags:
            return condition
        return None

    sub_conditions = condition.sub_conditions
    matching = []
    for sub_condition in sub_conditions:
        extracted = extract_condition_by_tag(sub_condition, tag, rule_id)
        if extracted is not None:
            matching.append(extracted)

    if not matching:
        return None

    if len(matching) == len(sub_conditions) and all(
        a is b for a, b in zip(matching, sub_conditions)
    ):
        return condition

    if condition.operator == "and":
        if len(matching) == 1:
            return matching[0]
        return Condition(
            condition_type_id=condition.condition_type_id,
            condition_type=condition.condition_type,
            parameter_values={OPERATOR: "and", SUB_CONDITIONS: matching},
        )

    raise AmbiguousExtractionError(
        f"Cannot extract '{tag}' conditions from a partially matching "
        f"'{condition.operator}' condition",
        tag=tag,
        operator=condition.operator,
        rule_id=rule_id,
    )


def extract_conditions_by_type(condition: Condition, type_id: str) -> list[Condition]:
    """Collect every leaf of type ``type_id``, whatever the operators above it."""
    found: list[Condition] = []
    _collect_by_type(condition, type_id, found)
    return found


def _collect_by_type(condition: Condition, type_id: str, found: list[Condition]) -> None:
    if condition.is_composite:
        for sub_condition in condition.sub_conditions:
            _collect_by_type(sub_condition, type_id, found)
    elif condition.condition_type_id == type_id:
        if not any(c is condition for c in found):
            found.append(condition)
