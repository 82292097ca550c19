"""Builders shared by the test modules."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from eventrules.conditions.model import (
    Action, Condition, ConditionType, ActionType, Event, Item, Metadata, Profile, Rule, Session,
    SYSTEM_SCOPE,
)
from eventrules.plugins.registry import CORE_MODULE, DefinitionsService, PluginModule


GEO_MODULE = PluginModule(
    id="geo",
    condition_types=[
        ConditionType("geoCondition", frozenset({"profileCondition"}), "property"),
    ],
    action_types=[
        ActionType("geoTagAction", executor="noop"),
    ],
)

TRACKING_MODULE = PluginModule(
    id="tracking",
    condition_types=[
        ConditionType("formEventCondition", frozenset({"trackedCondition", "eventCondition"}), "eventType"),
    ],
)


def make_definitions(*modules: PluginModule) -> DefinitionsService:
    definitions = DefinitionsService()
    definitions.register_module(CORE_MODULE)
    for module in modules:
        definitions.register_module(module)
    return definitions


def event_type(type_id: str) -> Condition:
    return Condition("eventTypeCondition", {"eventTypeId": type_id})


def property_condition(type_id: str, name: str, value, op: str = "equals") -> Condition:
    return Condition(type_id, {
        "propertyName": name,
        "comparisonOperator": op,
        "propertyValue": value,
    })


def event_property(name: str, value, op: str = "equals") -> Condition:
    return property_condition("eventPropertyCondition", name, value, op)


def profile_property(name: str, value, op: str = "equals") -> Condition:
    return property_condition("profilePropertyCondition", name, value, op)


def session_property(name: str, value, op: str = "equals") -> Condition:
    return property_condition("sessionPropertyCondition", name, value, op)


def boolean(op: str, *sub_conditions: Condition) -> Condition:
    return Condition("booleanCondition", {"operator": op, "subConditions": list(sub_conditions)})


def make_rule(
    rule_id: str,
    condition: Condition,
    actions: list = None,
    scope: str = SYSTEM_SCOPE,
    **kwargs,
) -> Rule:
    return Rule(
        metadata=Metadata(id=rule_id, scope=scope, name=rule_id),
        condition=condition,
        actions=actions or [],
        **kwargs,
    )


def set_property(name: str, value) -> Action:
    return Action("setPropertyAction", {"setPropertyName": name, "setPropertyValue": value})


def make_event(
    event_type: str = "view",
    scope: str = "site",
    profile_properties: dict = None,
    session_properties: dict = None,
    **kwargs,
) -> Event:
    profile = Profile("profile-1", properties=dict(profile_properties or {}))
    session = Session("session-1", properties=dict(session_properties or {}), profile=profile)
    kwargs.setdefault("source", Item("page-1", "page"))
    return Event(
        event_type=event_type,
        scope=scope,
        profile=profile,
        session=session,
        **kwargs,
    )


class RecordingListener:
    """Event listener that remembers what it was sent."""

    def __init__(self, event_types=None):
        self.event_types = event_types
        self.events = []

    def can_handle(self, event: Event) -> bool:
        return self.event_types is None or event.event_type in self.event_types

    async def on_event(self, event: Event) -> bool:
        self.events.append(event)
        return False
