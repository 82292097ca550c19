"""Tests for condition type resolution and tag extraction."""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from helpers import (
    GEO_MODULE, boolean, event_property, event_type, make_definitions, profile_property,
    session_property,
)
from eventrules.core.errors import AmbiguousExtractionError
from eventrules.conditions.model import Condition
from eventrules.conditions.resolver import get_condition_type_ids, resolve_condition_type
from eventrules.conditions.tags import (
    EVENT_CONDITION,
    PROFILE_CONDITION,
    SESSION_CONDITION,
    extract_condition_by_tag,
    extract_conditions_by_type,
)


@pytest.fixture
def definitions():
    return make_definitions(GEO_MODULE)


def resolved(definitions, condition):
    resolve_condition_type(definitions, condition)
    return condition


class TestTypeResolution:
    """Tests for resolving condition trees against the registry."""

    def test_resolves_every_node(self, definitions):
        leaf = event_type("view")
        tree = boolean("and", leaf, profile_property("properties.age", 30))

        assert resolve_condition_type(definitions, tree) is True
        assert tree.condition_type.id == "booleanCondition"
        assert leaf.condition_type.tags == frozenset({"eventCondition"})

    def test_unknown_type_leaves_node_unresolved(self, definitions):
        known = event_type("view")
        unknown = Condition("unknownCondition", {})
        tree = boolean("and", unknown, known)

        assert resolve_condition_type(definitions, tree) is False
        assert unknown.condition_type is None
        # Siblings after the failure are still resolved
        assert known.condition_type is not None

    def test_resolution_is_idempotent(self, definitions):
        tree = boolean("or", event_type("view"), event_type("click"))
        resolve_condition_type(definitions, tree)
        first = [c.condition_type for c in tree.sub_conditions]

        resolve_condition_type(definitions, tree)

        assert [c.condition_type for c in tree.sub_conditions] == first
        assert len(tree.sub_conditions) == 2

    def test_missing_tree_resolves(self, definitions):
        assert resolve_condition_type(definitions, None) is True

    def test_stale_type_cleared_after_unregister(self, definitions):
        leaf = Condition("geoCondition", {"propertyName": "properties.country"})
        resolve_condition_type(definitions, leaf)
        assert leaf.condition_type is not None

        definitions.unregister_module("geo")

        assert resolve_condition_type(definitions, leaf) is False
        assert leaf.condition_type is None

    def test_get_condition_type_ids(self):
        tree = boolean(
            "and",
            event_type("view"),
            boolean("or", event_type("click"), Condition("geoCondition", {})),
        )

        assert get_condition_type_ids(tree) == [
            "booleanCondition", "eventTypeCondition", "geoCondition",
        ]
        assert get_condition_type_ids(None) == []


class TestExtractConditionByTag:
    """Tests for reducing condition trees to one phase."""

    def test_leaf_with_tag_returned_as_is(self, definitions):
        leaf = resolved(definitions, event_type("view"))

        assert extract_condition_by_tag(leaf, EVENT_CONDITION) is leaf

    def test_leaf_without_tag(self, definitions):
        leaf = resolved(definitions, event_type("view"))

        assert extract_condition_by_tag(leaf, PROFILE_CONDITION) is None

    def test_unresolved_leaf_never_matches(self):
        leaf = event_type("view")

        assert extract_condition_by_tag(leaf, EVENT_CONDITION) is None

    def test_fully_matching_composite_returned_as_is(self, definitions):
        tree = resolved(definitions, boolean("and", event_type("view"), event_property("properties.x", 1)))

        assert extract_condition_by_tag(tree, EVENT_CONDITION) is tree

    def test_fully_matching_or_returned_as_is(self, definitions):
        tree = resolved(definitions, boolean("or", event_type("view"), event_type("click")))

        assert extract_condition_by_tag(tree, EVENT_CONDITION) is tree

    def test_single_survivor_of_and_is_unwrapped(self, definitions):
        view = event_type("view")
        tree = resolved(definitions, boolean("and", view, profile_property("properties.age", 30)))

        assert extract_condition_by_tag(tree, EVENT_CONDITION) is view

    def test_partial_and_builds_new_conjunction(self, definitions):
        view = event_type("view")
        url = event_property("properties.url", "/home")
        tree = resolved(definitions, boolean("and", view, profile_property("properties.age", 30), url))

        extracted = extract_condition_by_tag(tree, EVENT_CONDITION)

        assert extracted is not tree
        assert extracted.condition_type_id == "booleanCondition"
        assert extracted.condition_type is tree.condition_type
        assert extracted.operator == "and"
        assert extracted.sub_conditions[0] is view
        assert extracted.sub_conditions[1] is url
        assert len(extracted.sub_conditions) == 2

    def test_input_tree_not_modified(self, definitions):
        children = [event_type("view"), profile_property("properties.age", 30)]
        tree = resolved(definitions, boolean("and", *children))

        extract_condition_by_tag(tree, EVENT_CONDITION)
        extract_condition_by_tag(tree, PROFILE_CONDITION)

        assert tree.sub_conditions == children
        assert tree.operator == "and"

    def test_partial_or_is_ambiguous(self, definitions):
        tree = resolved(definitions, boolean("or", event_type("view"), profile_property("properties.age", 30)))

        with pytest.raises(AmbiguousExtractionError) as exc_info:
            extract_condition_by_tag(tree, EVENT_CONDITION, "systemscope_r1")

        context = exc_info.value.context
        assert context["tag"] == EVENT_CONDITION
        assert context["operator"] == "or"
        assert context["rule_id"] == "systemscope_r1"

    def test_composite_without_matches(self, definitions):
        tree = resolved(definitions, boolean("or", event_type("view"), profile_property("properties.age", 30)))

        # No child is tagged, so nothing is ambiguous
        assert extract_condition_by_tag(tree, SESSION_CONDITION) is None

    def test_nested_fully_matching_child_kept_by_identity(self, definitions):
        inner = boolean("or", event_type("view"), event_type("click"))
        tree = resolved(definitions, boolean("and", inner, profile_property("properties.age", 30)))

        assert extract_condition_by_tag(tree, EVENT_CONDITION) is inner

    def test_nested_partial_and(self, definitions):
        view = event_type("view")
        click = event_type("click")
        inner = boolean("and", view, profile_property("properties.age", 30))
        tree = resolved(definitions, boolean("and", inner, click))

        extracted = extract_condition_by_tag(tree, EVENT_CONDITION)

        assert extracted.operator == "and"
        assert extracted.sub_conditions[0] is view
        assert extracted.sub_conditions[1] is click

    def test_nested_ambiguity_propagates(self, definitions):
        inner = boolean("or", event_type("view"), session_property("properties.pages", 3))
        tree = resolved(definitions, boolean("and", inner, profile_property("properties.age", 30)))

        with pytest.raises(AmbiguousExtractionError):
            extract_condition_by_tag(tree, SESSION_CONDITION)

    def test_plugin_type_tags(self, definitions):
        geo = Condition("geoCondition", {"propertyName": "properties.country"})
        tree = resolved(definitions, boolean("and", event_type("view"), geo))

        assert extract_condition_by_tag(tree, PROFILE_CONDITION) is geo


class TestExtractConditionsByType:
    """Tests for collecting leaves of one type."""

    def test_collects_through_any_operator(self):
        a = event_property("properties.url", "/a")
        b = event_property("properties.url", "/b")
        tree = boolean("or", a, boolean("and", event_type("view"), b))

        assert extract_conditions_by_type(tree, "eventPropertyCondition") == [a, b]

    def test_shared_leaf_listed_once(self):
        shared = event_property("properties.url", "/a")
        tree = boolean("and", shared, boolean("or", shared, event_type("view")))

        found = extract_conditions_by_type(tree, "eventPropertyCondition")

        assert len(found) == 1
        assert found[0] is shared

    def test_no_matching_leaves(self):
        assert extract_conditions_by_type(event_type("view"), "geoCondition") == []

    def test_leaf_of_requested_type(self):
        leaf = event_type("view")

        assert extract_conditions_by_type(leaf, "eventTypeCondition") == [leaf]
