"""Action dispatch for fired rules."""

import re
from typing import Any, Awaitable, Callable, Optional

import structlog

from ..core.errors import ActionError
from ..conditions.model import Action, Event


logger = structlog.get_logger()

# Handler receives interpolated parameters and the triggering event,
# returns True when it changed profile or session state.
ActionHandler = Callable[[dict[str, Any], Event], Awaitable[bool]]


class ActionExecutorDispatcher:
    """
    Registry of action handlers, keyed by executor name.

    An action is routed to the executor named by its resolved type, or to a
    handler registered under its type id when the type names none. Parameter
    values may reference the event with ``{{event.properties.x}}``,
    ``{{profile.properties.y}}`` or ``{{session.item_id}}``.
    """

    def __init__(self):
        self._handlers: dict[str, ActionHandler] = {}
        self._register_builtin_actions()

    def register(self, executor: str, handler: ActionHandler) -> None:
        """Register an action handler."""
        self._handlers[executor] = handler

    def unregister(self, executor: str) -> None:
        """Unregister an action handler."""
        self._handlers.pop(executor, None)

    def get_handler(self, executor: str) -> Optional[ActionHandler]:
        """Get handler for an executor name."""
        return self._handlers.get(executor)

    def list_actions(self) -> list[str]:
        """List all registered executor names."""
        return list(self._handlers.keys())

    async def execute(self, action: Action, event: Event) -> bool:
        """
        Execute an action against an event.

        Returns whether the action changed state. Unknown executors and
        handler failures are logged and count as no change.
        """
        action_type = action.action_type
        executor = action_type.executor if action_type and action_type.executor else action.action_type_id

        handler = self._handlers.get(executor)
        if not handler:
            logger.warning(
                "action_executor_not_found",
                action_type=action.action_type_id,
                executor=executor,
            )
            return False

        params = self._interpolate_params(
            action.parameter_values,
            {"event": event, "profile": event.profile, "session": event.session},
        )

        try:
            return bool(await handler(params, event))
        except Exception:
            logger.exception("action_execution_error", action_type=action.action_type_id)
            return False

    def _interpolate_params(
        self,
        params: dict[str, Any],
        context: dict[str, Any],
    ) -> dict[str, Any]:
        """Interpolate {{variable}} references in params."""

        def replace_vars(value: Any) -> Any:
            if isinstance(value, str):
                pattern = r'\{\{([\w.]+)\}\}'
                matches = re.findall(pattern, value)
                for match in matches:
                    var_value = self._get_nested_value(context, match.split("."))
                    if var_value is not None:
                        if value == f"{{{{{match}}}}}":
                            return var_value
                        value = value.replace(f"{{{{{match}}}}}", str(var_value))
                return value
            elif isinstance(value, dict):
                return {k: replace_vars(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [replace_vars(v) for v in value]
            return value

        return replace_vars(params)

    def _get_nested_value(self, data: Any, path: list[str]) -> Any:
        """Get nested value from dicts and objects using path."""
        current = data
        for key in path:
            if isinstance(current, dict):
                current = current.get(key)
            else:
                current = getattr(current, key, None)
            if current is None:
                return None
        return current

    def _register_builtin_actions(self) -> None:
        """Register built-in actions."""
        self.register("setProperty", self._action_set_property)
        self.register("noop", self._action_noop)

    async def _action_set_property(self, params: dict[str, Any], event: Event) -> bool:
        """Set a profile (or session) property; changed only if the value differs."""
        name = params.get("setPropertyName")
        if not name:
            raise ActionError("Property name required", action_type="setPropertyAction")

        subject = event.session if params.get("storeInSession") else event.profile
        if subject is None:
            return False

        path = name.split(".")
        if path[0] == "properties":
            path = path[1:]
        if not path:
            raise ActionError(f"Invalid property name: {name}", action_type="setPropertyAction")

        target = subject.properties
        for key in path[:-1]:
            nested = target.get(key)
            if not isinstance(nested, dict):
                nested = {}
                target[key] = nested
            target = nested

        value = params.get("setPropertyValue")
        if path[-1] in target and target[path[-1]] == value:
            return False
        target[path[-1]] = value
        return True

    async def _action_noop(self, params: dict[str, Any], event: Event) -> bool:
        """No operation - useful for testing."""
        return False
