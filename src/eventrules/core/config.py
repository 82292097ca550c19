"""Configuration loading and validation."""

import json
import hashlib
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field
import jsonschema
import structlog

from .errors import ConfigError
from ..conditions.model import Rule, SYSTEM_SCOPE
from ..plugins.registry import PluginModule


logger = structlog.get_logger()


CONDITION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["type"],
    "properties": {
        "type": {"type": "string", "minLength": 1},
        "parameter_values": {
            "type": "object",
            "properties": {
                "subConditions": {
                    "type": "array",
                    "items": {"$ref": "#/definitions/condition"},
                },
                "operator": {"type": "string"},
            },
        },
    },
}

ACTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["type"],
    "properties": {
        "type": {"type": "string", "minLength": 1},
        "parameter_values": {"type": "object"},
    },
}

RULE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["metadata"],
    "properties": {
        "metadata": {
            "type": "object",
            "required": ["id"],
            "properties": {
                "id": {"type": "string", "minLength": 1},
                "scope": {"type": ["string", "null"]},
                "name": {"type": "string"},
                "description": {"type": "string"},
                "tags": {"type": "array", "items": {"type": "string"}},
                "enabled": {"type": "boolean"},
                "missing_plugins": {"type": "boolean"},
            },
        },
        "condition": {"anyOf": [{"$ref": "#/definitions/condition"}, {"type": "null"}]},
        "actions": {"type": "array", "items": ACTION_SCHEMA},
        "raise_event_only_once_for_profile": {"type": "boolean"},
        "raise_event_only_once_for_session": {"type": "boolean"},
    },
    "definitions": {"condition": CONDITION_SCHEMA},
}

MODULE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "condition_types": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id"],
                "properties": {
                    "id": {"type": "string"},
                    "tags": {"type": "array", "items": {"type": "string"}},
                    "evaluator": {"type": ["string", "null"]},
                },
            },
        },
        "action_types": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id"],
                "properties": {
                    "id": {"type": "string"},
                    "executor": {"type": ["string", "null"]},
                },
            },
        },
        "rules": {"type": "array", "items": {"type": "object"}},
    },
}


class MatchingConfig(BaseModel):
    """Rule matching behavior."""
    # Skip rules flagged disabled or missing plugins before evaluating them
    skip_unavailable_rules: bool = Field(default=True)


class EventsConfig(BaseModel):
    """Event dispatch settings."""
    max_dispatch_depth: int = Field(default=16, ge=1, le=256)
    record_events: bool = Field(default=True)


class StorageConfig(BaseModel):
    """Rule and event store settings."""
    backend: Literal["memory", "sqlite"] = Field(default="memory")
    db_path: str = Field(default="./data/eventrules.db")


class EngineConfig(BaseModel):
    """Main engine configuration."""
    name: str = Field(default="eventrules")
    version: str = Field(default="0.1.0")

    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    # Reject rules whose tree cannot be split into matching phases
    validate_rules_on_save: bool = Field(default=True)

    # Paths
    rules_directory: str = Field(default="./config/rules")
    modules_directory: str = Field(default="./config/modules")

    def config_hash(self) -> str:
        """Generate hash of config for change detection."""
        return hashlib.sha256(
            self.model_dump_json().encode()
        ).hexdigest()[:16]


class ConfigLoader:
    """Loads and validates YAML/JSON configurations and definitions."""

    def __init__(self, config_dir: str = "./config"):
        self.config_dir = Path(config_dir)

    def load_engine_config(self, path: Optional[str] = None) -> EngineConfig:
        """Load main engine configuration."""
        if path is None:
            path = self.config_dir / "engine.yaml"
        else:
            path = Path(path)

        data = self._load_file(path)
        try:
            return EngineConfig(**data)
        except Exception as e:
            raise ConfigError(f"Invalid engine config: {e}", config_path=str(path))

    def load_rules(self, directory: Optional[str] = None) -> list[Rule]:
        """
        Load all rule definitions from a directory.

        Unreadable files and invalid rules are logged and skipped; they never
        stop the remaining definitions from loading.
        """
        if directory is None:
            directory = self.config_dir / "rules"
        else:
            directory = Path(directory)

        rules: list[Rule] = []
        if not directory.exists():
            return rules

        for file_path in self._definition_files(directory):
            try:
                data = self._load_file(file_path)
            except ConfigError as e:
                logger.error("rule_file_load_error", path=str(file_path), error=e.message)
                continue

            # Support both single rule and list of rules
            rule_list = data.get("rules", [data] if "metadata" in data else [])
            for rule_data in rule_list:
                try:
                    rules.append(self.parse_rule(rule_data, source=str(file_path)))
                except ConfigError as e:
                    logger.error("rule_definition_invalid", path=str(file_path), error=e.message)

        return rules

    def load_modules(self, directory: Optional[str] = None) -> list[PluginModule]:
        """Load plugin module definitions (types plus predefined rules)."""
        if directory is None:
            directory = self.config_dir / "modules"
        else:
            directory = Path(directory)

        modules: list[PluginModule] = []
        if not directory.exists():
            return modules

        for file_path in self._definition_files(directory):
            try:
                data = self._load_file(file_path)
                jsonschema.validate(data, MODULE_SCHEMA)
                modules.append(PluginModule.from_dict(data))
            except ConfigError as e:
                logger.error("module_file_load_error", path=str(file_path), error=e.message)
            except jsonschema.ValidationError as e:
                logger.error("module_definition_invalid", path=str(file_path), error=e.message)

        return modules

    def parse_rule(self, data: dict[str, Any], source: Optional[str] = None) -> Rule:
        """Validate and build one rule; rules without a scope apply to every scope."""
        try:
            jsonschema.validate(data, RULE_SCHEMA)
        except jsonschema.ValidationError as e:
            raise ConfigError(f"Invalid rule definition: {e.message}", config_path=source)

        rule = Rule.from_dict(data)
        if rule.metadata.scope is None:
            rule.metadata.scope = SYSTEM_SCOPE
        return rule

    def _definition_files(self, directory: Path) -> list[Path]:
        files = list(directory.glob("**/*.yaml"))
        files.extend(directory.glob("**/*.yml"))
        files.extend(directory.glob("**/*.json"))
        return sorted(files)

    def _load_file(self, path: Path) -> dict[str, Any]:
        """Load YAML or JSON file."""
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}", config_path=str(path))

        try:
            content = path.read_text()
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content) or {}
            elif path.suffix == ".json":
                data = json.loads(content)
            else:
                raise ConfigError(
                    f"Unsupported config format: {path.suffix}",
                    config_path=str(path)
                )
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}", config_path=str(path))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON: {e}", config_path=str(path))
        except OSError as e:
            raise ConfigError(f"Cannot read config file: {e}", config_path=str(path))

        if not isinstance(data, dict):
            raise ConfigError("Config document must be a mapping", config_path=str(path))
        return data

