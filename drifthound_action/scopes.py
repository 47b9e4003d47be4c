"""
Scope resolution for drift checks.

Loads the scope configuration, narrows it with at most one filter, fills in
the default tool and derives which tool binaries the selected scopes need.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

import structlog
import yaml

from drifthound_action.errors import (
    ConfigInvalid,
    ConfigNotFound,
    MissingToolField,
    NoMatchingScopes,
    NoScopesDefined,
    ScopeNotFound,
)

LOGGER = structlog.get_logger(__name__)


# Types and constants
class Tool(str, Enum):
    TERRAFORM = "terraform"
    OPENTOFU = "opentofu"
    TERRAGRUNT = "terragrunt"


TOOL_NAMES = tuple(t.value for t in Tool)
LATEST = "latest"

_REQUIRED_FIELDS = ("name", "project", "environment", "directory")
_OPTIONAL_FIELDS = ("tool", "tool_version", "slack_channel")


@dataclass(frozen=True)
class Scope:
    """One named unit of drift-checkable infrastructure."""

    name: str
    project: str
    environment: str
    directory: str
    tool: str | None = None
    tool_version: str | None = None
    slack_channel: str | None = None

    def to_dict(self) -> dict[str, str]:
        data = {
            "name": self.name,
            "project": self.project,
            "environment": self.environment,
            "directory": self.directory,
        }
        for key in _OPTIONAL_FIELDS:
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Scope:
        return cls(**{k: data[k] for k in (*_REQUIRED_FIELDS, *_OPTIONAL_FIELDS) if k in data})


@dataclass(frozen=True)
class Configuration:
    scopes: tuple[Scope, ...]
    default_tool: str | None = None
    tool_versions: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class NoFilter:
    pass


@dataclass(frozen=True)
class ByEnvironment:
    environment: str


@dataclass(frozen=True)
class BySingleName:
    name: str


@dataclass(frozen=True)
class ByNameList:
    names: tuple[str, ...]


ScopeFilter = NoFilter | ByEnvironment | BySingleName | ByNameList


@dataclass
class ScopeSelection:
    """Scopes picked by a filter, plus requested names that matched nothing."""

    scopes: list[Scope]
    unmatched: list[str] = field(default_factory=list)


@dataclass
class ToolRequirements:
    tools: list[str]
    versions: dict[str, str]

    def version_for(self, tool: str) -> str:
        return self.versions.get(tool) or LATEST

    def to_dict(self) -> dict[str, Any]:
        return {"tools": list(self.tools), "versions": dict(self.versions)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolRequirements:
        return cls(tools=list(data.get("tools") or []), versions=dict(data.get("versions") or {}))


@dataclass
class Resolution:
    scopes: list[Scope]
    requirements: ToolRequirements
    unmatched: list[str] = field(default_factory=list)


# Helpers

def _as_text(value: Any, what: str) -> str:
    # YAML turns bare versions like 1.6 into floats
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ConfigInvalid(f"{what} must be a string, got {type(value).__name__}")
    text = str(value).strip()
    if not text:
        raise ConfigInvalid(f"{what} must not be empty")
    return text


def _check_tool(value: Any, what: str) -> str:
    tool = _as_text(value, what)
    if tool not in TOOL_NAMES:
        raise ConfigInvalid(f"{what} must be one of {', '.join(TOOL_NAMES)}, got '{tool}'")
    return tool


def _parse_scope(raw: Any, index: int) -> Scope:
    if not isinstance(raw, dict):
        raise ConfigInvalid(f"scopes[{index}] must be a mapping")

    values: dict[str, str] = {}
    for key in _REQUIRED_FIELDS:
        if raw.get(key) is None:
            label = raw.get("name", index)
            raise ConfigInvalid(f"Scope '{label}' is missing required field '{key}'")
        values[key] = _as_text(raw[key], f"scopes[{index}].{key}")

    if raw.get("tool") is not None:
        values["tool"] = _check_tool(raw["tool"], f"scopes[{index}].tool")
    for key in ("tool_version", "slack_channel"):
        if raw.get(key) is not None:
            values[key] = _as_text(raw[key], f"scopes[{index}].{key}")

    return Scope(**values)


def parse_name_list(raw: str) -> tuple[str, ...]:
    """Split a comma-separated scope list, trimming blanks around each name."""
    return tuple(name.strip() for name in raw.split(",") if name.strip())


def build_filter(
    *, environment: str | None = None, scope: str | None = None, scopes: str | None = None
) -> ScopeFilter:
    """Pick the filter mode from the action inputs: environment, then scope, then scopes."""
    if environment:
        return ByEnvironment(environment)
    if scope:
        return BySingleName(scope)
    if scopes:
        return ByNameList(parse_name_list(scopes))
    return NoFilter()


def _find(config: Configuration, name: str) -> Scope | None:
    return next((s for s in config.scopes if s.name == name), None)


# Resolution pipeline

def load(config_path: Path | str) -> Configuration:
    """Read and validate the scope configuration file."""
    path = Path(config_path)
    if not path.is_file():
        raise ConfigNotFound(f"Configuration file not found: {path}")

    LOGGER.debug("reading configuration", path=str(path))
    try:
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise ConfigInvalid(f"Invalid YAML syntax in {path}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigInvalid(f"Configuration in {path} must be a mapping")

    raw_scopes = raw.get("scopes") or []
    if not isinstance(raw_scopes, list):
        raise ConfigInvalid("'scopes' must be a list")
    if not raw_scopes:
        raise NoScopesDefined("No scopes defined in configuration file")

    default_tool = None
    if raw.get("default_tool") is not None:
        default_tool = _check_tool(raw["default_tool"], "default_tool")

    raw_versions = raw.get("tool_versions") or {}
    if not isinstance(raw_versions, dict):
        raise ConfigInvalid("'tool_versions' must be a mapping")
    # a null entry counts as unset
    tool_versions = {
        str(tool): _as_text(version, f"tool_versions.{tool}")
        for tool, version in raw_versions.items()
        if version is not None
    }

    scopes = tuple(_parse_scope(item, i) for i, item in enumerate(raw_scopes))
    LOGGER.info("configuration loaded", path=str(path), scopes=len(scopes))
    return Configuration(scopes=scopes, default_tool=default_tool, tool_versions=tool_versions)


def resolve_scopes(config: Configuration, scope_filter: ScopeFilter) -> ScopeSelection:
    """Narrow the configured scopes with a single filter."""
    if isinstance(scope_filter, ByEnvironment):
        env = scope_filter.environment
        matched = [s for s in config.scopes if s.environment == env]
        if not matched:
            raise NoMatchingScopes(f"No scopes found with environment='{env}'")
        LOGGER.info("filtered by environment", environment=env, scopes=len(matched))
        return ScopeSelection(scopes=matched)

    if isinstance(scope_filter, BySingleName):
        found = _find(config, scope_filter.name)
        if found is None:
            raise ScopeNotFound(f"Scope '{scope_filter.name}' not found in configuration")
        return ScopeSelection(scopes=[found])

    if isinstance(scope_filter, ByNameList):
        selection = ScopeSelection(scopes=[])
        for name in scope_filter.names:
            found = _find(config, name)
            if found is None:
                LOGGER.warning("scope not found, skipping", scope=name)
                selection.unmatched.append(name)
                continue
            selection.scopes.append(found)
        if not selection.scopes:
            raise NoMatchingScopes("None of the specified scopes were found in configuration")
        return selection

    return ScopeSelection(scopes=list(config.scopes))


def apply_default_tool(scopes: list[Scope], default_tool: str | None) -> list[Scope]:
    """Give every scope without a tool the configured default."""
    resolved: list[Scope] = []
    for scope in scopes:
        if scope.tool is None:
            if not default_tool:
                raise MissingToolField(scope.name)
            LOGGER.info("using default tool", scope=scope.name, tool=default_tool)
            scope = replace(scope, tool=default_tool)
        resolved.append(scope)
    return resolved


def derive_tool_requirements(scopes: list[Scope], tool_versions: dict[str, str]) -> ToolRequirements:
    """Collect the distinct tools needed, adding Terragrunt's underlying tool."""
    tools: list[str] = []
    for scope in scopes:
        if scope.tool and scope.tool not in tools:
            tools.append(scope.tool)

    if Tool.TERRAGRUNT.value in tools:
        if Tool.TERRAFORM.value in tool_versions:
            underlying = Tool.TERRAFORM.value
        elif Tool.OPENTOFU.value in tool_versions:
            underlying = Tool.OPENTOFU.value
        else:
            underlying = Tool.TERRAFORM.value
        LOGGER.info("terragrunt detected", underlying_tool=underlying)
        if underlying not in tools:
            tools.append(underlying)

    return ToolRequirements(tools=tools, versions=dict(tool_versions))


def resolve(config: Configuration, scope_filter: ScopeFilter | None = None) -> Resolution:
    """Run filter, default-fill and derivation as one pass."""
    selection = resolve_scopes(config, scope_filter or NoFilter())
    scopes = apply_default_tool(selection.scopes, config.default_tool)
    requirements = derive_tool_requirements(scopes, config.tool_versions)
    return Resolution(scopes=scopes, requirements=requirements, unmatched=selection.unmatched)
