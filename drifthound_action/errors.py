"""Exception types raised by the action steps."""

from __future__ import annotations


class DriftHoundError(Exception):
    """Base class for errors reported to the workflow as ::error:: lines."""


class ConfigError(DriftHoundError):
    pass


class ConfigNotFound(ConfigError):
    pass


class ConfigInvalid(ConfigError):
    pass


class NoScopesDefined(ConfigError):
    pass


class NoMatchingScopes(ConfigError):
    pass


class ScopeNotFound(ConfigError):
    pass


class MissingToolField(ConfigError):
    def __init__(self, scope: str) -> None:
        self.scope = scope
        super().__init__(f"Scope '{scope}' is missing the 'tool' field and no default_tool is set")


class ToolInstallError(DriftHoundError):
    pass
