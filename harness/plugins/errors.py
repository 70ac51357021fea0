"""Exceptions raised by the plugin runtime."""

from typing import List, Optional


class PluginError(Exception):
    """Base class for plugin runtime errors."""

    def __init__(self, message: str, plugin_name: Optional[str] = None):
        super().__init__(message)
        self.plugin_name = plugin_name


class ExtensionConflictError(PluginError):
    """An extension name is already held by a built-in or another plugin."""

    def __init__(self, kind: str, name: str, existing_owner: str, plugin_name: Optional[str] = None, message: Optional[str] = None):
        if message is None:
            if existing_owner == "core":
                message = f'{kind.capitalize()} "{name}" conflicts with a core {kind}'
            else:
                message = f'{kind.capitalize()} "{name}" conflicts with {kind} from plugin "{existing_owner}"'
        super().__init__(message, plugin_name)
        self.kind = kind
        self.name = name
        self.existing_owner = existing_owner


class ServiceResolutionError(PluginError):
    """A service could not be resolved.

    code is one of NOT_FOUND, CIRCULAR_DEPENDENCY or FACTORY_ERROR.
    """

    NOT_FOUND = "NOT_FOUND"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    FACTORY_ERROR = "FACTORY_ERROR"

    def __init__(self, code: str, service_name: str, message: str, plugin_name: Optional[str] = None, chain: Optional[List[str]] = None):
        super().__init__(message, plugin_name)
        self.code = code
        self.service_name = service_name
        self.chain = chain or []


class PluginContextRevokedError(PluginError):
    """A plugin used its context after it was unloaded or rolled back."""

    def __init__(self, plugin_name: str):
        super().__init__(f"Context for plugin '{plugin_name}' has been revoked", plugin_name)


class InvalidVersionRange(ValueError):
    """A version range string could not be parsed."""
