"""PluginContext - the capability object passed to each plugin's activate() function."""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, TYPE_CHECKING, Union

from harness.plugins.errors import PluginContextRevokedError
from harness.plugins.models import (
    AgentRegistration,
    CommandRegistration,
    HookRegistration,
    ServiceRegistration,
    TemplateRegistration,
    deep_freeze,
)

if TYPE_CHECKING:
    from harness.plugins.extensions import ExtensionPoints

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class PluginContext:
    """Scoped API surface handed to a single plugin.

    Plugins use this to register extensions, resolve services and log.
    Every registration is attributed to this plugin; there is no way to
    register on behalf of another plugin, and no access to the filesystem,
    processes or the registry itself. Once revoked (after unload or a failed
    activation) every call raises PluginContextRevokedError.
    """

    def __init__(
        self,
        plugin_name: str,
        plugin_version: str,
        config: Mapping[str, Any],
        extensions: ExtensionPoints,
        host_version: str,
        project_config: Optional[Mapping[str, Any]] = None,
    ):
        self._plugin_name = plugin_name
        self._plugin_version = plugin_version
        self._config = deep_freeze(dict(config))
        self._extensions = extensions
        self._host_version = host_version
        self._project_config = deep_freeze(dict(project_config)) if project_config is not None else None
        self._logger = logging.getLogger(f"plugin.{plugin_name}")
        self._revoked = False

    @property
    def plugin_name(self) -> str:
        return self._plugin_name

    @property
    def plugin_version(self) -> str:
        return self._plugin_version

    @property
    def config(self) -> Mapping[str, Any]:
        """Resolved configuration (schema defaults merged with user overrides), read-only."""
        return self._config

    @property
    def revoked(self) -> bool:
        return self._revoked

    def revoke(self) -> None:
        self._revoked = True

    def _ensure_active(self) -> None:
        if self._revoked:
            raise PluginContextRevokedError(self._plugin_name)

    # ========================================================================
    # Registration
    # ========================================================================

    def register_command(self, registration: CommandRegistration) -> None:
        self._ensure_active()
        self._extensions.commands.register_command(self._plugin_name, registration)
        self._logger.debug(f"[plugin:{self._plugin_name}] Registered command: {registration.name}")

    def register_agent(self, registration: AgentRegistration) -> None:
        self._ensure_active()
        self._extensions.agents.register_agent(self._plugin_name, registration)
        self._logger.debug(f"[plugin:{self._plugin_name}] Registered agent: {registration.name}")

    def register_hook(self, registration: HookRegistration) -> None:
        self._ensure_active()
        self._extensions.hooks.register_hook(self._plugin_name, registration)
        self._logger.debug(
            f"[plugin:{self._plugin_name}] Registered {registration.timing.value}-phase hook "
            f"for '{registration.phase}'"
        )

    def register_service(self, registration: ServiceRegistration) -> None:
        self._ensure_active()
        self._extensions.services.register_service(self._plugin_name, registration)
        self._logger.debug(f"[plugin:{self._plugin_name}] Registered service: {registration.name}")

    def register_template(self, registration: TemplateRegistration) -> None:
        self._ensure_active()
        self._extensions.templates.register_template(self._plugin_name, registration)
        self._logger.debug(f"[plugin:{self._plugin_name}] Registered template: {registration.name}")

    # ========================================================================
    # Services
    # ========================================================================

    def get_service(self, name: str) -> Any:
        """Resolve a service registered by any plugin.

        Raises:
            ServiceResolutionError: If the service is unknown, cyclic or its factory fails
        """
        self._ensure_active()
        return self._extensions.services.resolve_service(name)

    def has_service(self, name: str) -> bool:
        self._ensure_active()
        return self._extensions.services.has_service(name)

    # ========================================================================
    # Utilities
    # ========================================================================

    def log(self, level: Union[str, int], message: str) -> None:
        """Log a message tagged with this plugin's identity.

        Args:
            level: "debug", "info", "warn", "error" or a logging level number
            message: Message text
        """
        if isinstance(level, str):
            level = _LEVELS.get(level.lower(), logging.INFO)
        self._logger.log(level, f"[plugin:{self._plugin_name}] {message}")

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        """Get a logger for this plugin.

        Args:
            name: Optional sub-logger name (appended to plugin.{plugin_name})
        """
        if name:
            return logging.getLogger(f"plugin.{self._plugin_name}.{name}")
        return self._logger

    def get_host_version(self) -> str:
        return self._host_version

    def get_project_config(self) -> Optional[Mapping[str, Any]]:
        """Read-only snapshot of the project configuration, or None."""
        return self._project_config

