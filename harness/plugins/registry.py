"""Extension registry - central store of loaded plugins and their extensions."""
from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, Iterable, List, Optional, TYPE_CHECKING

from harness.constants import BUILTIN_AGENTS, CORE_COMMANDS, CORE_SERVICES
from harness.plugins.errors import ExtensionConflictError, ServiceResolutionError
from harness.plugins.manifest import PluginManifest
from harness.plugins.models import (
    WILDCARD_PHASE,
    AgentRegistration,
    ExtensionKind,
    CommandRegistration,
    HookRegistration,
    HookTiming,
    PluginState,
    RegisteredAgent,
    RegisteredCommand,
    RegisteredHook,
    RegisteredTemplate,
    ServiceRegistration,
    TemplateCategory,
    TemplateRegistration,
)

if TYPE_CHECKING:
    from harness.plugins.context import PluginContext

logger = logging.getLogger(__name__)


@dataclass
class LoadedPlugin:
    """Runtime record of a plugin the loader has imported."""

    manifest: PluginManifest
    module: Optional[ModuleType] = field(default=None, repr=False)
    path: Optional[Path] = None
    state: PluginState = PluginState.LOADING
    activated_at: Optional[datetime] = None
    context: Optional[PluginContext] = field(default=None, repr=False)
    error: Optional[str] = None

    @property
    def name(self) -> str:
        return self.manifest.name

    @property
    def version(self) -> str:
        return self.manifest.version

    def to_dict(self) -> dict:
        """Serialize the plugin record for API responses."""
        return {
            "name": self.manifest.name,
            "version": self.manifest.version,
            "description": self.manifest.description,
            "author": self.manifest.author,
            "extension_points": list(self.manifest.extension_points),
            "dependencies": [dep.model_dump() for dep in self.manifest.dependencies],
            "path": str(self.path) if self.path else None,
            "state": self.state.value,
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
            "error": self.error,
        }


@dataclass
class _ServiceEntry:
    plugin_name: str
    registration: ServiceRegistration
    instance: Any = None
    instantiated: bool = False


class ExtensionRegistry:
    """Central registry for loaded plugins and every extension they register.

    One instance is created at host startup and injected into the loader,
    the hook runner, the extension points and every PluginContext.
    """

    def __init__(
        self,
        core_commands: Iterable[str] = CORE_COMMANDS,
        core_agents: Iterable[str] = BUILTIN_AGENTS,
        core_services: Iterable[str] = CORE_SERVICES,
    ):
        self.core_commands = frozenset(core_commands)
        self.core_agents = frozenset(core_agents)
        self.core_services = frozenset(core_services)

        self._plugins: Dict[str, LoadedPlugin] = {}
        self._commands: Dict[str, RegisteredCommand] = {}
        self._agents: Dict[str, RegisteredAgent] = {}
        self._hooks: List[RegisteredHook] = []
        self._services: Dict[str, _ServiceEntry] = {}
        self._templates: Dict[str, RegisteredTemplate] = {}
        self._hook_sequence = 0
        self._resolution_chain: List[str] = []

    # ========================================================================
    # Plugins
    # ========================================================================

    def register_plugin(self, plugin: LoadedPlugin) -> None:
        """Register a plugin record. Names are unique across loaded plugins."""
        existing = self._plugins.get(plugin.name)
        if existing is not None and existing is not plugin:
            raise ExtensionConflictError(
                "plugin", plugin.name, plugin.name,
                message=f"Plugin '{plugin.name}' is already registered",
            )
        self._plugins[plugin.name] = plugin
        logger.debug(f"Registered plugin record: {plugin.name}@{plugin.version}")

    def mark_activated(self, name: str) -> None:
        plugin = self._plugins.get(name)
        if plugin:
            plugin.state = PluginState.ACTIVATED
            plugin.activated_at = datetime.now()

    def get_plugin(self, name: str) -> Optional[LoadedPlugin]:
        return self._plugins.get(name)

    def get_all_plugins(self) -> List[LoadedPlugin]:
        return list(self._plugins.values())

    def has_plugin(self, name: str) -> bool:
        return name in self._plugins

    async def unregister_plugin(self, name: str) -> None:
        """Remove every registration owned by a plugin and dispose its services."""
        await self.dispose_plugin_services(name)

        self._commands = {k: v for k, v in self._commands.items() if v.plugin_name != name}
        self._agents = {k: v for k, v in self._agents.items() if v.plugin_name != name}
        self._hooks = [h for h in self._hooks if h.plugin_name != name]
        self._templates = {k: v for k, v in self._templates.items() if v.plugin_name != name}
        removed = self._plugins.pop(name, None)

        if removed is not None:
            logger.info(f"Unregistered plugin: {name}")

    async def dispose_plugin_services(self, name: str) -> int:
        """Drop the services a plugin owns, disposing the instantiated ones.

        Each instantiated service's dispose() is called once; a failing
        dispose is logged and does not stop the others.

        Returns:
            Number of instantiated services that were released
        """
        to_dispose: List[_ServiceEntry] = []
        for service_name in [n for n, e in self._services.items() if e.plugin_name == name]:
            entry = self._services.pop(service_name)
            if entry.instantiated:
                to_dispose.append(entry)

        for entry in to_dispose:
            entry.instance = None
            entry.instantiated = False
            dispose = entry.registration.dispose
            if dispose is None:
                continue
            try:
                result = dispose()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[plugin:{name}] Failed to dispose service '{entry.registration.name}': {e}")
        return len(to_dispose)

    # ========================================================================
    # Commands
    # ========================================================================

    def register_command(self, plugin_name: str, registration: CommandRegistration) -> None:
        name = registration.name
        if name in self.core_commands:
            raise ExtensionConflictError("command", name, "core", plugin_name)
        existing = self._commands.get(name)
        if existing and existing.plugin_name != plugin_name:
            raise ExtensionConflictError("command", name, existing.plugin_name, plugin_name)
        self._commands[name] = RegisteredCommand(plugin_name, registration)

    def get_command(self, name: str) -> Optional[RegisteredCommand]:
        return self._commands.get(name)

    def get_all_commands(self) -> List[RegisteredCommand]:
        return list(self._commands.values())

    # ========================================================================
    # Agents
    # ========================================================================

    def register_agent(self, plugin_name: str, registration: AgentRegistration) -> None:
        name = registration.name
        if name in self.core_agents:
            raise ExtensionConflictError("agent", name, "core", plugin_name)
        existing = self._agents.get(name)
        if existing and existing.plugin_name != plugin_name:
            raise ExtensionConflictError("agent", name, existing.plugin_name, plugin_name)
        self._agents[name] = RegisteredAgent(plugin_name, registration)

    def get_agent(self, name: str) -> Optional[RegisteredAgent]:
        return self._agents.get(name)

    def get_all_agents(self) -> List[RegisteredAgent]:
        return list(self._agents.values())

    # ========================================================================
    # Hooks
    # ========================================================================

    def register_hook(self, plugin_name: str, registration: HookRegistration) -> RegisteredHook:
        """Append a hook. Hooks have no name, so they never conflict."""
        hook = RegisteredHook(plugin_name, registration, self._hook_sequence)
        self._hook_sequence += 1
        self._hooks.append(hook)
        return hook

    def get_hooks(self, phase: str, timing: HookTiming) -> List[RegisteredHook]:
        """Hooks for a phase (plus wildcard hooks) with matching timing.

        A phase of "*" returns every hook with that timing. Results are
        sorted by priority tier, then registration sequence.
        """
        timing = HookTiming(timing)
        phase = getattr(phase, "value", phase)
        matching = [
            h for h in self._hooks
            if h.registration.timing == timing
            and (phase == WILDCARD_PHASE or h.registration.phase in (phase, WILDCARD_PHASE))
        ]
        return sorted(matching, key=lambda h: (h.registration.priority.order, h.sequence))

    def get_all_hooks(self) -> List[RegisteredHook]:
        return sorted(self._hooks, key=lambda h: h.sequence)

    # ========================================================================
    # Services
    # ========================================================================

    def register_service(self, plugin_name: str, registration: ServiceRegistration) -> None:
        """Register a lazily-instantiated service. The factory is not called here."""
        name = registration.name
        if name in self.core_services:
            raise ExtensionConflictError("service", name, "core", plugin_name)
        existing = self._services.get(name)
        if existing and existing.plugin_name != plugin_name:
            raise ExtensionConflictError("service", name, existing.plugin_name, plugin_name)
        self._services[name] = _ServiceEntry(plugin_name, registration)

    def has_service(self, name: str) -> bool:
        return name in self._services

    def get_service_owner(self, name: str) -> Optional[str]:
        entry = self._services.get(name)
        return entry.plugin_name if entry else None

    def get_service_names(self) -> List[str]:
        return list(self._services.keys())

    def is_service_instantiated(self, name: str) -> bool:
        entry = self._services.get(name)
        return bool(entry and entry.instantiated)

    def resolve_service(self, name: str) -> Any:
        """Resolve a service, instantiating it and its dependencies on first use.

        Raises:
            ServiceResolutionError: NOT_FOUND, CIRCULAR_DEPENDENCY or FACTORY_ERROR
        """
        return self._resolve(name)

    def _resolve(self, name: str) -> Any:
        # Shared across re-entrant calls so a factory resolving services itself is still guarded
        chain = self._resolution_chain
        if name in chain:
            cycle = chain + [name]
            raise ServiceResolutionError(
                ServiceResolutionError.CIRCULAR_DEPENDENCY,
                name,
                f"Circular dependency detected: {' -> '.join(cycle)}",
                plugin_name=self.get_service_owner(name),
                chain=cycle,
            )

        entry = self._services.get(name)
        if entry is None:
            if chain:
                message = f'Dependency "{name}" not found for service "{chain[-1]}"'
            else:
                message = f'Service "{name}" not found'
            raise ServiceResolutionError(ServiceResolutionError.NOT_FOUND, name, message, chain=chain + [name])

        if entry.instantiated:
            return entry.instance

        chain.append(name)
        try:
            resolved = {dep: self._resolve(dep) for dep in entry.registration.dependencies}
            try:
                instance = entry.registration.factory(resolved)
            except ServiceResolutionError:
                raise
            except Exception as e:
                logger.error(f"[plugin:{entry.plugin_name}] Service factory '{name}' failed: {e}")
                raise ServiceResolutionError(
                    ServiceResolutionError.FACTORY_ERROR,
                    name,
                    f'Factory for service "{name}" failed: {e}',
                    plugin_name=entry.plugin_name,
                    chain=list(chain),
                ) from e
        finally:
            chain.pop()

        entry.instance = instance
        entry.instantiated = True
        logger.debug(f"Instantiated service '{name}' from plugin '{entry.plugin_name}'")
        return instance

    # ========================================================================
    # Templates
    # ========================================================================

    def register_template(self, plugin_name: str, registration: TemplateRegistration) -> RegisteredTemplate:
        """Store a template under ``plugin_name/name``."""
        namespaced = f"{plugin_name}/{registration.name}"
        template = RegisteredTemplate(plugin_name, namespaced, registration)
        self._templates[namespaced] = template
        return template

    def get_templates(self, category: TemplateCategory) -> List[RegisteredTemplate]:
        category = TemplateCategory(category)
        return [t for t in self._templates.values() if t.registration.category == category]

    def get_template(self, namespaced_name: str) -> Optional[RegisteredTemplate]:
        return self._templates.get(namespaced_name)

    def get_all_templates(self) -> List[RegisteredTemplate]:
        return list(self._templates.values())

    # ========================================================================
    # Summaries
    # ========================================================================

    def extensions_for(self, plugin_name: str) -> Dict[str, List[str]]:
        """Names of everything a plugin has registered, by kind."""
        return {
            ExtensionKind.COMMANDS.value: [c.name for c in self._commands.values() if c.plugin_name == plugin_name],
            ExtensionKind.AGENTS.value: [a.name for a in self._agents.values() if a.plugin_name == plugin_name],
            ExtensionKind.HOOKS.value: [
                f"{h.registration.timing.value}:{h.registration.phase}"
                for h in self._hooks if h.plugin_name == plugin_name
            ],
            ExtensionKind.SERVICES.value: [n for n, e in self._services.items() if e.plugin_name == plugin_name],
            ExtensionKind.TEMPLATES.value: [n for n, t in self._templates.items() if t.plugin_name == plugin_name],
        }

    def count(self) -> int:
        return len(self._plugins)
