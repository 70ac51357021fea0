"""Agent extension point - plugin-provided AI agent adapters."""

import inspect
import logging
from typing import Any, List, Mapping, Optional, Union

from harness.plugins.errors import ExtensionConflictError
from harness.plugins.models import (
    AgentCapability,
    AgentInvokeOptions,
    AgentRegistration,
    AgentResult,
    RegisteredAgent,
)
from harness.plugins.registry import ExtensionRegistry

logger = logging.getLogger(__name__)


def _to_result(raw: Any) -> AgentResult:
    if isinstance(raw, AgentResult):
        return raw
    if isinstance(raw, Mapping):
        return AgentResult(
            success=bool(raw.get("success", False)),
            output=str(raw.get("output") or ""),
            error=raw.get("error"),
        )
    return AgentResult(success=False, error=f"Adapter returned unexpected result: {raw!r}")


class AgentExtension:
    """Validates agent registrations and invokes adapters with error isolation."""

    def __init__(self, registry: ExtensionRegistry):
        self.registry = registry

    def register_agent(self, plugin_name: str, registration: AgentRegistration) -> None:
        name = registration.name
        # Built-in names are checked before the registry's generic conflict check
        if name in self.registry.core_agents:
            message = (
                f'Agent "{name}" from plugin "{plugin_name}" conflicts with built-in agent. '
                f"Built-in agents: {', '.join(sorted(self.registry.core_agents))}"
            )
            logger.warning(message)
            raise ExtensionConflictError("agent", name, "core", plugin_name, message=message)

        for method in ("invoke", "get_capabilities", "configure"):
            if not callable(getattr(registration.adapter, method, None)):
                raise TypeError(f'Agent adapter "{name}" must implement {method}()')

        existing = self.registry.get_agent(name)
        if existing and existing.plugin_name != plugin_name:
            message = (
                f'Agent "{name}" from plugin "{plugin_name}" conflicts with '
                f'agent from plugin "{existing.plugin_name}"'
            )
            logger.warning(message)
            raise ExtensionConflictError("agent", name, existing.plugin_name, plugin_name, message=message)

        self.registry.register_agent(plugin_name, registration)

    def get_agent(self, name: str) -> Optional[RegisteredAgent]:
        """Look up a plugin agent (consulted when no built-in agent matches)."""
        return self.registry.get_agent(name)

    def get_all_agents(self) -> List[RegisteredAgent]:
        return self.registry.get_all_agents()

    def get_agent_capabilities(self, name: str) -> List[AgentCapability]:
        """Capabilities an agent declares; unknown agents or failing adapters yield []."""
        agent = self.registry.get_agent(name)
        if agent is None:
            return []
        try:
            capabilities = agent.registration.adapter.get_capabilities()
        except Exception as e:
            logger.error(f"[plugin:{agent.plugin_name}] get_capabilities() failed for agent '{name}': {e}")
            return []

        result = []
        for capability in capabilities or []:
            try:
                result.append(AgentCapability(capability))
            except ValueError:
                logger.warning(f"[plugin:{agent.plugin_name}] Agent '{name}' declares unknown capability '{capability}'")
        return result

    async def invoke_agent(self, name: str, options: Union[AgentInvokeOptions, Mapping[str, Any]]) -> AgentResult:
        """Invoke a plugin agent.

        A raised exception and a ``success=False`` result are both returned as
        a failed AgentResult annotated with the owning plugin.
        """
        agent = self.registry.get_agent(name)
        if agent is None:
            return AgentResult(success=False, error=f'Agent "{name}" not found')

        plugin_name = agent.plugin_name
        if isinstance(options, Mapping):
            try:
                options = AgentInvokeOptions(**options)
            except TypeError as e:
                logger.error(f'[plugin:{plugin_name}] Invalid options for agent "{name}": {e}')
                return AgentResult(success=False, error=f"Invalid agent options: {e}", plugin_name=plugin_name)

        try:
            raw = agent.registration.adapter.invoke(options)
            if inspect.isawaitable(raw):
                raw = await raw
            result = _to_result(raw)
        except Exception as e:
            logger.error(f'[plugin:{plugin_name}] Agent "{name}" invocation failed: {e}')
            return AgentResult(success=False, error=str(e), plugin_name=plugin_name)

        if not result.success:
            logger.warning(f'[plugin:{plugin_name}] Agent "{name}" reported failure: {result.error}')
        result.plugin_name = plugin_name
        return result
