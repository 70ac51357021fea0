"""Typed extension points over the ExtensionRegistry."""

from dataclasses import dataclass

from harness.plugins.extensions.agents import AgentExtension
from harness.plugins.extensions.commands import CommandExtension
from harness.plugins.extensions.hooks import HookRunner
from harness.plugins.extensions.services import ServiceExtension
from harness.plugins.extensions.templates import TemplateExtension
from harness.plugins.registry import ExtensionRegistry


@dataclass
class ExtensionPoints:
    """The five extension points bound to one registry."""

    registry: ExtensionRegistry
    commands: CommandExtension
    agents: AgentExtension
    hooks: HookRunner
    services: ServiceExtension
    templates: TemplateExtension

    @classmethod
    def create(cls, registry: ExtensionRegistry, hook_timeout: float = None) -> "ExtensionPoints":
        hooks = HookRunner(registry) if hook_timeout is None else HookRunner(registry, timeout=hook_timeout)
        return cls(
            registry=registry,
            commands=CommandExtension(registry),
            agents=AgentExtension(registry),
            hooks=hooks,
            services=ServiceExtension(registry),
            templates=TemplateExtension(registry),
        )


__all__ = [
    "ExtensionPoints",
    "AgentExtension",
    "CommandExtension",
    "HookRunner",
    "ServiceExtension",
    "TemplateExtension",
]
