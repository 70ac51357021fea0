"""Command extension point - plugin-provided CLI commands."""

import inspect
import logging
from typing import Any, List, Mapping, Optional, Sequence

from harness.plugins.errors import ExtensionConflictError
from harness.plugins.models import CommandArgs, CommandExecutionResult, CommandRegistration, RegisteredCommand
from harness.plugins.registry import ExtensionRegistry

logger = logging.getLogger(__name__)


class CommandExtension:
    """Validates command registrations and runs command handlers with error isolation."""

    def __init__(self, registry: ExtensionRegistry):
        self.registry = registry

    def register_command(self, plugin_name: str, registration: CommandRegistration) -> None:
        name = registration.name
        if name in self.registry.core_commands:
            message = (
                f'Command "{name}" from plugin "{plugin_name}" conflicts with core command. '
                f"Core commands: {', '.join(sorted(self.registry.core_commands))}"
            )
            logger.warning(message)
            raise ExtensionConflictError("command", name, "core", plugin_name, message=message)

        existing = self.registry.get_command(name)
        if existing and existing.plugin_name != plugin_name:
            message = (
                f'Command "{name}" from plugin "{plugin_name}" conflicts with '
                f'command from plugin "{existing.plugin_name}"'
            )
            logger.warning(message)
            raise ExtensionConflictError("command", name, existing.plugin_name, plugin_name, message=message)

        self.registry.register_command(plugin_name, registration)

    def get_command(self, name: str) -> Optional[RegisteredCommand]:
        """Look up a plugin command (consulted when no host command matches)."""
        return self.registry.get_command(name)

    def get_all_commands(self) -> List[RegisteredCommand]:
        return self.registry.get_all_commands()

    async def execute_command(
        self,
        name: str,
        positional: Sequence[str] = (),
        options: Optional[Mapping[str, Any]] = None,
    ) -> CommandExecutionResult:
        """Run a plugin command, converting handler failures into a result.

        The handler receives CommandArgs whose context is the owning plugin's
        PluginContext.
        """
        command = self.registry.get_command(name)
        if command is None:
            return CommandExecutionResult(success=False, error=f'Command "{name}" not found')

        plugin_name = command.plugin_name
        plugin = self.registry.get_plugin(plugin_name)
        args = CommandArgs(
            positional=tuple(positional),
            options=dict(options or {}),
            context=plugin.context if plugin else None,
        )

        try:
            result = command.registration.handler(args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f'[plugin:{plugin_name}] Command "{name}" failed: {e}')
            return CommandExecutionResult(success=False, plugin_name=plugin_name, error=str(e))

        return CommandExecutionResult(success=True, plugin_name=plugin_name)
