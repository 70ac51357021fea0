"""Service extension point - lazily instantiated services shared between plugins."""

import logging
from typing import Any

from harness.plugins.errors import ExtensionConflictError, ServiceResolutionError
from harness.plugins.models import ServiceRegistration, ServiceResolution
from harness.plugins.registry import ExtensionRegistry

logger = logging.getLogger(__name__)


class ServiceExtension:
    """Validates service registrations and resolves services."""

    def __init__(self, registry: ExtensionRegistry):
        self.registry = registry

    def register_service(self, plugin_name: str, registration: ServiceRegistration) -> None:
        name = registration.name
        if name in self.registry.core_services:
            message = (
                f'Service "{name}" from plugin "{plugin_name}" conflicts with core service. '
                f"Core services: {', '.join(sorted(self.registry.core_services))}"
            )
            logger.warning(message)
            raise ExtensionConflictError("service", name, "core", plugin_name, message=message)

        owner = self.registry.get_service_owner(name)
        if owner and owner != plugin_name:
            message = f'Service "{name}" from plugin "{plugin_name}" conflicts with service from plugin "{owner}"'
            logger.warning(message)
            raise ExtensionConflictError("service", name, owner, plugin_name, message=message)

        self.registry.register_service(plugin_name, registration)

    def resolve_service(self, name: str) -> Any:
        """Resolve a service instance.

        Raises:
            ServiceResolutionError: NOT_FOUND, CIRCULAR_DEPENDENCY or FACTORY_ERROR
        """
        return self.registry.resolve_service(name)

    def try_resolve_service(self, name: str) -> ServiceResolution:
        """Resolve a service without raising."""
        try:
            instance = self.registry.resolve_service(name)
        except ServiceResolutionError as e:
            return ServiceResolution(success=False, error=str(e), code=e.code, plugin_name=e.plugin_name)
        return ServiceResolution(success=True, instance=instance, plugin_name=self.registry.get_service_owner(name))

    def has_service(self, name: str) -> bool:
        return self.registry.has_service(name)

    async def dispose_plugin_services(self, plugin_name: str) -> int:
        """Release every service a plugin owns. Used when the plugin is unloaded."""
        return await self.registry.dispose_plugin_services(plugin_name)
