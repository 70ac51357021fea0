"""Template extension point - stack, spec and steering templates contributed by plugins."""

import logging
from pathlib import Path
from typing import List, Optional

from harness.plugins.models import (
    RegisteredTemplate,
    TemplateCategory,
    TemplateRegistration,
    TemplateSubType,
)
from harness.plugins.registry import ExtensionRegistry

logger = logging.getLogger(__name__)


class TemplateExtension:
    """Registers templates under ``plugin/name`` and answers template queries."""

    def __init__(self, registry: ExtensionRegistry):
        self.registry = registry

    def register_template(self, plugin_name: str, registration: TemplateRegistration) -> None:
        if "/" in registration.name:
            raise ValueError(f"Template name '{registration.name}' must not contain '/'")

        plugin = self.registry.get_plugin(plugin_name)
        source = Path(registration.source_path)
        if plugin is not None and plugin.path is not None and not source.is_absolute():
            registration.source_path = str(plugin.path / source)
        if not Path(registration.source_path).exists():
            logger.warning(f"[plugin:{plugin_name}] Template source not found: {registration.source_path}")

        template = self.registry.register_template(plugin_name, registration)
        logger.debug(f"Registered {registration.category.value} template '{template.namespaced_name}'")

    def get_templates_by_category(self, category: TemplateCategory) -> List[RegisteredTemplate]:
        return self.registry.get_templates(category)

    def get_template_by_name(self, namespaced_name: str) -> Optional[RegisteredTemplate]:
        """Look up a template by its ``plugin/name`` form."""
        return self.registry.get_template(namespaced_name)

    def get_all_templates(self) -> List[RegisteredTemplate]:
        return self.registry.get_all_templates()

    def get_spec_templates_by_sub_type(self, sub_type: TemplateSubType) -> List[RegisteredTemplate]:
        sub_type = TemplateSubType(sub_type)
        return [
            t for t in self.registry.get_templates(TemplateCategory.SPEC)
            if t.registration.sub_type == sub_type
        ]
