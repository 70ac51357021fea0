"""Dependency injection container for services."""

import logging
import os
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

# ============================================================================
# Global service instances (Singleton pattern, but exposed via functions for easier testing/mocking)
# ============================================================================

_plugin_manager_instance = None


def _extra_plugin_paths() -> Optional[List[Path]]:
    """Parse extra plugin paths from the PLUGIN_PATHS environment variable."""
    plugin_paths_env = os.getenv("PLUGIN_PATHS", "")
    if not plugin_paths_env:
        return None
    return [Path(p.strip()) for p in plugin_paths_env.split(":") if p.strip()]


def get_plugin_manager():
    """Get plugin manager (singleton)."""
    global _plugin_manager_instance
    if _plugin_manager_instance is None:
        from harness.plugins.manager import PluginManager
        from harness.constants import BUNDLED_PLUGINS_DIR, INSTALLED_PLUGINS_DIR, PLUGIN_CONFIG_FILE

        _plugin_manager_instance = PluginManager(
            bundled_dir=BUNDLED_PLUGINS_DIR,
            installed_dir=INSTALLED_PLUGINS_DIR,
            config_file=PLUGIN_CONFIG_FILE,
            extra_paths=_extra_plugin_paths(),
        )
        logger.info("Created PluginManager instance")
    return _plugin_manager_instance


def set_plugin_manager(manager) -> None:
    """Install a specific PluginManager (tests and embedding hosts)."""
    global _plugin_manager_instance
    _plugin_manager_instance = manager


# Test utility function (for unit testing - resets all singletons)
def reset_services():
    """Reset all service instances (only for testing)."""
    global _plugin_manager_instance

    _plugin_manager_instance = None
    logger.info("Reset all service instances")
