"""Plugin runtime for agent-harness.

Imports are lazy so lightweight pieces (manifest validation, version ranges,
the config file service) can be used without pulling in the loader, watchdog
or FastAPI-facing code.
"""

__all__ = [
    "PluginManifest",
    "ManifestValidator",
    "ExtensionRegistry",
    "LoadedPlugin",
    "ExtensionPoints",
    "HookRunner",
    "PluginContext",
    "PluginDiscovery",
    "PluginLoader",
    "PluginDevWatcher",
    "PluginManager",
    "PluginConfigService",
    "PluginError",
    "ExtensionConflictError",
    "ServiceResolutionError",
    "PluginContextRevokedError",
]


def __getattr__(name):
    if name in ("PluginManifest", "ManifestValidator"):
        from harness.plugins import manifest
        return getattr(manifest, name)
    if name in ("ExtensionRegistry", "LoadedPlugin"):
        from harness.plugins import registry
        return getattr(registry, name)
    if name in ("ExtensionPoints", "HookRunner"):
        from harness.plugins import extensions
        return getattr(extensions, name)
    if name == "PluginContext":
        from harness.plugins.context import PluginContext
        return PluginContext
    if name == "PluginDiscovery":
        from harness.plugins.discovery import PluginDiscovery
        return PluginDiscovery
    if name == "PluginLoader":
        from harness.plugins.loader import PluginLoader
        return PluginLoader
    if name == "PluginDevWatcher":
        from harness.plugins.dev_watcher import PluginDevWatcher
        return PluginDevWatcher
    if name == "PluginManager":
        from harness.plugins.manager import PluginManager
        return PluginManager
    if name == "PluginConfigService":
        from harness.plugins.config import PluginConfigService
        return PluginConfigService
    if name in ("PluginError", "ExtensionConflictError", "ServiceResolutionError", "PluginContextRevokedError"):
        from harness.plugins import errors
        return getattr(errors, name)
    raise AttributeError(f"module 'harness.plugins' has no attribute {name!r}")
