"""Plugin manager - top-level orchestrator for the plugin system."""

import asyncio
import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from harness.constants import (
    HOST_VERSION,
    MANIFEST_FILE,
    PLUGIN_HOOK_TIMEOUT,
    PLUGINS_ENABLED,
    PROJECT_CONFIG_FILE,
)
from harness.plugins.config import (
    PluginConfigService,
    load_project_config,
    merge_with_defaults,
    validate_config_value,
)
from harness.plugins.dev_watcher import PluginDevWatcher
from harness.plugins.discovery import DiscoveredPlugin, PluginDiscovery
from harness.plugins.errors import PluginError
from harness.plugins.extensions import ExtensionPoints
from harness.plugins.loader import PluginLoader
from harness.plugins.manifest import ManifestValidator, PluginManifest
from harness.plugins.models import PluginLoadConfig, PluginLoadResult, SkippedPlugin
from harness.plugins.registry import ExtensionRegistry

logger = logging.getLogger(__name__)


@dataclass
class PluginValidationReport:
    """Outcome of validate_plugin() for a plugin directory."""

    path: Path
    valid: bool
    manifest: Optional[PluginManifest] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "valid": self.valid,
            "name": self.manifest.name if self.manifest else None,
            "version": self.manifest.version if self.manifest else None,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


SCAFFOLD_ENTRY_POINT = '''"""{name} - {description}"""

from harness.plugins.models import CommandRegistration, HookRegistration, HookResult


async def hello(args):
    """Print a greeting. Usage: {name}-hello [name]"""
    who = args.positional[0] if args.positional else "world"
    args.context.log("info", f"Hello, {{who}}!")


def before_implementation(context):
    return HookResult.proceed()


def activate(context):
    context.register_command(CommandRegistration(
        name="{name}-hello",
        handler=hello,
        description="Say hello from {name}",
    ))
    context.register_hook(HookRegistration(phase="implementation", handler=before_implementation))
    context.log("info", "activated")


def deactivate():
    pass
'''


class PluginManager:
    """Top-level plugin system orchestrator.

    Owns the registry, the extension points and the loader, and keeps the
    persisted enabled set and per-plugin config in sync with what is loaded.
    """

    def __init__(
        self,
        bundled_dir: Path,
        installed_dir: Path,
        config_file: Path,
        extra_paths: Optional[List[Path]] = None,
        host_version: str = HOST_VERSION,
        project_config_file: Optional[Path] = PROJECT_CONFIG_FILE,
        hook_timeout: float = PLUGIN_HOOK_TIMEOUT,
        plugins_enabled: bool = PLUGINS_ENABLED,
        scan_entry_points: bool = True,
    ):
        self.bundled_dir = Path(bundled_dir)
        self.installed_dir = Path(installed_dir)
        self.host_version = host_version
        self.project_config_file = project_config_file
        self.plugins_enabled = plugins_enabled
        self.scan_entry_points = scan_entry_points

        self.registry = ExtensionRegistry()
        self.extensions = ExtensionPoints.create(self.registry, hook_timeout=hook_timeout)
        self.loader = PluginLoader(self.extensions)
        self.validator = ManifestValidator()
        self.config_service = PluginConfigService(Path(config_file))

        # Build search paths: (path, source_label)
        self.search_paths: List[Tuple[Path, str]] = [
            (self.bundled_dir, "bundled"),
            (self.installed_dir, "installed"),
        ]
        if extra_paths:
            for p in extra_paths:
                self.search_paths.append((Path(p), "external"))

        self._watchers: Dict[str, PluginDevWatcher] = {}
        self.last_result: Optional[PluginLoadResult] = None

    # ========================================================================
    # Loading
    # ========================================================================

    def build_load_config(self, enabled_plugins: Optional[frozenset] = None) -> PluginLoadConfig:
        """Assemble loader input from the config file and environment.

        Args:
            enabled_plugins: Restrict loading to these names instead of the configured set
        """
        if enabled_plugins is None:
            enabled_plugins = self.config_service.get_enabled_set()
        project_config = None
        if self.project_config_file is not None:
            project_config = load_project_config(Path(self.project_config_file))
        return PluginLoadConfig(
            plugin_dirs=list(self.search_paths),
            host_version=self.host_version,
            enabled_plugins=enabled_plugins,
            disabled_plugins=frozenset(self.config_service.get_disabled_list()),
            scan_entry_points=self.scan_entry_points,
            plugin_configs=self.config_service.get_all_plugin_configs(),
            project_config=project_config,
        )

    async def load_all(self) -> PluginLoadResult:
        """Discover and activate every enabled plugin."""
        if not self.plugins_enabled:
            logger.info("Plugins are disabled globally (PLUGINS_ENABLED=false)")
            self.last_result = PluginLoadResult(plugins_disabled_globally=True)
            return self.last_result

        result = await self.loader.load_plugins(self.build_load_config())
        self.last_result = result
        logger.info(
            f"Plugin system initialized, "
            f"{len(self.registry.get_all_plugins())} plugin(s) active"
        )
        return result

    async def unload_all(self) -> None:
        """Stop dev watchers and unload plugins, dependents first."""
        self.stop_dev_mode()
        plugins = sorted(
            self.registry.get_all_plugins(),
            key=lambda p: p.activated_at.timestamp() if p.activated_at else 0.0,
            reverse=True,
        )
        for plugin in plugins:
            await self.loader.unload_plugin(plugin.name)
        logger.info("All plugins unloaded")

    # ========================================================================
    # Enable / disable / reload
    # ========================================================================

    async def enable_plugin(self, name: str) -> Optional[PluginLoadResult]:
        """Enable a plugin and load it now.

        Returns:
            The load result, or None if no plugin with that name exists
        """
        if not self.registry.has_plugin(name) and self._find(name) is None:
            logger.error(f"Plugin not found: {name}")
            return None

        self.config_service.enable(name)
        if self.registry.has_plugin(name):
            return PluginLoadResult(skipped=[SkippedPlugin(name=name, reason="Plugin is already loaded")])
        if not self.plugins_enabled:
            return PluginLoadResult(plugins_disabled_globally=True)

        return await self.loader.load_plugins(self.build_load_config(enabled_plugins=frozenset({name})))

    async def disable_plugin(self, name: str) -> Optional[List[str]]:
        """Disable a plugin and unload it if it is active.

        Active plugins that depend on it keep running but are reported and
        will be skipped on the next load.

        Returns:
            Names of active dependents, or None if no plugin with that name exists
        """
        if not self.registry.has_plugin(name) and self._find(name) is None:
            logger.error(f"Plugin not found: {name}")
            return None

        dependents = self.get_dependents(name)
        if dependents:
            logger.warning(
                f"Disabling plugin '{name}' which active plugins depend on: {', '.join(dependents)}"
            )

        self.config_service.disable(name)
        self.stop_dev_mode(name)
        await self.loader.unload_plugin(name)
        return dependents

    async def reload_plugin(self, name: str) -> PluginLoadResult:
        return await self.loader.reload_plugin(name)

    def get_dependents(self, name: str) -> List[str]:
        """Names of active plugins that declare a dependency on ``name``."""
        return sorted(
            p.name for p in self.registry.get_all_plugins()
            if name in p.manifest.dependency_names()
        )

    # ========================================================================
    # Dev mode
    # ========================================================================

    def start_dev_mode(
        self,
        name: str,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        on_reload: Optional[Callable[[PluginLoadResult], None]] = None,
    ) -> PluginDevWatcher:
        """Watch a loaded plugin's directory and hot-reload it on change.

        Must be called from the event loop that owns the registry unless
        ``loop`` is given.

        Raises:
            PluginError: If the plugin is not loaded
        """
        if name in self._watchers:
            return self._watchers[name]
        plugin_dir = self.loader.get_plugin_dir(name)
        if plugin_dir is None or not self.registry.has_plugin(name):
            raise PluginError(f"Plugin '{name}' is not loaded", name)

        watcher = PluginDevWatcher(
            self.loader,
            name,
            plugin_dir,
            loop or asyncio.get_running_loop(),
            on_reload=on_reload,
        )
        watcher.start()
        self._watchers[name] = watcher
        return watcher

    def stop_dev_mode(self, name: Optional[str] = None) -> None:
        names = [name] if name else list(self._watchers)
        for n in names:
            watcher = self._watchers.pop(n, None)
            if watcher:
                watcher.stop()

    # ========================================================================
    # Install / uninstall
    # ========================================================================

    def install_plugin(self, source_path: Path) -> PluginManifest:
        """Validate a plugin directory and copy it into the installed directory.

        The plugin is loaded on the next load_all() or enable_plugin().

        Raises:
            PluginError: If the plugin is invalid or its name is taken
        """
        source_path = Path(source_path)
        report = self.validate_plugin(source_path)
        if not report.valid:
            raise PluginError(f"Invalid plugin at {source_path}: {'; '.join(report.errors)}")

        manifest = report.manifest
        existing = self._find(manifest.name)
        if existing is not None or self.registry.has_plugin(manifest.name):
            where = existing.path if existing is not None else "registry"
            raise PluginError(f"Plugin '{manifest.name}' already exists ({where})", manifest.name)

        dest = self.installed_dir / manifest.name
        if dest.exists():
            raise PluginError(f"Plugin directory already exists: {dest}", manifest.name)

        self.installed_dir.mkdir(parents=True, exist_ok=True)
        shutil.copytree(source_path, dest, ignore=shutil.ignore_patterns("__pycache__", "*.pyc"))
        logger.info(f"Installed plugin '{manifest.name}' to {dest}")
        return manifest

    async def uninstall_plugin(self, name: str) -> bool:
        """Unload an installed plugin, delete its directory and forget its state.

        Returns:
            False if no installed plugin has that name

        Raises:
            PluginError: If the plugin is not under the installed directory
        """
        plugin = self._find(name)
        if plugin is None:
            logger.error(f"Plugin not found: {name}")
            return False
        if plugin.source != "installed":
            raise PluginError(f"Plugin '{name}' is {plugin.source}, only installed plugins can be uninstalled", name)

        self.stop_dev_mode(name)
        await self.loader.unload_plugin(name)
        shutil.rmtree(plugin.path)
        self.config_service.remove_plugin(name)
        logger.info(f"Uninstalled plugin '{name}' from {plugin.path}")
        return True

    # ========================================================================
    # Queries
    # ========================================================================

    def list_plugins(self) -> List[dict]:
        """List discovered plugins with their load state."""
        plugins = [self._describe(p) for p in self._discover()]
        known = {p["name"] for p in plugins}
        # Plugins whose directory vanished after they were loaded
        for loaded in self.registry.get_all_plugins():
            if loaded.name not in known:
                info = loaded.to_dict()
                info.update(source="unknown", enabled=self.config_service.is_enabled(loaded.name))
                plugins.append(info)
        return plugins

    def get_plugin_info(self, name: str) -> Optional[dict]:
        """Get plugin information as dict, including config and registered extensions."""
        plugin = self._find(name)
        loaded = self.registry.get_plugin(name)
        if plugin is None and loaded is None:
            return None

        info = self._describe(plugin) if plugin is not None else loaded.to_dict()
        manifest = loaded.manifest if loaded is not None else self._manifest_of(plugin)
        if manifest is not None:
            info["config"] = merge_with_defaults(manifest, self.config_service.get_plugin_config(name))
            info["config_schema"] = {
                key: schema_field.model_dump(exclude_unset=True)
                for key, schema_field in (manifest.config_schema or {}).items()
            }
        else:
            info["config"] = self.config_service.get_plugin_config(name)
            info["config_schema"] = {}
        info["extensions"] = self.registry.extensions_for(name)
        info["dependents"] = self.get_dependents(name)
        info["reload_count"] = self.loader.get_reload_count(name)
        return info

    def get_config(self, name: str, key: Optional[str] = None) -> Any:
        """Effective configuration (schema defaults plus overrides), or one key of it.

        Raises:
            PluginError: If the plugin does not exist
            KeyError: If ``key`` is neither declared nor set
        """
        manifest = self._require_manifest(name)
        config = merge_with_defaults(manifest, self.config_service.get_plugin_config(name))
        if key is None:
            return config
        return config[key]

    def set_config(self, name: str, key: str, value: Any) -> None:
        """Persist one config value; it reaches the plugin on its next activation.

        Raises:
            PluginError: If the plugin does not exist
            ValueError: If the value does not match the schema type
        """
        manifest = self._require_manifest(name)
        validate_config_value(manifest, key, value)
        self.config_service.set_plugin_value(name, key, value)

    def update_plugin_config(self, name: str, config: Dict[str, Any]) -> None:
        """Replace all overrides for a plugin after type-checking each value."""
        manifest = self._require_manifest(name)
        for key, value in config.items():
            validate_config_value(manifest, key, value)
        self.config_service.update_plugin_config(name, config)

    def get_extensions_summary(self) -> dict:
        """Everything currently registered, grouped by extension point."""
        return {
            "commands": [c.to_dict() for c in self.registry.get_all_commands()],
            "agents": [a.to_dict() for a in self.registry.get_all_agents()],
            "hooks": [h.to_dict() for h in self.registry.get_all_hooks()],
            "services": [
                {"name": n, "plugin_name": self.registry.get_service_owner(n),
                 "instantiated": self.registry.is_service_instantiated(n)}
                for n in self.registry.get_service_names()
            ],
            "templates": [t.to_dict() for t in self.registry.get_all_templates()],
        }

    # ========================================================================
    # Authoring
    # ========================================================================

    def validate_plugin(self, plugin_path: Path) -> PluginValidationReport:
        """Check a plugin directory: manifest schema, host compatibility and entry point contract."""
        plugin_path = Path(plugin_path)
        report = PluginValidationReport(path=plugin_path, valid=False)

        if not plugin_path.is_dir():
            report.errors.append(f"Not a directory: {plugin_path}")
            return report

        validation = self.validator.validate_file(plugin_path / MANIFEST_FILE)
        if not validation.valid:
            report.errors.extend(f"{e.code} {e.field}: {e.message}" for e in validation.errors)
            return report

        manifest = validation.manifest
        report.manifest = manifest

        compat = self.validator.check_compatibility(manifest, self.host_version)
        if not compat.compatible:
            report.warnings.append(compat.message)

        for dep in manifest.dependencies:
            if self._find(dep.name) is None and not self.registry.has_plugin(dep.name):
                report.warnings.append(f"Dependency '{dep.name}' is not installed")

        report.errors.extend(self.loader.check_entry_point(manifest.name, plugin_path, manifest.entry_point))
        report.valid = not report.errors
        return report

    def scaffold_plugin(self, name: str, target_dir: Path, description: str = "", author: str = "") -> Path:
        """Write a minimal plugin (plugin.json + plugin.py) into target_dir/name.

        Raises:
            PluginError: If the name is not a valid plugin name or the directory exists
        """
        manifest = {
            "name": name,
            "version": "0.1.0",
            "description": description or f"{name} plugin",
            "author": author or "unknown",
            "entry_point": "plugin.py",
            "host_version": f">={self.host_version.split('-')[0]}",
            "extension_points": ["commands", "hooks"],
            "dependencies": [],
            "config_schema": {},
        }
        validation = self.validator.validate(manifest)
        if not validation.valid:
            raise PluginError(f"Cannot scaffold plugin '{name}': {validation.summary()}", name)

        plugin_dir = Path(target_dir) / name
        if plugin_dir.exists():
            raise PluginError(f"Directory already exists: {plugin_dir}", name)

        plugin_dir.mkdir(parents=True)
        with open(plugin_dir / MANIFEST_FILE, "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=2, ensure_ascii=False)
            f.write("\n")
        with open(plugin_dir / "plugin.py", "w", encoding="utf-8") as f:
            f.write(SCAFFOLD_ENTRY_POINT.format(name=name, description=manifest["description"]))

        logger.info(f"Scaffolded plugin '{name}' at {plugin_dir}")
        return plugin_dir

    # ========================================================================
    # Helpers
    # ========================================================================

    def _discover(self) -> List[DiscoveredPlugin]:
        discovery = PluginDiscovery(self.search_paths, scan_entry_points=self.scan_entry_points)
        return discovery.discover_all().plugins

    def _find(self, name: str) -> Optional[DiscoveredPlugin]:
        for plugin in self._discover():
            if plugin.name == name:
                return plugin
        return None

    def _manifest_of(self, plugin: DiscoveredPlugin) -> Optional[PluginManifest]:
        return self.validator.validate(plugin.raw_manifest).manifest

    def _require_manifest(self, name: str) -> PluginManifest:
        loaded = self.registry.get_plugin(name)
        if loaded is not None:
            return loaded.manifest
        plugin = self._find(name)
        if plugin is None:
            raise PluginError(f"Plugin not found: {name}", name)
        manifest = self._manifest_of(plugin)
        if manifest is None:
            raise PluginError(f"Plugin '{name}' has an invalid manifest", name)
        return manifest

    def _describe(self, plugin: DiscoveredPlugin) -> dict:
        raw = plugin.raw_manifest if isinstance(plugin.raw_manifest, dict) else {}
        loaded = self.registry.get_plugin(plugin.name)
        if loaded is not None:
            info = loaded.to_dict()
        else:
            manifest = self._manifest_of(plugin)
            info = {
                "name": plugin.name,
                "version": raw.get("version"),
                "description": raw.get("description"),
                "author": raw.get("author"),
                "extension_points": list(raw.get("extension_points") or []),
                "dependencies": [d.model_dump() for d in manifest.dependencies] if manifest else [],
                "path": str(plugin.path),
                "state": "not_loaded" if manifest else "invalid",
                "activated_at": None,
                "error": None,
            }
        info["source"] = plugin.source
        info["enabled"] = self.config_service.is_enabled(plugin.name)
        return info
