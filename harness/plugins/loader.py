"""Plugin loader - discovery, validation, dependency ordering and activation."""
from __future__ import annotations

import importlib.util
import inspect
import itertools
import logging
import re
import sys
from collections import deque
from pathlib import Path
from types import ModuleType
from typing import Dict, List, Optional, Set, Tuple

from harness.constants import RELOAD_WARNING_THRESHOLD
from harness.plugins import versioning
from harness.plugins.config import merge_with_defaults
from harness.plugins.context import PluginContext
from harness.plugins.discovery import DiscoveredPlugin, PluginDiscovery
from harness.plugins.extensions import ExtensionPoints
from harness.plugins.manifest import ManifestValidator, PluginManifest
from harness.plugins.models import (
    LoadedPluginInfo,
    LoadPhase,
    PluginLoadConfig,
    PluginLoadError,
    PluginLoadResult,
    PluginState,
    SkippedPlugin,
)
from harness.plugins.registry import LoadedPlugin

logger = logging.getLogger(__name__)

_Candidate = Tuple[DiscoveredPlugin, PluginManifest]


class PluginLoader:
    """Loads plugins into the registry.

    Pipeline per candidate: discovered -> validated -> dependency resolved ->
    activated, or skipped (with a reason) / errored (with the failing phase).
    load_plugins() never raises; every failure is reported in the result.
    """

    def __init__(
        self,
        extensions: ExtensionPoints,
        validator: Optional[ManifestValidator] = None,
        reload_warning_threshold: int = RELOAD_WARNING_THRESHOLD,
    ):
        self.extensions = extensions
        self.registry = extensions.registry
        self.validator = validator or ManifestValidator()
        self.reload_warning_threshold = reload_warning_threshold

        self._last_config: Optional[PluginLoadConfig] = None
        self._plugin_dirs: Dict[str, Path] = {}
        self._module_keys: Dict[str, List[str]] = {}
        self._reload_counts: Dict[str, int] = {}
        self._generation = itertools.count(1)

    # ========================================================================
    # Loading
    # ========================================================================

    async def load_plugins(self, config: PluginLoadConfig) -> PluginLoadResult:
        """Discover, validate, order and activate plugins.

        Args:
            config: Search paths, host version, enabled set and per-plugin config

        Returns:
            PluginLoadResult with loaded, skipped and errors
        """
        self._last_config = config
        result = PluginLoadResult()

        logger.info("Starting plugin discovery...")
        discovery = PluginDiscovery(config.plugin_dirs, scan_entry_points=config.scan_entry_points)
        try:
            found = discovery.discover_all()
        except Exception as e:
            logger.error(f"Plugin discovery failed: {e}")
            result.errors.append(PluginLoadError(plugin_name="*", error=f"Discovery failed: {e}", phase=LoadPhase.DISCOVERY))
            return result

        result.errors.extend(found.errors)
        result.skipped.extend(found.duplicates)

        candidates = []
        for plugin in found.plugins:
            if plugin.name in config.disabled_plugins:
                logger.info(f"Plugin '{plugin.name}' is disabled, skipping")
                result.skipped.append(SkippedPlugin(name=plugin.name, reason="Plugin is disabled in configuration"))
                continue
            if config.enabled_plugins is not None and plugin.name not in config.enabled_plugins:
                logger.debug(f"Plugin '{plugin.name}' is not enabled, ignoring")
                continue
            if self.registry.has_plugin(plugin.name):
                result.skipped.append(SkippedPlugin(name=plugin.name, reason="Plugin is already loaded"))
                continue
            candidates.append(plugin)

        await self._load_candidates(candidates, config, result)

        logger.info(
            f"Plugin loading complete: {len(result.loaded)} loaded, "
            f"{len(result.skipped)} skipped, {len(result.errors)} errors"
        )
        return result

    async def _load_candidates(
        self, candidates: List[DiscoveredPlugin], config: PluginLoadConfig, result: PluginLoadResult
    ) -> None:
        validated = self._validate(candidates, result)
        compatible = self._check_compatibility(validated, config.host_version, result)
        resolved = self._check_dependencies(compatible, result)
        ordered = self._order(resolved, result)

        failed: Set[str] = set()
        for plugin, manifest in ordered:
            broken = [d for d in manifest.dependency_names() if d in failed]
            if broken:
                failed.add(manifest.name)
                reason = f"Dependency failed to load: {', '.join(broken)}"
                logger.warning(f"Plugin {manifest.name} skipped: {reason}")
                result.skipped.append(SkippedPlugin(name=manifest.name, reason=reason))
                continue

            try:
                outcome = await self._activate(plugin, manifest, config)
            except Exception as e:
                logger.error(f"Unexpected error loading {manifest.name}: {e}")
                outcome = PluginLoadError(manifest.name, f"Unexpected error loading plugin: {e}", LoadPhase.ACTIVATION)

            if isinstance(outcome, PluginLoadError):
                failed.add(manifest.name)
                result.errors.append(outcome)
            else:
                result.loaded.append(outcome)

    def _validate(self, candidates: List[DiscoveredPlugin], result: PluginLoadResult) -> List[_Candidate]:
        validated = []
        for plugin in candidates:
            validation = self.validator.validate(plugin.raw_manifest)
            if not validation.valid:
                message = f"Invalid manifest: {validation.summary()}"
                logger.error(f"Invalid manifest in {plugin.manifest_file}: {validation.summary()}")
                result.errors.append(PluginLoadError(plugin.name, message, LoadPhase.VALIDATION))
                continue
            validated.append((plugin, validation.manifest))
        return validated

    def _check_compatibility(
        self, validated: List[_Candidate], host_version: str, result: PluginLoadResult
    ) -> List[_Candidate]:
        compatible = []
        for plugin, manifest in validated:
            compat = self.validator.check_compatibility(manifest, host_version)
            if not compat.compatible:
                logger.warning(f"Plugin {manifest.name} skipped: {compat.message}")
                result.skipped.append(SkippedPlugin(name=manifest.name, reason=f"Host version mismatch: {compat.message}"))
                continue
            compatible.append((plugin, manifest))
        return compatible

    def _check_dependencies(self, compatible: List[_Candidate], result: PluginLoadResult) -> List[_Candidate]:
        """Drop plugins whose dependencies are missing or at the wrong version.

        Repeats until stable so that dependents of dropped plugins are dropped too.
        Plugins already active in the registry satisfy dependencies as well.
        """
        available: Dict[str, _Candidate] = {m.name: (p, m) for p, m in compatible}

        changed = True
        while changed:
            changed = False
            for name, (_plugin, manifest) in list(available.items()):
                reason = None
                for dep in manifest.dependencies:
                    if dep.name in available:
                        dep_version = available[dep.name][1].version
                    elif self._is_active(dep.name):
                        dep_version = self.registry.get_plugin(dep.name).version
                    else:
                        reason = f"Missing dependency: {dep.name}"
                        break
                    if not versioning.satisfies(dep_version, dep.version_range):
                        reason = (
                            f"Dependency version mismatch: {dep.name}@{dep_version} "
                            f"does not satisfy {dep.version_range}"
                        )
                        break

                if reason:
                    logger.warning(f"Plugin {name} skipped: {reason}")
                    result.skipped.append(SkippedPlugin(name=name, reason=reason))
                    del available[name]
                    changed = True

        return [c for c in compatible if c[1].name in available]

    def _order(self, resolved: List[_Candidate], result: PluginLoadResult) -> List[_Candidate]:
        """Topologically order plugins with Kahn's algorithm.

        Plugins left over form cycles or depend on one; all of them are errored.
        """
        by_name = {m.name: (p, m) for p, m in resolved}
        dependents: Dict[str, List[str]] = {name: [] for name in by_name}
        in_degree: Dict[str, int] = {name: 0 for name in by_name}
        for name, (_plugin, manifest) in by_name.items():
            for dep in set(manifest.dependency_names()):
                if dep in by_name:
                    dependents[dep].append(name)
                    in_degree[name] += 1

        queue = deque(name for name in by_name if in_degree[name] == 0)
        order: List[str] = []
        while queue:
            name = queue.popleft()
            order.append(name)
            for dependent in dependents[name]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        residual = {name for name in by_name if name not in order}
        if residual:
            self._report_cycles(residual, by_name, result)

        return [by_name[name] for name in order]

    def _report_cycles(self, residual: Set[str], by_name: Dict[str, _Candidate], result: PluginLoadResult) -> None:
        # Peel off residual plugins nothing else in the residual depends on;
        # they are blocked by a cycle rather than part of one
        remaining = set(residual)
        blocked: List[str] = []
        peeled = True
        while peeled:
            peeled = False
            for name in sorted(remaining):
                has_dependents = any(
                    name in by_name[other][1].dependency_names() for other in remaining if other != name
                )
                if not has_dependents and name not in by_name[name][1].dependency_names():
                    remaining.discard(name)
                    blocked.append(name)
                    peeled = True

        cycle_members = ", ".join(sorted(remaining))
        for name in sorted(remaining):
            message = f"Circular dependency detected among: {cycle_members}"
            logger.error(f"Plugin {name} not loaded: {message}")
            result.errors.append(PluginLoadError(name, message, LoadPhase.VALIDATION))
        for name in blocked:
            message = f"Depends on plugins in a circular dependency: {cycle_members}"
            logger.error(f"Plugin {name} not loaded: {message}")
            result.errors.append(PluginLoadError(name, message, LoadPhase.VALIDATION))

    def _is_active(self, name: str) -> bool:
        plugin = self.registry.get_plugin(name)
        return plugin is not None and plugin.state == PluginState.ACTIVATED

    # ========================================================================
    # Import & activation
    # ========================================================================

    async def _activate(self, plugin: DiscoveredPlugin, manifest: PluginManifest, config: PluginLoadConfig):
        """Import one plugin and call its activate(context).

        Returns:
            LoadedPluginInfo on success, PluginLoadError otherwise
        """
        name = manifest.name
        try:
            module = self._import_module(name, plugin.path, manifest.entry_point)
        except Exception as e:
            logger.error(f"Failed to import {name}: {e}")
            return PluginLoadError(name, f"Failed to import plugin entry point: {e}", LoadPhase.IMPORT)

        activate = getattr(module, "activate", None)
        if not callable(activate):
            self._purge_modules(name)
            logger.error(f"Plugin {name} does not export an activate() function")
            return PluginLoadError(
                name, "Plugin module does not export a callable 'activate' function", LoadPhase.IMPORT
            )
        deactivate = getattr(module, "deactivate", None)
        if deactivate is not None and not callable(deactivate):
            self._purge_modules(name)
            return PluginLoadError(name, "Plugin module exports a non-callable 'deactivate'", LoadPhase.IMPORT)

        loaded = LoadedPlugin(manifest=manifest, module=module, path=plugin.path)
        self.registry.register_plugin(loaded)
        context = PluginContext(
            plugin_name=name,
            plugin_version=manifest.version,
            config=merge_with_defaults(manifest, config.plugin_configs.get(name)),
            extensions=self.extensions,
            host_version=config.host_version,
            project_config=config.project_config,
        )
        loaded.context = context

        try:
            outcome = activate(context)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            # Roll back anything registered before the failure
            context.revoke()
            loaded.state = PluginState.FAILED
            loaded.error = str(e)
            await self.registry.unregister_plugin(name)
            self._purge_modules(name)
            logger.error(f"Plugin {name} activation failed: {e}")
            return PluginLoadError(name, f"Plugin activation failed: {e}", LoadPhase.ACTIVATION)

        self.registry.mark_activated(name)
        self._plugin_dirs[name] = plugin.path
        logger.info(f"Loaded plugin: {name}@{manifest.version}")
        return LoadedPluginInfo(
            name=name,
            version=manifest.version,
            path=str(plugin.path),
            activated_at=loaded.activated_at,
        )

    def _import_module(self, name: str, plugin_dir: Path, entry_point: str) -> ModuleType:
        """Import a plugin's entry point under a fresh module key.

        The key changes on every load so a reload never reuses a cached module.
        Sibling modules the entry point imports by bare name from its own
        directory are evicted from sys.modules once it has executed, so
        another plugin shipping a same-named module gets its own copy.
        """
        entry = (plugin_dir / entry_point).resolve()
        search_locations = None
        if entry.is_dir():
            search_locations = [str(entry)]
            entry = entry / "__init__.py"
        if not entry.exists():
            raise ImportError(f"Entry point not found: {entry}")

        module_key = f"harness_plugin_{re.sub(r'[^0-9A-Za-z_]', '_', name)}_{next(self._generation)}"
        spec = importlib.util.spec_from_file_location(module_key, entry, submodule_search_locations=search_locations)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load module from {entry}")

        module = importlib.util.module_from_spec(spec)
        # Same-named modules cached by other plugins (or the host) must not
        # satisfy this plugin's sibling imports
        shadowed = self._stash_sibling_names(plugin_dir)
        before = set(sys.modules)
        sys.modules[module_key] = module

        # Add plugin directory to sys.path temporarily for sibling imports
        dir_str = str(plugin_dir)
        added = dir_str not in sys.path
        if added:
            sys.path.insert(0, dir_str)
        own = [module_key]
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(module_key, None)
            own = []
            raise
        finally:
            if added and dir_str in sys.path:
                sys.path.remove(dir_str)
            # Siblings stay referenced by the plugin module, not by sys.modules
            for key in self._local_modules(before, plugin_dir):
                if key.startswith(module_key + ".") and own:
                    own.append(key)
                elif key != module_key:
                    sys.modules.pop(key, None)
            sys.modules.update(shadowed)

        self._module_keys[name] = own
        return module

    @staticmethod
    def _stash_sibling_names(plugin_dir: Path) -> Dict[str, ModuleType]:
        """Remove and return cached modules named like files in plugin_dir."""
        names = set()
        try:
            for item in plugin_dir.iterdir():
                if item.suffix == ".py":
                    names.add(item.stem)
                elif item.is_dir() and (item / "__init__.py").exists():
                    names.add(item.name)
        except OSError:
            return {}
        names -= set(getattr(sys, "stdlib_module_names", ()))

        stashed = {}
        for key in list(sys.modules):
            if key.split(".", 1)[0] in names:
                stashed[key] = sys.modules.pop(key)
        return stashed

    def check_entry_point(self, name: str, plugin_dir: Path, entry_point: str) -> List[str]:
        """Import an entry point without activating it and report contract problems.

        The module is evicted again afterwards, so nothing stays registered.

        Returns:
            Human-readable problems; empty when the module can be loaded
        """
        probe = f"{name}__probe"
        try:
            module = self._import_module(probe, Path(plugin_dir), entry_point)
        except Exception as e:
            return [f"Failed to import plugin entry point: {e}"]

        problems = []
        try:
            if not callable(getattr(module, "activate", None)):
                problems.append("Plugin module does not export a callable 'activate' function")
            deactivate = getattr(module, "deactivate", None)
            if deactivate is not None and not callable(deactivate):
                problems.append("Plugin module exports a non-callable 'deactivate'")
        finally:
            self._purge_modules(probe)
        return problems

    @staticmethod
    def _local_modules(before: Set[str], plugin_dir: Path) -> List[str]:
        root = plugin_dir.resolve()
        local = []
        for key in set(sys.modules) - before:
            module_file = getattr(sys.modules.get(key), "__file__", None)
            if module_file and root in Path(module_file).resolve().parents:
                local.append(key)
        return local

    def _purge_modules(self, name: str) -> None:
        for key in self._module_keys.pop(name, []):
            sys.modules.pop(key, None)

    # ========================================================================
    # Unload & reload
    # ========================================================================

    async def unload_plugin(self, name: str) -> bool:
        """Deactivate a plugin and remove everything it registered.

        Returns:
            True if the plugin was loaded
        """
        plugin = self.registry.get_plugin(name)
        if plugin is None:
            return False

        deactivate = getattr(plugin.module, "deactivate", None)
        if callable(deactivate):
            try:
                outcome = deactivate()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"[plugin:{name}] deactivate() failed: {e}")

        if plugin.context is not None:
            plugin.context.revoke()
        await self.registry.unregister_plugin(name)
        self._purge_modules(name)
        logger.info(f"Unloaded plugin: {name}")
        return True

    async def reload_plugin(self, name: str) -> PluginLoadResult:
        """Unload a plugin and activate it again from a fresh import."""
        plugin_dir = self._plugin_dirs.get(name)
        if plugin_dir is None or self._last_config is None:
            return PluginLoadResult(errors=[PluginLoadError(
                name, "Plugin not found or no previous configuration available", LoadPhase.VALIDATION
            )])

        count = self._reload_counts.get(name, 0) + 1
        self._reload_counts[name] = count
        if count > self.reload_warning_threshold:
            logger.warning(
                f"Plugin {name} has been reloaded {count} times. "
                f"Previous module versions stay referenced by old objects and may grow memory use."
            )

        await self.unload_plugin(name)

        result = PluginLoadResult()
        plugin, error = PluginDiscovery([]).discover_single(plugin_dir)
        if error is not None:
            result.errors.append(error)
            return result

        await self._load_candidates([plugin], self._last_config, result)
        if result.loaded:
            logger.info(f"Reloaded plugin: {name} (reload #{count})")
        return result

    def get_reload_count(self, name: str) -> int:
        return self._reload_counts.get(name, 0)

    def get_plugin_dir(self, name: str) -> Optional[Path]:
        return self._plugin_dirs.get(name)
