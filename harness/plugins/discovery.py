"""Plugin discovery - scans directories and installed packages for plugin manifests."""

import importlib.util
import json
import logging
from dataclasses import dataclass, field
from importlib.metadata import entry_points
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from harness.constants import ENTRY_POINT_GROUP, MANIFEST_FILE
from harness.plugins.models import LoadPhase, PluginLoadError, SkippedPlugin

logger = logging.getLogger(__name__)


@dataclass
class DiscoveredPlugin:
    """A plugin directory with a decoded (not yet validated) manifest."""

    name: str
    path: Path
    source: str  # "bundled" | "installed" | "external" | "package"
    raw_manifest: Dict[str, Any] = field(repr=False)

    @property
    def manifest_file(self) -> Path:
        return self.path / MANIFEST_FILE


@dataclass
class DiscoveryResult:
    plugins: List[DiscoveredPlugin] = field(default_factory=list)
    errors: List[PluginLoadError] = field(default_factory=list)
    duplicates: List[SkippedPlugin] = field(default_factory=list)


SearchPath = Union[Path, Tuple[Path, str]]


class PluginDiscovery:
    """Discovers plugins by scanning directories for plugin.json manifests.

    Installed distributions can also advertise a plugin through the
    ``agent_harness.plugins`` entry-point group; the entry point names the
    module or package whose directory holds plugin.json.
    """

    MANIFEST_FILE = MANIFEST_FILE

    def __init__(self, search_paths: Iterable[SearchPath], scan_entry_points: bool = True):
        """Initialize discovery with search paths.

        Args:
            search_paths: Paths or (path, source_label) tuples, searched in order
            scan_entry_points: Also look at installed packages' entry points
        """
        self.search_paths: List[Tuple[Path, str]] = []
        for item in search_paths:
            if isinstance(item, tuple):
                self.search_paths.append((Path(item[0]), item[1]))
            else:
                self.search_paths.append((Path(item), "external"))
        self.scan_entry_points = scan_entry_points

    def discover_all(self) -> DiscoveryResult:
        """Discover all plugins from configured search paths and entry points.

        Returns:
            DiscoveryResult; the first plugin found under a name wins
        """
        result = DiscoveryResult()
        seen: Dict[str, Path] = {}

        candidates: List[Tuple[Path, str]] = []
        for search_path, source in self.search_paths:
            candidates.extend((d, source) for d in self._scan_directory(search_path))
        if self.scan_entry_points:
            candidates.extend((d, "package") for d in self._scan_entry_points())

        for plugin_dir, source in candidates:
            plugin, error = self._read_manifest(plugin_dir, source)
            if error is not None:
                result.errors.append(error)
                continue
            if plugin.name in seen:
                logger.warning(
                    f"Duplicate plugin name '{plugin.name}' found at {plugin.path}, "
                    f"skipping (first-found wins: {seen[plugin.name]})"
                )
                result.duplicates.append(SkippedPlugin(
                    name=plugin.name,
                    reason=f"Duplicate plugin name, already discovered at {seen[plugin.name]}",
                ))
                continue
            seen[plugin.name] = plugin.path
            result.plugins.append(plugin)

        logger.info(f"Discovered {len(result.plugins)} plugin(s)")
        return result

    def discover_single(self, plugin_path: Path, source: str = "external") -> Tuple[Optional[DiscoveredPlugin], Optional[PluginLoadError]]:
        """Discover a single plugin from a specific directory."""
        plugin_path = Path(plugin_path)
        if not (plugin_path / self.MANIFEST_FILE).exists():
            logger.error(f"No {self.MANIFEST_FILE} found at {plugin_path}")
            return None, PluginLoadError(
                plugin_name=plugin_path.name,
                error=f"No {self.MANIFEST_FILE} found at {plugin_path}",
                phase=LoadPhase.DISCOVERY,
            )
        return self._read_manifest(plugin_path, source)

    def _scan_directory(self, search_path: Path) -> List[Path]:
        """List plugin subdirectories (those holding a manifest) of a search path."""
        if not search_path.exists():
            logger.debug(f"Plugin search path does not exist: {search_path}")
            return []

        try:
            items = sorted(search_path.iterdir())
        except OSError as e:
            logger.warning(f"Failed to read plugin directory {search_path}: {e}")
            return []

        plugin_dirs = []
        for item in items:
            if not item.is_dir():
                continue
            if not (item / self.MANIFEST_FILE).exists():
                logger.debug(f"Skipping {item}: no {self.MANIFEST_FILE}")
                continue
            plugin_dirs.append(item)
        return plugin_dirs

    def _scan_entry_points(self) -> List[Path]:
        plugin_dirs = []
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                spec = importlib.util.find_spec(ep.module)
            except (ImportError, ValueError) as e:
                logger.warning(f"Cannot locate plugin package '{ep.name}' ({ep.value}): {e}")
                continue
            if spec is None:
                logger.warning(f"Cannot locate plugin package '{ep.name}' ({ep.value})")
                continue

            if spec.submodule_search_locations:
                package_dir = Path(list(spec.submodule_search_locations)[0])
            elif spec.origin:
                package_dir = Path(spec.origin).parent
            else:
                continue

            if not (package_dir / self.MANIFEST_FILE).exists():
                logger.warning(f"Package '{ep.name}' at {package_dir} has no {self.MANIFEST_FILE}, skipping")
                continue
            plugin_dirs.append(package_dir)
        return plugin_dirs

    def _read_manifest(self, plugin_dir: Path, source: str) -> Tuple[Optional[DiscoveredPlugin], Optional[PluginLoadError]]:
        """Read and decode plugin.json. Schema validation happens later in the loader."""
        manifest_file = plugin_dir / self.MANIFEST_FILE
        try:
            with open(manifest_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Invalid JSON in {manifest_file}: {e}")
            return None, PluginLoadError(
                plugin_name=plugin_dir.name,
                error=f"Invalid JSON in {manifest_file}: {e}",
                phase=LoadPhase.DISCOVERY,
            )
        except OSError as e:
            logger.error(f"Error reading {manifest_file}: {e}")
            return None, PluginLoadError(
                plugin_name=plugin_dir.name,
                error=f"Cannot read {manifest_file}: {e}",
                phase=LoadPhase.DISCOVERY,
            )

        name = data.get("name") if isinstance(data, dict) else None
        if not isinstance(name, str) or not name:
            name = plugin_dir.name
        logger.debug(f"Discovered plugin: {name} at {plugin_dir}")
        return DiscoveredPlugin(name=name, path=plugin_dir, source=source, raw_manifest=data), None
