"""Plugin configuration service - manages plugins/config.json and per-plugin settings."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from harness.plugins.manifest import PluginManifest

logger = logging.getLogger(__name__)

_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
}


def _type_name(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    if value is None:
        return "null"
    return type(value).__name__


def validate_config_value(manifest: PluginManifest, key: str, value: Any) -> None:
    """Check a value against the manifest's config_schema.

    Keys the schema does not declare are accepted as-is.

    Raises:
        ValueError: If the value has the wrong type
    """
    schema = (manifest.config_schema or {}).get(key)
    if schema is None:
        return
    if not _TYPE_CHECKS[schema.type](value):
        raise ValueError(f'Invalid config value for "{key}": expected {schema.type}, got {_type_name(value)}')


def merge_with_defaults(manifest: PluginManifest, user_config: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Schema defaults overlaid with the user's values."""
    merged = manifest.config_defaults()
    merged.update(user_config or {})
    return merged


def load_project_config(config_file: Path) -> Optional[Dict[str, Any]]:
    """Load the project's .harness/config.yaml, or None if it is absent or unreadable."""
    if not config_file.exists():
        return None
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (yaml.YAMLError, OSError) as e:
        logger.error(f"Error loading project config {config_file}: {e}")
        return None
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.error(f"Project config {config_file} must be a mapping, got {type(data).__name__}")
        return None
    return data


class PluginConfigService:
    """Manages the plugins/config.json configuration file.

    Config format:
    {
        "enabled": ["code-stats"],
        "disabled": ["legacy-agent"],
        "plugins": {
            "code-stats": {
                "output_format": "json",
                "extensions": [".py"]
            }
        }
    }

    A plugin listed in neither "enabled" nor "disabled" is enabled unless
    "enabled" is non-empty, so a fresh install loads every discovered plugin.
    """

    def __init__(self, config_file: Path):
        self.config_file = config_file
        self._config: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        """Load config from file, creating defaults if not found."""
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
                logger.error(f"Plugin config {self.config_file} must be a JSON object")
            except (json.JSONDecodeError, UnicodeDecodeError, IOError) as e:
                logger.error(f"Error loading plugin config: {e}")

        return {"enabled": [], "disabled": [], "plugins": {}}

    def _save(self) -> None:
        """Save config to file."""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(self._config, f, indent=2, ensure_ascii=False)
        logger.debug(f"Saved plugin config to {self.config_file}")

    def is_enabled(self, name: str) -> bool:
        """Check if a plugin is enabled."""
        if name in self._config.get("disabled", []):
            return False
        enabled = self._config.get("enabled", [])
        return not enabled or name in enabled

    def get_enabled_list(self) -> List[str]:
        """Get list of explicitly enabled plugin names."""
        return list(self._config.get("enabled", []))

    def get_enabled_set(self) -> Optional[frozenset]:
        """Enabled names for the loader, or None when every plugin may load."""
        enabled = self._config.get("enabled", [])
        return frozenset(enabled) if enabled else None

    def get_disabled_list(self) -> List[str]:
        return list(self._config.get("disabled", []))

    def get_plugin_config(self, name: str) -> Dict[str, Any]:
        """Get user configuration for a specific plugin."""
        return dict(self._config.get("plugins", {}).get(name, {}))

    def get_all_plugin_configs(self) -> Dict[str, Dict[str, Any]]:
        return {name: dict(values) for name, values in self._config.get("plugins", {}).items()}

    def enable(self, name: str) -> None:
        """Enable a plugin."""
        disabled = self._config.setdefault("disabled", [])
        enabled = self._config.setdefault("enabled", [])
        changed = False
        if name in disabled:
            disabled.remove(name)
            changed = True
        if enabled and name not in enabled:
            enabled.append(name)
            changed = True
        if changed:
            self._save()
            logger.info(f"Enabled plugin: {name}")

    def disable(self, name: str) -> None:
        """Disable a plugin."""
        enabled = self._config.setdefault("enabled", [])
        disabled = self._config.setdefault("disabled", [])
        changed = False
        if name in enabled:
            enabled.remove(name)
            changed = True
        if name not in disabled:
            disabled.append(name)
            changed = True
        if changed:
            self._save()
            logger.info(f"Disabled plugin: {name}")

    def set_plugin_value(self, name: str, key: str, value: Any) -> None:
        """Set a single configuration value for a plugin."""
        plugins = self._config.setdefault("plugins", {})
        plugins.setdefault(name, {})[key] = value
        self._save()
        logger.info(f"Set config '{key}' for plugin: {name}")

    def update_plugin_config(self, name: str, config: Dict[str, Any]) -> None:
        """Replace configuration for a specific plugin."""
        plugins = self._config.setdefault("plugins", {})
        plugins[name] = config
        self._save()
        logger.info(f"Updated config for plugin: {name}")

    def remove_plugin(self, name: str) -> None:
        """Forget everything stored about a plugin."""
        for key in ("enabled", "disabled"):
            if name in self._config.get(key, []):
                self._config[key].remove(name)
        self._config.get("plugins", {}).pop(name, None)
        self._save()
        logger.info(f"Removed config for plugin: {name}")

    def reload(self) -> None:
        """Reload config from disk."""
        self._config = self._load()
