"""Shared fixtures: on-disk plugins and a fresh registry per test."""

import json
import textwrap
from pathlib import Path

import pytest

from harness.plugins.extensions import ExtensionPoints
from harness.plugins.loader import PluginLoader
from harness.plugins.models import PluginLoadConfig
from harness.plugins.registry import ExtensionRegistry

HOST = "1.4.0"

DEFAULT_CODE = """
def activate(context):
    pass
"""


def make_manifest(name, version="1.0.0", **overrides):
    manifest = {
        "name": name,
        "version": version,
        "description": f"{name} test plugin",
        "author": "tests",
        "entry_point": "plugin.py",
        "host_version": ">=1.0.0",
        "extension_points": ["commands", "hooks", "services"],
    }
    manifest.update(overrides)
    return manifest


@pytest.fixture
def plugins_dir(tmp_path):
    path = tmp_path / "plugins"
    path.mkdir()
    return path


@pytest.fixture
def write_plugin(plugins_dir):
    """Write plugins_dir/<dirname>/plugin.json + plugin.py and return the directory."""

    def _write(name, code=DEFAULT_CODE, version="1.0.0", dependencies=None, root=None, dirname=None, files=None, **overrides):
        plugin_dir = Path(root or plugins_dir) / (dirname or name)
        plugin_dir.mkdir(parents=True, exist_ok=True)
        manifest = make_manifest(name, version, **overrides)
        if dependencies:
            manifest["dependencies"] = [
                {"name": dep, "version_range": rng} for dep, rng in dependencies.items()
            ]
        (plugin_dir / "plugin.json").write_text(json.dumps(manifest), encoding="utf-8")
        (plugin_dir / manifest["entry_point"]).write_text(textwrap.dedent(code), encoding="utf-8")
        for filename, content in (files or {}).items():
            (plugin_dir / filename).write_text(textwrap.dedent(content), encoding="utf-8")
        return plugin_dir

    return _write


@pytest.fixture
def registry():
    return ExtensionRegistry()


@pytest.fixture
def extensions(registry):
    return ExtensionPoints.create(registry, hook_timeout=0.5)


@pytest.fixture
def loader(extensions):
    return PluginLoader(extensions)


@pytest.fixture
def load_config(plugins_dir):
    def _config(**overrides):
        values = dict(plugin_dirs=[plugins_dir], host_version=HOST, scan_entry_points=False)
        values.update(overrides)
        return PluginLoadConfig(**values)

    return _config
