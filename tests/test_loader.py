"""Tests for PluginLoader: discovery through activation, rollback, unload and reload."""

import json
import sys

import pytest

from harness.plugins.models import LoadPhase, PluginState

SERVICE_PLUGIN = """
from harness.plugins.models import ServiceRegistration

def activate(context):
    context.register_service(ServiceRegistration(name="{service}", factory=lambda deps: {value!r}))
"""

ROLLBACK_PLUGIN = """
from harness.plugins.models import CommandRegistration

def activate(context):
    context.register_command(CommandRegistration(name="half-done", handler=print))
    raise RuntimeError("activation exploded")
"""

CONFIG_PLUGIN = """
from harness.plugins.models import ServiceRegistration

def activate(context):
    snapshot = dict(context.config)
    context.register_service(ServiceRegistration(name="seen-config", factory=lambda deps: snapshot))
"""

DEACTIVATE_PLUGIN = """
from pathlib import Path

from harness.plugins.models import CommandRegistration

def activate(context):
    context.register_command(CommandRegistration(name="bye", handler=print))

async def deactivate():
    Path(__file__).with_name("deactivated.txt").write_text("yes")
"""


class TestLoadOrder:
    """Tests for dependency ordering."""

    @pytest.mark.asyncio
    async def test_chain_activates_dependencies_first(self, write_plugin, loader, load_config):
        """A -> B -> C activates C, then B, then A."""
        write_plugin("a", dependencies={"b": "^1.0.0"})
        write_plugin("b", dependencies={"c": "^1.0.0"})
        write_plugin("c")

        result = await loader.load_plugins(load_config())

        assert [p.name for p in result.loaded] == ["c", "b", "a"]
        assert result.errors == [] and result.skipped == []

    @pytest.mark.asyncio
    async def test_cycle_errors_both(self, write_plugin, loader, load_config):
        write_plugin("a", dependencies={"b": "*"})
        write_plugin("b", dependencies={"a": "*"})
        write_plugin("solo")

        result = await loader.load_plugins(load_config())

        assert [p.name for p in result.loaded] == ["solo"]
        assert sorted(e.plugin_name for e in result.errors) == ["a", "b"]
        assert all(e.phase == LoadPhase.VALIDATION for e in result.errors)
        assert all("Circular dependency" in e.error for e in result.errors)

    @pytest.mark.asyncio
    async def test_plugin_blocked_by_cycle(self, write_plugin, loader, load_config):
        write_plugin("a", dependencies={"b": "*"})
        write_plugin("b", dependencies={"a": "*"})
        write_plugin("c", dependencies={"a": "*"})

        result = await loader.load_plugins(load_config())

        errors = {e.plugin_name: e.error for e in result.errors}
        assert set(errors) == {"a", "b", "c"}
        assert "depends on plugins in a circular dependency" in errors["c"].lower()

    @pytest.mark.asyncio
    async def test_missing_dependency_skips_transitively(self, write_plugin, loader, load_config):
        write_plugin("a", dependencies={"b": "*"})
        write_plugin("b", dependencies={"ghost": "*"})

        result = await loader.load_plugins(load_config())

        reasons = {s.name: s.reason for s in result.skipped}
        assert reasons["b"] == "Missing dependency: ghost"
        assert reasons["a"] == "Missing dependency: b"
        assert result.loaded == []

    @pytest.mark.asyncio
    async def test_dependency_version_mismatch(self, write_plugin, loader, load_config):
        write_plugin("a", dependencies={"b": "^2.0.0"})
        write_plugin("b", version="1.5.0")

        result = await loader.load_plugins(load_config())

        assert [p.name for p in result.loaded] == ["b"]
        assert "b@1.5.0 does not satisfy ^2.0.0" in result.skipped[0].reason

    @pytest.mark.asyncio
    async def test_active_plugin_satisfies_dependency(self, write_plugin, loader, load_config, tmp_path):
        write_plugin("base")
        await loader.load_plugins(load_config())

        later = tmp_path / "later"
        write_plugin("addon", dependencies={"base": "^1.0.0"}, root=later)
        result = await loader.load_plugins(load_config(plugin_dirs=[later]))

        assert [p.name for p in result.loaded] == ["addon"]

    @pytest.mark.asyncio
    async def test_failed_dependency_skips_dependents(self, write_plugin, loader, load_config):
        write_plugin("base", code=ROLLBACK_PLUGIN)
        write_plugin("addon", dependencies={"base": "*"})

        result = await loader.load_plugins(load_config())

        assert [e.plugin_name for e in result.errors] == ["base"]
        assert result.skipped[0].name == "addon"
        assert result.skipped[0].reason == "Dependency failed to load: base"


class TestPipelineOutcomes:
    """Tests for per-phase failures."""

    @pytest.mark.asyncio
    async def test_invalid_manifest(self, write_plugin, loader, load_config):
        write_plugin("bad", version="one")
        result = await loader.load_plugins(load_config())
        assert result.errors[0].phase == LoadPhase.VALIDATION
        assert "version" in result.errors[0].error

    @pytest.mark.asyncio
    async def test_unreadable_manifest(self, plugins_dir, loader, load_config):
        broken = plugins_dir / "broken"
        broken.mkdir()
        (broken / "plugin.json").write_text("{", encoding="utf-8")

        result = await loader.load_plugins(load_config())

        assert result.errors[0].plugin_name == "broken"
        assert result.errors[0].phase == LoadPhase.DISCOVERY

    @pytest.mark.asyncio
    async def test_undecodable_manifest_does_not_stop_others(self, write_plugin, plugins_dir, loader, load_config):
        """A plugin.json that is not UTF-8 errors only that plugin."""
        write_plugin("good")
        bad = plugins_dir / "bad"
        bad.mkdir()
        (bad / "plugin.json").write_bytes(b'{"name": "\xff\xfe"}')

        result = await loader.load_plugins(load_config())

        assert [p.name for p in result.loaded] == ["good"]
        assert [(e.plugin_name, e.phase) for e in result.errors] == [("bad", LoadPhase.DISCOVERY)]

    @pytest.mark.asyncio
    async def test_directories_without_manifest_ignored(self, plugins_dir, loader, load_config):
        (plugins_dir / "notes").mkdir()
        result = await loader.load_plugins(load_config())
        assert (result.loaded, result.skipped, result.errors) == ([], [], [])

    @pytest.mark.asyncio
    async def test_host_incompatible(self, write_plugin, loader, load_config):
        write_plugin("future", host_version=">=9.0.0")
        result = await loader.load_plugins(load_config())
        assert result.skipped[0].name == "future"
        assert result.skipped[0].reason.startswith("Host version mismatch")

    @pytest.mark.asyncio
    async def test_missing_activate(self, write_plugin, loader, load_config):
        write_plugin("lazy", code="VALUE = 1\n")
        result = await loader.load_plugins(load_config())
        assert result.errors[0].phase == LoadPhase.IMPORT
        assert "activate" in result.errors[0].error

    @pytest.mark.asyncio
    async def test_import_error(self, write_plugin, loader, load_config):
        write_plugin("typo", code="import definitely_not_a_module_xyz\n")
        result = await loader.load_plugins(load_config())
        assert result.errors[0].phase == LoadPhase.IMPORT

    @pytest.mark.asyncio
    async def test_activation_failure_rolls_back(self, write_plugin, loader, load_config, registry):
        """Registrations made before activate() raised are removed."""
        write_plugin("flaky", code=ROLLBACK_PLUGIN)

        result = await loader.load_plugins(load_config())

        assert result.errors[0].phase == LoadPhase.ACTIVATION
        assert "activation exploded" in result.errors[0].error
        assert not registry.has_plugin("flaky")
        assert registry.get_command("half-done") is None

    @pytest.mark.asyncio
    async def test_async_activate(self, write_plugin, loader, load_config, registry):
        write_plugin("async", code="""
            from harness.plugins.models import CommandRegistration

            async def activate(context):
                context.register_command(CommandRegistration(name="later", handler=print))
        """)
        result = await loader.load_plugins(load_config())
        assert [p.name for p in result.loaded] == ["async"]
        assert registry.get_plugin("async").state == PluginState.ACTIVATED
        assert registry.get_command("later").plugin_name == "async"

    @pytest.mark.asyncio
    async def test_sibling_module_import(self, write_plugin, loader, load_config, registry):
        write_plugin(
            "split",
            code="""
                from split_helpers import answer
                from harness.plugins.models import ServiceRegistration

                def activate(context):
                    context.register_service(ServiceRegistration(name="answer", factory=lambda deps: answer()))
            """,
            files={"split_helpers.py": "def answer():\n    return 42\n"},
        )
        await loader.load_plugins(load_config())
        assert registry.resolve_service("answer") == 42

    @pytest.mark.asyncio
    async def test_same_named_siblings_stay_separate(self, write_plugin, loader, load_config, registry):
        """Two plugins shipping helpers.py each import their own copy."""
        code = """
            from helpers import VALUE
            from harness.plugins.models import ServiceRegistration

            def activate(context):
                context.register_service(ServiceRegistration(name=VALUE, factory=lambda deps: VALUE))
        """
        write_plugin("alpha", code=code, files={"helpers.py": "VALUE = 'alpha'\n"})
        write_plugin("beta", code=code, files={"helpers.py": "VALUE = 'beta'\n"})

        result = await loader.load_plugins(load_config())

        assert [p.name for p in result.loaded] == ["alpha", "beta"]
        assert registry.resolve_service("alpha") == "alpha"
        assert registry.resolve_service("beta") == "beta"
        assert "helpers" not in sys.modules


class TestSelection:
    """Tests for enabled/disabled filtering and duplicates."""

    @pytest.mark.asyncio
    async def test_disabled_reported_as_skipped(self, write_plugin, loader, load_config):
        write_plugin("a")
        write_plugin("b")
        result = await loader.load_plugins(load_config(disabled_plugins=frozenset({"b"})))
        assert [p.name for p in result.loaded] == ["a"]
        assert result.skipped[0].reason == "Plugin is disabled in configuration"

    @pytest.mark.asyncio
    async def test_enabled_filter(self, write_plugin, loader, load_config):
        write_plugin("a")
        write_plugin("b")
        result = await loader.load_plugins(load_config(enabled_plugins=frozenset({"b"})))
        assert [p.name for p in result.loaded] == ["b"]

        result = await loader.load_plugins(load_config(enabled_plugins=frozenset()))
        assert result.loaded == []

    @pytest.mark.asyncio
    async def test_duplicate_first_found_wins(self, write_plugin, loader, load_config, plugins_dir, tmp_path):
        write_plugin("dup", code=SERVICE_PLUGIN.format(service="which", value="first"))
        second = tmp_path / "second"
        write_plugin("dup", code=SERVICE_PLUGIN.format(service="which", value="second"), root=second)

        result = await loader.load_plugins(load_config(plugin_dirs=[plugins_dir, second]))

        assert [p.name for p in result.loaded] == ["dup"]
        assert result.skipped[0].name == "dup"
        assert loader.registry.resolve_service("which") == "first"

    @pytest.mark.asyncio
    async def test_config_defaults_merged(self, write_plugin, loader, load_config, registry):
        write_plugin(
            "configured",
            code=CONFIG_PLUGIN,
            config_schema={
                "depth": {"type": "number", "default": 1},
                "label": {"type": "string", "default": "x"},
            },
        )
        await loader.load_plugins(load_config(plugin_configs={"configured": {"depth": 5}}))
        assert registry.resolve_service("seen-config") == {"depth": 5, "label": "x"}


class TestUnloadReload:
    """Tests for unload_plugin and reload_plugin."""

    @pytest.mark.asyncio
    async def test_unload(self, write_plugin, loader, load_config, registry):
        plugin_dir = write_plugin("bye", code=DEACTIVATE_PLUGIN)
        await loader.load_plugins(load_config())
        context = registry.get_plugin("bye").context

        assert await loader.unload_plugin("bye")

        assert (plugin_dir / "deactivated.txt").read_text() == "yes"
        assert not registry.has_plugin("bye")
        assert registry.get_command("bye") is None
        assert context.revoked
        assert not await loader.unload_plugin("bye")

    @pytest.mark.asyncio
    async def test_reload_picks_up_changes(self, write_plugin, loader, load_config, registry):
        plugin_dir = write_plugin("live", code=SERVICE_PLUGIN.format(service="value", value=1))
        await loader.load_plugins(load_config())
        assert registry.resolve_service("value") == 1

        (plugin_dir / "plugin.py").write_text(SERVICE_PLUGIN.format(service="value", value=2), encoding="utf-8")
        result = await loader.reload_plugin("live")

        assert [p.name for p in result.loaded] == ["live"]
        assert registry.resolve_service("value") == 2
        assert loader.get_reload_count("live") == 1

    @pytest.mark.asyncio
    async def test_reload_warns_past_threshold(self, write_plugin, extensions, load_config, caplog):
        from harness.plugins.loader import PluginLoader

        loader = PluginLoader(extensions, reload_warning_threshold=1)
        write_plugin("live")
        await loader.load_plugins(load_config())

        await loader.reload_plugin("live")
        assert "has been reloaded" not in caplog.text
        await loader.reload_plugin("live")
        assert "has been reloaded 2 times" in caplog.text

    @pytest.mark.asyncio
    async def test_reload_unknown(self, loader):
        result = await loader.reload_plugin("nobody")
        assert result.errors and result.errors[0].plugin_name == "nobody"

    @pytest.mark.asyncio
    async def test_reload_with_broken_manifest(self, write_plugin, loader, load_config, registry):
        plugin_dir = write_plugin("live")
        await loader.load_plugins(load_config())

        (plugin_dir / "plugin.json").write_text(json.dumps({"name": "live"}), encoding="utf-8")
        result = await loader.reload_plugin("live")

        assert result.errors[0].phase == LoadPhase.VALIDATION
        assert not registry.has_plugin("live")


class TestCheckEntryPoint:
    """Tests for check_entry_point."""

    def test_reports_contract_problems(self, write_plugin, loader):
        good = write_plugin("good")
        bad = write_plugin("bad", code="activate = 3\ndeactivate = 'no'\n")

        assert loader.check_entry_point("good", good, "plugin.py") == []
        problems = loader.check_entry_point("bad", bad, "plugin.py")
        assert len(problems) == 2

    def test_missing_entry_file(self, tmp_path, loader):
        problems = loader.check_entry_point("ghost", tmp_path, "plugin.py")
        assert "Entry point not found" in problems[0]
