"""Tests for the bundled code-stats plugin."""

import json
import sys

import pytest

from harness.constants import BUNDLED_PLUGINS_DIR
from harness.plugins.manager import PluginManager
from harness.plugins.models import HookContext

from conftest import HOST

sys.path.insert(0, str(BUNDLED_PLUGINS_DIR / "code_stats"))
from code_stats_service import CodeStatsService, analyze_source, is_test_file  # noqa: E402


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text("# entry\nimport os\n\nprint(os.name)\n")
    (root / "src" / "util.js").write_text("/* helper\n * block\n */\nexport const x = 1;\n")
    (root / "tests").mkdir()
    (root / "tests" / "test_app.py").write_text("def test_ok():\n    assert True\n")
    (root / "node_modules").mkdir()
    (root / "node_modules" / "dep.js").write_text("module.exports = {};\n")
    (root / "README.md").write_text("# Readme\n")
    return root


@pytest.fixture
def manager(tmp_path):
    return PluginManager(
        bundled_dir=BUNDLED_PLUGINS_DIR,
        installed_dir=tmp_path / "installed",
        config_file=tmp_path / "config.json",
        host_version=HOST,
        project_config_file=None,
        scan_entry_points=False,
    )


class TestLineCounting:
    """Tests for analyze_source and the directory walk."""

    def test_python_comments(self):
        stats = analyze_source("a.py", "# entry\nimport os\n\nprint(os.name)")
        assert (stats.lines, stats.blank_lines, stats.comment_lines, stats.code_lines) == (4, 1, 1, 2)

    def test_block_comments(self):
        stats = analyze_source("a.ts", "/* one\n two\n three */\nconst a = 1;\n// done")
        assert stats.comment_lines == 4
        assert stats.code_lines == 1

    def test_is_test_file(self, tmp_path):
        assert is_test_file(tmp_path / "test_app.py")
        assert is_test_file(tmp_path / "app.spec.ts")
        assert is_test_file(tmp_path / "tests" / "helpers.py")
        assert not is_test_file(tmp_path / "src" / "app.py")

    def test_analyze_directory(self, project):
        stats = CodeStatsService([".py", ".js"]).analyze(project)
        assert stats.total_files == 3
        assert set(stats.by_extension) == {".py", ".js"}
        assert stats.by_extension[".py"].files == 2

        without_tests = CodeStatsService([".py", ".js"], include_tests=False).analyze(project)
        assert without_tests.total_files == 2

    def test_compare(self, project):
        service = CodeStatsService([".py"])
        before = service.save_snapshot("login", "pre", service.analyze(project))
        (project / "src" / "new.py").write_text("a = 1\nb = 2\n")
        after = service.save_snapshot("login", "post", service.analyze(project))

        diff = CodeStatsService.compare(before, after)

        assert (diff.files_added, diff.files_removed) == (1, 0)
        assert diff.code_lines_added == 2
        assert len(service.get_snapshots("login")) == 2


class TestPlugin:
    """Tests for the plugin loaded through the manager."""

    @pytest.mark.asyncio
    async def test_loads_and_registers(self, manager):
        result = await manager.enable_plugin("code-stats")

        assert [p.name for p in result.loaded] == ["code-stats"]
        extensions = manager.registry.extensions_for("code-stats")
        assert sorted(extensions["commands"]) == ["stats", "stats-compare"]
        assert extensions["services"] == ["code-stats"]
        assert sorted(extensions["hooks"]) == ["post:implementation", "pre:implementation"]

        await manager.unload_all()

    @pytest.mark.asyncio
    async def test_stats_command_json(self, manager, project, capsys):
        await manager.enable_plugin("code-stats")

        outcome = await manager.extensions.commands.execute_command("stats", [str(project)], {"format": "json"})

        assert outcome.success, outcome.error
        data = json.loads(capsys.readouterr().out)
        assert data["total_files"] == 3
        assert "files" not in data
        await manager.unload_all()

    @pytest.mark.asyncio
    async def test_compare_requires_feature(self, manager):
        await manager.enable_plugin("code-stats")
        outcome = await manager.extensions.commands.execute_command("stats-compare")
        assert not outcome.success
        assert "Usage" in outcome.error
        await manager.unload_all()

    @pytest.mark.asyncio
    async def test_hooks_snapshot_around_implementation(self, manager, project):
        manager.set_config("code-stats", "root_dir", str(project))
        manager.set_config("code-stats", "extensions", [".py"])
        await manager.enable_plugin("code-stats")

        async def implement():
            (project / "src" / "login.py").write_text("def login():\n    return True\n")

        context = HookContext.create("implementation", "pre", "login")
        outcome = await manager.extensions.hooks.run_phase("implementation", context, implement)

        assert not outcome.vetoed
        service = manager.registry.resolve_service("code-stats")
        snapshots = service.get_snapshots("login")
        assert [s.phase for s in snapshots] == ["pre-implementation", "post-implementation"]
        assert snapshots[1].stats.total_files == snapshots[0].stats.total_files + 1
        await manager.unload_all()

    @pytest.mark.asyncio
    async def test_service_disposed_on_unload(self, manager):
        await manager.enable_plugin("code-stats")
        manager.registry.resolve_service("code-stats")

        await manager.disable_plugin("code-stats")

        assert not manager.registry.has_service("code-stats")
