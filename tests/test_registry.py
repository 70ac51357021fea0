"""Tests for ExtensionRegistry: conflicts, service resolution and unregistration."""

from unittest.mock import MagicMock

import pytest

from harness.plugins.errors import ExtensionConflictError, ServiceResolutionError
from harness.plugins.manifest import PluginManifest
from harness.plugins.models import (
    CommandRegistration,
    HookPriority,
    HookRegistration,
    HookTiming,
    PluginState,
    ServiceRegistration,
    TemplateCategory,
    TemplateRegistration,
)
from harness.plugins.registry import LoadedPlugin

from conftest import make_manifest


def noop(*args):
    return None


def loaded(name):
    return LoadedPlugin(manifest=PluginManifest.model_validate(make_manifest(name)))


class TestPlugins:
    """Tests for plugin records."""

    def test_register_and_activate(self, registry):
        registry.register_plugin(loaded("a"))
        assert registry.get_plugin("a").state == PluginState.LOADING

        registry.mark_activated("a")
        plugin = registry.get_plugin("a")
        assert plugin.state == PluginState.ACTIVATED
        assert plugin.activated_at is not None
        assert registry.count() == 1

    def test_duplicate_plugin_rejected(self, registry):
        registry.register_plugin(loaded("a"))
        with pytest.raises(ExtensionConflictError):
            registry.register_plugin(loaded("a"))


class TestConflicts:
    """Tests for name conflict rules."""

    def test_core_command_rejected(self, registry):
        with pytest.raises(ExtensionConflictError) as exc:
            registry.register_command("a", CommandRegistration(name="init", handler=noop))
        assert exc.value.existing_owner == "core"

    def test_other_owner_rejected(self, registry):
        registry.register_command("a", CommandRegistration(name="stats", handler=noop))
        with pytest.raises(ExtensionConflictError) as exc:
            registry.register_command("b", CommandRegistration(name="stats", handler=noop))
        assert exc.value.existing_owner == "a"
        assert exc.value.plugin_name == "b"

    def test_same_owner_replaces(self, registry):
        """Re-registering a name from the same plugin replaces the entry."""
        registry.register_command("a", CommandRegistration(name="stats", handler=noop, description="old"))
        registry.register_command("a", CommandRegistration(name="stats", handler=noop, description="new"))
        assert len(registry.get_all_commands()) == 1
        assert registry.get_command("stats").registration.description == "new"

    def test_cross_plugin_service_collision(self, registry):
        registry.register_service("a", ServiceRegistration(name="cache", factory=lambda deps: 1))
        with pytest.raises(ExtensionConflictError):
            registry.register_service("b", ServiceRegistration(name="cache", factory=lambda deps: 2))

    def test_core_service_rejected(self, registry):
        with pytest.raises(ExtensionConflictError):
            registry.register_service("a", ServiceRegistration(name="StateManager", factory=lambda deps: 1))

    def test_templates_are_namespaced(self, registry):
        """Two plugins may use the same template name; lookups use plugin/name."""
        registry.register_template("a", TemplateRegistration(category="stack", name="react", source_path="/a"))
        registry.register_template("b", TemplateRegistration(category="stack", name="react", source_path="/b"))

        assert registry.get_template("a/react").registration.source_path == "/a"
        assert registry.get_template("b/react").registration.source_path == "/b"
        assert len(registry.get_templates(TemplateCategory.STACK)) == 2


class TestHookOrdering:
    """Tests for get_hooks ordering."""

    def test_tier_then_sequence(self, registry):
        for label, priority in [("late", "late"), ("early", "early"), ("normal-1", "normal"), ("normal-2", "normal")]:
            handler = MagicMock(name=label)
            handler.label = label
            registry.register_hook("a", HookRegistration(phase="design", handler=handler, priority=priority))

        hooks = registry.get_hooks("design", HookTiming.PRE)
        assert [h.registration.handler.label for h in hooks] == ["early", "normal-1", "normal-2", "late"]

    def test_wildcard_and_timing(self, registry):
        registry.register_hook("a", HookRegistration(phase="*", handler=noop))
        registry.register_hook("a", HookRegistration(phase="tasks", handler=noop, timing="post"))
        registry.register_hook("a", HookRegistration(phase="design", handler=noop, priority=HookPriority.LATEST))

        assert len(registry.get_hooks("tasks", HookTiming.PRE)) == 1
        assert len(registry.get_hooks("tasks", HookTiming.POST)) == 1
        assert len(registry.get_hooks("design", HookTiming.PRE)) == 2
        assert len(registry.get_hooks("*", HookTiming.PRE)) == 2


class TestServiceResolution:
    """Tests for lazy service resolution."""

    def test_factory_called_once(self, registry):
        factory = MagicMock(return_value=object())
        registry.register_service("a", ServiceRegistration(name="svc", factory=factory))

        assert not registry.is_service_instantiated("svc")
        first = registry.resolve_service("svc")
        for _ in range(5):
            assert registry.resolve_service("svc") is first
        factory.assert_called_once()

    def test_dependencies_injected(self, registry):
        registry.register_service("a", ServiceRegistration(name="db", factory=lambda deps: "db-conn"))
        registry.register_service(
            "b",
            ServiceRegistration(name="repo", factory=lambda deps: ("repo", deps["db"]), dependencies=["db"]),
        )
        assert registry.resolve_service("repo") == ("repo", "db-conn")

    def test_not_found(self, registry):
        with pytest.raises(ServiceResolutionError) as exc:
            registry.resolve_service("missing")
        assert exc.value.code == ServiceResolutionError.NOT_FOUND

    def test_missing_dependency(self, registry):
        registry.register_service("a", ServiceRegistration(name="repo", factory=noop, dependencies=["db"]))
        with pytest.raises(ServiceResolutionError) as exc:
            registry.resolve_service("repo")
        assert exc.value.code == ServiceResolutionError.NOT_FOUND
        assert exc.value.service_name == "db"

    def test_circular_dependency(self, registry):
        registry.register_service("a", ServiceRegistration(name="x", factory=noop, dependencies=["y"]))
        registry.register_service("a", ServiceRegistration(name="y", factory=noop, dependencies=["z"]))
        registry.register_service("a", ServiceRegistration(name="z", factory=noop, dependencies=["x"]))

        with pytest.raises(ServiceResolutionError) as exc:
            registry.resolve_service("x")
        assert exc.value.code == ServiceResolutionError.CIRCULAR_DEPENDENCY
        assert exc.value.chain == ["x", "y", "z", "x"]
        # The chain is cleared so later resolutions are unaffected
        registry.register_service("a", ServiceRegistration(name="ok", factory=lambda deps: 1))
        assert registry.resolve_service("ok") == 1

    def test_reentrant_factory_cycle(self, registry):
        """A factory that resolves its own service directly is reported as a cycle."""
        registry.register_service("a", ServiceRegistration(name="self", factory=lambda deps: registry.resolve_service("self")))
        with pytest.raises(ServiceResolutionError) as exc:
            registry.resolve_service("self")
        assert exc.value.code == ServiceResolutionError.CIRCULAR_DEPENDENCY

    def test_factory_error_attributed(self, registry):
        def broken(deps):
            raise RuntimeError("boom")

        registry.register_service("owner", ServiceRegistration(name="svc", factory=broken))
        with pytest.raises(ServiceResolutionError) as exc:
            registry.resolve_service("svc")
        assert exc.value.code == ServiceResolutionError.FACTORY_ERROR
        assert exc.value.plugin_name == "owner"
        assert "boom" in str(exc.value)
        assert not registry.is_service_instantiated("svc")


class TestUnregister:
    """Tests for unregister_plugin."""

    @pytest.mark.asyncio
    async def test_removes_everything(self, registry):
        registry.register_plugin(loaded("a"))
        registry.register_command("a", CommandRegistration(name="stats", handler=noop))
        registry.register_hook("a", HookRegistration(phase="design", handler=noop))
        registry.register_service("a", ServiceRegistration(name="svc", factory=lambda deps: 1))
        registry.register_template("a", TemplateRegistration(category="spec", name="t", source_path="/t"))
        registry.register_command("b", CommandRegistration(name="other", handler=noop))

        await registry.unregister_plugin("a")

        assert not registry.has_plugin("a")
        assert registry.get_command("stats") is None
        assert registry.get_all_hooks() == []
        assert not registry.has_service("svc")
        assert registry.get_all_templates() == []
        assert registry.get_command("other") is not None
        assert registry.extensions_for("a") == {
            "commands": [], "agents": [], "hooks": [], "services": [], "templates": [],
        }

    @pytest.mark.asyncio
    async def test_dispose_once_per_instantiated_service(self, registry):
        """Only instantiated services are disposed, each exactly once."""
        used_dispose = MagicMock()
        unused_dispose = MagicMock()
        registry.register_service("a", ServiceRegistration(name="used", factory=lambda deps: 1, dispose=used_dispose))
        registry.register_service("a", ServiceRegistration(name="unused", factory=lambda deps: 2, dispose=unused_dispose))
        registry.resolve_service("used")
        registry.resolve_service("used")

        await registry.unregister_plugin("a")
        await registry.unregister_plugin("a")

        used_dispose.assert_called_once()
        unused_dispose.assert_not_called()

    @pytest.mark.asyncio
    async def test_async_and_failing_dispose(self, registry):
        """A failing dispose does not stop the others; async disposers are awaited."""
        disposed = []

        async def async_dispose():
            disposed.append("async")

        def failing_dispose():
            raise RuntimeError("nope")

        registry.register_service("a", ServiceRegistration(name="s1", factory=lambda deps: 1, dispose=failing_dispose))
        registry.register_service("a", ServiceRegistration(name="s2", factory=lambda deps: 2, dispose=async_dispose))
        registry.resolve_service("s1")
        registry.resolve_service("s2")

        await registry.unregister_plugin("a")
        assert disposed == ["async"]
