"""Tests for PluginContext."""

import logging

import pytest

from harness.plugins.context import PluginContext
from harness.plugins.errors import PluginContextRevokedError
from harness.plugins.models import CommandRegistration, ServiceRegistration


@pytest.fixture
def context(extensions):
    return PluginContext(
        plugin_name="demo",
        plugin_version="1.2.3",
        config={"depth": 2, "paths": ["src"], "nested": {"a": 1}},
        extensions=extensions,
        host_version="1.4.0",
        project_config={"project": {"name": "shop"}},
    )


class TestPluginContext:
    """Tests for the capability surface handed to plugins."""

    def test_identity_and_versions(self, context):
        assert context.plugin_name == "demo"
        assert context.plugin_version == "1.2.3"
        assert context.get_host_version() == "1.4.0"

    def test_config_is_frozen(self, context):
        assert context.config["depth"] == 2
        assert context.config["paths"] == ("src",)
        with pytest.raises(TypeError):
            context.config["depth"] = 3
        with pytest.raises(TypeError):
            context.config["nested"]["a"] = 2

    def test_project_config_snapshot(self, context):
        assert context.get_project_config()["project"]["name"] == "shop"
        with pytest.raises(TypeError):
            context.get_project_config()["project"]["name"] = "other"

    def test_registrations_owned_by_plugin(self, context, registry):
        context.register_command(CommandRegistration(name="hello", handler=print))
        context.register_service(ServiceRegistration(name="svc", factory=lambda deps: 7))

        assert registry.get_command("hello").plugin_name == "demo"
        assert registry.get_service_owner("svc") == "demo"
        assert context.has_service("svc")
        assert context.get_service("svc") == 7

    def test_log_is_tagged(self, context, caplog):
        with caplog.at_level(logging.INFO, logger="plugin.demo"):
            context.log("warn", "careful")
        record = caplog.records[-1]
        assert record.name == "plugin.demo"
        assert record.levelno == logging.WARNING
        assert record.getMessage() == "[plugin:demo] careful"
        assert context.get_logger("sub").name == "plugin.demo.sub"

    def test_revoked_context_refuses_calls(self, context):
        context.revoke()
        assert context.revoked
        with pytest.raises(PluginContextRevokedError):
            context.register_command(CommandRegistration(name="late", handler=print))
        with pytest.raises(PluginContextRevokedError):
            context.get_service("svc")
