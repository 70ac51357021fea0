"""Global constants for the agent-harness plugin runtime."""

import os
from pathlib import Path

# Version of the host, checked against each manifest's host_version range
HOST_VERSION = os.getenv("HOST_VERSION", "1.4.0")

# Global plugin switch (PLUGINS_ENABLED=false turns the whole subsystem off)
PLUGINS_ENABLED = os.getenv("PLUGINS_ENABLED", "true").lower() not in ("0", "false", "no", "off")

# Per-handler hook timeout (seconds)
PLUGIN_HOOK_TIMEOUT = float(os.getenv("PLUGIN_HOOK_TIMEOUT", "30"))

# Warn once a single plugin has been hot-reloaded more than this many times
RELOAD_WARNING_THRESHOLD = int(os.getenv("RELOAD_WARNING_THRESHOLD", "10"))

# Directory paths
HARNESS_ROOT = Path(__file__).resolve().parent.parent

# HARNESS_HOME moves plugin state and project config away from the source tree
_harness_home_env = os.getenv("HARNESS_HOME", "")
if _harness_home_env:
    _harness_home_path = Path(_harness_home_env)
    HARNESS_HOME = _harness_home_path if _harness_home_path.is_absolute() else (HARNESS_ROOT / _harness_home_path).resolve()
else:
    HARNESS_HOME = HARNESS_ROOT

PLUGINS_DIR = HARNESS_HOME / "plugins"
BUNDLED_PLUGINS_DIR = HARNESS_ROOT / "plugins" / "bundled"
INSTALLED_PLUGINS_DIR = PLUGINS_DIR / "installed"
PLUGIN_CONFIG_FILE = PLUGINS_DIR / "config.json"
PROJECT_CONFIG_FILE = HARNESS_HOME / ".harness" / "config.yaml"

# Well-known manifest filename next to the plugin code
MANIFEST_FILE = "plugin.json"

# Installed distributions advertise plugins through this entry-point group
ENTRY_POINT_GROUP = "agent_harness.plugins"

# Host built-ins that plugins may never shadow
CORE_COMMANDS = frozenset({"init", "start", "status", "list", "abort", "mcp", "help", "plugin"})
BUILTIN_AGENTS = frozenset({"claude", "gemini", "codex"})
CORE_SERVICES = frozenset({
    "AgentInvoker",
    "PhaseExecutor",
    "StateManager",
    "FlowController",
    "GitStatusChecker",
    "PRStatusFetcher",
    "TemplateService",
})
