"""Registration records, hook types and load results shared by the plugin runtime."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

# ============================================================================
# Enumerations
# ============================================================================


class ExtensionKind(str, Enum):
    """The five extension point kinds a manifest can declare."""

    COMMANDS = "commands"
    AGENTS = "agents"
    HOOKS = "hooks"
    SERVICES = "services"
    TEMPLATES = "templates"


class HookPriority(str, Enum):
    """Hook execution tiers, earliest first."""

    EARLIEST = "earliest"
    EARLY = "early"
    NORMAL = "normal"
    LATE = "late"
    LATEST = "latest"

    @property
    def order(self) -> int:
        return _PRIORITY_ORDER[self]


_PRIORITY_ORDER = {
    HookPriority.EARLIEST: 0,
    HookPriority.EARLY: 1,
    HookPriority.NORMAL: 2,
    HookPriority.LATE: 3,
    HookPriority.LATEST: 4,
}


class HookTiming(str, Enum):
    PRE = "pre"
    POST = "post"


class WorkflowPhase(str, Enum):
    """Workflow phases the host's phase engine moves through."""

    REQUIREMENTS = "requirements"
    DESIGN = "design"
    TASKS = "tasks"
    IMPLEMENTATION = "implementation"


# Hooks registered for this phase fire for every phase
WILDCARD_PHASE = "*"


class TemplateCategory(str, Enum):
    STACK = "stack"
    SPEC = "spec"
    STEERING = "steering"


class TemplateSubType(str, Enum):
    REQUIREMENTS = "requirements"
    DESIGN = "design"
    TASKS = "tasks"


class AgentCapability(str, Enum):
    CODE_GENERATION = "code-generation"
    CODE_REVIEW = "code-review"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    REFACTORING = "refactoring"


class PluginState(str, Enum):
    """Runtime state of a registered plugin."""

    LOADING = "loading"
    ACTIVATED = "activated"
    FAILED = "failed"


class LoadPhase(str, Enum):
    """Pipeline step at which a plugin failed to load."""

    DISCOVERY = "discovery"
    VALIDATION = "validation"
    IMPORT = "import"
    ACTIVATION = "activation"


# ============================================================================
# Registration records (what plugins pass to PluginContext.register_*)
# ============================================================================


@dataclass
class ArgumentDefinition:
    name: str
    description: str = ""
    required: bool = False


@dataclass
class OptionDefinition:
    name: str
    description: str = ""
    type: str = "string"  # "string" | "boolean" | "number"
    default: Any = None
    alias: Optional[str] = None


@dataclass
class CommandArgs:
    """Arguments handed to a plugin command handler."""

    positional: Sequence[str]
    options: Mapping[str, Any]
    context: Any  # PluginContext of the owning plugin


CommandHandler = Callable[[CommandArgs], Union[None, Awaitable[None]]]


@dataclass
class CommandRegistration:
    name: str
    handler: CommandHandler
    description: str = ""
    args: List[ArgumentDefinition] = field(default_factory=list)
    options: List[OptionDefinition] = field(default_factory=list)


@dataclass
class AgentRegistration:
    """A custom agent adapter.

    The adapter must expose ``invoke(options)`` (sync or async, returning an
    ``AgentResult`` or a dict with ``success``/``output``/``error``),
    ``get_capabilities()`` and ``configure(config)``.
    """

    name: str
    adapter: Any
    description: str = ""


HookHandler = Callable[["HookContext"], Any]


@dataclass
class HookRegistration:
    phase: str  # a WorkflowPhase value or "*"
    handler: HookHandler
    timing: HookTiming = HookTiming.PRE
    priority: HookPriority = HookPriority.NORMAL

    def __post_init__(self):
        if isinstance(self.phase, WorkflowPhase):
            self.phase = self.phase.value
        elif self.phase != WILDCARD_PHASE:
            self.phase = WorkflowPhase(self.phase).value
        self.timing = HookTiming(self.timing)
        self.priority = HookPriority(self.priority)


ServiceFactory = Callable[[Mapping[str, Any]], Any]


@dataclass
class ServiceRegistration:
    name: str
    factory: ServiceFactory
    dependencies: List[str] = field(default_factory=list)
    dispose: Optional[Callable[[], Any]] = None


@dataclass
class TemplateRegistration:
    category: TemplateCategory
    name: str
    source_path: str
    description: str = ""
    sub_type: Optional[TemplateSubType] = None

    def __post_init__(self):
        self.category = TemplateCategory(self.category)
        if self.sub_type is not None:
            self.sub_type = TemplateSubType(self.sub_type)


# ============================================================================
# Registered records (what the registry stores)
# ============================================================================


@dataclass
class RegisteredCommand:
    plugin_name: str
    registration: CommandRegistration

    @property
    def name(self) -> str:
        return self.registration.name

    def to_dict(self) -> dict:
        return {
            "name": self.registration.name,
            "plugin": self.plugin_name,
            "description": self.registration.description,
            "args": [a.name for a in self.registration.args],
            "options": [o.name for o in self.registration.options],
        }


@dataclass
class RegisteredAgent:
    plugin_name: str
    registration: AgentRegistration

    @property
    def name(self) -> str:
        return self.registration.name

    def to_dict(self) -> dict:
        return {
            "name": self.registration.name,
            "plugin": self.plugin_name,
            "description": self.registration.description,
        }


@dataclass
class RegisteredHook:
    plugin_name: str
    registration: HookRegistration
    sequence: int

    def to_dict(self) -> dict:
        return {
            "plugin": self.plugin_name,
            "phase": self.registration.phase,
            "timing": self.registration.timing.value,
            "priority": self.registration.priority.value,
            "sequence": self.sequence,
        }


@dataclass
class RegisteredTemplate:
    plugin_name: str
    namespaced_name: str
    registration: TemplateRegistration

    def to_dict(self) -> dict:
        return {
            "name": self.namespaced_name,
            "plugin": self.plugin_name,
            "category": self.registration.category.value,
            "sub_type": self.registration.sub_type.value if self.registration.sub_type else None,
            "description": self.registration.description,
            "source_path": self.registration.source_path,
        }


# ============================================================================
# Hook execution
# ============================================================================


def deep_freeze(value: Any) -> Any:
    """Return a read-only copy of nested dicts/lists (dicts -> MappingProxyType, lists -> tuples)."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: deep_freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(deep_freeze(v) for v in value)
    if isinstance(value, set):
        return frozenset(deep_freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of deep_freeze, for serializing frozen snapshots."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, (tuple, frozenset)):
        return [thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class HookContext:
    """Read-only snapshot handed to every hook handler."""

    phase: str
    timing: HookTiming
    feature: str
    spec_metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    flow_state: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def create(
        cls,
        phase: Union[str, WorkflowPhase],
        timing: Union[str, HookTiming],
        feature: str,
        spec_metadata: Optional[Mapping[str, Any]] = None,
        flow_state: Optional[Mapping[str, Any]] = None,
    ) -> "HookContext":
        """Build a context, deep-freezing the metadata and flow state snapshots."""
        return cls(
            phase=WorkflowPhase(phase).value,
            timing=HookTiming(timing),
            feature=feature,
            spec_metadata=deep_freeze(dict(spec_metadata or {})),
            flow_state=deep_freeze(dict(flow_state or {})),
        )

    def with_timing(self, timing: Union[str, HookTiming]) -> "HookContext":
        return HookContext(self.phase, HookTiming(timing), self.feature, self.spec_metadata, self.flow_state)


@dataclass(frozen=True)
class HookResult:
    """Value a hook handler returns: continue (default) or veto."""

    action: str = "continue"
    reason: Optional[str] = None

    @classmethod
    def proceed(cls) -> "HookResult":
        return cls()

    @classmethod
    def veto(cls, reason: str) -> "HookResult":
        return cls(action="veto", reason=reason)

    @property
    def is_veto(self) -> bool:
        return self.action == "veto"

    @classmethod
    def coerce(cls, value: Any) -> "HookResult":
        """Accept HookResult, ``{"action": "veto", "reason": ...}`` dicts or None."""
        if isinstance(value, HookResult):
            return value
        if isinstance(value, Mapping) and value.get("action") == "veto":
            return cls.veto(str(value.get("reason") or ""))
        return cls.proceed()


@dataclass
class HookError:
    plugin_name: str
    error: str

    def to_dict(self) -> dict:
        return {"plugin_name": self.plugin_name, "error": self.error}


@dataclass
class HookExecutionResult:
    vetoed: bool = False
    veto_reason: Optional[str] = None
    veto_plugin: Optional[str] = None
    executed_hooks: int = 0
    errors: List[HookError] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "vetoed": self.vetoed,
            "veto_reason": self.veto_reason,
            "veto_plugin": self.veto_plugin,
            "executed_hooks": self.executed_hooks,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class PhaseRunResult:
    """Outcome of HookRunner.run_phase: pre hooks, the phase action, post hooks."""

    pre: HookExecutionResult
    post: Optional[HookExecutionResult] = None
    action_result: Any = None

    @property
    def vetoed(self) -> bool:
        return self.pre.vetoed


# ============================================================================
# Extension point results
# ============================================================================


@dataclass
class CommandExecutionResult:
    success: bool
    plugin_name: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"success": self.success, "plugin_name": self.plugin_name, "error": self.error}


@dataclass
class AgentInvokeOptions:
    prompt: str
    working_directory: str = "."
    model: Optional[str] = None
    timeout: Optional[float] = None
    on_output: Optional[Callable[[str], None]] = None
    on_error: Optional[Callable[[str], None]] = None


@dataclass
class AgentResult:
    success: bool
    output: str = ""
    error: Optional[str] = None
    plugin_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "plugin_name": self.plugin_name,
        }


@dataclass
class ServiceResolution:
    """Non-raising service lookup result."""

    success: bool
    instance: Any = None
    error: Optional[str] = None
    code: Optional[str] = None
    plugin_name: Optional[str] = None


# ============================================================================
# Load results
# ============================================================================


@dataclass
class LoadedPluginInfo:
    """Summary of a successfully activated plugin."""

    name: str
    version: str
    path: Optional[str] = None
    activated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "path": self.path,
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
        }


@dataclass
class SkippedPlugin:
    name: str
    reason: str

    def to_dict(self) -> dict:
        return {"name": self.name, "reason": self.reason}


@dataclass
class PluginLoadError:
    plugin_name: str
    error: str
    phase: LoadPhase

    def to_dict(self) -> dict:
        return {"plugin_name": self.plugin_name, "error": self.error, "phase": self.phase.value}


@dataclass
class PluginLoadResult:
    loaded: List[LoadedPluginInfo] = field(default_factory=list)
    skipped: List[SkippedPlugin] = field(default_factory=list)
    errors: List[PluginLoadError] = field(default_factory=list)
    plugins_disabled_globally: bool = False

    def to_dict(self) -> dict:
        return {
            "loaded": [p.to_dict() for p in self.loaded],
            "skipped": [s.to_dict() for s in self.skipped],
            "errors": [e.to_dict() for e in self.errors],
            "plugins_disabled_globally": self.plugins_disabled_globally,
        }


@dataclass
class PluginLoadConfig:
    """Inputs to PluginLoader.load_plugins.

    enabled_plugins of None loads every discovered plugin; a set restricts
    loading to exactly those names (an empty set loads nothing). Names in
    disabled_plugins are reported as skipped.
    """

    plugin_dirs: List[Any] = field(default_factory=list)
    host_version: str = "0.0.0"
    enabled_plugins: Optional[frozenset] = None
    disabled_plugins: frozenset = frozenset()
    scan_entry_points: bool = True
    plugin_configs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    project_config: Optional[Mapping[str, Any]] = None
