"""Hook runner - executes pre/post-phase workflow hooks registered by plugins."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Union

from harness.constants import PLUGIN_HOOK_TIMEOUT
from harness.plugins.models import (
    HookContext,
    HookError,
    HookExecutionResult,
    HookRegistration,
    HookResult,
    HookTiming,
    PhaseRunResult,
    RegisteredHook,
    WorkflowPhase,
)
from harness.plugins.registry import ExtensionRegistry

logger = logging.getLogger(__name__)


class _HookTimeout(Exception):
    """Raised by the runner itself, never by handler code."""


class HookRunner:
    """Runs hooks from the registry's hook table.

    Hooks run strictly one at a time, ordered by priority tier and then
    registration order. Each handler call is bounded by ``timeout`` seconds;
    a handler that raises or times out is recorded against its plugin and
    the pass continues. Only pre-phase hooks can veto.
    """

    def __init__(self, registry: ExtensionRegistry, timeout: float = PLUGIN_HOOK_TIMEOUT):
        self.registry = registry
        self.timeout = timeout

    def register_hook(self, plugin_name: str, registration: HookRegistration) -> RegisteredHook:
        return self.registry.register_hook(plugin_name, registration)

    async def run_pre_phase_hooks(
        self, phase: Union[str, WorkflowPhase], context: HookContext
    ) -> HookExecutionResult:
        """Run pre-phase hooks; the first veto stops the pass."""
        return await self._run(phase, HookTiming.PRE, context)

    async def run_post_phase_hooks(
        self, phase: Union[str, WorkflowPhase], context: HookContext
    ) -> HookExecutionResult:
        """Run post-phase hooks; veto results are ignored."""
        return await self._run(phase, HookTiming.POST, context)

    async def run_phase(
        self,
        phase: Union[str, WorkflowPhase],
        context: HookContext,
        action: Optional[Callable[[], Any]] = None,
    ) -> PhaseRunResult:
        """Wrap a phase transition with its hooks.

        When a pre-phase hook vetoes, neither the action nor any post-phase
        hook runs. Exceptions raised by the action itself propagate.
        """
        pre = await self.run_pre_phase_hooks(phase, context)
        if pre.vetoed:
            logger.info(f"Phase '{WorkflowPhase(phase).value}' vetoed by plugin '{pre.veto_plugin}': {pre.veto_reason}")
            return PhaseRunResult(pre=pre)

        action_result = None
        if action is not None:
            action_result = action()
            if inspect.isawaitable(action_result):
                action_result = await action_result

        post = await self.run_post_phase_hooks(phase, context)
        return PhaseRunResult(pre=pre, post=post, action_result=action_result)

    async def _run(self, phase: Union[str, WorkflowPhase], timing: HookTiming, context: HookContext) -> HookExecutionResult:
        phase = WorkflowPhase(phase).value
        hooks = self.registry.get_hooks(phase, timing)
        result = HookExecutionResult()
        if not hooks:
            return result

        if context.timing != timing:
            context = context.with_timing(timing)

        for hook in hooks:
            plugin_name = hook.plugin_name
            try:
                outcome = await self._invoke(hook, context)
            except _HookTimeout:
                message = f'Hook from plugin "{plugin_name}" timed out after {self.timeout}s'
                logger.error(f"[plugin:{plugin_name}] {timing.value.capitalize()}-phase hook for '{phase}' timed out")
                result.errors.append(HookError(plugin_name=plugin_name, error=message))
                result.executed_hooks += 1
                continue
            except Exception as e:
                logger.error(f"[plugin:{plugin_name}] {timing.value.capitalize()}-phase hook for '{phase}' failed: {e}")
                result.errors.append(HookError(plugin_name=plugin_name, error=str(e) or type(e).__name__))
                result.executed_hooks += 1
                continue

            result.executed_hooks += 1
            if timing == HookTiming.PRE and outcome.is_veto:
                result.vetoed = True
                result.veto_reason = outcome.reason
                result.veto_plugin = plugin_name
                logger.info(f"[plugin:{plugin_name}] Vetoed '{phase}': {outcome.reason}")
                break

        return result

    async def _invoke(self, hook: RegisteredHook, context: HookContext) -> HookResult:
        outcome = hook.registration.handler(context)
        if inspect.isawaitable(outcome):
            # A TimeoutError raised by the handler is an ordinary hook error;
            # only the runner's own deadline is reported as a timeout
            task = asyncio.ensure_future(outcome)
            try:
                done, _ = await asyncio.wait({task}, timeout=self.timeout)
            except asyncio.CancelledError:
                task.cancel()
                raise
            if not done:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                raise _HookTimeout()
            outcome = task.result()
        return HookResult.coerce(outcome)
