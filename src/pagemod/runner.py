"""Per-page plugin session.

Loads the plugins that apply to a page, filters them through the security
gate and the page's eval policy, runs them oldest-first, and re-runs the
active set (debounced) when something other than the engine adds nodes to
the document.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from pagemod.bridge import ExecutionBridge
from pagemod.config import get_settings
from pagemod.document.base import OPERATION_MARKER, Document, MutationRecord, Node
from pagemod.interpreter import OperationInterpreter
from pagemod.logger import logger
from pagemod.plugin_utils import has_custom_code_execution
from pagemod.registry import PluginRegistry
from pagemod.schema import Plugin
from pagemod.security import gate
from pagemod.types import ExecutionResult, SecurityLevel
from pagemod.utils import create_background_task


@dataclass
class BlockedPlugin:
    plugin_id: str
    reason: str


class PageSession:
    def __init__(
        self,
        document: Document,
        registry: PluginRegistry,
        bridge: ExecutionBridge,
        url: str,
        *,
        interpreter: OperationInterpreter | None = None,
        debounce_seconds: float | None = None,
    ) -> None:
        self.document = document
        self.registry = registry
        self.url = url
        self._bridge = bridge
        self.interpreter = interpreter or OperationInterpreter(document, bridge)
        self._debounce = (
            debounce_seconds
            if debounce_seconds is not None
            else get_settings().runner.debounce_seconds
        )
        # Insertion order is execution order (oldest plugin first)
        self._active: dict[str, Plugin] = {}
        self.blocked: list[BlockedPlugin] = []
        self.last_results: list[ExecutionResult] = []
        self._pass_lock = asyncio.Lock()
        self._timer: asyncio.TimerHandle | None = None
        self._unsubscribe = None

    @property
    def active_plugins(self) -> list[Plugin]:
        return list(self._active.values())

    @property
    def rerun_pending(self) -> bool:
        return self._timer is not None

    # -- public API ----------------------------------------------------------

    async def start(self) -> list[ExecutionResult]:
        """Run every applicable plugin once and start watching for mutations."""
        settings = await self.registry.get_settings()
        if not settings.plugins_enabled:
            logger.info("Plugins disabled, skipping page", url=self.url)
            return []

        plugins = await self.registry.for_url(self.url)
        runnable = await self.filter_runnable(plugins, settings.security_level)
        logger.info(
            "Running plugins for page",
            url=self.url,
            applicable=len(plugins),
            runnable=len(runnable),
        )
        results = await self.execute_plugins(runnable)
        if self._unsubscribe is None:
            self._unsubscribe = self.document.observe(self._on_mutation)
        return results

    async def filter_runnable(
        self, plugins: list[Plugin], level: SecurityLevel | str
    ) -> list[Plugin]:
        self.blocked = []
        allowed: list[Plugin] = []
        for plugin in plugins:
            if not plugin.enabled:
                continue
            decision = gate.evaluate(plugin, level)
            if not decision.allowed:
                self._block(plugin.id, decision.reason or "blocked by security level")
                continue
            allowed.append(plugin)

        needs_eval = [p for p in allowed if has_custom_code_execution(p)]
        if needs_eval and not await self._bridge.allows_eval():
            for plugin in needs_eval:
                self._block(plugin.id, "page content policy blocks custom code execution")
            allowed = [p for p in allowed if not has_custom_code_execution(p)]
        return allowed

    async def execute_plugins(self, plugins: list[Plugin]) -> list[ExecutionResult]:
        """Run *plugins* given in registry order (newest first) oldest-first."""
        return await self._run_pass(list(reversed(plugins)))

    async def execute_plugin(self, plugin: Plugin) -> ExecutionResult:
        """Run one plugin on demand."""
        results = await self._run_pass([plugin])
        return results[0]

    async def disable_plugin(self, plugin_id: str) -> None:
        self._active.pop(plugin_id, None)
        detached = self.interpreter.detach_plugin_events(plugin_id)
        logger.info("Plugin disabled on page", plugin_id=plugin_id, listeners=detached)

    def clear(self) -> None:
        """Forget active plugins and run-once memory so a fresh run starts over."""
        self._cancel_timer()
        self._active.clear()
        self.interpreter.clear_executed_operations()

    def stop(self) -> None:
        self._cancel_timer()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # -- internals -----------------------------------------------------------

    def _block(self, plugin_id: str, reason: str) -> None:
        logger.warning("Plugin blocked", plugin_id=plugin_id, reason=reason)
        self.blocked.append(BlockedPlugin(plugin_id=plugin_id, reason=reason))

    async def _run_pass(self, ordered: list[Plugin]) -> list[ExecutionResult]:
        # One pass at a time: a debounced re-run never interleaves with another
        async with self._pass_lock:
            results = []
            for plugin in ordered:
                result = await self.interpreter.execute_plugin(plugin)
                results.append(result)
                if result.success:
                    newly_active = plugin.id not in self._active
                    self._active[plugin.id] = plugin
                    if newly_active:
                        await self._record_usage(plugin.id)
            self.last_results = results
            return results

    async def _record_usage(self, plugin_id: str) -> None:
        try:
            await self.registry.record_usage(plugin_id)
        except Exception as exc:
            # Usage stats are best-effort; the plugin already ran
            logger.warning("Failed to record plugin usage", plugin_id=plugin_id, err=str(exc))

    def _is_engine_node(self, node: Node) -> bool:
        if self.document.get_attribute(node, OPERATION_MARKER) is not None:
            return True
        return self.document.query_one_within(node, f"[{OPERATION_MARKER}]") is not None

    def _on_mutation(self, record: MutationRecord) -> None:
        if not self._active:
            return
        foreign = [
            n for n in record.added if self.document.is_element(n) and not self._is_engine_node(n)
        ]
        if foreign:
            self._reset_timer()

    def _reset_timer(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(
            self._debounce,
            lambda: create_background_task(self._rerun(), name="page-rerun"),
        )

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _rerun(self) -> None:
        self._timer = None
        plugins = self.active_plugins
        if not plugins:
            return
        logger.debug("Re-running active plugins after DOM change", count=len(plugins))
        await self._run_pass(plugins)
