"""Operation interpreter: applies a plugin's operations to a document.

Operations run strictly in order. A fault in one operation is captured as a
failed OperationResult and the rest still run; only a DocumentError (the
document itself is unusable) aborts the plugin. Anything that needs code
evaluation (template placeholders, custom conditions, custom code, event
handlers) goes through the execution bridge.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, assert_never

from pagemod.bridge import ExecutionBridge
from pagemod.config import get_settings
from pagemod.document.base import OPERATION_MARKER, Document, DomEvent, Node, marker_selector
from pagemod.errors import DocumentError, ElementDepthError, SelectorMissError, error_message
from pagemod.event_manager import EventManager
from pagemod.logger import logger, plugin_context
from pagemod.schema import (
    Condition,
    DeleteOperation,
    Element,
    Event,
    ExecuteOperation,
    InsertOperation,
    Operation,
    Plugin,
    UpdateOperation,
)
from pagemod.types import ExecutionResult, OperationResult

TEMPLATE_PLACEHOLDER = re.compile(r"\{\{(.+?)\}\}")


def element_depth(element: Element) -> int:
    deepest = 0
    stack: list[tuple[Element, int]] = [(element, 1)]
    while stack:
        node, depth = stack.pop()
        deepest = max(deepest, depth)
        stack.extend((child, depth + 1) for child in node.children or [])
    return deepest


class OperationInterpreter:
    def __init__(
        self,
        document: Document,
        bridge: ExecutionBridge,
        *,
        event_manager: EventManager | None = None,
        max_element_depth: int | None = None,
    ) -> None:
        self._document = document
        self._bridge = bridge
        self.events = event_manager or EventManager(document)
        self.max_element_depth = (
            max_element_depth
            if max_element_depth is not None
            else get_settings().interpreter.max_element_depth
        )
        # "<plugin_id>:<operation_id>" for run-once code that already ran
        self._executed: set[str] = set()
        # One plugin at a time, even when callers overlap
        self._run_lock = asyncio.Lock()

    # --- plugin level ---

    async def execute_plugin(self, plugin: Plugin) -> ExecutionResult:
        """Run *plugin*'s operations in order. Overlapping calls queue up."""
        result = ExecutionResult(plugin_id=plugin.id)
        async with self._run_lock:
            await self._run_plugin(plugin, result)
        return result

    async def _run_plugin(self, plugin: Plugin, result: ExecutionResult) -> None:
        with plugin_context(plugin.id):
            for op in plugin.operations:
                if op.condition is not None and not await self.check_condition(op.condition):
                    logger.debug("Condition not met, skipping", operation_id=op.id)
                    continue
                result.results.append(await self._run_operation(plugin.id, op))

            logger.info(
                "Plugin executed",
                success=result.success,
                operations=len(result.results),
                failed=len(result.failed),
            )

    async def _run_operation(self, plugin_id: str, op: Operation) -> OperationResult:
        try:
            affected = await self.execute_operation(plugin_id, op)
        except DocumentError:
            raise
        except Exception as exc:
            logger.warning(
                "Operation failed",
                operation_id=op.id,
                err=error_message(exc),
            )
            return OperationResult(operation_id=op.id, success=False, error=error_message(exc))
        return OperationResult(operation_id=op.id, success=True, affected=affected)

    async def execute_operation(self, plugin_id: str, op: Operation) -> int:
        """Run one operation and return how many elements it affected."""
        match op:
            case InsertOperation():
                return await self._insert(plugin_id, op)
            case UpdateOperation():
                return self._update(op)
            case DeleteOperation():
                return self._delete(op)
            case ExecuteOperation():
                return await self._execute(plugin_id, op)
            case _:
                assert_never(op)

    def _require_targets(self, selector: str) -> list[Node]:
        targets = self._document.query_all(selector)
        if not targets:
            raise SelectorMissError(selector)
        return targets

    # --- operation kinds ---

    async def _insert(self, plugin_id: str, op: InsertOperation) -> int:
        params = op.params
        targets = self._require_targets(params.selector)
        inserted = 0
        for target in targets:
            # Document-wide: at most one element per operation id, ever
            if self._document.query_one(marker_selector(op.id)) is not None:
                logger.debug("Insert already present, skipping", operation_id=op.id)
                continue
            root, bindings = await self.build_element(params.element)
            # Re-checked: template evaluation above yields to the event loop
            if self._document.query_one(marker_selector(op.id)) is not None:
                logger.debug("Insert landed while building, skipping", operation_id=op.id)
                continue
            self._document.set_attribute(root, OPERATION_MARKER, op.id)
            self._document.insert_adjacent(target, params.position, root)
            for node, events in bindings:
                self.events.attach_events(node, events, plugin_id, self._dispatch_for(plugin_id))
            inserted += 1
        return inserted

    def _update(self, op: UpdateOperation) -> int:
        params = op.params
        targets = self._require_targets(params.selector)
        for target in targets:
            if params.style:
                self._document.merge_style(target, params.style)
            if params.attributes:
                for name, value in params.attributes.items():
                    self._document.set_attribute(target, name, value)
            if params.text_content is not None:
                self._document.set_text(target, params.text_content)
        return len(targets)

    def _delete(self, op: DeleteOperation) -> int:
        targets = self._require_targets(op.params.selector)
        for target in targets:
            for node in list(self._document.iter_subtree(target)):
                self.events.detach_events(node)
            self._document.remove(target)
        return len(targets)

    async def _execute(self, plugin_id: str, op: ExecuteOperation) -> int:
        key = f"{plugin_id}:{op.id}"
        once = op.params.run == "once"
        if once and key in self._executed:
            logger.debug("Run-once code already executed", operation_id=op.id)
            return 0
        if once:
            # Claimed before the await so an overlapping run sees it
            self._executed.add(key)
        try:
            await self._bridge.run_custom_code(op.params.code, {"event": None})
        except BaseException:
            self._executed.discard(key)
            raise
        return 0

    # --- element construction ---

    async def build_element(self, element: Element) -> tuple[Node, list[tuple[Node, list[Event]]]]:
        """Build a detached element tree.

        Returns the root and the (node, events) pairs still to be wired; the
        caller attaches them once the tree is in the document.
        """
        if element_depth(element) > self.max_element_depth:
            raise ElementDepthError(self.max_element_depth)

        root: Node = None
        bindings: list[tuple[Node, list[Event]]] = []
        stack: list[tuple[Element, Node]] = [(element, None)]
        while stack:
            item, parent = stack.pop()
            node = self._document.create_element(item.tag, item.attributes)
            if item.style:
                self._document.merge_style(node, item.style)
            if item.text_content is not None:
                self._document.set_text(node, await self.resolve_template(item.text_content))
            if item.inner_html is not None:
                self._document.set_html(node, await self.resolve_template(item.inner_html))

            if parent is None:
                root = node
            else:
                self._document.append_child(parent, node)
            if item.events:
                bindings.append((node, list(item.events)))

            # Reversed so children pop, and get appended, in declared order
            for child in reversed(item.children or []):
                stack.append((child, node))
        return root, bindings

    # --- templates ---

    async def resolve_template(self, text: str) -> str:
        """Substitute ``{{expr}}`` placeholders; failed ones stay as written."""
        found = list(TEMPLATE_PLACEHOLDER.finditer(text))
        if not found:
            return text
        values = await asyncio.gather(*(self._evaluate_placeholder(m.group(1)) for m in found))

        pieces: list[str] = []
        cursor = 0
        for m, value in zip(found, values, strict=True):
            pieces.append(text[cursor : m.start()])
            pieces.append(m.group(0) if value is None else value)
            cursor = m.end()
        pieces.append(text[cursor:])
        return "".join(pieces)

    async def _evaluate_placeholder(self, expression: str) -> str | None:
        try:
            return await self._bridge.evaluate(expression.strip())
        except Exception as exc:
            logger.warning("Template evaluation failed", expression=expression, err=str(exc))
            return None

    # --- conditions ---

    async def check_condition(self, condition: Condition) -> bool:
        """Evaluate a condition; any evaluation fault counts as not met."""
        try:
            match condition.type:
                case "exists":
                    return bool(condition.selector) and (
                        self._document.query_one(condition.selector) is not None
                    )
                case "notExists":
                    return bool(condition.selector) and (
                        self._document.query_one(condition.selector) is None
                    )
                case "matches":
                    if not condition.selector or condition.pattern is None:
                        return False
                    node = self._document.query_one(condition.selector)
                    if node is None:
                        return False
                    text = self._document.get_text(node)
                    return re.search(condition.pattern, text, re.IGNORECASE) is not None
                case "custom":
                    if not condition.code:
                        return False
                    return await self._bridge.evaluate_condition(condition.code)
        except DocumentError:
            raise
        except Exception as exc:
            logger.warning("Condition evaluation failed", type=condition.type, err=str(exc))
            return False
        return False

    # --- events ---

    def _dispatch_for(self, plugin_id: str):
        async def _dispatch(event: Event, dom_event: DomEvent) -> None:
            await self.dispatch_event(plugin_id, event, dom_event)

        return _dispatch

    async def dispatch_event(self, plugin_id: str, event: Event, dom_event: DomEvent) -> Any:
        """Run an event's code for a fired native event, if its condition holds."""
        with plugin_context(plugin_id, event_type=dom_event.type):
            if event.condition is not None and not await self.check_condition(event.condition):
                return None
            snapshot = {
                "type": dom_event.type,
                "target": self._document.describe(dom_event.target),
            }
            logger.debug("Dispatching event code")
            return await self._bridge.run_custom_code(event.code, {"event": snapshot})

    # --- lifecycle ---

    def clear_executed_operations(self) -> None:
        self._executed.clear()

    def has_executed(self, plugin_id: str, operation_id: str) -> bool:
        return f"{plugin_id}:{operation_id}" in self._executed

    def detach_plugin_events(self, plugin_id: str) -> int:
        return self.events.detach_owner_events(plugin_id)

    def detach_all_events(self) -> int:
        return self.events.detach_all_events()

    @property
    def listener_count(self) -> int:
        return self.events.listener_count()
