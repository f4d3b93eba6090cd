"""Shared test fixtures for pagemod."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pagemod.bridge import ChannelBridge, connect_world
from pagemod.config import reset_settings
from pagemod.document import SoupDocument
from pagemod.interpreter import OperationInterpreter
from pagemod.registry import PluginRegistry
from pagemod.schema import Plugin
from pagemod.storage import MemoryStore

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures, importable by test files)
# ---------------------------------------------------------------------------

PAGE_HTML = (
    "<html><body>"
    '<div id="test-container">'
    '<div class="target" id="first">First</div>'
    '<div class="target" id="second">Second</div>'
    '<p class="note">Hello World</p>'
    "</div>"
    "</body></html>"
)


def make_plugin(**overrides: Any) -> Plugin:
    """Create a valid Plugin; keyword overrides use the JSON (camelCase) keys.

    Usage::

        p = make_plugin(id="p1", operations=[update_op(selector=".x")])
        p = make_plugin(targetDomains=["*.github.com"])
    """
    data: dict[str, Any] = {
        "id": "test-plugin",
        "name": "Test Plugin",
        "version": "1.0.0",
        "targetDomains": ["example.com"],
        "enabled": True,
        "operations": [update_op()],
    }
    data.update(overrides)
    return Plugin.model_validate(data)


def insert_op(
    op_id: str = "insert-1",
    *,
    selector: str = "#first",
    position: str = "beforeend",
    element: dict[str, Any] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    return {
        "id": op_id,
        "description": "insert",
        "type": "insert",
        "params": {
            "selector": selector,
            "position": position,
            "element": element or {"tag": "span", "textContent": "Inserted"},
        },
        **extra,
    }


def update_op(
    op_id: str = "update-1", *, selector: str = ".target", **params: Any
) -> dict[str, Any]:
    condition = params.pop("condition", None)
    op: dict[str, Any] = {
        "id": op_id,
        "description": "update",
        "type": "update",
        "params": {"selector": selector, **params},
    }
    if condition is not None:
        op["condition"] = condition
    return op


def delete_op(op_id: str = "delete-1", *, selector: str = ".note") -> dict[str, Any]:
    params = {"selector": selector}
    return {"id": op_id, "description": "delete", "type": "delete", "params": params}


def execute_op(op_id: str = "execute-1", *, code: str = "doThing()", run: str | None = None):
    params: dict[str, Any] = {"code": code}
    if run is not None:
        params["run"] = run
    return {"id": op_id, "description": "execute", "type": "execute", "params": params}


class FakeEvaluator:
    """Script-world evaluator with scripted answers.

    ``values`` maps template expressions (and condition code) to results.
    Anything in ``fail`` raises; anything in ``hang`` never answers.
    """

    def __init__(
        self,
        values: dict[str, Any] | None = None,
        *,
        allow_eval: bool = True,
        fail: set[str] | None = None,
        hang: set[str] | None = None,
    ) -> None:
        self.values = values or {}
        self.allow_eval = allow_eval
        self.fail = fail or set()
        self.hang = hang or set()
        self.evaluated: list[str] = []
        self.runs: list[tuple[str, dict[str, Any]]] = []
        self._hanging: list[asyncio.Future[Any]] = []

    async def _answer(self, key: str) -> Any:
        if key in self.hang:
            future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
            self._hanging.append(future)
            return await future
        if key in self.fail:
            raise RuntimeError(f"boom: {key}")
        return self.values.get(key, f"<{key}>")

    async def evaluate(self, expression: str) -> Any:
        self.evaluated.append(expression)
        return await self._answer(expression)

    async def evaluate_condition(self, code: str) -> Any:
        self.evaluated.append(code)
        return await self._answer(code)

    async def run(self, code: str, context: dict[str, Any]) -> Any:
        self.runs.append((code, context))
        return await self._answer(code)

    async def allows_eval(self) -> bool:
        return self.allow_eval

    def release(self) -> None:
        for future in self._hanging:
            if not future.done():
                future.cancel()
        self._hanging.clear()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def doc() -> SoupDocument:
    return SoupDocument(PAGE_HTML)


@pytest.fixture
async def evaluator():
    ev = FakeEvaluator()
    yield ev
    ev.release()


@pytest.fixture
def bridge(evaluator: FakeEvaluator) -> ChannelBridge:
    b = ChannelBridge(timeout=0.2, probe_timeout=0.1)
    connect_world(b, evaluator)
    return b


@pytest.fixture
def interpreter(doc: SoupDocument, bridge: ChannelBridge) -> OperationInterpreter:
    return OperationInterpreter(doc, bridge, max_element_depth=8)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def registry(store: MemoryStore) -> PluginRegistry:
    return PluginRegistry(store)
