"""Cross-context execution bridge.

The interpreter's own context may not be allowed to evaluate code (the
page's content policy can bar dynamic evaluation). Template expressions,
custom conditions and custom code are therefore posted as request messages
to another context (the "script world") and answered asynchronously. Every
request carries a ``request_id``; the reply with the same id resolves it.
Requests are bounded by a timeout and never hang.

Message shapes::

    {"type": "EVAL_TEMPLATE", "request_id": "...", "expression": "..."}
    {"type": "EVAL_CONDITION", "request_id": "...", "code": "..."}
    {"type": "EXECUTE_CUSTOM_JS", "request_id": "...", "code": "...", "context": {...}}
    {"type": "CHECK_CSP", "request_id": "..."}

    {"type": "<REQUEST>_RESULT", "request_id": "...", "success": bool,
     "result": ..., "error": "..."}
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Callable
from typing import Any, Protocol, TypeAlias

from pagemod.config import get_settings
from pagemod.errors import BridgeError, BridgeTimeoutError
from pagemod.logger import logger
from pagemod.utils import create_background_task

EVAL_TEMPLATE = "EVAL_TEMPLATE"
EVAL_CONDITION = "EVAL_CONDITION"
EXECUTE_CUSTOM_JS = "EXECUTE_CUSTOM_JS"
CHECK_CSP = "CHECK_CSP"

REQUEST_TYPES = frozenset({EVAL_TEMPLATE, EVAL_CONDITION, EXECUTE_CUSTOM_JS, CHECK_CSP})
RESPONSE_TYPES = frozenset(f"{t}_RESULT" for t in REQUEST_TYPES)

Message: TypeAlias = dict[str, Any]
Post: TypeAlias = Callable[[Message], None]


class ExecutionBridge(Protocol):
    """What the interpreter needs from the other context."""

    async def evaluate(self, expression: str) -> str: ...

    async def evaluate_condition(self, code: str) -> bool: ...

    async def run_custom_code(self, code: str, context: dict[str, Any]) -> Any: ...

    async def allows_eval(self) -> bool: ...


def response_type(request_type: str) -> str:
    return f"{request_type}_RESULT"


# ---------------------------------------------------------------------------
# Requesting side
# ---------------------------------------------------------------------------


class ChannelBridge:
    """Request/response bridge over a message-posting transport."""

    def __init__(
        self,
        post: Post | None = None,
        *,
        timeout: float | None = None,
        probe_timeout: float | None = None,
    ) -> None:
        s = get_settings()
        self._post = post
        self.timeout = timeout if timeout is not None else s.bridge.timeout_seconds
        self.probe_timeout = (
            probe_timeout if probe_timeout is not None else s.bridge.probe_timeout_seconds
        )
        self._pending: dict[str, tuple[str, asyncio.Future[Any]]] = {}

    def connect(self, post: Post) -> None:
        self._post = post

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def deliver(self, message: Message) -> None:
        """Entry point for responses coming back from the other context."""
        request_id = message.get("request_id")
        entry = self._pending.get(request_id) if isinstance(request_id, str) else None
        if entry is None:
            # Late reply after a timeout, or traffic meant for someone else
            logger.debug("Ignoring unmatched bridge message", type=message.get("type"))
            return
        request_type, future = entry
        if message.get("type") != response_type(request_type):
            logger.debug(
                "Ignoring bridge reply of wrong type",
                expected=response_type(request_type),
                got=message.get("type"),
            )
            return
        del self._pending[request_id]
        if future.done():
            return
        if message.get("success"):
            future.set_result(message.get("result"))
        else:
            future.set_exception(BridgeError(message.get("error") or "Unknown error"))

    async def _request(
        self, request_type: str, payload: dict[str, Any], *, timeout: float
    ) -> Any:
        if self._post is None:
            raise BridgeError("Bridge is not connected")
        request_id = f"{request_type.lower()}-{uuid.uuid4().hex}"
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (request_type, future)
        try:
            self._post({"type": request_type, "request_id": request_id, **payload})
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            raise BridgeTimeoutError(request_type, timeout) from None
        finally:
            self._pending.pop(request_id, None)

    async def evaluate(self, expression: str) -> str:
        result = await self._request(
            EVAL_TEMPLATE, {"expression": expression}, timeout=self.timeout
        )
        return "" if result is None else str(result)

    async def evaluate_condition(self, code: str) -> bool:
        result = await self._request(EVAL_CONDITION, {"code": code}, timeout=self.timeout)
        return bool(result)

    async def run_custom_code(self, code: str, context: dict[str, Any]) -> Any:
        return await self._request(
            EXECUTE_CUSTOM_JS, {"code": code, "context": context}, timeout=self.timeout
        )

    async def allows_eval(self) -> bool:
        """Probe whether the page permits dynamic evaluation. False on any failure."""
        try:
            return bool(await self._request(CHECK_CSP, {}, timeout=self.probe_timeout))
        except BridgeError as exc:
            logger.warning("Eval permission probe failed", err=str(exc))
            return False

    def close(self) -> None:
        """Fail every in-flight request."""
        for request_type, future in self._pending.values():
            if not future.done():
                future.set_exception(BridgeError(f"{request_type} cancelled: bridge closed"))
        self._pending.clear()


# ---------------------------------------------------------------------------
# Answering side
# ---------------------------------------------------------------------------


class ScriptEvaluator(Protocol):
    """Runs code in the script world. Methods may be sync or async."""

    def evaluate(self, expression: str) -> Any: ...

    def evaluate_condition(self, code: str) -> Any: ...

    def run(self, code: str, context: dict[str, Any]) -> Any: ...

    def allows_eval(self) -> Any: ...


class ScriptUnavailableError(Exception):
    """Raised by evaluators that cannot run scripts at all."""


class StaticEvaluator:
    """Evaluator for documents without a script engine (static HTML)."""

    def evaluate(self, expression: str) -> Any:
        raise ScriptUnavailableError("Script evaluation is not available for static documents")

    def evaluate_condition(self, code: str) -> Any:
        raise ScriptUnavailableError("Script evaluation is not available for static documents")

    def run(self, code: str, context: dict[str, Any]) -> Any:
        raise ScriptUnavailableError("Script execution is not available for static documents")

    def allows_eval(self) -> bool:
        return False


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ScriptWorld:
    """Receives bridge requests, runs them on an evaluator, posts replies."""

    def __init__(self, evaluator: ScriptEvaluator, reply: Post) -> None:
        self._evaluator = evaluator
        self._reply = reply

    def receive(self, message: Message) -> None:
        if message.get("type") not in REQUEST_TYPES:
            return
        create_background_task(self._answer(message), name=f"bridge-{message['type']}")

    async def _answer(self, message: Message) -> None:
        self._reply(await self.handle(message))

    async def handle(self, message: Message) -> Message:
        request_type = message["type"]
        reply: Message = {
            "type": response_type(request_type),
            "request_id": message.get("request_id"),
        }
        try:
            match request_type:
                case "EVAL_TEMPLATE":
                    result = await _maybe_await(self._evaluator.evaluate(message["expression"]))
                    if not isinstance(result, str):
                        result = "" if result is None else str(result)
                case "EVAL_CONDITION":
                    result = bool(
                        await _maybe_await(self._evaluator.evaluate_condition(message["code"]))
                    )
                case "EXECUTE_CUSTOM_JS":
                    result = await _maybe_await(
                        self._evaluator.run(message["code"], message.get("context") or {})
                    )
                case "CHECK_CSP":
                    result = bool(await _maybe_await(self._evaluator.allows_eval()))
                case _:
                    raise ValueError(f"Unknown request type: {request_type!r}")
        except Exception as exc:
            return {**reply, "success": False, "error": str(exc) or type(exc).__name__}
        return {**reply, "success": True, "result": result}


def connect_world(bridge: ChannelBridge, evaluator: ScriptEvaluator) -> ScriptWorld:
    """Wire *bridge* and a new ScriptWorld around *evaluator* to each other."""
    world = ScriptWorld(evaluator, reply=bridge.deliver)
    bridge.connect(world.receive)
    return world
