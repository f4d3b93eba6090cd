"""Exception hierarchy.

Per-operation faults (selector misses, bridge timeouts, custom code that
throws) are caught by the interpreter and turned into OperationResults.
Everything else propagates to the caller.
"""

from __future__ import annotations

from typing import Any


class PageModError(Exception):
    """Base for every error raised by pagemod."""

    code = "PAGEMOD_ERROR"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class PluginError(PageModError):
    code = "PLUGIN_ERROR"

    def __init__(self, message: str, plugin_id: str | None = None, **kwargs: Any) -> None:
        self.plugin_id = plugin_id
        super().__init__(message, **kwargs)


class PluginNotFoundError(PluginError):
    code = "PLUGIN_NOT_FOUND"

    def __init__(self, plugin_id: str) -> None:
        super().__init__(f"Plugin not found: {plugin_id}", plugin_id)


class PluginValidationError(PluginError):
    """Raised when plugin JSON fails to decode or validate."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message, details={"errors": self.errors})


class PluginExecutionError(PluginError):
    code = "EXECUTION_ERROR"

    def __init__(
        self,
        message: str,
        plugin_id: str | None = None,
        operation_id: str | None = None,
    ) -> None:
        self.operation_id = operation_id
        super().__init__(message, plugin_id, details={"operation_id": operation_id})


class SelectorMissError(PluginExecutionError):
    """A selector matched zero nodes. Fails only the current operation."""

    code = "SELECTOR_MISS"

    def __init__(self, selector: str) -> None:
        self.selector = selector
        super().__init__(f"No elements found for selector: {selector}")


class ElementDepthError(PluginExecutionError):
    code = "ELEMENT_TOO_DEEP"

    def __init__(self, max_depth: int) -> None:
        self.max_depth = max_depth
        super().__init__(f"Element tree exceeds maximum depth of {max_depth}")


class BridgeError(PageModError):
    """The other execution context rejected a request (ExecutionFault)."""

    code = "BRIDGE_ERROR"


class BridgeTimeoutError(BridgeError):
    """No response from the other execution context in time."""

    code = "BRIDGE_TIMEOUT"

    def __init__(self, request_type: str, timeout: float) -> None:
        self.request_type = request_type
        self.timeout = timeout
        super().__init__(
            f"{request_type} timed out after {timeout}s",
            details={"request_type": request_type, "timeout": timeout},
        )


class DocumentError(PageModError):
    """The document collaborator itself failed (e.g. detached context).

    Unlike per-operation faults this aborts the whole plugin run.
    """

    code = "DOCUMENT_ERROR"


class StorageError(PageModError):
    code = "STORAGE_ERROR"


def error_message(exc: BaseException) -> str:
    """User-facing message for any exception."""
    if isinstance(exc, PageModError):
        return exc.message
    text = str(exc)
    return text or type(exc).__name__
