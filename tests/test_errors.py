"""Tests for the error hierarchy."""

from __future__ import annotations

from pagemod.errors import (
    BridgeError,
    BridgeTimeoutError,
    ElementDepthError,
    PageModError,
    PluginExecutionError,
    PluginNotFoundError,
    PluginValidationError,
    SelectorMissError,
    error_message,
)


class TestErrors:
    def test_hierarchy(self):
        assert issubclass(SelectorMissError, PluginExecutionError)
        assert issubclass(ElementDepthError, PluginExecutionError)
        assert issubclass(BridgeTimeoutError, BridgeError)
        assert issubclass(PluginNotFoundError, PageModError)

    def test_selector_miss(self):
        exc = SelectorMissError(".ad")
        assert str(exc) == "No elements found for selector: .ad"
        assert exc.selector == ".ad"
        assert exc.code == "SELECTOR_MISS"

    def test_timeout_details(self):
        exc = BridgeTimeoutError("EVAL_TEMPLATE", 5.0)
        assert exc.message == "EVAL_TEMPLATE timed out after 5.0s"
        assert exc.to_dict() == {
            "name": "BridgeTimeoutError",
            "code": "BRIDGE_TIMEOUT",
            "message": "EVAL_TEMPLATE timed out after 5.0s",
            "details": {"request_type": "EVAL_TEMPLATE", "timeout": 5.0},
        }

    def test_validation_errors_in_details(self):
        exc = PluginValidationError("Plugin failed validation", ["version: bad"])
        assert exc.errors == ["version: bad"]
        assert exc.to_dict()["details"] == {"errors": ["version: bad"]}

    def test_not_found_keeps_id(self):
        exc = PluginNotFoundError("ghost")
        assert exc.plugin_id == "ghost"
        assert exc.message == "Plugin not found: ghost"

    def test_error_message(self):
        assert error_message(ElementDepthError(4)) == "Element tree exceeds maximum depth of 4"
        assert error_message(ValueError("plain")) == "plain"
        assert error_message(KeyError()) == "KeyError"
