"""Tests for legacy plugin migration."""

from __future__ import annotations

import pytest
from conftest import make_plugin, update_op

from pagemod.errors import PluginValidationError
from pagemod.migration import (
    auto_migrate_plugin,
    is_legacy_plugin,
    load_plugin,
    migrate_plugin,
)


def _legacy(*operations, **fields) -> dict:
    return {
        "id": "legacy",
        "name": "Legacy",
        "version": "0.9.0",
        "targetDomains": ["example.com"],
        "operations": list(operations),
        **fields,
    }


class TestDetection:
    def test_flat_operations_are_legacy(self):
        assert is_legacy_plugin(_legacy({"type": "hide", "selector": ".ad"}))

    def test_params_operations_are_current(self):
        assert not is_legacy_plugin(_legacy(update_op()))

    @pytest.mark.parametrize("data", [None, [], {}, {"operations": []}, {"operations": ["x"]}])
    def test_malformed_input_is_not_legacy(self, data):
        assert not is_legacy_plugin(data)


class TestMigrateOperations:
    def test_action_vocabulary(self):
        result = migrate_plugin(
            _legacy(
                {"id": "a", "type": "hide", "selector": ".ad"},
                {"id": "b", "type": "show", "selector": ".menu"},
                {"id": "c", "type": "style", "selector": "h1", "style": {"color": "red"}},
                {
                    "id": "d",
                    "type": "modify",
                    "selector": "a",
                    "attributes": {"rel": "nofollow"},
                    "textContent": "link",
                },
                {"id": "e", "type": "remove", "selector": ".banner"},
                {"id": "f", "type": "execute", "code": "init()"},
                {
                    "id": "g",
                    "type": "insert",
                    "selector": "body",
                    "element": {"tag": "div"},
                },
            )
        )
        assert result.success
        ops = result.plugin["operations"]
        assert [op["type"] for op in ops] == [
            "update",
            "update",
            "update",
            "update",
            "delete",
            "execute",
            "insert",
        ]
        assert ops[0]["params"]["style"] == {"display": "none"}
        assert ops[1]["params"]["style"] == {"display": ""}
        assert ops[2]["params"]["style"] == {"color": "red"}
        assert ops[3]["params"] == {
            "selector": "a",
            "attributes": {"rel": "nofollow"},
            "textContent": "link",
        }
        assert ops[5]["params"] == {"code": "init()", "run": "once"}
        assert ops[6]["params"]["position"] == "beforeend"

    def test_missing_ids_and_version_are_filled_with_warnings(self):
        data = _legacy({"type": "hide", "selector": ".ad"})
        del data["version"]
        result = migrate_plugin(data)

        assert result.success
        assert result.plugin["version"] == "1.0.0"
        assert result.plugin["operations"][0]["id"] == "op-1"
        assert len(result.warnings) == 2

    def test_condition_is_carried_over(self):
        cond = {"type": "exists", "selector": ".x"}
        result = migrate_plugin(_legacy({"type": "hide", "selector": ".ad", "condition": cond}))
        assert result.plugin["operations"][0]["condition"] == cond

    @pytest.mark.parametrize(
        ("op", "fragment"),
        [
            ({"type": "replace", "selector": ".a"}, "cannot be converted"),
            ({"type": "teleport", "selector": ".a"}, "unknown operation type"),
            ({"type": "hide"}, "requires a selector"),
            ({"type": "insert", "selector": "body"}, "requires an element"),
            ({"type": "execute"}, "requires code"),
        ],
    )
    def test_unconvertible_operations_fail(self, op, fragment):
        result = migrate_plugin(_legacy(op))
        assert not result.success
        assert result.plugin is None
        assert fragment in result.errors[0]

    def test_source_dict_is_not_modified(self):
        data = _legacy({"type": "hide", "selector": ".ad"})
        migrate_plugin(data)
        assert data["operations"] == [{"type": "hide", "selector": ".ad"}]


class TestLoadPlugin:
    def test_current_format_passes_through(self):
        data = make_plugin().to_json_dict()
        assert auto_migrate_plugin(data).plugin is data
        assert load_plugin(data) == make_plugin()

    def test_plugin_instance_is_returned_as_is(self):
        plugin = make_plugin()
        assert load_plugin(plugin) is plugin

    def test_legacy_is_migrated_and_validated(self):
        plugin = load_plugin(_legacy({"type": "remove", "selector": ".ad"}))
        assert plugin.operations[0].type == "delete"
        assert plugin.version == "0.9.0"

    def test_failed_migration_raises(self):
        with pytest.raises(PluginValidationError) as exc_info:
            load_plugin(_legacy({"type": "replace", "selector": ".a"}))
        assert exc_info.value.errors

    def test_validation_errors_are_formatted(self):
        data = make_plugin().to_json_dict()
        data["version"] = "v1"
        with pytest.raises(PluginValidationError) as exc_info:
            load_plugin(data)
        assert exc_info.value.errors == [
            "version: Value error, version must be semver (e.g. 1.0.0)"
        ]

    def test_non_object_raises(self):
        with pytest.raises(PluginValidationError, match="JSON object"):
            load_plugin(["not", "a", "plugin"])
