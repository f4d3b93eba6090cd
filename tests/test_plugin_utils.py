"""Tests for plugin helper functions."""

from __future__ import annotations

import re

import pytest
from conftest import execute_op, insert_op, make_plugin, update_op

from pagemod.plugin_utils import (
    compare_versions,
    generate_plugin_id,
    generate_unique_id,
    has_custom_code_execution,
    plugin_summary,
)


class TestIds:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("My Cool Plugin!", "my-cool-plugin"),
            ("  GitHub -- Copy Button ", "github-copy-button"),
            ("already-slugged", "already-slugged"),
        ],
    )
    def test_generate_plugin_id(self, name, expected):
        assert generate_plugin_id(name) == expected

    def test_generate_unique_id(self):
        first = generate_unique_id("op")
        assert re.fullmatch(r"op-\d{13}-[0-9a-f]{6}", first)
        assert generate_unique_id("op") != first
        assert re.fullmatch(r"\d{13}-[0-9a-f]{6}", generate_unique_id())


class TestVersions:
    @pytest.mark.parametrize(
        ("v1", "v2", "expected"),
        [
            ("1.0.0", "1.0.0", 0),
            ("1.2.0", "1.10.0", -1),
            ("2.0.0", "1.99.99", 1),
            ("1.0", "1.0.0", 0),
            ("1.0.1", "1", 1),
        ],
    )
    def test_compare_versions(self, v1, v2, expected):
        assert compare_versions(v1, v2) == expected


class TestSummary:
    def test_summary(self):
        plugin = make_plugin(name="Copy Button", targetDomains=["github.com"])
        assert plugin_summary(plugin) == "Copy Button v1.0.0 (1 operations, github.com)"

    def test_summary_truncates_domains(self):
        plugin = make_plugin(targetDomains=["a.com", "b.com", "c.com", "d.com"])
        assert plugin_summary(plugin).endswith("(1 operations, a.com, b.com +2)")


class TestCustomCode:
    def test_plain_update_needs_no_eval(self):
        assert not has_custom_code_execution(make_plugin())

    def test_execute_needs_eval(self):
        assert has_custom_code_execution(make_plugin(operations=[execute_op()]))

    def test_custom_condition_needs_eval(self):
        op = update_op(condition={"type": "custom", "code": "true"})
        assert has_custom_code_execution(make_plugin(operations=[op]))

    def test_nested_event_needs_eval(self):
        element = {
            "tag": "div",
            "children": [{"tag": "button", "events": [{"type": "click", "code": "go()"}]}],
        }
        assert has_custom_code_execution(make_plugin(operations=[insert_op(element=element)]))
