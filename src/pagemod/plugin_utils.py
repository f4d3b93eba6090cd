"""Small helpers over plugin definitions."""

from __future__ import annotations

import re
import secrets
from datetime import UTC, datetime

from pagemod.schema import Element, ExecuteOperation, InsertOperation, Plugin

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def generate_plugin_id(name: str) -> str:
    """``"My Cool Plugin!"`` -> ``"my-cool-plugin"``."""
    return _NON_ALNUM.sub("-", name.lower()).strip("-")


def generate_unique_id(prefix: str = "") -> str:
    """Millisecond timestamp plus a random suffix, e.g. ``op-1699876543210-3f9a1c``."""
    ms = int(datetime.now(UTC).timestamp() * 1000)
    uid = f"{ms}-{secrets.token_hex(3)}"
    return f"{prefix}-{uid}" if prefix else uid


def compare_versions(v1: str, v2: str) -> int:
    """1 if v1 > v2, -1 if v1 < v2, 0 if equal. Missing parts count as 0."""

    def _parts(v: str) -> list[int]:
        out = []
        for chunk in v.split(".")[:3]:
            out.append(int(chunk) if chunk.isdigit() else 0)
        return out + [0] * (3 - len(out))

    p1, p2 = _parts(v1), _parts(v2)
    return (p1 > p2) - (p1 < p2)


def plugin_summary(plugin: Plugin) -> str:
    """``"Copy Button v1.0.0 (3 operations, github.com)"``."""
    name = plugin.name or plugin.id
    domains = ", ".join(plugin.target_domains[:2])
    more = len(plugin.target_domains) - 2
    more_text = f" +{more}" if more > 0 else ""
    return f"{name} v{plugin.version} ({len(plugin.operations)} operations, {domains}{more_text})"


def _has_events(element: Element) -> bool:
    stack = [element]
    while stack:
        node = stack.pop()
        if node.events:
            return True
        stack.extend(node.children or [])
    return False


def has_custom_code_execution(plugin: Plugin) -> bool:
    """Whether running *plugin* needs dynamic code evaluation anywhere."""
    for op in plugin.operations:
        if isinstance(op, ExecuteOperation):
            return True
        if op.condition is not None and op.condition.type == "custom":
            return True
        if isinstance(op, InsertOperation) and _has_events(op.params.element):
            return True
    return False
