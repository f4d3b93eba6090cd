"""The document collaborator: a mutable tree the interpreter operates on.

Nodes are opaque to the interpreter. Implementations decide what a node is;
identity (``is``) is the only comparison the engine relies on.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, TypeAlias, runtime_checkable

Node: TypeAlias = Any
Position: TypeAlias = Literal["beforebegin", "afterbegin", "beforeend", "afterend"]

POSITIONS: frozenset[str] = frozenset({"beforebegin", "afterbegin", "beforeend", "afterend"})

# Attribute stamped on every inserted root; value is the operation id
OPERATION_MARKER = "data-plugin-operation"


@dataclass
class DomEvent:
    """A native event as seen by listeners."""

    type: str
    target: Node
    current_target: Node = None


@dataclass
class MutationRecord:
    added: list[Node] = field(default_factory=list)
    removed: list[Node] = field(default_factory=list)


Listener: TypeAlias = Callable[[DomEvent], Awaitable[None] | None]
MutationCallback: TypeAlias = Callable[[MutationRecord], None]


def marker_selector(operation_id: str) -> str:
    escaped = operation_id.replace("\\", "\\\\").replace('"', '\\"')
    return f'[{OPERATION_MARKER}="{escaped}"]'


@runtime_checkable
class Document(Protocol):
    def query_one(self, selector: str) -> Node | None: ...

    def query_all(self, selector: str) -> list[Node]: ...

    def query_one_within(self, node: Node, selector: str) -> Node | None: ...

    def create_element(self, tag: str, attributes: dict[str, str] | None = None) -> Node: ...

    def get_attribute(self, node: Node, name: str) -> str | None: ...

    def set_attribute(self, node: Node, name: str, value: str) -> None: ...

    def merge_style(self, node: Node, style: dict[str, str]) -> None: ...

    def get_text(self, node: Node) -> str: ...

    def set_text(self, node: Node, text: str) -> None: ...

    def set_html(self, node: Node, markup: str) -> None: ...

    def append_child(self, parent: Node, child: Node) -> None: ...

    def insert_adjacent(self, target: Node, position: Position, node: Node) -> None: ...

    def remove(self, node: Node) -> None: ...

    def iter_subtree(self, node: Node) -> Iterator[Node]: ...

    def is_element(self, node: Node) -> bool: ...

    def add_event_listener(self, node: Node, event_type: str, listener: Listener) -> None: ...

    def remove_event_listener(self, node: Node, event_type: str, listener: Listener) -> None: ...

    def describe(self, node: Node) -> dict[str, str]: ...

    def observe(self, callback: MutationCallback) -> Callable[[], None]: ...
