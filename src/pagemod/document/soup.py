"""BeautifulSoup-backed document for static HTML.

Selectors go through soupsieve (``Tag.select``). Listeners and mutation
observers are kept here since static markup has no native event loop;
``dispatch_event`` drives them.
"""

from __future__ import annotations

import contextlib
import inspect
import re
from collections.abc import Callable, Iterator
from pathlib import Path

from bs4 import BeautifulSoup, Tag

from pagemod.document.base import (
    DomEvent,
    Listener,
    MutationCallback,
    MutationRecord,
    Node,
    Position,
)
from pagemod.errors import DocumentError

_UPPER = re.compile(r"(?<!^)(?=[A-Z])")


def css_property(name: str) -> str:
    """``backgroundColor`` -> ``background-color``; kebab and ``--custom`` pass through."""
    if name.startswith("--") or "-" in name:
        return name
    return _UPPER.sub("-", name).lower()


def parse_style(text: str) -> dict[str, str]:
    props: dict[str, str] = {}
    for decl in text.split(";"):
        name, sep, value = decl.partition(":")
        if sep and name.strip():
            props[name.strip().lower()] = value.strip()
    return props


def format_style(props: dict[str, str]) -> str:
    return "; ".join(f"{k}: {v}" for k, v in props.items())


class SoupDocument:
    """A :class:`~pagemod.document.base.Document` over a parsed HTML tree."""

    def __init__(self, markup: str = "", *, features: str = "html.parser") -> None:
        self._soup = BeautifulSoup(markup, features)
        self._features = features
        # id(node) -> [(node, type, listener)]; entries keep their node alive
        self._listeners: dict[int, list[tuple[Tag, str, Listener]]] = {}
        self._observers: list[MutationCallback] = []
        self._closed = False

    @classmethod
    def from_path(cls, path: str | Path, **kwargs) -> SoupDocument:
        return cls(Path(path).read_text(encoding="utf-8"), **kwargs)

    @property
    def soup(self) -> BeautifulSoup:
        return self._soup

    def render(self) -> str:
        return str(self._soup)

    def close(self) -> None:
        """Detach the document; every later call raises DocumentError."""
        self._closed = True
        self._listeners.clear()
        self._observers.clear()

    def _check(self) -> None:
        if self._closed:
            raise DocumentError("Document is detached")

    # --- queries ---

    def query_one(self, selector: str) -> Tag | None:
        self._check()
        return self._soup.select_one(selector)

    def query_all(self, selector: str) -> list[Tag]:
        self._check()
        return list(self._soup.select(selector))

    def query_one_within(self, node: Tag, selector: str) -> Tag | None:
        self._check()
        return node.select_one(selector)

    def is_element(self, node: Node) -> bool:
        return isinstance(node, Tag) and not isinstance(node, BeautifulSoup)

    def iter_subtree(self, node: Tag) -> Iterator[Tag]:
        yield node
        yield from node.find_all(True)

    # --- construction and mutation ---

    def create_element(self, tag: str, attributes: dict[str, str] | None = None) -> Tag:
        self._check()
        return self._soup.new_tag(tag, attrs=dict(attributes or {}))

    def get_attribute(self, node: Tag, name: str) -> str | None:
        value = node.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    def set_attribute(self, node: Tag, name: str, value: str) -> None:
        self._check()
        node[name] = value

    def get_style(self, node: Tag) -> dict[str, str]:
        return parse_style(self.get_attribute(node, "style") or "")

    def merge_style(self, node: Tag, style: dict[str, str]) -> None:
        self._check()
        props = self.get_style(node)
        for name, value in style.items():
            prop = css_property(name)
            if value == "":
                props.pop(prop, None)
            else:
                props[prop] = value
        if props:
            node["style"] = format_style(props)
        elif "style" in node.attrs:
            del node["style"]

    def get_text(self, node: Tag) -> str:
        return node.get_text()

    def set_text(self, node: Tag, text: str) -> None:
        self._check()
        node.string = text

    def set_html(self, node: Tag, markup: str) -> None:
        self._check()
        node.clear()
        fragment = BeautifulSoup(markup, self._features)
        for child in list(fragment.contents):
            node.append(child.extract())

    def append_child(self, parent: Tag, child: Tag) -> None:
        self._check()
        parent.append(child)

    def insert_adjacent(self, target: Tag, position: Position, node: Tag) -> None:
        self._check()
        match position:
            case "beforebegin":
                target.insert_before(node)
            case "afterbegin":
                target.insert(0, node)
            case "beforeend":
                target.append(node)
            case "afterend":
                target.insert_after(node)
            case _:
                raise ValueError(f"Invalid insert position: {position}")
        self._notify(MutationRecord(added=[node]))

    def remove(self, node: Tag) -> None:
        self._check()
        node.extract()
        self._notify(MutationRecord(removed=[node]))

    # --- events ---

    def add_event_listener(self, node: Tag, event_type: str, listener: Listener) -> None:
        self._check()
        self._listeners.setdefault(id(node), []).append((node, event_type, listener))

    def remove_event_listener(self, node: Tag, event_type: str, listener: Listener) -> None:
        entries = self._listeners.get(id(node))
        if not entries:
            return
        entries[:] = [
            e for e in entries if not (e[0] is node and e[1] == event_type and e[2] is listener)
        ]
        if not entries:
            del self._listeners[id(node)]

    def listeners_for(self, node: Tag, event_type: str | None = None) -> list[Listener]:
        return [
            listener
            for n, t, listener in self._listeners.get(id(node), [])
            if n is node and (event_type is None or t == event_type)
        ]

    async def dispatch_event(self, node: Tag, event_type: str, *, bubbles: bool = True) -> int:
        """Fire *event_type* at *node*; returns how many listeners ran."""
        self._check()
        path: list[Tag] = [node]
        if bubbles:
            path.extend(p for p in node.parents if not isinstance(p, BeautifulSoup))
        count = 0
        for current in path:
            for listener in self.listeners_for(current, event_type):
                result = listener(DomEvent(type=event_type, target=node, current_target=current))
                if inspect.isawaitable(result):
                    await result
                count += 1
        return count

    def describe(self, node: Tag) -> dict[str, str]:
        return {
            "tagName": (node.name or "").upper(),
            "id": self.get_attribute(node, "id") or "",
            "className": self.get_attribute(node, "class") or "",
        }

    # --- mutation observers ---

    def observe(self, callback: MutationCallback) -> Callable[[], None]:
        """Subscribe to tree mutations. Returns an unsubscribe function."""
        self._observers.append(callback)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._observers.remove(callback)

        return _unsubscribe

    def _notify(self, record: MutationRecord) -> None:
        for callback in list(self._observers):
            callback(record)
