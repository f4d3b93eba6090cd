"""Owner-scoped tracking of native event listeners.

Each element that receives listeners gets a stable handle from a slot map
(``element-1``, ``element-2``, ...). The slot map holds the element
strongly and is cleared explicitly on detach, so handles never depend on
garbage collection or on any markup attribute.
"""

from __future__ import annotations

import itertools
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TypeAlias

from pagemod.document.base import Document, DomEvent, Node
from pagemod.logger import logger
from pagemod.schema import Event

Dispatch: TypeAlias = Callable[[Event, DomEvent], Awaitable[None]]


@dataclass
class ListenerEntry:
    element: Node
    event_type: str
    listener: Callable[[DomEvent], Awaitable[None]]
    owner_id: str


class EventManager:
    def __init__(self, document: Document) -> None:
        self._document = document
        self._counter = itertools.count(1)
        self._handles: dict[int, str] = {}  # id(element) -> handle
        self._elements: dict[str, Node] = {}  # handle -> element
        self._entries: dict[str, list[ListenerEntry]] = {}  # handle -> listeners

    def handle_for(self, element: Node) -> str:
        """Stable handle for *element*, assigned on first use."""
        handle = self._lookup(element)
        if handle is None:
            handle = f"element-{next(self._counter)}"
            self._handles[id(element)] = handle
            self._elements[handle] = element
        return handle

    def _lookup(self, element: Node) -> str | None:
        handle = self._handles.get(id(element))
        # id() values are reused after collection; the identity check guards that
        if handle is not None and self._elements.get(handle) is element:
            return handle
        return None

    def _release(self, handle: str) -> None:
        element = self._elements.pop(handle, None)
        if element is not None:
            self._handles.pop(id(element), None)
        self._entries.pop(handle, None)

    def attach_events(
        self,
        element: Node,
        events: Iterable[Event],
        owner_id: str,
        dispatch: Dispatch,
    ) -> int:
        """Bind one listener per event that forwards to *dispatch*. Returns the count."""
        events = list(events)
        if not events:
            return 0
        handle = self.handle_for(element)
        entries = self._entries.setdefault(handle, [])
        for event in events:
            listener = _make_listener(event, owner_id, dispatch)
            self._document.add_event_listener(element, event.type, listener)
            entries.append(ListenerEntry(element, event.type, listener, owner_id))
        return len(events)

    def detach_events(self, element: Node) -> int:
        """Remove every listener on *element*, whatever its owner."""
        handle = self._lookup(element)
        if handle is None:
            return 0
        entries = self._entries.get(handle, [])
        for entry in entries:
            self._document.remove_event_listener(entry.element, entry.event_type, entry.listener)
        count = len(entries)
        self._release(handle)
        return count

    def detach_owner_events(self, owner_id: str) -> int:
        """Remove one owner's listeners across all elements; others stay."""
        removed = 0
        for handle in list(self._entries):
            entries = self._entries[handle]
            keep: list[ListenerEntry] = []
            for entry in entries:
                if entry.owner_id == owner_id:
                    self._document.remove_event_listener(
                        entry.element, entry.event_type, entry.listener
                    )
                    removed += 1
                else:
                    keep.append(entry)
            if keep:
                self._entries[handle] = keep
            else:
                self._release(handle)
        if removed:
            logger.debug("Detached plugin events", plugin_id=owner_id, count=removed)
        return removed

    def detach_all_events(self) -> int:
        removed = 0
        for handle in list(self._entries):
            removed += len(self._entries[handle])
            for entry in self._entries[handle]:
                self._document.remove_event_listener(
                    entry.element, entry.event_type, entry.listener
                )
            self._release(handle)
        return removed

    def listener_count(self, owner_id: str | None = None) -> int:
        return sum(
            1
            for entries in self._entries.values()
            for entry in entries
            if owner_id is None or entry.owner_id == owner_id
        )

    @property
    def tracked_elements(self) -> int:
        return len(self._elements)


def _make_listener(
    event: Event, owner_id: str, dispatch: Dispatch
) -> Callable[[DomEvent], Awaitable[None]]:
    async def _listener(dom_event: DomEvent) -> None:
        try:
            await dispatch(event, dom_event)
        except Exception as exc:
            # Native listeners have no caller to report to
            logger.warning(
                "Event handler failed",
                plugin_id=owner_id,
                event_type=event.type,
                err=str(exc),
            )

    return _listener

