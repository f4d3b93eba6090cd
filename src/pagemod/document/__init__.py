"""Document collaborators the interpreter mutates."""

from pagemod.document.base import (
    OPERATION_MARKER,
    Document,
    DomEvent,
    MutationRecord,
    marker_selector,
)
from pagemod.document.soup import SoupDocument

__all__ = [
    "OPERATION_MARKER",
    "Document",
    "DomEvent",
    "MutationRecord",
    "SoupDocument",
    "marker_selector",
]
