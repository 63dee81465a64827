"""Sectioned document list derived from the backend listing.

One section per document, one row per resolvable layer token, in backend
order. Updates are in place (token replacement) or removals; nothing is
reordered. Every mutation notifies subscribers so a presentation layer can
re-render.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, NamedTuple, Optional

from instant_docs.api_client import Layer
from instant_docs.engine import EngineError

if TYPE_CHECKING:
    from instant_docs.api_client import Document
    from instant_docs.engine import DocumentDescriptor, DocumentEngine

logger = logging.getLogger(__name__)

DEFAULT_LAYER_TITLE = "<Default Layer>"


@dataclass(eq=False)
class Row:
    """One layer in the list. The token is owned here and replaced in place."""

    descriptor: DocumentDescriptor
    token: Optional[str] = None

    @property
    def title(self) -> str:
        return self.descriptor.layer_name or DEFAULT_LAYER_TITLE

    @property
    def layer(self) -> Layer:
        return Layer.from_descriptor(self.descriptor)

    @property
    def is_downloaded(self) -> bool:
        return self.descriptor.is_downloaded


@dataclass
class Section:
    title: str
    rows: list[Row] = field(default_factory=list)


class Position(NamedTuple):
    section: int
    row: int


class ProjectionChangeKind(str, Enum):
    RELOAD_ALL = "reload_all"
    RELOAD_ROW = "reload_row"
    REMOVE_ROW = "remove_row"


class ProjectionChange(NamedTuple):
    kind: ProjectionChangeKind
    position: Optional[Position] = None


RowPredicate = Callable[[Row], bool]
Listener = Callable[[ProjectionChange], None]


def by_descriptor(descriptor: DocumentDescriptor) -> RowPredicate:
    """Match the row holding exactly this descriptor (identity)."""
    return lambda row: row.descriptor is descriptor


def by_document_id(document_id: str) -> RowPredicate:
    """Match any row of a document."""
    return lambda row: row.descriptor.identifier == document_id


class ListProjection:
    """
    View model of the document list.

    Must only be read and mutated on the coordinating context.
    """

    def __init__(self, sections: Iterable[Section] = ()):
        self._sections: list[Section] = list(sections)
        self._listeners: list[Listener] = []

    @property
    def sections(self) -> tuple[Section, ...]:
        return tuple(self._sections)

    @property
    def is_empty(self) -> bool:
        return not self._sections

    def __len__(self) -> int:
        return sum(len(section.rows) for section in self._sections)

    def rows(self) -> Iterable[Row]:
        for section in self._sections:
            yield from section.rows

    def row_at(self, position: Position) -> Row:
        return self._sections[position.section].rows[position.row]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def replace_all(self, sections: Iterable[Section]) -> None:
        self._sections = list(sections)
        self._notify(ProjectionChange(ProjectionChangeKind.RELOAD_ALL))

    def find_row(self, predicate: RowPredicate) -> Optional[Position]:
        """Position of the first row matching predicate, in list order."""
        for section_index, section in enumerate(self._sections):
            for row_index, row in enumerate(section.rows):
                if predicate(row):
                    return Position(section_index, row_index)
        return None

    def update_token(self, predicate: RowPredicate, token: Optional[str]) -> bool:
        """Replace the token of the first matching row. Returns False if none matched."""
        position = self.find_row(predicate)
        if position is None:
            return False
        self.row_at(position).token = token
        self._notify(ProjectionChange(ProjectionChangeKind.RELOAD_ROW, position))
        return True

    def reload_row(self, predicate: RowPredicate) -> bool:
        """Ask the presentation layer to re-render the first matching row."""
        position = self.find_row(predicate)
        if position is None:
            return False
        self._notify(ProjectionChange(ProjectionChangeKind.RELOAD_ROW, position))
        return True

    def remove_row(self, predicate: RowPredicate) -> Optional[Row]:
        """Remove the first matching row, and its section if that leaves it empty."""
        position = self.find_row(predicate)
        if position is None:
            return None
        section = self._sections[position.section]
        row = section.rows.pop(position.row)
        if not section.rows:
            del self._sections[position.section]
        self._notify(ProjectionChange(ProjectionChangeKind.REMOVE_ROW, position))
        return row

    def _notify(self, change: ProjectionChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception(f"Projection listener failed for {change.kind.value}")


def build_sections(documents: Iterable[Document], engine: DocumentEngine) -> list[Section]:
    """
    Build list sections from backend documents.

    Tokens the engine cannot resolve to a descriptor are skipped; documents
    left without rows are dropped.
    """
    sections: list[Section] = []
    for document in documents:
        rows: list[Row] = []
        for token in document.tokens:
            try:
                descriptor = engine.descriptor_for_token(token)
            except EngineError as e:
                logger.warning(f"Could not make document descriptor from token '{token}': {e}")
                continue
            rows.append(Row(descriptor=descriptor, token=token))

        if rows:
            sections.append(Section(title=document.title, rows=rows))
        else:
            logger.info(f"Dropping document '{document.title}' ({document.identifier}): no usable layers")

    return sections
