"""
Read side of the source/render map produced by each compile.

An entry maps a half-open character range of the source to a rectangle on one
rendered page. The index built from a compile is immutable, so any number of
readers can query it concurrently while the publisher swaps in the next one.
"""

import json
import logging
import threading
from collections import defaultdict
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


class ContentKind(str, Enum):
    TEXT = "text"
    HEADING = "heading"
    MATH = "math"
    CODE = "code"
    FIGURE = "figure"
    TABLE = "table"
    CITATION = "citation"
    LIST_ITEM = "list_item"
    OTHER = "other"


class Rect(BaseModel):
    """A rectangle in a page's coordinate space."""

    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    width: float = Field(..., ge=0)
    height: float = Field(..., ge=0)

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def contains_point(self, x: float, y: float) -> bool:
        """Edges are inclusive."""
        return self.x <= x <= self.right and self.y <= y <= self.bottom


class SourceMapEntry(BaseModel):
    """Maps source offsets ``[start, end)`` to a region on one page."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)
    page: int = Field(..., ge=0)
    rect: Rect
    kind: ContentKind = ContentKind.TEXT

    @model_validator(mode="after")
    def check_range(self) -> "SourceMapEntry":
        if self.end < self.start:
            raise ValueError(f"end ({self.end}) precedes start ({self.start})")
        return self

    def contains_offset(self, offset: int) -> bool:
        return self.start <= offset < self.end

    def distance_to(self, offset: int) -> int:
        """Distance in offset space from ``offset`` to this range (0 if inside)."""
        if offset < self.start:
            return self.start - offset
        if self.contains_offset(offset):
            return 0
        last = self.end - 1 if self.end > self.start else self.start
        return offset - last


class LookupResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    found: bool
    source_offset: Optional[int] = None
    content_kind: Optional[ContentKind] = None


class RenderPosition(BaseModel):
    """Where a source offset is drawn."""

    model_config = ConfigDict(frozen=True)

    page: int
    rect: Rect
    content_kind: ContentKind
    source_start: int
    source_end: int
    exact: bool = Field(
        ..., description="False when the offset fell in a gap and was snapped"
    )


def lookup(entries: Iterable[SourceMapEntry], page: int, x: float, y: float) -> LookupResult:
    """
    Map a point on a rendered page back to a source offset.

    Page is a hard filter. When rectangles nest, the one with the smallest
    area wins; equal areas go to the earlier source offset.
    """
    best: Optional[SourceMapEntry] = None
    for entry in entries:
        if entry.page != page or not entry.rect.contains_point(x, y):
            continue
        if best is None or (entry.rect.area, entry.start) < (best.rect.area, best.start):
            best = entry

    if best is None:
        return LookupResult(found=False)
    return LookupResult(found=True, source_offset=best.start, content_kind=best.kind)


def source_to_render(
    entries: Sequence[SourceMapEntry], offset: int
) -> Optional[RenderPosition]:
    """
    Resolve a source offset to its rendered region.

    Returns None only for an empty map. Offsets in unmapped gaps snap to the
    entry nearest in offset space; ties go to the earliest start offset.
    """
    best: Optional[Tuple[int, int, int]] = None
    best_entry: Optional[SourceMapEntry] = None
    for position, entry in enumerate(entries):
        key = (entry.distance_to(offset), entry.start, position)
        if best is None or key < best:
            best = key
            best_entry = entry

    if best_entry is None or best is None:
        return None
    return RenderPosition(
        page=best_entry.page,
        rect=best_entry.rect,
        content_kind=best_entry.kind,
        source_start=best_entry.start,
        source_end=best_entry.end,
        exact=best[0] == 0,
    )


class SourceMapIndex:
    """Immutable index over the entries of one compile."""

    __slots__ = ("_entries", "_by_page", "_source_length")

    def __init__(self, entries: Iterable[SourceMapEntry] = ()):
        self._entries: Tuple[SourceMapEntry, ...] = tuple(entries)
        by_page: Dict[int, List[SourceMapEntry]] = defaultdict(list)
        for entry in self._entries:
            by_page[entry.page].append(entry)
        self._by_page: Mapping[int, Tuple[SourceMapEntry, ...]] = MappingProxyType(
            {page: tuple(items) for page, items in by_page.items()}
        )
        self._source_length = max((entry.end for entry in self._entries), default=0)

    @classmethod
    def from_json(cls, payload: str) -> "SourceMapIndex":
        """Build an index from the compiler's JSON list of entries."""
        data = json.loads(payload)
        if isinstance(data, dict):
            data = data.get("entries", [])
        return cls(SourceMapEntry.model_validate(item) for item in data)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    @property
    def entries(self) -> Tuple[SourceMapEntry, ...]:
        return self._entries

    @property
    def page_count(self) -> int:
        return max(self._by_page, default=-1) + 1

    @property
    def source_length(self) -> int:
        return self._source_length

    def entries_for_page(self, page: int) -> Tuple[SourceMapEntry, ...]:
        return self._by_page.get(page, ())

    def lookup(self, page: int, x: float, y: float) -> LookupResult:
        return lookup(self.entries_for_page(page), page, x, y)

    def source_to_render(self, offset: int) -> Optional[RenderPosition]:
        return source_to_render(self._entries, offset)


class SourceMapPublisher:
    """
    Holds the index of the latest successful compile.

    Readers take ``current`` without locking; ``publish`` replaces the whole
    index with one reference assignment, so a reader sees either the old or
    the new index and never a partial one.
    """

    def __init__(self, initial: Optional[SourceMapIndex] = None):
        self._current = initial or SourceMapIndex()
        self._publish_lock = threading.Lock()
        self._generation = 0

    @property
    def current(self) -> SourceMapIndex:
        return self._current

    @property
    def generation(self) -> int:
        return self._generation

    def publish(self, index: SourceMapIndex) -> None:
        with self._publish_lock:
            self._current = index
            self._generation += 1
        logger.debug(
            f"Published source map generation {self._generation} "
            f"with {len(index)} entries"
        )
