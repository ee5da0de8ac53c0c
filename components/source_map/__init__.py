from .source_map import (
    ContentKind,
    LookupResult,
    Rect,
    RenderPosition,
    SourceMapEntry,
    SourceMapIndex,
    SourceMapPublisher,
    lookup,
    source_to_render,
)

__all__ = [
    "ContentKind",
    "LookupResult",
    "Rect",
    "RenderPosition",
    "SourceMapEntry",
    "SourceMapIndex",
    "SourceMapPublisher",
    "lookup",
    "source_to_render",
]
