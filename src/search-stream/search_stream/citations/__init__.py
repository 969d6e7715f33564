"""Citation handling — pure functions over caller-supplied snapshots.

- :mod:`~search_stream.citations.reconcile` repairs drifted character offsets
- :mod:`~search_stream.citations.segments` splits document text around a highlight
- :mod:`~search_stream.citations.linker` resolves ``[n]`` markers in answers
- :mod:`~search_stream.citations.markup` applies the linker to rendered trees
"""

from __future__ import annotations

from search_stream.citations.linker import (
    CitationRef,
    LinkSegment,
    TextSegment,
    join_segments,
    linkify,
    resolved_indices,
)
from search_stream.citations.markup import Element, Reference, Text, link_nodes, link_tree
from search_stream.citations.reconcile import (
    Reconciliation,
    TextContext,
    locate_citations,
    reconcile,
    spans_match,
    text_context,
)
from search_stream.citations.segments import (
    BlockKind,
    Segment,
    classify_block,
    segment_citation,
    segment_document,
)

__all__ = [
    "BlockKind",
    "CitationRef",
    "Element",
    "LinkSegment",
    "Reconciliation",
    "Reference",
    "Segment",
    "Text",
    "TextContext",
    "TextSegment",
    "classify_block",
    "join_segments",
    "link_nodes",
    "link_tree",
    "linkify",
    "locate_citations",
    "reconcile",
    "resolved_indices",
    "segment_citation",
    "segment_document",
    "spans_match",
    "text_context",
]
