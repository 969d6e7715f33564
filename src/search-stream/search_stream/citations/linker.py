"""Resolve inline citation markers in generated answers.

Answers cite sources with bracket groups such as ``[1]``, ``[1, 2]``,
``[Citation 3]`` or legal-style ``[2(3)(a), 4]``.  Each comma-separated
token is resolved by its leading integer (1-based) against the citation
list.  Tokens that do not resolve stay as plain text, so joining the output
segments always reproduces the input.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Sequence, Union

from search_stream.models import Citation

_REF_GROUP_RE = re.compile(r"\[(?:Citation\s+)?([^\[\]]+)\]")
_LEADING_NUMBER_RE = re.compile(r"\d+")


@dataclass(frozen=True)
class TextSegment:
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class CitationRef:
    """A resolved marker.  ``display_label`` is the full token, e.g. ``2(3)(a)``."""

    citation_index: int
    display_label: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "citation",
            "citationIndex": self.citation_index,
            "displayLabel": self.display_label,
        }


LinkSegment = Union[TextSegment, CitationRef]


def linkify(answer_text: str, citations: Sequence[Citation]) -> list[LinkSegment]:
    """Split *answer_text* into plain text and resolved citation references."""
    if not answer_text or not citations:
        return [TextSegment(answer_text)]

    builder = _SegmentBuilder()
    position = 0
    for match in _REF_GROUP_RE.finditer(answer_text):
        builder.add_text(answer_text[position:match.start()])
        _link_group(builder, answer_text, match, len(citations))
        position = match.end()
    builder.add_text(answer_text[position:])
    return builder.segments


def join_segments(segments: Sequence[LinkSegment]) -> str:
    """Render segments back to text, using display labels for references."""
    return "".join(
        s.text if isinstance(s, TextSegment) else s.display_label for s in segments
    )


def resolved_indices(segments: Sequence[LinkSegment]) -> list[int]:
    return [s.citation_index for s in segments if isinstance(s, CitationRef)]


def _link_group(
    builder: _SegmentBuilder, text: str, match: re.Match[str], count: int
) -> None:
    """Emit the segments for one bracket group."""
    inner_start = match.start(1)
    builder.add_text(text[match.start():inner_start])  # "[" or "[Citation "

    offset = inner_start
    for i, piece in enumerate(match.group(1).split(",")):
        if i:
            builder.add_text(",")
            offset += 1
        token = piece.strip()
        number = _LEADING_NUMBER_RE.match(token)
        index = int(number.group()) - 1 if number else -1
        if 0 <= index < count:
            lead = len(piece) - len(piece.lstrip())
            builder.add_text(piece[:lead])
            builder.add_ref(CitationRef(citation_index=index, display_label=token))
            builder.add_text(piece[lead + len(token):])
        else:
            builder.add_text(piece)
        offset += len(piece)

    builder.add_text(text[offset:match.end()])  # "]"


class _SegmentBuilder:
    """Accumulates segments, merging adjacent text."""

    def __init__(self) -> None:
        self.segments: list[LinkSegment] = []

    def add_text(self, text: str) -> None:
        if not text:
            return
        if self.segments and isinstance(self.segments[-1], TextSegment):
            self.segments[-1] = TextSegment(self.segments[-1].text + text)
        else:
            self.segments.append(TextSegment(text))

    def add_ref(self, ref: CitationRef) -> None:
        self.segments.append(ref)
