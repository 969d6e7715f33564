"""Split document text into display blocks around a citation highlight.

Blocks are separated by blank lines.  When a highlight is present, a blank
line falling inside the highlighted span does not start a new block, so the
highlight always lands in exactly one block.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from search_stream.citations.reconcile import Reconciliation, reconcile
from search_stream.models import Citation

_BLOCK_BOUNDARY_RE = re.compile(r"\n\s*\n")

# Block classification, modelled on how legal texts are laid out
_MD_HEADING_RE = re.compile(r"^#{1,3}\s+\S")
_CAPS_HEADING_RE = re.compile(r"^[A-Z][A-Z\s\d.\-()]{8,}$")
_NUMBERED_HEADING_RE = re.compile(r"^\d+\.\s*[A-Z][A-Z\s]+")
_KEYWORD_HEADING_RE = re.compile(
    r"^(SECTION|CHAPTER|PART|ARTICLE|RULE|BASIS|PURPOSE|POWERS|DUTIES)\s+", re.IGNORECASE
)
_SUBHEADING_RE = re.compile(r"^(\d+\.\d+(\.\d+)?\s+[A-Z]|\(?[a-z]\)\s+[A-Z])")
_LIST_ITEM_RE = re.compile(r"^\s*([•·\-*]|\d+\.|[a-z]\))\s+")


class BlockKind(str, Enum):
    HEADING = "heading"
    TABLE = "table"
    LIST = "list"
    PARAGRAPH = "paragraph"


@dataclass(frozen=True)
class Segment:
    """One display block.  Offsets index into the full document text."""

    start: int
    end: int
    text: str
    kind: BlockKind
    # Highlighted range relative to ``start``
    highlight: tuple[int, int] | None = None

    def to_dict(self) -> dict:
        return {
            "start": self.start,
            "end": self.end,
            "text": self.text,
            "kind": self.kind.value,
            "highlight": list(self.highlight) if self.highlight else None,
        }


def classify_block(text: str) -> BlockKind:
    """Guess how a block should be laid out."""
    lines = [line for line in text.split("\n") if line.strip()]
    if len(lines) == 1:
        line = lines[0].strip()
        if _MD_HEADING_RE.match(line):
            return BlockKind.HEADING
        if len(line) < 200 and (
            _CAPS_HEADING_RE.match(line)
            or _NUMBERED_HEADING_RE.match(line)
            or _KEYWORD_HEADING_RE.match(line)
        ):
            return BlockKind.HEADING
        if len(line) < 150 and _SUBHEADING_RE.match(line):
            return BlockKind.HEADING
    if sum(1 for line in lines if "|" in line) >= 2:
        return BlockKind.TABLE
    if sum(1 for line in lines if _LIST_ITEM_RE.match(line)) >= 2:
        return BlockKind.LIST
    return BlockKind.PARAGRAPH


def segment_document(
    full_text: str, highlight: tuple[int, int] | None = None
) -> list[Segment]:
    """Split *full_text* into blocks, keeping *highlight* inside one block."""
    cuts: list[tuple[int, int]] = []
    for m in _BLOCK_BOUNDARY_RE.finditer(full_text):
        if highlight and m.start() < highlight[1] and m.end() > highlight[0]:
            continue
        cuts.append((m.start(), m.end()))

    segments: list[Segment] = []
    position = 0
    for cut_start, cut_end in [*cuts, (len(full_text), len(full_text))]:
        segment = _build_segment(full_text, position, cut_start, highlight)
        if segment is not None:
            segments.append(segment)
        position = cut_end
    return segments


def segment_citation(
    full_text: str, citation: Citation
) -> tuple[Reconciliation, list[Segment]]:
    """Reconcile *citation* and segment the text around its highlight.

    An unreconcilable citation yields plain segments with no highlight.
    """
    result = reconcile(full_text, citation)
    highlight = (result.start_char, result.end_char) if result.valid else None
    return result, segment_document(full_text, highlight)


def _build_segment(
    full_text: str, start: int, end: int, highlight: tuple[int, int] | None
) -> Segment | None:
    raw = full_text[start:end]
    stripped = raw.strip()
    if not stripped:
        return None
    start += len(raw) - len(raw.lstrip())
    end = start + len(stripped)

    relative = None
    if highlight and highlight[0] < end and highlight[1] > start:
        relative = (max(highlight[0], start) - start, min(highlight[1], end) - start)

    return Segment(
        start=start,
        end=end,
        text=stripped,
        kind=classify_block(stripped),
        highlight=relative,
    )
