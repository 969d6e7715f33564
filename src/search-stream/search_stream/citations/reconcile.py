"""Citation reconciliation — repair drifted character offsets against live text.

Citations record ``startChar``/``endChar`` offsets into the document text at
indexing time.  The live text served later can differ (re-extraction, edited
whitespace, inserted front matter), so the recorded span is validated first
and, when it no longer matches the citation text, relocated with a bounded
search.  Failure is a value (``valid=False``): the caller renders the
citation unhighlighted.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from search_stream.models import Citation
from search_stream.text import normalize

logger = logging.getLogger(__name__)

# Recorded span accepted when either side contains this many leading chars of the other
COMPARE_PREFIX = 50
# Estimate-based recovery only runs for citation texts longer than this
FUZZY_MIN_LENGTH = 20
# Leading chars of the citation text located in the normalised document
SEARCH_PREFIX = 100
# Raw-text window (either side) searched around an estimated or recorded position
SEARCH_RADIUS = 500


@dataclass(frozen=True)
class Reconciliation:
    """Outcome of validating one citation span."""

    start_char: int
    end_char: int
    valid: bool
    repaired: bool = False


@dataclass(frozen=True)
class TextContext:
    """Text surrounding a span, for previews."""

    before: str
    after: str
    before_index: int
    after_index: int


def spans_match(candidate: str, expected: str) -> bool:
    """Return True if *candidate* plausibly is the citation text *expected*.

    Tolerates whitespace/case differences and minor truncation or expansion
    on either side.
    """
    found = normalize(candidate)
    wanted = normalize(expected)
    if not found or not wanted:
        return False
    return (
        found == wanted
        or wanted[:COMPARE_PREFIX] in found
        or found[:COMPARE_PREFIX] in wanted
    )


def reconcile(full_text: str, citation: Citation) -> Reconciliation:
    """Validate (and if needed relocate) *citation*'s span within *full_text*.

    Deterministic: identical inputs always give identical output.
    """
    start = citation.source.start_char
    end = citation.source.end_char
    if start is None or end is None or not (0 <= start < end <= len(full_text)):
        return Reconciliation(
            start_char=start if start is not None else -1,
            end_char=end if end is not None else -1,
            valid=False,
        )

    expected = citation.text
    if not expected:
        # Nothing to compare against, so the recorded offsets stand
        return Reconciliation(start, end, valid=True)

    if spans_match(full_text[start:end], expected):
        return Reconciliation(start, end, valid=True)

    relocated = None
    if len(expected) > FUZZY_MIN_LENGTH:
        relocated = _relocate_by_estimate(full_text, expected)
    if relocated is None:
        relocated = _relocate_near(full_text, expected, start, end)
    if relocated is None:
        logger.debug("Citation %s could not be reconciled", citation.id)
        return Reconciliation(start, end, valid=False)

    new_start, new_end = relocated
    logger.debug(
        "Citation %s relocated: [%d, %d) → [%d, %d)",
        citation.id, start, end, new_start, new_end,
    )
    return Reconciliation(new_start, new_end, valid=True, repaired=True)


def locate_citations(
    full_text: str, citations: list[Citation]
) -> list[tuple[Citation, Reconciliation]]:
    """Reconcile a batch of citations against one document.

    Invalid citations are dropped, as is any valid span overlapping a span
    accepted earlier in *citations*.  Results are ordered by start offset.
    """
    accepted: list[tuple[Citation, Reconciliation]] = []
    for citation in citations:
        result = reconcile(full_text, citation)
        if not result.valid:
            continue
        if any(_overlaps(result, other) for _, other in accepted):
            logger.debug("Citation %s overlaps an earlier span, skipped", citation.id)
            continue
        accepted.append((citation, result))
    return sorted(accepted, key=lambda pair: pair[1].start_char)


def text_context(full_text: str, start: int, end: int, radius: int = 200) -> TextContext:
    """Return up to *radius* characters either side of ``[start, end)``."""
    before_index = max(0, start - radius)
    after_index = min(len(full_text), end + radius)
    return TextContext(
        before=full_text[before_index:start],
        after=full_text[end:after_index],
        before_index=before_index,
        after_index=after_index,
    )


# ---------------------------------------------------------------------------
# Recovery strategies
# ---------------------------------------------------------------------------

def _flexible_pattern(text: str) -> re.Pattern[str] | None:
    """Case-insensitive pattern for *text* that accepts any whitespace run between words."""
    words = text.split()
    if not words:
        return None
    return re.compile(r"\s+".join(re.escape(w) for w in words), re.IGNORECASE)


def _span_from(full_text: str, start: int, expected: str) -> tuple[int, int]:
    """Extend a located start to the end of the citation text."""
    pattern = _flexible_pattern(expected)
    match = pattern.match(full_text, start) if pattern else None
    if match:
        return start, match.end()
    return start, min(len(full_text), start + len(expected.strip()))


def _relocate_by_estimate(full_text: str, expected: str) -> tuple[int, int] | None:
    """Locate the citation via the normalised text, then confirm in the raw text.

    The normalised index is scaled back to a raw offset estimate, and the
    raw text within ``SEARCH_RADIUS`` of the estimate is searched for the
    literal (case-insensitive) start of the citation.
    """
    normalized_full = normalize(full_text)
    needle = normalize(expected[:SEARCH_PREFIX])
    if not normalized_full or not needle:
        return None
    index = normalized_full.find(needle)
    if index < 0:
        return None

    scale = len(full_text) / len(normalized_full)
    estimated_start = int(index * scale)
    estimated_end = min(len(full_text), estimated_start + len(expected))
    window_start = max(0, estimated_start - SEARCH_RADIUS)
    window_end = min(len(full_text), estimated_end + SEARCH_RADIUS)

    target = expected[:COMPARE_PREFIX].strip()
    if not target:
        return None
    match = re.compile(re.escape(target), re.IGNORECASE).search(full_text, window_start, window_end)
    if match is None:
        return None
    return _span_from(full_text, match.start(), expected)


def _relocate_near(
    full_text: str, expected: str, start: int, end: int
) -> tuple[int, int] | None:
    """Find the occurrence of the citation text closest to its recorded span."""
    pattern = _flexible_pattern(expected)
    if pattern is None:
        return None
    window_start = max(0, start - SEARCH_RADIUS)
    window_end = min(len(full_text), end + SEARCH_RADIUS)
    best: re.Match[str] | None = None
    for match in pattern.finditer(full_text, window_start, window_end):
        if best is None or abs(match.start() - start) < abs(best.start() - start):
            best = match
    if best is None:
        return None
    return best.start(), best.end()


def _overlaps(a: Reconciliation, b: Reconciliation) -> bool:
    return a.start_char < b.end_char and b.start_char < a.end_char
