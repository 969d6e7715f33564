"""Whitespace/case normalisation shared by citation matching."""

from __future__ import annotations

import re

_WHITESPACE_RE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Collapse whitespace runs to one space, trim, and lowercase."""
    return _WHITESPACE_RE.sub(" ", text).strip().lower()
