"""Jurisdiction catalog and ``@mention`` parsing.

Users pick jurisdictions inline, e.g. ``"notice period @california @nv"``.
Mentions are matched against the US state catalog (exact, then prefix, then
substring) and removed from the query text sent upstream.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

ALL = "ALL"
MULTIPLE = "MULTIPLE"

_MENTION_RE = re.compile(r"@([a-zA-Z]+)")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class Jurisdiction:
    code: str
    name: str
    abbreviation: str

    @property
    def compact_name(self) -> str:
        """Lowercase name without spaces (``"newyork"``), as typed in mentions."""
        return _WHITESPACE_RE.sub("", self.name.lower())


US_STATES: tuple[Jurisdiction, ...] = tuple(
    Jurisdiction(code, name, code)
    for code, name in (
        ("AL", "Alabama"), ("AK", "Alaska"), ("AZ", "Arizona"), ("AR", "Arkansas"),
        ("CA", "California"), ("CO", "Colorado"), ("CT", "Connecticut"),
        ("DE", "Delaware"), ("FL", "Florida"), ("GA", "Georgia"), ("HI", "Hawaii"),
        ("ID", "Idaho"), ("IL", "Illinois"), ("IN", "Indiana"), ("IA", "Iowa"),
        ("KS", "Kansas"), ("KY", "Kentucky"), ("LA", "Louisiana"), ("ME", "Maine"),
        ("MD", "Maryland"), ("MA", "Massachusetts"), ("MI", "Michigan"),
        ("MN", "Minnesota"), ("MS", "Mississippi"), ("MO", "Missouri"),
        ("MT", "Montana"), ("NE", "Nebraska"), ("NV", "Nevada"),
        ("NH", "New Hampshire"), ("NJ", "New Jersey"), ("NM", "New Mexico"),
        ("NY", "New York"), ("NC", "North Carolina"), ("ND", "North Dakota"),
        ("OH", "Ohio"), ("OK", "Oklahoma"), ("OR", "Oregon"), ("PA", "Pennsylvania"),
        ("RI", "Rhode Island"), ("SC", "South Carolina"), ("SD", "South Dakota"),
        ("TN", "Tennessee"), ("TX", "Texas"), ("UT", "Utah"), ("VT", "Vermont"),
        ("VA", "Virginia"), ("WA", "Washington"), ("WV", "West Virginia"),
        ("WI", "Wisconsin"), ("WY", "Wyoming"),
    )
)

SPECIAL_OPTIONS: tuple[Jurisdiction, ...] = (
    Jurisdiction(ALL, "Compare All States", ALL),
    Jurisdiction(MULTIPLE, "Select Multiple States", "MULTI"),
)

_BY_CODE = {j.code: j for j in (*SPECIAL_OPTIONS, *US_STATES)}


@dataclass(frozen=True)
class Mention:
    code: str
    name: str
    position: int  # index in the cleaned query where the mention was removed
    raw: str


@dataclass(frozen=True)
class ParseResult:
    clean_query: str
    mentions: tuple[Mention, ...] = ()
    codes: tuple[str, ...] = ()


def get_jurisdiction(code: str) -> Jurisdiction | None:
    return _BY_CODE.get(code.upper())


def display_name(code: str) -> str:
    """Full name for *code*, or the code itself when unknown."""
    jurisdiction = get_jurisdiction(code)
    return jurisdiction.name if jurisdiction else code


def match_jurisdiction(text: str) -> Jurisdiction | None:
    """Resolve typed mention text to a US state.

    Exact code/name/compact-name matches win over prefix matches, which win
    over substring matches on the name.
    """
    search = text.strip().lower()
    if not search:
        return None
    for state in US_STATES:
        if search in (state.code.lower(), state.name.lower(), state.compact_name):
            return state
    for state in US_STATES:
        if state.name.lower().startswith(search) or state.code.lower().startswith(search):
            return state
    for state in US_STATES:
        if search in state.name.lower():
            return state
    return None


def parse_mentions(query: str) -> ParseResult:
    """Extract ``@mentions`` from *query*.

    Unresolvable mentions are left in the query.  Codes are de-duplicated in
    the order first mentioned.
    """
    mentions: list[Mention] = []
    codes: list[str] = []
    pieces: list[str] = []
    position = 0
    removed = 0

    for match in _MENTION_RE.finditer(query):
        state = match_jurisdiction(match.group(1))
        if state is None:
            continue
        pieces.append(query[position:match.start()])
        mentions.append(
            Mention(
                code=state.code,
                name=state.name,
                position=match.start() - removed,
                raw=match.group(0),
            )
        )
        if state.code not in codes:
            codes.append(state.code)
        removed += len(match.group(0))
        position = match.end()
    pieces.append(query[position:])

    clean = _WHITESPACE_RE.sub(" ", "".join(pieces)).strip()
    return ParseResult(clean_query=clean, mentions=tuple(mentions), codes=tuple(codes))


def filter_jurisdictions(text: str, limit: int = 10) -> list[Jurisdiction]:
    """Rank US states for an autocomplete box."""
    if not text:
        return list(US_STATES[:limit])

    search = text.lower()
    scored: list[tuple[int, Jurisdiction]] = []
    for state in US_STATES:
        if search in (state.code.lower(), state.name.lower()):
            score = 100
        elif state.name.lower().startswith(search) or state.code.lower().startswith(search):
            score = 80
        elif search in state.name.lower():
            score = 60
        else:
            continue
        scored.append((score, state))

    scored.sort(key=lambda pair: (-pair[0], pair[1].name))
    return [state for _, state in scored[:limit]]


def is_multi_state(codes: tuple[str, ...] | list[str]) -> bool:
    """Multi-jurisdiction mode applies to more than one concrete code."""
    return len(codes) > 1 and ALL not in codes
