"""Shared data models for the search stream service.

Citations arrive inside stream events and API requests, so they are pydantic
models with camelCase aliases matching the wire format.  Aggregated results
are frozen dataclasses: the reducer replaces them, it never edits them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for payloads exchanged with the upstream service and the UI."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class CitationSource(WireModel):
    """Where a citation's text lives in the source document."""

    document_id: str = ""
    title: str = ""
    page_number: int | None = None
    # Passed through untouched: a page box, a list of positions, or []
    coordinates: Any = None
    start_char: int | None = None
    end_char: int | None = None

    @field_validator("document_id", "title", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if value is None:
            return ""
        return str(value) if isinstance(value, int) else value


class Citation(WireModel):
    """A source citation attached to a generated answer."""

    id: str
    text: str = ""
    source: CitationSource = Field(default_factory=CitationSource)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


def dump_citations(citations: tuple[Citation, ...] | list[Citation]) -> list[dict[str, Any]]:
    """Serialise citations back to their camelCase wire shape."""
    return [c.model_dump(by_alias=True) for c in citations]


# ---------------------------------------------------------------------------
# Lifecycle enums
# ---------------------------------------------------------------------------

class StateStatus(str, Enum):
    """Lifecycle of one jurisdiction pipeline.  Only ever moves forward."""

    QUEUED = "queued"
    PROCESSING = "processing"
    STREAMING = "streaming"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def advance(self, target: StateStatus) -> StateStatus:
        """Return *target* unless it would move the lifecycle backwards."""
        return target if target.rank >= self.rank else self


_STATUS_ORDER = list(StateStatus)


class SessionStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"


class SearchMode(str, Enum):
    SINGLE = "single"
    MULTI = "multi"


# ---------------------------------------------------------------------------
# Aggregated results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StateAnswer:
    """The answer for one jurisdiction, as accumulated from the stream."""

    jurisdiction_code: str
    answer_text: str = ""
    citations: tuple[Citation, ...] = ()
    source_count: int = 0
    processing_time_ms: float = 0.0
    status: StateStatus = StateStatus.QUEUED
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "jurisdictionCode": self.jurisdiction_code,
            "answerText": self.answer_text,
            "citations": dump_citations(self.citations),
            "sourceCount": self.source_count,
            "processingTimeMs": self.processing_time_ms,
            "status": self.status.value,
            "error": self.error,
        }


@dataclass(frozen=True)
class SingleStateResult:
    """Result of a single-jurisdiction (or all-jurisdiction) search."""

    query: str
    answer_text: str = ""
    citations: tuple[Citation, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "answerText": self.answer_text,
            "citations": dump_citations(self.citations),
        }


@dataclass(frozen=True)
class MultiStateResult:
    """Per-jurisdiction answers plus the optional cross-jurisdiction summary."""

    query: str
    state_answers: tuple[StateAnswer, ...] = ()
    summary_text: str | None = None
    total_processing_time_ms: float = 0.0
    summary_error: str | None = None

    def answer_for(self, code: str) -> StateAnswer | None:
        for answer in self.state_answers:
            if answer.jurisdiction_code == code:
                return answer
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "stateAnswers": [a.to_dict() for a in self.state_answers],
            "summaryText": self.summary_text,
            "totalProcessingTimeMs": self.total_processing_time_ms,
            "summaryError": self.summary_error,
        }


@dataclass(frozen=True)
class SearchSession:
    """One submitted search.  ``id`` is the controller's generation token."""

    id: int
    query: str
    jurisdiction_codes: tuple[str, ...] = ()
    mode: SearchMode = SearchMode.SINGLE
    status: SessionStatus = SessionStatus.IDLE
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "query": self.query,
            "jurisdictionCodes": list(self.jurisdiction_codes),
            "mode": self.mode.value,
            "status": self.status.value,
            "errorMessage": self.error_message,
        }
