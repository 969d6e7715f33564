"""Typed stream events emitted by the upstream search service.

Each SSE frame carries one JSON object whose ``type`` key selects the event
model.  ``STREAM_EVENT`` validates a raw payload into the matching model and
rejects anything else (unknown type, missing field, bad JSON).
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import Field, TypeAdapter

from search_stream.models import Citation, WireModel


# ---------------------------------------------------------------------------
# Single-jurisdiction events
# ---------------------------------------------------------------------------

class MetadataEvent(WireModel):
    type: Literal["metadata"]
    query: str
    citations: list[Citation] = Field(default_factory=list)


class CitationsEvent(WireModel):
    """Overflow chunk: citations too large to ride along with ``metadata``."""

    type: Literal["citations"]
    citations: list[Citation]


class ContentEvent(WireModel):
    type: Literal["content"]
    content: str


# ---------------------------------------------------------------------------
# Multi-jurisdiction events
# ---------------------------------------------------------------------------

class MultiStateMetadataEvent(WireModel):
    type: Literal["multi-state-metadata"]
    query: str
    state_count: int
    states: list[str] = Field(default_factory=list)


class StateQueuedEvent(WireModel):
    type: Literal["state-queued"]
    state: str


class StateProcessingEvent(WireModel):
    type: Literal["state-processing"]
    state: str


class StateHeaderEvent(WireModel):
    type: Literal["state-header"]
    state: str
    source_count: int
    processing_time: float  # milliseconds


class StateCitationsEvent(WireModel):
    type: Literal["state-citations"]
    state: str
    citations: list[Citation]


class StateContentEvent(WireModel):
    type: Literal["state-content"]
    state: str
    content: str


class StateCompleteEvent(WireModel):
    type: Literal["state-complete"]
    state: str


class StateErrorEvent(WireModel):
    type: Literal["state-error"]
    state: str
    error: str = "Failed to process state"


# ---------------------------------------------------------------------------
# Summary + terminal events
# ---------------------------------------------------------------------------

class SummaryHeaderEvent(WireModel):
    type: Literal["summary-header"]


class SummaryContentEvent(WireModel):
    type: Literal["summary-content"]
    content: str


class SummaryCompleteEvent(WireModel):
    type: Literal["summary-complete"]


class SummaryErrorEvent(WireModel):
    type: Literal["summary-error"]
    error: str = "Failed to generate summary"


class DoneEvent(WireModel):
    type: Literal["done"]


class ErrorEvent(WireModel):
    type: Literal["error"]
    error: str


StreamEvent = Annotated[
    Union[
        MetadataEvent,
        CitationsEvent,
        ContentEvent,
        MultiStateMetadataEvent,
        StateQueuedEvent,
        StateProcessingEvent,
        StateHeaderEvent,
        StateCitationsEvent,
        StateContentEvent,
        StateCompleteEvent,
        StateErrorEvent,
        SummaryHeaderEvent,
        SummaryContentEvent,
        SummaryCompleteEvent,
        SummaryErrorEvent,
        DoneEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

STREAM_EVENT: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)
