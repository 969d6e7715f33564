"""Fold decoded stream events into an aggregated search result.

``apply(state, event)`` is a pure function: it never mutates ``state`` and
performs no I/O, so an event is either fully applied (a new snapshot is
returned) or not applied at all.

The upstream service runs one pipeline per jurisdiction concurrently and
multiplexes their updates onto one ordered stream, so ``state-*`` events for
different jurisdiction codes interleave arbitrarily.  Events are applied
strictly in arrival order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from functools import reduce

from search_stream.events import (
    CitationsEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    MetadataEvent,
    MultiStateMetadataEvent,
    StateCitationsEvent,
    StateCompleteEvent,
    StateContentEvent,
    StateErrorEvent,
    StateHeaderEvent,
    StateProcessingEvent,
    StateQueuedEvent,
    StreamEvent,
    SummaryCompleteEvent,
    SummaryContentEvent,
    SummaryErrorEvent,
    SummaryHeaderEvent,
)
from search_stream.models import (
    MultiStateResult,
    SearchMode,
    SearchSession,
    SessionStatus,
    SingleStateResult,
    StateAnswer,
    StateStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchState:
    """Immutable snapshot of one session's aggregated result."""

    session: SearchSession = field(default_factory=lambda: SearchSession(id=0, query=""))

    # Single-jurisdiction result and its streaming answer buffer
    single: SingleStateResult | None = None
    streaming_answer: str = ""

    # Multi-jurisdiction result: working map (insertion ordered) + finalized list
    multi_query: str | None = None
    expected_states: int = 0
    working: dict[str, StateAnswer] = field(default_factory=dict)
    finalized: tuple[StateAnswer, ...] = ()

    # Cross-jurisdiction summary accumulator
    summary_text: str | None = None
    summary_streaming: bool = False
    summary_error: str | None = None

    @classmethod
    def start(cls, session: SearchSession) -> SearchState:
        """Seed the ``loading`` state for a freshly submitted search.

        Multi-jurisdiction searches show every requested jurisdiction as
        queued before the first event arrives.
        """
        session = replace(session, status=SessionStatus.LOADING, error_message=None)
        if session.mode is not SearchMode.MULTI:
            return cls(session=session)
        working = {code: StateAnswer(jurisdiction_code=code) for code in session.jurisdiction_codes}
        return cls(
            session=session,
            multi_query=session.query,
            expected_states=len(working),
            working=working,
        )

    # -- derived views ------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        return self.session.status

    @property
    def is_closed(self) -> bool:
        return self.session.status in (SessionStatus.DONE, SessionStatus.ERROR)

    @property
    def single_state_result(self) -> SingleStateResult | None:
        if self.single is None:
            return None
        if self.session.status is SessionStatus.DONE:
            return self.single
        return replace(self.single, answer_text=self.streaming_answer)

    @property
    def multi_state_result(self) -> MultiStateResult | None:
        if self.multi_query is None and not self.working and not self.finalized:
            return None
        answers = self.finalized
        return MultiStateResult(
            query=self.multi_query if self.multi_query is not None else self.session.query,
            state_answers=answers,
            summary_text=self.summary_text,
            total_processing_time_ms=max((a.processing_time_ms for a in answers), default=0.0),
            summary_error=self.summary_error,
        )

    @property
    def completed_count(self) -> int:
        return sum(1 for a in self.working.values() if a.status is StateStatus.COMPLETE)

    @property
    def progress(self) -> float:
        """Fraction of known jurisdictions that have completed (0.0 – 1.0)."""
        total = max(self.expected_states, len(self.working))
        return self.completed_count / total if total else 0.0

    def begin_summary(self) -> SearchState:
        """Reopen a finished multi-state result to receive a summary-only stream."""
        return replace(
            self,
            session=replace(self.session, status=SessionStatus.STREAMING, error_message=None),
            summary_text=None,
            summary_streaming=False,
            summary_error=None,
        )


def apply(state: SearchState, event: StreamEvent) -> SearchState:
    """Return the snapshot that results from applying *event* to *state*.

    A closed session (``done`` or ``error``) ignores every further event.
    """
    if state.is_closed:
        return state
    handler = _HANDLERS.get(type(event))
    if handler is None:
        return state
    return handler(state, event)


def apply_all(state: SearchState, events: Iterable[StreamEvent]) -> SearchState:
    """Apply *events* in order."""
    return reduce(apply, events, state)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _streaming(session: SearchSession, mode: SearchMode | None = None) -> SearchSession:
    """Move ``idle``/``loading`` to ``streaming`` (and optionally set mode)."""
    changes: dict = {}
    if session.status in (SessionStatus.IDLE, SessionStatus.LOADING):
        changes["status"] = SessionStatus.STREAMING
    if mode is not None and session.mode is not mode:
        changes["mode"] = mode
    return replace(session, **changes) if changes else session


def _entry(state: SearchState, code: str) -> StateAnswer:
    return state.working.get(code) or StateAnswer(jurisdiction_code=code)


def _put(state: SearchState, answer: StateAnswer, **changes) -> SearchState:
    """Store *answer* in the working map (copy-on-write)."""
    working = {**state.working, answer.jurisdiction_code: answer}
    return replace(
        state,
        working=working,
        session=_streaming(state.session, SearchMode.MULTI),
        **changes,
    )


def _finalize(state: SearchState, answer: StateAnswer) -> SearchState:
    """Store *answer* and upsert it into the finalized list by jurisdiction code."""
    finalized = list(state.finalized)
    for i, existing in enumerate(finalized):
        if existing.jurisdiction_code == answer.jurisdiction_code:
            finalized[i] = answer
            break
    else:
        finalized.append(answer)
    return _put(state, answer, finalized=tuple(finalized))


def _is_complete(state: SearchState, event: StreamEvent) -> bool:
    """True if *event* targets a jurisdiction that has already completed."""
    answer = state.working.get(event.state)
    if answer is not None and answer.status is StateStatus.COMPLETE:
        logger.debug("Ignoring %s for completed jurisdiction %s", event.type, event.state)
        return True
    return False


# ---------------------------------------------------------------------------
# Single-jurisdiction handlers
# ---------------------------------------------------------------------------

def _on_metadata(state: SearchState, event: MetadataEvent) -> SearchState:
    return replace(
        state,
        session=_streaming(state.session, SearchMode.SINGLE),
        single=SingleStateResult(query=event.query, citations=tuple(event.citations)),
        streaming_answer="",
        multi_query=None,
        expected_states=0,
        working={},
        finalized=(),
    )


def _on_citations(state: SearchState, event: CitationsEvent) -> SearchState:
    single = state.single or SingleStateResult(query=state.session.query)
    return replace(
        state,
        session=_streaming(state.session),
        single=replace(single, citations=tuple(event.citations)),
    )


def _on_content(state: SearchState, event: ContentEvent) -> SearchState:
    single = state.single
    if single is None and state.multi_query is None and not state.working:
        # No metadata frame arrived; the answer still belongs to a single result
        single = SingleStateResult(query=state.session.query)
    return replace(
        state,
        session=_streaming(state.session),
        single=single,
        streaming_answer=state.streaming_answer + event.content,
    )


# ---------------------------------------------------------------------------
# Multi-jurisdiction handlers
# ---------------------------------------------------------------------------

def _on_multi_metadata(state: SearchState, event: MultiStateMetadataEvent) -> SearchState:
    working = dict(state.working)
    for code in event.states:
        working.setdefault(code, StateAnswer(jurisdiction_code=code))
    return replace(
        state,
        session=_streaming(state.session, SearchMode.MULTI),
        single=None,
        streaming_answer="",
        multi_query=event.query,
        expected_states=event.state_count,
        working=working,
    )


def _on_state_queued(state: SearchState, event: StateQueuedEvent) -> SearchState:
    if event.state in state.working:
        # Already known; queued never moves a status forward
        return replace(state, session=_streaming(state.session, SearchMode.MULTI))
    return _put(state, StateAnswer(jurisdiction_code=event.state))


def _on_state_processing(state: SearchState, event: StateProcessingEvent) -> SearchState:
    entry = _entry(state, event.state)
    return _put(state, replace(entry, status=entry.status.advance(StateStatus.PROCESSING)))


def _on_state_header(state: SearchState, event: StateHeaderEvent) -> SearchState:
    if _is_complete(state, event):
        return state
    entry = _entry(state, event.state)
    return _put(
        state,
        replace(
            entry,
            status=entry.status.advance(StateStatus.STREAMING),
            answer_text="",
            source_count=event.source_count,
            processing_time_ms=event.processing_time,
        ),
    )


def _on_state_citations(state: SearchState, event: StateCitationsEvent) -> SearchState:
    if _is_complete(state, event):
        return state
    entry = _entry(state, event.state)
    return _put(state, replace(entry, citations=tuple(event.citations)))


def _on_state_content(state: SearchState, event: StateContentEvent) -> SearchState:
    if _is_complete(state, event):
        return state
    # Content before any header auto-creates the entry as streaming
    entry = state.working.get(event.state) or StateAnswer(
        jurisdiction_code=event.state, status=StateStatus.STREAMING
    )
    return _put(
        state,
        replace(
            entry,
            status=entry.status.advance(StateStatus.STREAMING),
            answer_text=entry.answer_text + event.content,
        ),
    )


def _on_state_complete(state: SearchState, event: StateCompleteEvent) -> SearchState:
    entry = _entry(state, event.state)
    return _finalize(state, replace(entry, status=StateStatus.COMPLETE))


def _on_state_error(state: SearchState, event: StateErrorEvent) -> SearchState:
    entry = _entry(state, event.state)
    return _finalize(state, replace(entry, status=StateStatus.COMPLETE, error=event.error))


# ---------------------------------------------------------------------------
# Summary handlers
# ---------------------------------------------------------------------------

def _on_summary_header(state: SearchState, event: SummaryHeaderEvent) -> SearchState:
    return replace(
        state,
        session=_streaming(state.session),
        summary_text="",
        summary_streaming=True,
        summary_error=None,
    )


def _on_summary_content(state: SearchState, event: SummaryContentEvent) -> SearchState:
    return replace(
        state,
        session=_streaming(state.session),
        summary_text=(state.summary_text or "") + event.content,
        summary_streaming=True,
    )


def _on_summary_complete(state: SearchState, event: SummaryCompleteEvent) -> SearchState:
    summary = state.summary_text.rstrip() if state.summary_text is not None else None
    return replace(state, summary_text=summary, summary_streaming=False)


def _on_summary_error(state: SearchState, event: SummaryErrorEvent) -> SearchState:
    return replace(state, summary_error=event.error, summary_streaming=False)


# ---------------------------------------------------------------------------
# Terminal handlers
# ---------------------------------------------------------------------------

def _on_done(state: SearchState, event: DoneEvent) -> SearchState:
    finalized = state.finalized
    if not finalized and state.working:
        # Recovery path: the server never sent discrete state-complete events
        finalized = tuple(state.working.values())
    single = state.single
    if single is not None:
        single = replace(single, answer_text=state.streaming_answer.strip())
    return replace(
        state,
        session=replace(state.session, status=SessionStatus.DONE),
        single=single,
        finalized=finalized,
        summary_streaming=False,
    )


def _on_error(state: SearchState, event: ErrorEvent) -> SearchState:
    return replace(
        state,
        session=replace(state.session, status=SessionStatus.ERROR, error_message=event.error),
        summary_streaming=False,
    )


_HANDLERS: dict[type, Callable[[SearchState, StreamEvent], SearchState]] = {
    MetadataEvent: _on_metadata,
    CitationsEvent: _on_citations,
    ContentEvent: _on_content,
    MultiStateMetadataEvent: _on_multi_metadata,
    StateQueuedEvent: _on_state_queued,
    StateProcessingEvent: _on_state_processing,
    StateHeaderEvent: _on_state_header,
    StateCitationsEvent: _on_state_citations,
    StateContentEvent: _on_state_content,
    StateCompleteEvent: _on_state_complete,
    StateErrorEvent: _on_state_error,
    SummaryHeaderEvent: _on_summary_header,
    SummaryContentEvent: _on_summary_content,
    SummaryCompleteEvent: _on_summary_complete,
    SummaryErrorEvent: _on_summary_error,
    DoneEvent: _on_done,
    ErrorEvent: _on_error,
}
