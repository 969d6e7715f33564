"""Search session controller — one active streamed search at a time.

The controller posts a search to the upstream service, feeds the response
bytes through ``FrameDecoder`` and folds every decoded event into a
``SearchState`` with the reducer.  Each search gets a new generation token;
a superseded search's read loop stops and its late events are discarded,
so they can never touch the newer session's state.

Usage::

    async with httpx.AsyncClient() as client:
        controller = SearchSessionController(client, SearchSettings.from_config(config))
        state = await controller.search("notice period @co @nv")
        print(state.multi_state_result.to_dict())
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from typing import Any

import httpx

from search_stream.events import DoneEvent, StreamEvent
from search_stream.jurisdictions import is_multi_state, parse_mentions
from search_stream.models import SearchMode, SearchSession, SessionStatus
from search_stream.reducer import SearchState, apply
from search_stream.sse import FrameDecoder

logger = logging.getLogger(__name__)

SEARCH_FAILED = "Search failed"
SUMMARY_FAILED = "Summary generation failed"
NETWORK_ERROR = "Network error. Please try again."
CANCELLED = "Search cancelled"
SUPERSEDED = "Superseded by a newer search"
STREAM_ENDED = "Search stream ended before completion"
TIMED_OUT = "Search timed out. Please try again."


class SearchStreamError(Exception):
    """Base error for the search stream transport seam."""


class UpstreamError(SearchStreamError):
    """The upstream search service failed or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class SearchSettings:
    """Explicit controller configuration."""

    endpoint: str
    default_jurisdictions: tuple[str, ...] = ()
    timeout_seconds: float = 120.0

    @classmethod
    def from_config(cls, cfg: Any) -> SearchSettings:
        return cls(
            endpoint=cfg.search_endpoint,
            default_jurisdictions=tuple(cfg.default_states),
            timeout_seconds=cfg.search_timeout_seconds,
        )


@dataclass
class _Run:
    """Book-keeping for one generation's read loop."""

    generation: int
    state: SearchState
    task: asyncio.Task | None = None


class SearchSessionController:
    """Owns the current ``SearchSession`` and its aggregated result.

    Parameters
    ----------
    client:
        Shared ``httpx.AsyncClient`` used for the streamed POST.
    settings:
        Upstream endpoint, default jurisdictions and request timeout.
    on_update:
        Optional listener called with each new snapshot of the current
        session.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: SearchSettings,
        on_update: Callable[[SearchState], None] | None = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._on_update = on_update
        self._generation = 0
        self._run: _Run | None = None

    # -- public API ----------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> SearchState:
        return self._run.state if self._run else SearchState()

    @property
    def session(self) -> SearchSession:
        return self.state.session

    def start(
        self,
        query: str,
        jurisdiction_codes: Sequence[str] | None = None,
        conversation_context: dict[str, Any] | None = None,
    ) -> asyncio.Task[SearchState]:
        """Begin a new search, superseding any search still in flight.

        Explicit *jurisdiction_codes* win over ``@mentions`` in *query*,
        which win over the configured defaults.
        """
        clean_query, codes = resolve_query(
            query, jurisdiction_codes, self._settings.default_jurisdictions
        )

        run = self._begin(
            SearchState.start(
                SearchSession(
                    id=self._generation + 1,
                    query=clean_query,
                    jurisdiction_codes=codes,
                    mode=SearchMode.MULTI if is_multi_state(codes) else SearchMode.SINGLE,
                )
            )
        )
        body = {
            "query": clean_query,
            "options": {},
            "states": list(codes) or None,
            "conversationContext": conversation_context,
        }
        logger.info(
            "[SEARCH] Session %d started (mode=%s, states=%s): %s",
            run.generation, run.state.session.mode.value, ",".join(codes) or "-", clean_query[:100],
        )
        run.task = asyncio.create_task(self._stream(run, body, SEARCH_FAILED))
        return run.task

    async def search(
        self,
        query: str,
        jurisdiction_codes: Sequence[str] | None = None,
        conversation_context: dict[str, Any] | None = None,
    ) -> SearchState:
        """Run a search to completion and return its final snapshot."""
        return await self._wait(self.start(query, jurisdiction_codes, conversation_context))

    async def summarize(self) -> SearchState:
        """Stream a cross-jurisdiction summary for the finished multi-state result.

        Requires at least two jurisdiction answers; otherwise the current
        snapshot is returned untouched.
        """
        current = self.state
        result = current.multi_state_result
        if (
            current.status is not SessionStatus.DONE
            or result is None
            or len(result.state_answers) < 2
        ):
            return current

        # Same result, new generation: a stale summary stream cannot touch it
        reopened = current.begin_summary()
        run = self._begin(
            replace(reopened, session=replace(reopened.session, id=self._generation + 1))
        )
        body = {
            "query": result.query,
            "options": {"summaryOnly": True},
            "states": [a.jurisdiction_code for a in result.state_answers],
            "stateAnswers": [
                {**a.to_dict(), "state": a.jurisdiction_code} for a in result.state_answers
            ],
        }
        logger.info("[SEARCH] Summary requested for %d jurisdictions", len(result.state_answers))
        run.task = asyncio.create_task(
            self._stream(run, body, SUMMARY_FAILED, end_is_done=True)
        )
        return await self._wait(run.task)

    def cancel(self) -> None:
        """Abort the in-flight search.  Safe to call at any time, any number of times."""
        run = self._run
        if run is None or run.state.is_closed:
            return
        self._close(run, CANCELLED)
        logger.info("[SEARCH] Session %d cancelled", run.generation)

    # -- internals -------------------------------------------------------------

    def _begin(self, state: SearchState) -> _Run:
        previous = self._run
        self._generation += 1
        if previous is not None and not previous.state.is_closed:
            self._close(previous, SUPERSEDED)
        self._run = _Run(generation=self._generation, state=state)
        self._publish(self._run)
        return self._run

    def _close(self, run: _Run, message: str) -> None:
        self._fail(run, message)
        if run.task is not None and not run.task.done():
            run.task.cancel()

    def _is_current(self, run: _Run) -> bool:
        return run.generation == self._generation

    def _publish(self, run: _Run) -> None:
        if self._on_update is not None and self._is_current(run):
            self._on_update(run.state)

    def _apply(self, run: _Run, events: list[StreamEvent]) -> None:
        for event in events:
            if not self._is_current(run) or run.state.is_closed:
                return
            updated = apply(run.state, event)
            if updated is not run.state:
                run.state = updated
                self._publish(run)

    def _fail(self, run: _Run, message: str) -> None:
        if run.state.is_closed:
            return
        run.state = replace(
            run.state,
            session=replace(run.state.session, status=SessionStatus.ERROR, error_message=message),
            summary_streaming=False,
        )
        self._publish(run)

    async def _wait(self, task: asyncio.Task[SearchState]) -> SearchState:
        """Wait for *task* without letting its own cancellation escape."""
        run = self._run
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            if self._run is run:
                self.cancel()
            raise
        if task.cancelled():
            return run.state if run is not None else self.state
        return task.result()

    async def _stream(
        self, run: _Run, body: dict[str, Any], failure: str, end_is_done: bool = False
    ) -> SearchState:
        decoder = FrameDecoder()
        budget = self._settings.timeout_seconds
        try:
            # httpx's timeout bounds each read; asyncio.timeout bounds the whole stream
            async with asyncio.timeout(budget), self._client.stream(
                "POST", self._settings.endpoint, json=body, timeout=budget
            ) as response:
                if response.is_error:
                    await response.aread()
                    message = upstream_error_message(response, failure)
                    logger.warning(
                        "[SEARCH] Upstream returned %d: %s", response.status_code, message
                    )
                    self._fail(run, message)
                    return run.state

                async for chunk in response.aiter_bytes():
                    if not self._is_current(run):
                        logger.debug("[SEARCH] Session %d superseded, stopping read", run.generation)
                        return run.state
                    self._apply(run, decoder.feed(chunk))
                self._apply(run, decoder.flush())
        except TimeoutError:
            logger.warning("[SEARCH] Session %d exceeded %ss budget", run.generation, budget)
            self._fail(run, TIMED_OUT)
            return run.state
        except httpx.HTTPError as e:
            logger.warning("[SEARCH] Transport error for session %d: %s", run.generation, e)
            self._fail(run, NETWORK_ERROR)
            return run.state

        if decoder.dropped:
            logger.info("[SEARCH] Session %d dropped %d malformed frame(s)", run.generation, decoder.dropped)
        if not run.state.is_closed and self._is_current(run):
            if end_is_done:
                self._apply(run, [DoneEvent(type="done")])
            else:
                self._fail(run, STREAM_ENDED)
        return run.state


def upstream_error_message(response: httpx.Response, default: str) -> str:
    """Human-readable message from a non-2xx upstream response."""
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict) and isinstance(data.get("error"), str) and data["error"]:
        return data["error"]
    return default


def raise_for_session(state: SearchState) -> SearchState:
    """Return *state*, raising ``UpstreamError`` if the session ended in error."""
    if state.status is SessionStatus.ERROR:
        raise UpstreamError(state.session.error_message or SEARCH_FAILED)
    return state


def resolve_query(
    query: str,
    jurisdiction_codes: Sequence[str] | None,
    defaults: Sequence[str] = (),
) -> tuple[str, tuple[str, ...]]:
    """Split *query* into the text sent upstream and the jurisdictions to search.

    Explicit *jurisdiction_codes* win over ``@mentions`` in *query*, which
    win over *defaults*.
    """
    parsed = parse_mentions(query)
    if jurisdiction_codes:
        codes = tuple(dict.fromkeys(code.strip().upper() for code in jurisdiction_codes if code.strip()))
    else:
        codes = parsed.codes or tuple(defaults)
    return parsed.clean_query or query.strip(), codes
