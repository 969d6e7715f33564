"""Tests for the search session controller.

The upstream service is faked with ``httpx.MockTransport`` so these tests
exercise the real streaming client path without a network.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from conftest import frame
from search_stream.events import ErrorEvent
from search_stream.models import SearchMode, SessionStatus, StateStatus
from search_stream.reducer import SearchState, apply
from search_stream.session import (
    CANCELLED,
    NETWORK_ERROR,
    SEARCH_FAILED,
    STREAM_ENDED,
    SUPERSEDED,
    TIMED_OUT,
    SearchSessionController,
    SearchSettings,
    UpstreamError,
    raise_for_session,
    resolve_query,
)

SETTINGS = SearchSettings(
    endpoint="http://upstream.test/stream",
    default_jurisdictions=("TX",),
    timeout_seconds=5,
)


def _body(*payloads: dict) -> bytes:
    return "".join(frame(p) for p in payloads).encode("utf-8")


def _single(answer: str = "Answer [1].") -> bytes:
    return _body(
        {"type": "metadata", "query": "q", "citations": [{"id": 1, "text": "t"}]},
        {"type": "content", "content": answer},
        {"type": "done"},
    )


MULTI = _body(
    {"type": "multi-state-metadata", "query": "rent", "stateCount": 2, "states": ["CO", "NV"]},
    {"type": "state-header", "state": "CO", "sourceCount": 2, "processingTime": 400},
    {"type": "state-header", "state": "NV", "sourceCount": 1, "processingTime": 700},
    {"type": "state-content", "state": "NV", "content": "Nevada answer"},
    {"type": "state-content", "state": "CO", "content": "Colorado answer"},
    {"type": "state-complete", "state": "NV"},
    {"type": "state-complete", "state": "CO"},
    {"type": "done"},
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestSearch:
    """End-to-end searches over a mocked upstream."""

    @pytest.mark.asyncio
    async def test_single_state_search(self):
        async with _client(lambda request: httpx.Response(200, content=_single())) as client:
            state = await SearchSessionController(client, SETTINGS).search("What is the rule?", ["CA"])
        assert state.status is SessionStatus.DONE
        assert state.session.mode is SearchMode.SINGLE
        assert state.single_state_result.answer_text == "Answer [1]."
        assert state.single_state_result.citations[0].id == "1"

    @pytest.mark.asyncio
    async def test_request_body(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, content=_single())

        async with _client(handler) as client:
            await SearchSessionController(client, SETTINGS).search(
                "rule @co", conversation_context={"previousQuery": "earlier"}
            )
        assert seen == [
            {
                "query": "rule",
                "options": {},
                "states": ["CO"],
                "conversationContext": {"previousQuery": "earlier"},
            }
        ]

    @pytest.mark.asyncio
    async def test_mentions_select_multi_mode(self):
        updates = []
        async with _client(lambda request: httpx.Response(200, content=MULTI)) as client:
            controller = SearchSessionController(client, SETTINGS, on_update=updates.append)
            state = await controller.search("rent @co @nv")

        first = updates[0]
        assert first.status is SessionStatus.LOADING
        assert first.session.mode is SearchMode.MULTI
        assert [a.status for a in first.working.values()] == [StateStatus.QUEUED] * 2

        result = state.multi_state_result
        assert state.status is SessionStatus.DONE
        assert result.answer_for("CO").answer_text == "Colorado answer"
        assert result.answer_for("NV").answer_text == "Nevada answer"
        assert result.total_processing_time_ms == 700
        assert updates[-1] == state

    @pytest.mark.asyncio
    async def test_default_jurisdictions_used(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content)["states"])
            return httpx.Response(200, content=_single())

        async with _client(handler) as client:
            await SearchSessionController(client, SETTINGS).search("plain query")
        assert seen == [["TX"]]

    @pytest.mark.asyncio
    async def test_chunked_multibyte_stream(self):
        data = _single("Füße — 30 días [1].")

        async def chunks():
            for i in range(0, len(data), 3):
                yield data[i:i + 3]

        async with _client(lambda request: httpx.Response(200, content=chunks())) as client:
            state = await SearchSessionController(client, SETTINGS).search("q", ["CA"])
        assert state.single_state_result.answer_text == "Füße — 30 días [1]."

    @pytest.mark.asyncio
    async def test_malformed_frames_skipped(self):
        data = (
            frame({"type": "metadata", "query": "q"})
            + "data: {not json\n\n"
            + frame({"type": "content", "content": "ok"})
            + frame({"type": "done"})
        ).encode()
        async with _client(lambda request: httpx.Response(200, content=data)) as client:
            state = await SearchSessionController(client, SETTINGS).search("q", ["CA"])
        assert state.status is SessionStatus.DONE
        assert state.single_state_result.answer_text == "ok"


class TestFailures:
    """Transport and upstream failures surface as session errors."""

    @pytest.mark.asyncio
    async def test_error_body_message(self):
        handler = lambda request: httpx.Response(400, json={"error": "Query is required"})  # noqa: E731
        async with _client(handler) as client:
            state = await SearchSessionController(client, SETTINGS).search("q", ["CA"])
        assert state.status is SessionStatus.ERROR
        assert state.session.error_message == "Query is required"

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        async with _client(lambda request: httpx.Response(500, text="oops")) as client:
            state = await SearchSessionController(client, SETTINGS).search("q", ["CA"])
        assert state.session.error_message == SEARCH_FAILED

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            state = await SearchSessionController(client, SETTINGS).search("q", ["CA"])
        assert state.status is SessionStatus.ERROR
        assert state.session.error_message == NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_error_event(self):
        data = _body({"type": "error", "error": "Model unavailable"})
        async with _client(lambda request: httpx.Response(200, content=data)) as client:
            state = await SearchSessionController(client, SETTINGS).search("q", ["CA"])
        assert state.session.error_message == "Model unavailable"

    @pytest.mark.asyncio
    async def test_stream_ending_without_done(self):
        data = _body({"type": "metadata", "query": "q"}, {"type": "content", "content": "cut"})
        async with _client(lambda request: httpx.Response(200, content=data)) as client:
            state = await SearchSessionController(client, SETTINGS).search("q", ["CA"])
        assert state.status is SessionStatus.ERROR
        assert state.session.error_message == STREAM_ENDED

    @pytest.mark.asyncio
    async def test_trickling_stream_hits_total_budget(self):
        async def trickle():
            yield _body({"type": "metadata", "query": "q"})
            while True:
                await asyncio.sleep(0.01)
                yield _body({"type": "content", "content": "."})

        settings = SearchSettings(endpoint=SETTINGS.endpoint, timeout_seconds=0.2)
        async with _client(lambda request: httpx.Response(200, content=trickle())) as client:
            state = await SearchSessionController(client, settings).search("q", ["CA"])
        assert state.status is SessionStatus.ERROR
        assert state.session.error_message == TIMED_OUT
        assert state.streaming_answer.startswith(".")

    def test_raise_for_session(self):
        ok = SearchState()
        assert raise_for_session(ok) is ok

        failed = apply(ok, ErrorEvent(type="error", error="upstream down"))
        with pytest.raises(UpstreamError, match="upstream down"):
            raise_for_session(failed)


class TestGenerationsAndCancel:
    """Superseded searches and cancellation."""

    @pytest.mark.asyncio
    async def test_superseded_search_cannot_touch_new_session(self):
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            if json.loads(request.content)["query"] == "slow":
                await release.wait()
                return httpx.Response(200, content=_single("stale"))
            return httpx.Response(200, content=_single("fresh"))

        updates = []
        async with _client(handler) as client:
            controller = SearchSessionController(client, SETTINGS, on_update=updates.append)
            slow = controller.start("slow", ["CA"])
            await asyncio.sleep(0)
            state = await controller.search("fast", ["CA"])
            release.set()
            await asyncio.wait({slow})

        assert slow.cancelled()
        assert controller.generation == 2
        assert state.session.id == 2
        assert controller.state.single_state_result.answer_text == "fresh"
        first_fresh = next(i for i, u in enumerate(updates) if u.session.id == 2)
        assert all(u.session.id == 2 for u in updates[first_fresh:])

    @pytest.mark.asyncio
    async def test_search_returns_superseded_snapshot(self):
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            if json.loads(request.content)["query"] == "slow":
                await release.wait()
            return httpx.Response(200, content=_single())

        async with _client(handler) as client:
            controller = SearchSessionController(client, SETTINGS)
            pending = asyncio.create_task(controller.search("slow", ["CA"]))
            await asyncio.sleep(0)
            await controller.search("fast", ["CA"])
            stale = await pending
            release.set()

        assert stale.session.id == 1
        assert stale.status is SessionStatus.ERROR
        assert stale.session.error_message == SUPERSEDED

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self):
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            await release.wait()
            return httpx.Response(200, content=_single())

        async with _client(handler) as client:
            controller = SearchSessionController(client, SETTINGS)
            controller.cancel()  # idle: no-op
            task = controller.start("q", ["CA"])
            await asyncio.sleep(0)
            controller.cancel()
            controller.cancel()
            await asyncio.wait({task})

        assert task.cancelled()
        assert controller.state.status is SessionStatus.ERROR
        assert controller.state.session.error_message == CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_after_done_keeps_result(self):
        async with _client(lambda request: httpx.Response(200, content=_single())) as client:
            controller = SearchSessionController(client, SETTINGS)
            await controller.search("q", ["CA"])
            controller.cancel()
        assert controller.state.status is SessionStatus.DONE


class TestSummarize:
    """Summary-only follow-up streams."""

    @pytest.mark.asyncio
    async def test_summary_folded_into_result(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen.append(body)
            if body["options"].get("summaryOnly"):
                return httpx.Response(
                    200,
                    content=_body(
                        {"type": "summary-header"},
                        {"type": "summary-content", "content": "Both require notice. "},
                        {"type": "summary-complete"},
                    ),
                )
            return httpx.Response(200, content=MULTI)

        async with _client(handler) as client:
            controller = SearchSessionController(client, SETTINGS)
            await controller.search("rent", ["CO", "NV"])
            state = await controller.summarize()

        summary_request = seen[1]
        assert summary_request["options"] == {"summaryOnly": True}
        assert [a["state"] for a in summary_request["stateAnswers"]] == ["NV", "CO"]
        assert state.status is SessionStatus.DONE
        assert state.multi_state_result.summary_text == "Both require notice."
        assert len(state.multi_state_result.state_answers) == 2

    @pytest.mark.asyncio
    async def test_summary_needs_two_answers(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, content=_single())

        async with _client(handler) as client:
            controller = SearchSessionController(client, SETTINGS)
            before = await controller.search("q", ["CA"])
            after = await controller.summarize()
        assert after is before
        assert len(calls) == 1


class TestResolveQuery:
    """Test resolve_query() precedence."""

    def test_explicit_codes_win(self):
        assert resolve_query("rent @co", ["nv", "NV", "ca"], ("TX",)) == ("rent", ("NV", "CA"))

    def test_mentions_then_defaults(self):
        assert resolve_query("rent @co", None, ("TX",)) == ("rent", ("CO",))
        assert resolve_query("rent", None, ("TX",)) == ("rent", ("TX",))

    def test_mention_only_query_kept(self):
        assert resolve_query("@co", None) == ("@co", ("CO",))


def test_upstream_error_carries_status():
    error = UpstreamError("bad gateway", status_code=502)
    assert str(error) == "bad gateway"
    assert error.status_code == 502
