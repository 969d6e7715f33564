"""Search Stream — FastAPI service aggregating streamed multi-jurisdiction answers.

Sits between the UI and the upstream RAG service.  Searches are streamed
from the upstream endpoint, decoded frame by frame and folded into one
aggregated result; citation offsets are reconciled against live document
text on request.

Endpoints
---------
- ``GET  /health``                   — health check
- ``POST /api/search``               — run a search, return the final aggregated result
- ``POST /api/search/stream``        — relay the upstream event stream (malformed frames removed)
- ``POST /api/citations/reconcile``  — validate/repair a citation's character span
- ``POST /api/citations/segments``   — split document text into blocks around a citation
- ``POST /api/citations/link``       — resolve inline ``[n]`` markers in answer text
- ``GET  /api/jurisdictions``        — jurisdiction autocomplete (``?q=cal&limit=10``)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from search_stream.citations import (
    join_segments,
    linkify,
    reconcile,
    resolved_indices,
    segment_citation,
    text_context,
)
from search_stream.config import config
from search_stream.events import ErrorEvent
from search_stream.jurisdictions import filter_jurisdictions
from search_stream.models import Citation, WireModel
from search_stream.session import (
    NETWORK_ERROR,
    SEARCH_FAILED,
    TIMED_OUT,
    SearchSessionController,
    SearchSettings,
    SearchStreamError,
    raise_for_session,
    resolve_query,
    upstream_error_message,
)
from search_stream.sse import FrameDecoder, encode_event

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Global state (initialised in lifespan)
# ---------------------------------------------------------------------------

http_client: httpx.AsyncClient | None = None
settings = SearchSettings.from_config(config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the shared upstream HTTP client on startup, close it on shutdown."""
    global http_client

    logger.info("[SEARCH-STREAM] Server starting up (upstream=%s)", settings.endpoint)
    http_client = httpx.AsyncClient()

    yield

    logger.info("[SEARCH-STREAM] Server shutting down...")
    await http_client.aclose()
    http_client = None


app = FastAPI(
    title="Search Stream",
    description="Streaming multi-jurisdiction answer aggregation and citation reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class SearchRequest(WireModel):
    """Request model for the search endpoints."""
    query: str
    states: list[str] | None = None
    conversation_context: dict[str, Any] | None = None


class CitationTextRequest(WireModel):
    """A citation plus the live text of its source document."""
    full_text: str
    citation: Citation


class LinkRequest(WireModel):
    text: str
    citations: list[Citation] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    upstream: str


# ---------------------------------------------------------------------------
# API Endpoints
# ---------------------------------------------------------------------------

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", upstream=settings.endpoint)


@app.post("/api/search")
async def search(request: SearchRequest):
    """Run a search to completion and return the aggregated result."""
    if not request.query.strip():
        raise HTTPException(status_code=400, detail="Query is required")

    controller = SearchSessionController(_client(), settings)
    try:
        state = raise_for_session(
            await controller.search(
                request.query, request.states, request.conversation_context
            )
        )
    except SearchStreamError as e:
        logger.error("[SEARCH-STREAM] Search failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e))

    result = state.multi_state_result or state.single_state_result
    return {
        "session": state.session.to_dict(),
        "result": result.to_dict() if result else None,
    }


@app.post("/api/search/stream")
async def search_stream(request: SearchRequest):
    """Relay the upstream event stream, re-encoded one valid frame at a time."""
    if not request.query.strip():
        raise HTTPException(status_code=400, detail="Query is required")

    query, codes = resolve_query(request.query, request.states, settings.default_jurisdictions)
    body = {
        "query": query,
        "options": {},
        "states": list(codes) or None,
        "conversationContext": request.conversation_context,
    }
    logger.info("[SEARCH-STREAM] Relaying stream (states=%s): %s", ",".join(codes) or "-", query[:100])

    return StreamingResponse(
        _relay(_client(), body),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.post("/api/citations/reconcile")
async def reconcile_citation(request: CitationTextRequest):
    """Validate a citation's span against the live text, relocating it if it drifted."""
    result = reconcile(request.full_text, request.citation)
    body: dict[str, Any] = {
        "startChar": result.start_char,
        "endChar": result.end_char,
        "valid": result.valid,
        "repaired": result.repaired,
    }
    if result.valid:
        context = text_context(request.full_text, result.start_char, result.end_char)
        body["context"] = {"before": context.before, "after": context.after}
    return body


@app.post("/api/citations/segments")
async def citation_segments(request: CitationTextRequest):
    """Split the document into display blocks with the citation highlighted."""
    result, segments = segment_citation(request.full_text, request.citation)
    return {
        "valid": result.valid,
        "startChar": result.start_char,
        "endChar": result.end_char,
        "segments": [s.to_dict() for s in segments],
    }


@app.post("/api/citations/link")
async def link_citations(request: LinkRequest):
    """Resolve inline citation markers into text and reference segments."""
    segments = linkify(request.text, request.citations)
    return {
        "segments": [s.to_dict() for s in segments],
        "citationIndices": resolved_indices(segments),
        "plainText": join_segments(segments),
    }


@app.get("/api/jurisdictions")
async def jurisdictions(q: str = "", limit: int = 10):
    """Rank jurisdictions for an autocomplete box."""
    return [
        {"code": j.code, "name": j.name, "abbreviation": j.abbreviation}
        for j in filter_jurisdictions(q, limit=limit)
    ]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _client() -> httpx.AsyncClient:
    if http_client is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return http_client


async def _relay(client: httpx.AsyncClient, body: dict[str, Any]):
    """Yield SSE frames for every event the upstream stream produces."""
    decoder = FrameDecoder()
    budget = settings.timeout_seconds
    deadline = asyncio.get_running_loop().time() + budget
    try:
        async with client.stream(
            "POST", settings.endpoint, json=body, timeout=budget
        ) as response:
            if response.is_error:
                await response.aread()
                message = upstream_error_message(response, SEARCH_FAILED)
                logger.error("[SEARCH-STREAM] Upstream returned %d: %s", response.status_code, message)
                yield encode_event(ErrorEvent(type="error", error=message))
                return

            async for chunk in response.aiter_bytes():
                for event in decoder.feed(chunk):
                    yield encode_event(event)
                # Whole-stream budget; httpx only bounds each read
                if asyncio.get_running_loop().time() > deadline:
                    logger.error("[SEARCH-STREAM] Stream exceeded %ss budget", budget)
                    yield encode_event(ErrorEvent(type="error", error=TIMED_OUT))
                    return
            for event in decoder.flush():
                yield encode_event(event)
    except httpx.HTTPError as e:
        logger.error("[SEARCH-STREAM] Streaming error: %s", e)
        yield encode_event(ErrorEvent(type="error", error=NETWORK_ERROR))
        return

    if decoder.dropped:
        logger.warning("[SEARCH-STREAM] Removed %d malformed frame(s) from relay", decoder.dropped)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Launch the Search Stream server."""
    port = config.port

    logger.info("[SEARCH-STREAM] Starting server on port %d", port)
    logger.info("[SEARCH-STREAM] Health:  http://localhost:%d/health", port)
    logger.info("[SEARCH-STREAM] Search:  http://localhost:%d/api/search", port)
    logger.info("[SEARCH-STREAM] Stream:  http://localhost:%d/api/search/stream", port)

    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")


if __name__ == "__main__":
    main()
