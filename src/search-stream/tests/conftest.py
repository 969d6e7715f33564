"""Shared test fixtures for search-stream tests.

Environment variables MUST be set at module level (before any service
modules are imported) because ``search_stream.config`` evaluates
``_load_config()`` at import time.  pytest processes conftest.py before
collecting test modules, so ``os.environ.setdefault(...)`` here runs early
enough.
"""

import os

# Set required env vars before any service code is imported
os.environ.setdefault("SEARCH_STREAM_ENDPOINT", "http://upstream.test/api/search-citations-stream")

import json  # noqa: E402

import pytest  # noqa: E402

from search_stream.models import Citation  # noqa: E402


def frame(payload: dict) -> str:
    """Render one ``data:`` frame as the upstream service writes it."""
    return f"data: {json.dumps(payload)}\n\n"


def make_citation(
    cid: int | str = 1,
    text: str = "",
    start: int | None = None,
    end: int | None = None,
) -> Citation:
    return Citation.model_validate(
        {
            "id": cid,
            "text": text,
            "source": {
                "documentId": "doc-1",
                "title": "Test Statute",
                "pageNumber": 1,
                "startChar": start,
                "endChar": end,
            },
        }
    )


@pytest.fixture
def citations() -> list[Citation]:
    return [make_citation(i, f"cited text {i}") for i in (1, 2, 3)]
