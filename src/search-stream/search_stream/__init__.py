"""search-stream — streaming multi-jurisdiction answer aggregation.

Pipeline:
    1. Decode upstream SSE bytes into typed events via :mod:`search_stream.sse`
    2. Fold events into one aggregated result via :mod:`search_stream.reducer`
    3. Own the active search (generation guard, cancel) via :mod:`search_stream.session`
    4. Reconcile and link citations via :mod:`search_stream.citations`
"""
