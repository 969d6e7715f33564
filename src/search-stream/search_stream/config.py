"""Service configuration — loads environment variables and validates required settings.

Usage:
    from search_stream.config import config
    print(config.search_endpoint)
"""

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _find_env_file() -> Path | None:
    """Search for .env file starting from this file's directory, then up."""
    current = Path(__file__).resolve().parent.parent  # src/search-stream/
    candidates = [
        current / ".env",
        current.parent.parent / ".env",  # repo root
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _split_codes(raw: str) -> tuple[str, ...]:
    """Parse a comma-separated jurisdiction list (``"CO, nv"`` → ``("CO", "NV")``)."""
    return tuple(code.strip().upper() for code in raw.split(",") if code.strip())


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    # Upstream RAG endpoint producing the answer event stream
    search_endpoint: str

    # Jurisdictions searched when the query names none
    default_states: tuple[str, ...]

    # Total time budget for one streamed search
    search_timeout_seconds: float

    # HTTP port for the aggregator service
    port: int


def _load_config() -> Config:
    """Load and validate configuration from environment."""
    env_file = _find_env_file()
    if env_file:
        load_dotenv(env_file, override=False)

    required = {
        "SEARCH_STREAM_ENDPOINT": "search_endpoint",
    }

    missing = [var for var in required if not os.environ.get(var)]
    if missing:
        print(
            f"Error: Missing required environment variables: {', '.join(missing)}\n"
            f"Copy .env.sample to .env and fill in values.",
            file=sys.stderr,
        )
        sys.exit(1)

    return Config(
        search_endpoint=os.environ["SEARCH_STREAM_ENDPOINT"],
        default_states=_split_codes(os.environ.get("DEFAULT_STATES", "")),
        search_timeout_seconds=float(os.environ.get("SEARCH_TIMEOUT_SECONDS", "120")),
        port=int(os.environ.get("PORT", "8090")),
    )


# Singleton, imported as `from search_stream.config import config`
config = _load_config()
