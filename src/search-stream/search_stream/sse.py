"""Server-Sent Events framing for the answer stream.

The upstream service writes one ``data: <json>`` line per event.  Network
chunks split those lines at arbitrary byte offsets, so ``FrameDecoder`` keeps
the trailing partial line between ``feed`` calls and only parses complete
lines.  A corrupt frame is logged and dropped; it never ends the stream.
"""

from __future__ import annotations

import codecs
import logging

from pydantic import ValidationError

from search_stream.events import STREAM_EVENT, StreamEvent

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "


class FrameDecoder:
    """Incrementally turn response bytes into ordered ``StreamEvent`` objects."""

    def __init__(self) -> None:
        # Incremental decoder so a UTF-8 sequence split across chunks survives
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.dropped = 0

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Decode one network chunk, returning every event completed by it."""
        self._buffer += self._text_decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()  # keep incomplete line
        events: list[StreamEvent] = []
        for line in lines:
            event = self._decode_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[StreamEvent]:
        """Decode whatever is left once the transport has ended."""
        tail = self._buffer + self._text_decoder.decode(b"", final=True)
        self._buffer = ""
        event = self._decode_line(tail)
        return [event] if event is not None else []

    def _decode_line(self, line: str) -> StreamEvent | None:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None  # comment, keep-alive or event: line

        payload = line[len(DATA_PREFIX):].strip()
        if not payload:
            return None

        if not (payload.startswith("{") and payload.endswith("}")):
            self.dropped += 1
            logger.warning("Skipping malformed frame: %s", payload[:200])
            return None

        try:
            return STREAM_EVENT.validate_json(payload)
        except ValidationError as e:
            self.dropped += 1
            logger.warning(
                "Dropping undecodable frame (%d error(s)): %s",
                e.error_count(),
                payload[:200],
            )
            return None


def decode_stream(data: bytes) -> list[StreamEvent]:
    """Decode a complete byte stream in one go."""
    decoder = FrameDecoder()
    return decoder.feed(data) + decoder.flush()


def encode_event(event: StreamEvent) -> str:
    """Render an event as a single SSE frame."""
    return f"{DATA_PREFIX}{event.model_dump_json(by_alias=True)}\n\n"
