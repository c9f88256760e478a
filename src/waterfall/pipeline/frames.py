"""Event frame decoder for the waterfall stream.

The server writes one event per line as ``data: {json}`` followed by a
blank line. Network reads do not respect those boundaries, so the decoder
buffers partial lines (and partial UTF-8 sequences) across chunks and only
decodes complete lines.
"""

from __future__ import annotations

import codecs
import json

from waterfall.models.events import StreamEvent
from waterfall.observability.logging import get_logger
from waterfall.pipeline.errors import FrameParseError

log = get_logger(__name__)

DATA_PREFIX = "data:"


def decode_frame(line: str) -> StreamEvent:
    """Decode a single ``data:`` line into an event.

    Args:
        line: One line of the stream, without its line ending.

    Returns:
        The decoded event.

    Raises:
        FrameParseError: If the line is not a data line, its body is not a
            JSON object, or the object has no string ``phase``.
    """
    if not line.startswith(DATA_PREFIX):
        raise FrameParseError(line, "not a data line")

    body = line[len(DATA_PREFIX) :]
    if body.startswith(" "):
        body = body[1:]

    try:
        frame = json.loads(body)
    except json.JSONDecodeError as e:
        raise FrameParseError(line, f"invalid JSON: {e.msg}") from e

    if not isinstance(frame, dict):
        raise FrameParseError(line, "frame is not an object")

    try:
        return StreamEvent.from_frame(frame)
    except ValueError as e:
        raise FrameParseError(line, str(e)) from e


class EventFrameDecoder:
    """Incremental decoder turning raw stream chunks into events.

    Events come out in the order their lines arrived. Malformed frames are
    logged and skipped so a single bad line cannot end the run.

    Attributes:
        skipped: Number of malformed frames dropped so far.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.skipped = 0

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Add a chunk and return the events completed by it.

        Args:
            chunk: Raw bytes as read from the response body.

        Returns:
            Events for every complete line in the buffer, in order.
        """
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def flush(self) -> list[StreamEvent]:
        """Decode whatever is left once the stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        return self._decode_lines([remainder])

    def _decode_lines(self, lines: list[str]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for raw in lines:
            line = raw.rstrip("\r")
            # Blank separators, comments and other SSE fields carry no event
            if not line.startswith(DATA_PREFIX):
                continue
            try:
                events.append(decode_frame(line))
            except FrameParseError as e:
                self.skipped += 1
                log.warning("frame_parse_failed", reason=e.reason, line=line[:200])
        return events
