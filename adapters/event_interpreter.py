"""
event_interpreter.py — Chat stream event interpreter

Turns protocol lines from the /messages/stream endpoint into StreamEvents.

Wire format (one frame per line, blank lines ignored):
  data: {"content": "<text>", "done": false}   — content fragment
  data: {"content": "", "done": true}          — end of stream
  event:done                                   — end of stream (bare marker)
  event:error                                  — next data line is the error payload
  data: {"message": "<text>"}

Malformed frames never abort the stream; they are logged and skipped.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import AsyncGenerator, AsyncIterable, Iterator, Optional

from byte_decoder import DEFAULT_ENCODING, ByteDecoder
from line_framer import LineFramer

logger = logging.getLogger("lobai.event_interpreter")

# Event kinds
CHUNK = "chunk"
DONE = "done"
ERROR = "error"

DATA_PREFIX = "data:"
EVENT_PREFIX = "event:"

GENERIC_ERROR_MESSAGE = "Stream reported an error"


@dataclass(frozen=True)
class StreamEvent:
    """One interpreted frame of the chat stream."""
    kind: str
    content: str = ""
    message: str = ""

    @property
    def terminal(self) -> bool:
        return self.kind in (DONE, ERROR)


def _error_message(payload: str) -> str:
    """Pull the human-readable message out of an error frame."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return payload
    if isinstance(data, dict):
        for key in ("message", "content"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
        return GENERIC_ERROR_MESSAGE
    if isinstance(data, str) and data:
        return data
    return GENERIC_ERROR_MESSAGE


class EventInterpreter:
    """Classifies lines by prefix. Stateful only across event:error → data."""

    def __init__(self) -> None:
        self._awaiting_error = False

    @property
    def awaiting_error(self) -> bool:
        return self._awaiting_error

    def interpret(self, line: str) -> Optional[StreamEvent]:
        line = line.rstrip("\r")

        if line.startswith(DATA_PREFIX):
            payload = line[len(DATA_PREFIX):].strip()
            if not payload:
                return None
            if self._awaiting_error:
                self._awaiting_error = False
                return StreamEvent(ERROR, message=_error_message(payload))
            return self._interpret_data(payload)

        if line.startswith(EVENT_PREFIX):
            name = line[len(EVENT_PREFIX):].strip()
            if name == DONE:
                return StreamEvent(DONE)
            if name == ERROR:
                self._awaiting_error = True
            # Unknown event names are ignored (forward compatibility)
            return None

        return None

    def finish(self) -> Optional[StreamEvent]:
        """Called at end of input. Resolves an error marker left without payload."""
        if self._awaiting_error:
            self._awaiting_error = False
            return StreamEvent(ERROR, message=GENERIC_ERROR_MESSAGE)
        return None

    def _interpret_data(self, payload: str) -> Optional[StreamEvent]:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed data frame: %.80s", payload)
            return None
        if not isinstance(data, dict):
            logger.debug("Skipping non-object data frame: %.80s", payload)
            return None

        if data.get("done"):
            return StreamEvent(DONE)
        content = data.get("content")
        if isinstance(content, str) and content:
            return StreamEvent(CHUNK, content=content)
        return None


class StreamParser:
    """Bytes in, events out: ByteDecoder → LineFramer → EventInterpreter.

    Nothing is yielded after the first terminal event.
    """

    def __init__(self, encoding: str = DEFAULT_ENCODING):
        self.decoder = ByteDecoder(encoding)
        self.framer = LineFramer()
        self.interpreter = EventInterpreter()
        self.finished = False

    def feed(self, chunk: bytes) -> Iterator[StreamEvent]:
        """Lazily yield events for one chunk, line by line."""
        if self.finished:
            return
        text = self.decoder.decode(chunk)
        for line in self.framer.feed(text):
            event = self._interpret(line)
            if event is not None:
                yield event
                if self.finished:
                    return

    def close(self) -> Iterator[StreamEvent]:
        """Flush decoder and framer at end of input."""
        if self.finished:
            return
        lines = self.framer.feed(self.decoder.decode(b"", final=True))
        lines.extend(self.framer.flush())
        for line in lines:
            event = self._interpret(line)
            if event is not None:
                yield event
                if self.finished:
                    return
        event = self.interpreter.finish()
        self.finished = True
        if event is not None:
            yield event

    def _interpret(self, line: str) -> Optional[StreamEvent]:
        event = self.interpreter.interpret(line)
        if event is not None and event.terminal:
            self.finished = True
        return event


async def decode_events(
    stream: AsyncIterable[bytes], encoding: str = DEFAULT_ENCODING,
) -> AsyncGenerator[StreamEvent, None]:
    """Decode chat stream events from an async byte stream (httpx aiter_bytes()).

    Always ends with exactly one terminal event: the first one found in the
    stream, or a synthetic DONE if the stream closed without one.
    """
    parser = StreamParser(encoding)

    async for chunk in stream:
        for event in parser.feed(chunk):
            yield event
        if parser.finished:
            return

    terminated = False
    for event in parser.close():
        terminated = terminated or event.terminal
        yield event
    if not terminated:
        yield StreamEvent(DONE)
