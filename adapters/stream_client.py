#!/usr/bin/env python3
"""
stream_client.py — Streaming chat client for POST /messages/stream

Library use:
  handle = stream_message(content, persona_id, on_chunk, on_done, on_error,
                          access_token=token)
  ...
  handle.cancel()        # abort the in-flight read, no further callbacks
  await handle.wait()

Human CLI:  python3 stream_client.py <persona-id> <message...> [--config path]

Callback guarantees (per session):
  on_chunk(text)   — once per content fragment, in stream order
  on_done()        — at most once; also fires when the stream ends unterminated
  on_error(err)    — at most once; StreamError with code/message/status_code
  Nothing fires after a terminal callback or after cancel().

Exit codes (CLI):
  0   = stream completed
  1   = backend reported an error / non-2xx response
  2   = network/timeout error
  4   = usage or configuration error
  130 = interrupted
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import uuid
from typing import Any, Callable, Optional

import httpx

# Add adapters/ directory to path so sibling modules import directly
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from byte_decoder import DEFAULT_ENCODING  # noqa: E402
from config_loader import ClientConfig, load_config, redact_headers  # noqa: E402
from event_interpreter import CHUNK, DONE, StreamEvent, StreamParser  # noqa: E402

logger = logging.getLogger("lobai.stream_client")

OnChunk = Callable[[str], None]
OnDone = Callable[[], None]
OnError = Callable[["StreamError"], None]

# Strong references to reader tasks whose handle the caller may drop
_running_tasks: "set[asyncio.Task[None]]" = set()


# === Error Classes ===

class StreamError(Exception):
    """Structured stream failure delivered to on_error."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {
            "error": "StreamError",
            "code": self.code,
            "message": str(self),
            "status_code": self.status_code,
        }


# === Dispatch Controller ===

class StreamSession:
    """State of one in-flight stream request.

    Owns the parser and the terminated flag. Every callback goes through
    _dispatch/fail, which refuse to fire once the session is terminated.
    """

    def __init__(
        self,
        on_chunk: OnChunk,
        on_done: OnDone,
        on_error: OnError,
        encoding: str = DEFAULT_ENCODING,
        request_id: Optional[str] = None,
    ):
        self._on_chunk = on_chunk
        self._on_done = on_done
        self._on_error = on_error
        self._parser = StreamParser(encoding)
        self.request_id = request_id or uuid.uuid4().hex[:16]
        self.terminated = False
        self.cancelled = False

    def cancel(self) -> bool:
        """Terminate without callbacks. Returns False if already terminated."""
        if self.terminated:
            return False
        self.terminated = True
        self.cancelled = True
        return True

    def fail(self, error: StreamError) -> None:
        if self.terminated:
            return
        self.terminated = True
        logger.info("Stream %s failed: %s %s", self.request_id, error.code, error)
        self._report_error(error)

    def feed(self, chunk: bytes) -> bool:
        """Decode, frame, interpret and dispatch one chunk.

        Returns True while the session still wants more input.
        """
        for event in self._parser.feed(chunk):
            if self.terminated:
                break
            self._dispatch(event)
        return not self.terminated

    def finish(self) -> None:
        """End of input: dispatch residual events, then implicit done."""
        for event in self._parser.close():
            if self.terminated:
                return
            self._dispatch(event)
        if not self.terminated:
            logger.debug("Stream %s ended without terminal marker", self.request_id)
            self._dispatch(StreamEvent(DONE))

    async def consume(self, response: httpx.Response) -> None:
        """Read loop over a streamed response. One chunk read in flight at a time."""
        if not response.is_success:
            self.fail(StreamError(
                code="http_error",
                message=f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            ))
            return

        async for chunk in response.aiter_bytes():
            if self.terminated or not self.feed(chunk):
                break
        if not self.terminated:
            self.finish()

    def _dispatch(self, event: StreamEvent) -> None:
        if event.kind == CHUNK:
            self._on_chunk(event.content)
            return
        self.terminated = True
        if event.kind == DONE:
            logger.debug("Stream %s done", self.request_id)
            self._on_done()
        else:
            logger.info("Stream %s reported error: %s", self.request_id, event.message)
            self._report_error(StreamError(code="server_error", message=event.message))

    def _report_error(self, error: StreamError) -> None:
        # Exceptions from on_error are logged, never raised into the reader task
        try:
            self._on_error(error)
        except Exception:
            logger.exception("Stream %s: on_error callback raised", self.request_id)


# === Cancellation Handle ===

class StreamHandle:
    """Caller-held token for one stream. cancel() is idempotent."""

    def __init__(self, session: StreamSession, task: "asyncio.Task[None]"):
        self._session = session
        self._task = task

    @property
    def request_id(self) -> str:
        return self._session.request_id

    @property
    def cancelled(self) -> bool:
        return self._session.cancelled

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        if not self._session.cancel():
            return
        logger.debug("Stream %s cancelled by caller", self._session.request_id)
        self._task.cancel()

    async def wait(self) -> None:
        """Wait for the reader task to finish. Never raises."""
        await asyncio.wait([self._task])


# === Request Building ===

def build_stream_request(
    content: str,
    persona_id: Any,
    request_id: str,
    access_token: Optional[str] = None,
) -> tuple[dict[str, str], dict[str, Any]]:
    """Headers and JSON body for POST /messages/stream."""
    headers = {
        "Content-Type": "application/json",
        "Accept": "text/event-stream",
        "X-Request-ID": request_id,
    }
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"
    body = {"content": content, "personaId": persona_id}
    return headers, body


async def _run_stream(
    session: StreamSession,
    config: ClientConfig,
    client: Optional[httpx.AsyncClient],
    headers: dict[str, str],
    body: dict[str, Any],
) -> None:
    url = config.stream_url
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=config.timeout())

    logger.debug(
        "Stream %s POST %s headers=%s", session.request_id, url, redact_headers(headers),
    )
    try:
        async with client.stream("POST", url, json=body, headers=headers) as response:
            await session.consume(response)
    except asyncio.CancelledError:
        # Aborted transport read: not an error, suppress on_error
        if session.cancel():
            logger.debug("Stream %s aborted", session.request_id)
        raise
    except httpx.TimeoutException as e:
        session.fail(StreamError(code="network_error", message=f"Request timed out: {e}"))
    except httpx.HTTPError as e:
        session.fail(StreamError(code="network_error", message=f"Connection failed: {e}"))
    except Exception as e:
        logger.exception("Stream %s: unexpected error", session.request_id)
        session.fail(StreamError(code="stream_error", message=f"Unexpected error: {e}"))
    finally:
        if owns_client:
            await client.aclose()


# === Entry Point ===

def stream_message(
    content: str,
    persona_id: Any,
    on_chunk: OnChunk,
    on_done: OnDone,
    on_error: OnError,
    *,
    access_token: Optional[str] = None,
    config: Optional[ClientConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> StreamHandle:
    """Start streaming a reply to `content` from persona `persona_id`.

    Must be called from a running event loop. The request runs in its own
    task; callbacks fire on the loop thread. A shared `client` is used as-is
    and left open; otherwise one is created from `config` and closed when the
    stream ends.
    """
    loop = asyncio.get_running_loop()
    if config is None:
        config = ClientConfig()
    token = access_token if access_token is not None else config.access_token

    session = StreamSession(on_chunk, on_done, on_error, encoding=config.encoding)
    headers, body = build_stream_request(content, persona_id, session.request_id, token)

    task = loop.create_task(_run_stream(session, config, client, headers, body))
    _running_tasks.add(task)
    task.add_done_callback(_running_tasks.discard)
    return StreamHandle(session, task)


# === Human CLI ===

async def _stream_to_stdout(config: ClientConfig, persona_id: Any, message: str) -> int:
    result = {"exit": 0}

    def on_chunk(text: str) -> None:
        print(text, end="", flush=True)

    def on_done() -> None:
        print(flush=True)

    def on_error(error: StreamError) -> None:
        print(f"\nERROR: {error}", file=sys.stderr)
        result["exit"] = 2 if error.code == "network_error" else 1

    handle = stream_message(message, persona_id, on_chunk, on_done, on_error, config=config)
    try:
        await handle.wait()
    except asyncio.CancelledError:
        handle.cancel()
        raise
    return result["exit"]


def main():
    args = sys.argv[1:]

    logging.basicConfig(
        level=os.environ.get("LOBAI_LOG_LEVEL", "WARNING").upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config_path = None
    if "--config" in args:
        idx = args.index("--config")
        if idx + 1 >= len(args):
            print("ERROR: --config requires a path argument", file=sys.stderr)
            sys.exit(4)
        config_path = args[idx + 1]
        del args[idx:idx + 2]

    if len(args) < 2:
        print("Usage:", file=sys.stderr)
        print("  python3 stream_client.py <persona-id> <message...> [--config path]", file=sys.stderr)
        sys.exit(4)

    persona_arg = args[0]
    persona_id: Any = int(persona_arg) if persona_arg.isdigit() else persona_arg
    message = " ".join(args[1:])

    try:
        config = load_config(config_path)
    except (OSError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(4)

    try:
        exit_code = asyncio.run(_stream_to_stdout(config, persona_id, message))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
