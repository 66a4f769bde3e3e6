"""Incremental server-sent-event decoding shared by all backends.

Backends only care about ``data:`` payloads, so named ``event:`` lines,
comments and keep-alives are dropped here. Each yielded item is the parsed
JSON payload of one data line.
"""

from __future__ import annotations

import codecs
import json
import logging
import threading
from collections.abc import Iterable, Iterator

import requests

from ..errors import Cancelled, StreamFailure

logger = logging.getLogger("steward")

DONE_SENTINEL = "[DONE]"


def raise_if_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise Cancelled("Request cancelled")


def _parse_line(line: str) -> dict | None:
    line = line.rstrip("\r")
    if not line.startswith("data:"):
        return None
    data = line[5:].strip()
    if not data or data == DONE_SENTINEL:
        return None
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping unparsable SSE payload: %r", data[:200])
        return None
    return event if isinstance(event, dict) else None


def iter_sse_payloads(
    chunks: Iterable[bytes],
    cancel_event: threading.Event | None = None,
) -> Iterator[dict]:
    """Yield parsed ``data:`` payloads from raw byte chunks.

    Chunk boundaries may fall anywhere, including inside a multi-byte
    character or inside a line; the trailing partial line is carried over
    to the next read and flushed when the input ends.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    for chunk in chunks:
        raise_if_cancelled(cancel_event)
        if not chunk:
            continue
        buffer += decoder.decode(chunk)
        lines = buffer.split("\n")
        buffer = lines.pop()
        for line in lines:
            event = _parse_line(line)
            if event is not None:
                yield event
    buffer += decoder.decode(b"", final=True)
    if buffer:
        event = _parse_line(buffer)
        if event is not None:
            yield event


def iter_response_events(
    resp: requests.Response,
    cancel_event: threading.Event | None = None,
) -> Iterator[dict]:
    """Stream payloads from an open HTTP response, closing it when done.

    Transport errors while reading the body surface as ``StreamFailure``;
    a set *cancel_event* closes the response and raises ``Cancelled``.
    """
    try:
        yield from iter_sse_payloads(resp.iter_content(chunk_size=None), cancel_event)
    except requests.exceptions.RequestException as e:
        raise StreamFailure(f"Stream interrupted: {e}") from e
    finally:
        resp.close()
