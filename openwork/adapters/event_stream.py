"""Reader that turns the server's SSE byte stream into ServerEvents.

The stream is UTF-8 text; records are separated by blank lines and carry
their JSON on ``data:`` lines. A network read can end anywhere, including
inside a multi-byte character, so bytes are decoded incrementally and
partial lines are held until their newline arrives.
"""
from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable

from openwork.adapters.events import ServerEvent, normalize_event

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class EventStreamReader:
    """Lazy, ordered, cancelable sequence of events from one SSE connection.

    ``live`` turns True when the first event is observed and False when the
    stream ends or fails. The reader never reconnects; the owner starts a
    new reader for a new connection.
    """

    def __init__(
        self,
        chunks: AsyncIterable[bytes],
        on_cancel: Callable[[], None] | None = None,
    ) -> None:
        self._chunks = chunks
        self._on_cancel = on_cancel
        self._cancelled = False
        self._live = False
        self._error: BaseException | None = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def live(self) -> bool:
        return self._live

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def error(self) -> BaseException | None:
        """The failure that ended the stream, if it did not end by cancel."""
        return self._error

    def cancel(self) -> None:
        """Abort the stream. Iteration ends quietly at the next suspension point."""
        if self._cancelled:
            return
        self._cancelled = True
        self._live = False
        if self._on_cancel is not None:
            try:
                self._on_cancel()
            except Exception:
                logger.debug("Event stream close callback failed", exc_info=True)

    def __aiter__(self) -> AsyncIterator[ServerEvent]:
        return self.events()

    async def events(self) -> AsyncIterator[ServerEvent]:
        try:
            async for chunk in self._chunks:
                if self._cancelled:
                    break
                self._buffer += self._decoder.decode(chunk)
                lines = self._buffer.split("\n")
                self._buffer = lines.pop()
                for line in lines:
                    event = self._parse_line(line)
                    if event is None:
                        continue
                    self._live = True
                    yield event
                    if self._cancelled:
                        return
        except Exception as exc:
            if self._cancelled:
                logger.debug("Event stream closed after cancel: %s", exc)
                return
            self._live = False
            self._error = exc
            logger.warning("Event stream failed: %s: %s", type(exc).__name__, exc)
            return

        if self._cancelled:
            return

        # End of stream: whatever is left is a complete final line.
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        event = self._parse_line(tail)
        if event is not None:
            self._live = True
            yield event
        self._live = False
        logger.info("Event stream ended")

    @staticmethod
    def _parse_line(line: str) -> ServerEvent | None:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None
        raw = line[len(DATA_PREFIX):].strip()
        if not raw or raw == DONE_SENTINEL:
            return None
        try:
            decoded = json.loads(raw)
        except ValueError:
            logger.debug("Dropping unparseable event frame: %.200s", raw)
            return None
        event = normalize_event(decoded)
        if event is None:
            logger.debug("Dropping unrecognized event frame: %.200s", raw)
        return event
