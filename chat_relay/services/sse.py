"""Incremental parser for ``text/event-stream`` bodies.

Follows the event stream interpretation rules from the HTML living
standard closely enough for LLM providers: ``data`` lines are joined with
newlines, lines starting with ``:`` are comments, and an event is
dispatched on every blank line.  A pending event at end of body is
dispatched as well, since providers do not always terminate the last
event with a blank line.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass


@dataclass(frozen=True)
class ServerSentEvent:
    data: str
    event: str = "message"
    id: str | None = None
    retry: int | None = None


class _EventBuilder:
    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._data: list[str] = []
        self._event = ""
        self._id: str | None = None
        self._retry: int | None = None

    def feed(self, line: str) -> None:
        if line.startswith(":"):
            return
        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data.append(value)
        elif field == "event":
            self._event = value
        elif field == "id":
            if "\0" not in value:
                self._id = value
        elif field == "retry":
            if value.isdigit():
                self._retry = int(value)

    def build(self) -> ServerSentEvent | None:
        if not self._data:
            self.reset()
            return None
        event = ServerSentEvent(
            data="\n".join(self._data),
            event=self._event or "message",
            id=self._id,
            retry=self._retry,
        )
        self.reset()
        return event


async def iter_sse_events(lines: AsyncIterable[str]) -> AsyncIterator[ServerSentEvent]:
    """Yield events parsed from an async iterable of body lines.

    ``lines`` is expected without line terminators, as produced by
    :meth:`httpx.Response.aiter_lines`.
    """
    builder = _EventBuilder()
    async for raw in lines:
        line = raw.rstrip("\r\n")
        if line:
            builder.feed(line)
            continue
        event = builder.build()
        if event is not None:
            yield event
    event = builder.build()
    if event is not None:
        yield event
