"""Relay upstream fragments to a downstream sink."""

from __future__ import annotations

from collections.abc import AsyncIterable, Callable
from dataclasses import dataclass
from typing import Protocol

from ..models.stream import StreamResult
from ..utils.error_handler import DownstreamWriteError, UpstreamStreamError


class DownstreamSink(Protocol):
    """Where relayed text goes.

    Implementations raise :class:`DownstreamWriteError` when the client
    can no longer receive data.
    """

    async def write(self, text: str) -> None:
        ...

    async def flush(self) -> None:
        ...


@dataclass(frozen=True)
class RelayOutcome:
    text: str
    turn_id: str = ""


async def relay(
    results: AsyncIterable[StreamResult],
    sink: DownstreamSink,
    on_turn_start: Callable[[str], None] | None = None,
) -> RelayOutcome:
    """Drain ``results`` into ``sink`` and return the accumulated reply.

    Results are handled in arrival order.  Fragments with an empty id are
    skipped.  The first fragment with an id fixes the turn id and fires
    ``on_turn_start`` before anything is written.  Every non-empty delta is
    written verbatim and flushed immediately.

    Raises :class:`UpstreamStreamError` on the first error result and
    :class:`DownstreamWriteError` if the sink fails; both carry the text
    relayed so far in ``partial``.  Output already written is not retracted.
    """
    parts: list[str] = []
    turn_id = ""

    async for result in results:
        if result.error is not None:
            partial = "".join(parts)
            if isinstance(result.error, UpstreamStreamError):
                result.error.partial = partial
                raise result.error
            raise UpstreamStreamError(str(result.error), partial=partial) from result.error

        fragment = result.fragment
        if fragment is None or not fragment.id:
            continue

        if not turn_id:
            turn_id = fragment.id
            if on_turn_start is not None:
                on_turn_start(turn_id)

        if not fragment.delta_content:
            continue

        parts.append(fragment.delta_content)
        try:
            await sink.write(fragment.delta_content)
            await sink.flush()
        except DownstreamWriteError as exc:
            exc.partial = "".join(parts)
            raise

    return RelayOutcome(text="".join(parts), turn_id=turn_id)
