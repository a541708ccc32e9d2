"""Output sink adapters that receive flushed render output."""
from __future__ import annotations

import asyncio
import io
import sys
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, List, Optional, Protocol, runtime_checkable

from . import logging_manager as log_mgr

logger = log_mgr.get_logger()

_FINISH_METHODS = ("finish", "end", "close")


@runtime_checkable
class OutputSink(Protocol):
    """Minimal contract between a render context and its destination."""

    def write(self, chunk: str) -> None:
        ...

    def finish(self) -> None:
        ...


@dataclass(slots=True)
class BufferSink:
    """Accumulate output in memory so it can be read back after the render."""

    _chunks: List[str] = field(default_factory=list, repr=False)
    _finished: bool = field(default=False, init=False)

    def write(self, chunk: str) -> None:
        self._chunks.append(chunk)

    def finish(self) -> None:
        self._finished = True

    @property
    def finished(self) -> bool:
        return self._finished

    def getvalue(self) -> str:
        """Return everything written so far."""

        return "".join(self._chunks)


def _is_binary(destination: Any) -> bool:
    if isinstance(destination, (io.RawIOBase, io.BufferedIOBase)):
        return True
    if isinstance(destination, io.TextIOBase):
        return False
    mode = getattr(destination, "mode", None)
    return isinstance(mode, str) and "b" in mode


@dataclass(slots=True)
class StreamSink:
    """Forward output to a caller-supplied object exposing ``write(chunk)``.

    When the render finishes, the destination is ended by calling the first
    of ``finish()``, ``end()`` or ``close()`` it provides. Standard streams
    are only flushed.
    """

    destination: Any
    encoding: str = "utf-8"
    close_destination: bool = True
    _binary: bool = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not callable(getattr(self.destination, "write", None)):
            raise TypeError("Render destination must provide a callable write(chunk)")
        self._binary = _is_binary(self.destination)

    def write(self, chunk: str) -> None:
        if self._binary:
            self.destination.write(chunk.encode(self.encoding))
        else:
            self.destination.write(chunk)

    def finish(self) -> None:
        if self.destination in (sys.stdout, sys.stderr) or not self.close_destination:
            flush = getattr(self.destination, "flush", None)
            if callable(flush):
                flush()
            return
        for name in _FINISH_METHODS:
            method = getattr(self.destination, name, None)
            if callable(method):
                method()
                return
        logger.debug(
            "Destination has no end-of-output method",
            extra={"event": "sink.finish_skipped", "destination": type(self.destination).__name__},
        )


class ChunkStream:
    """Asynchronous iterator that yields flushed chunks as they arrive.

    Suitable as the body of a streaming HTTP response: each chunk becomes
    available as soon as the render context flushes it and iteration stops
    after the render has finished.
    """

    _SENTINEL = object()

    def __init__(self, *, encoding: Optional[str] = None) -> None:
        self._queue: "asyncio.Queue[object]" = asyncio.Queue()
        self._encoding = encoding
        self._finished = False

    def write(self, chunk: str) -> None:
        if self._finished:
            raise ValueError("Cannot write to a finished ChunkStream")
        self._queue.put_nowait(chunk.encode(self._encoding) if self._encoding else chunk)

    def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._queue.put_nowait(self._SENTINEL)

    @property
    def finished(self) -> bool:
        return self._finished

    def __aiter__(self) -> AsyncIterator[str | bytes]:
        return self

    async def __anext__(self) -> str | bytes:
        item = await self._queue.get()
        if item is self._SENTINEL:
            # Leave the sentinel for any other consumer still iterating.
            self._queue.put_nowait(item)
            raise StopAsyncIteration
        return item  # type: ignore[return-value]


def create_sink(
    destination: Any = None,
    *,
    encoding: str = "utf-8",
    close_destination: bool = True,
) -> OutputSink:
    """Normalise ``destination`` into an :class:`OutputSink`."""

    if destination is None:
        return BufferSink()
    if isinstance(destination, (BufferSink, StreamSink, ChunkStream)):
        return destination
    return StreamSink(
        destination,
        encoding=encoding,
        close_destination=close_destination,
    )


__all__ = [
    "BufferSink",
    "ChunkStream",
    "OutputSink",
    "StreamSink",
    "create_sink",
]
