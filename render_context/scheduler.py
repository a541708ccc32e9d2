"""Fragment scheduler: owns the segment tree and flushes it in document order."""
from __future__ import annotations

import asyncio
import itertools
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from . import logging_manager as log_mgr
from .config.loader import RenderConfig, get_render_config
from .errors import RenderStateError
from .events import EventChannels
from .observability import record_metric
from .runner import FragmentCallback, FragmentRunner
from .segments import LiteralSegment, Placeholder, SegmentSequence, SegmentState
from .sink import OutputSink

logger = log_mgr.get_logger()


class RenderState(str, Enum):
    """Lifecycle of a render tree."""

    BUILDING = "building"
    ENDED = "ended"
    FLUSHED = "flushed"


class FragmentScheduler:
    """Shared state for one render: segment tree, pending count, errors, events.

    Every context of a render (the root and each nested fragment context)
    appends into a :class:`SegmentSequence` owned by this scheduler. Output
    is flushed left to right and stops at the first pending placeholder, so
    bytes reach the sink in declaration order whatever the completion order.
    """

    def __init__(
        self,
        sink: OutputSink,
        *,
        config: Optional[RenderConfig] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        allow_async: bool = True,
    ) -> None:
        self.sink = sink
        self.config = config or get_render_config()
        self.render_id = uuid4().hex[:12]
        self.root = SegmentSequence()
        self.events = EventChannels()
        self.errors: List[BaseException] = []
        self.attributes: Dict[str, Any] = {}
        self.state = RenderState.BUILDING
        self.pending = 0
        self._loop = loop
        self._allow_async = allow_async
        self._fragment_ids = itertools.count(1)
        self._unique_ids = itertools.count(0)
        self._flushing = False
        self._flush_requested = False
        self._end_emitted = False
        self._end_waiters: List[asyncio.Future] = []

    # ─── Tree construction ──────────────────────────────────────────────

    def append_literal(self, sequence: SegmentSequence, content: str) -> None:
        """Append written content to ``sequence`` and flush if it is the root."""

        if sequence.sealed:
            logger.warning(
                "Dropping write to a completed render scope",
                extra={"event": "render.write_dropped", "render_id": self.render_id},
            )
            return
        if not content:
            return
        sequence.append(LiteralSegment(content))
        # Nested sequences only become flushable once their placeholder settles.
        if sequence is self.root:
            self.flush()

    def begin_fragment(
        self,
        sequence: SegmentSequence,
        callback: FragmentCallback,
        timeout_ms: Optional[float],
        make_context: Callable[[Placeholder], Any],
    ) -> Optional[Placeholder]:
        """Reserve a placeholder in ``sequence`` and schedule its callback."""

        if not self._allow_async:
            raise RenderStateError("Async fragments are not allowed while capturing a string")
        if sequence.sealed:
            if sequence is self.root:
                raise RenderStateError("Cannot begin an async fragment after the render has ended")
            logger.warning(
                "Dropping async fragment begun in a completed render scope",
                extra={"event": "fragment.begin_dropped", "render_id": self.render_id},
            )
            return None
        if not callable(callback):
            raise TypeError("Async fragment callback must be callable")
        if timeout_ms is None:
            timeout_ms = self.config.default_fragment_timeout_ms
        elif isinstance(timeout_ms, bool) or timeout_ms <= 0:
            raise ValueError("timeout_ms must be a positive number of milliseconds")

        loop = self.get_loop()
        placeholder = Placeholder(fragment_id=next(self._fragment_ids), timeout_ms=timeout_ms)
        sequence.append(placeholder)
        self.pending += 1

        runner = FragmentRunner(self, placeholder, callback, make_context(placeholder))
        runner.arm(loop)
        loop.call_soon(runner.run)
        logger.debug(
            "Async fragment scheduled",
            extra={
                "event": "fragment.begin",
                "render_id": self.render_id,
                "fragment_id": placeholder.fragment_id,
                "pending": self.pending,
                "timeout_ms": timeout_ms,
            },
        )
        return placeholder

    def end_render(self) -> None:
        if self.state is not RenderState.BUILDING:
            raise RenderStateError("end_render() may only be called once per render")
        self.state = RenderState.ENDED
        logger.debug(
            "Render ended by producer",
            extra={"event": "render.end_requested", "render_id": self.render_id, "pending": self.pending},
        )
        self._maybe_finish()

    # ─── Fragment outcomes ──────────────────────────────────────────────

    def settle(
        self,
        placeholder: Placeholder,
        state: SegmentState,
        *,
        content: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> bool:
        """Apply a fragment's terminal outcome; later outcomes are ignored."""

        if not placeholder.settle(state, content=content, error=error):
            return False
        self.pending -= 1

        duration_ms = (time.perf_counter() - placeholder.created_at) * 1000.0
        record_metric(
            "render_context.fragment.duration",
            duration_ms,
            {"outcome": state.value},
        )
        log_extra = {
            "event": f"fragment.{state.value}",
            "render_id": self.render_id,
            "fragment_id": placeholder.fragment_id,
            "outcome": state.value,
            "duration_ms": round(duration_ms, 2),
            "pending": self.pending,
        }
        if error is None:
            logger.debug("Async fragment resolved", extra=log_extra)
        else:
            self.errors.append(error)
            logger.warning("Async fragment failed: %s", error, extra=log_extra)

        self.flush()
        try:
            if error is not None:
                self.events.emit("error", error)
        finally:
            self._maybe_finish()
        return True

    # ─── Flushing ───────────────────────────────────────────────────────

    def flush(self) -> None:
        """Write every newly contiguous run of resolved output to the sink."""

        if self._flushing:
            self._flush_requested = True
            return
        self._flushing = True
        try:
            while True:
                self._flush_requested = False
                chunks: List[str] = []
                self._drain(self.root, chunks)
                if chunks:
                    self.sink.write("".join(chunks))
                if not self._flush_requested:
                    break
        finally:
            self._flushing = False

    def _drain(self, sequence: SegmentSequence, chunks: List[str]) -> bool:
        """Advance ``sequence``'s cursor; return ``True`` once fully drained."""

        segments = sequence.segments
        while sequence.cursor < len(segments):
            segment = segments[sequence.cursor]
            if isinstance(segment, Placeholder):
                if segment.state is SegmentState.PENDING:
                    return False
                if segment.state is SegmentState.RESOLVED:
                    if segment.content is not None:
                        chunks.append(segment.content)
                    elif not self._drain(segment.children, chunks):
                        return False
            else:
                chunks.append(segment.content)
            sequence.cursor += 1
        return True

    # ─── Completion ─────────────────────────────────────────────────────

    def _maybe_finish(self) -> None:
        if self.state is not RenderState.ENDED or self.pending:
            return
        self.flush()
        self.root.sealed = True
        self.sink.finish()
        self.state = RenderState.FLUSHED
        logger.info(
            "Render complete",
            extra={
                "event": "render.end",
                "render_id": self.render_id,
                "errors": len(self.errors),
            },
        )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._emit_end()
        else:
            # Listeners attached right after end_render() still see "end".
            loop.call_soon(self._emit_end)

    def _emit_end(self) -> None:
        if self._end_emitted:
            return
        self._end_emitted = True
        waiters, self._end_waiters = self._end_waiters, []
        try:
            self.events.emit("end")
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(None)

    async def wait_for_end(self) -> None:
        if self._end_emitted:
            return
        waiter = self.get_loop().create_future()
        self._end_waiters.append(waiter)
        await waiter

    # ─── Helpers ────────────────────────────────────────────────────────

    def get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            return self._loop
        try:
            return asyncio.get_running_loop()
        except RuntimeError as exc:
            raise RenderStateError(
                "Async fragments require a running asyncio event loop"
            ) from exc

    def next_unique_id(self) -> int:
        return next(self._unique_ids)


__all__ = ["FragmentScheduler", "RenderState"]
