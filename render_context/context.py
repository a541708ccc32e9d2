"""Render context façade: the fluent API used by producers."""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Optional, Tuple

from .config.loader import RenderConfig, get_render_config
from .errors import RenderStateError
from .events import Handler
from .runner import FragmentCallback
from .scheduler import FragmentScheduler, RenderState
from .segments import Placeholder, SegmentSequence, coerce_chunk
from .sink import BufferSink, create_sink

EVENT_ERROR = "error"
EVENT_END = "end"
_EVENTS = frozenset({EVENT_ERROR, EVENT_END})


class RenderContext:
    """Write output and delegate parts of it to async fragments.

    A root context is returned by :func:`create`. Each async fragment
    receives a nested context that writes into the fragment's reserved slot
    and shares the root's pending count, error list, events and attributes.
    Every mutating method returns the context so calls can be chained::

        ctx = create()
        ctx.on("end", lambda: print(ctx.get_output()))
        ctx.begin_render().write("1").begin_async_fragment(load).write("3").end_render()

    ``end`` is delivered on the next event loop iteration, so a listener
    attached right after :meth:`end_render` still receives it. Without a
    running loop (a fully synchronous render) ``end`` fires inside
    :meth:`end_render`, and listeners must be attached before calling it.
    """

    def __init__(
        self,
        scheduler: FragmentScheduler,
        sequence: SegmentSequence,
        placeholder: Optional[Placeholder] = None,
    ) -> None:
        self._scheduler = scheduler
        self._sequence = sequence
        self._placeholder = placeholder

    def __repr__(self) -> str:
        scope = f"fragment={self._placeholder.fragment_id}" if self._placeholder else "root"
        return (
            f"<RenderContext render_id={self._scheduler.render_id} {scope} "
            f"state={self._scheduler.state.value} pending={self._scheduler.pending}>"
        )

    # ─── Fluent API ─────────────────────────────────────────────────────

    def begin_render(self) -> "RenderContext":
        return self

    def write(self, content: object) -> "RenderContext":
        chunk = coerce_chunk(content, self._scheduler.config.encoding)
        if chunk is not None:
            self._scheduler.append_literal(self._sequence, chunk)
        return self

    def begin_async_fragment(
        self,
        callback: FragmentCallback,
        timeout_ms: Optional[float] = None,
    ) -> "RenderContext":
        """Reserve the current position for output produced by ``callback``.

        ``callback(context, complete)`` runs on the next event loop
        iteration. It may write to ``context`` and must eventually call
        ``complete()``, ``complete(error)`` or ``complete(None, content)``;
        a coroutine callback may instead return its content. When
        ``timeout_ms`` elapses first the fragment contributes nothing and an
        ``error`` event is emitted.
        """

        self._scheduler.begin_fragment(self._sequence, callback, timeout_ms, self._nested)
        return self

    def end_render(self) -> "RenderContext":
        if self.is_nested:
            raise RenderStateError("end_render() is only valid on the root context")
        self._scheduler.end_render()
        return self

    def on(self, event: str, handler: Handler) -> "RenderContext":
        self._scheduler.events.subscribe(_check_event(event), handler)
        return self

    def once(self, event: str, handler: Handler) -> "RenderContext":
        self._scheduler.events.subscribe(_check_event(event), handler, once=True)
        return self

    def off(self, event: str, handler: Handler) -> "RenderContext":
        self._scheduler.events.unsubscribe(_check_event(event), handler)
        return self

    # ─── Results ────────────────────────────────────────────────────────

    def get_output(self) -> Optional[str]:
        """Return the rendered string, or ``None`` for streaming destinations."""

        if self._scheduler.state is not RenderState.FLUSHED:
            raise RenderStateError("Output is only available after the render has ended")
        sink = self._scheduler.sink
        if isinstance(sink, BufferSink):
            return sink.getvalue()
        return None

    async def wait(self) -> Optional[str]:
        """Wait for the ``end`` event and return :meth:`get_output`."""

        await self._scheduler.wait_for_end()
        return self.get_output()

    def capture_string(self, fn: Callable[["RenderContext"], Any]) -> str:
        """Return what ``fn`` writes to a throwaway context.

        The capture shares this render's attributes but is synchronous only:
        beginning an async fragment inside it raises :class:`RenderStateError`.
        """

        sink = BufferSink()
        scheduler = FragmentScheduler(sink, config=self._scheduler.config, allow_async=False)
        scheduler.attributes = self._scheduler.attributes
        fn(RenderContext(scheduler, scheduler.root))
        scheduler.flush()
        return sink.getvalue()

    # ─── Shared render state ────────────────────────────────────────────

    @property
    def root(self) -> "RenderContext":
        if not self.is_nested:
            return self
        return RenderContext(self._scheduler, self._scheduler.root)

    @property
    def is_nested(self) -> bool:
        return self._placeholder is not None

    @property
    def render_id(self) -> str:
        return self._scheduler.render_id

    @property
    def state(self) -> RenderState:
        return self._scheduler.state

    @property
    def pending_count(self) -> int:
        return self._scheduler.pending

    @property
    def errors(self) -> Tuple[BaseException, ...]:
        return tuple(self._scheduler.errors)

    @property
    def attributes(self) -> Dict[str, Any]:
        return self._scheduler.attributes

    def unique_id(self, prefix: str = "c") -> str:
        """Return an id that is unique within this render tree."""

        return f"{prefix}{self._scheduler.next_unique_id()}"

    def _nested(self, placeholder: Placeholder) -> "RenderContext":
        return RenderContext(self._scheduler, placeholder.children, placeholder)


def _check_event(event: str) -> str:
    if event not in _EVENTS:
        raise ValueError(f"Unknown render event {event!r}; expected one of {sorted(_EVENTS)}")
    return event


def create(
    destination: Any = None,
    *,
    config: Optional[RenderConfig] = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> RenderContext:
    """Create a root render context writing to ``destination``.

    Without a destination, output is buffered and returned by
    :meth:`RenderContext.get_output`. Otherwise ``destination`` may be an
    :class:`~render_context.sink.OutputSink` or any object with a
    ``write(chunk)`` method, ended after the final flush.
    """

    config = config or get_render_config()
    sink = create_sink(
        destination,
        encoding=config.encoding,
        close_destination=config.close_destination,
    )
    scheduler = FragmentScheduler(sink, config=config, loop=loop)
    return RenderContext(scheduler, scheduler.root)


__all__ = ["EVENT_END", "EVENT_ERROR", "RenderContext", "create"]
