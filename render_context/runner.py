"""Async fragment runner: invokes producer callbacks and reports outcomes."""
from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from . import logging_manager as log_mgr
from .errors import FragmentError, FragmentTimeoutError
from .observability import fragment_span
from .segments import Placeholder, SegmentState, coerce_chunk

if TYPE_CHECKING:  # pragma: no cover - imports used for static analysis only
    from .context import RenderContext
    from .scheduler import FragmentScheduler

logger = log_mgr.get_logger()

CompleteFn = Callable[..., None]
FragmentCallback = Callable[["RenderContext", CompleteFn], Optional[Awaitable[Any]]]


class FragmentRunner:
    """Run one async fragment callback and apply exactly one terminal outcome.

    The callback receives a nested context bound to the placeholder and a
    ``complete(error=None, content=None)`` function. Whichever of
    ``complete``, a raised exception or the timeout happens first decides the
    outcome; anything after that is ignored.
    """

    def __init__(
        self,
        scheduler: "FragmentScheduler",
        placeholder: Placeholder,
        callback: FragmentCallback,
        context: "RenderContext",
    ) -> None:
        self._scheduler = scheduler
        self._placeholder = placeholder
        self._callback = callback
        self._context = context
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Future] = None
        self._invoked = False

    @property
    def placeholder(self) -> Placeholder:
        return self._placeholder

    def arm(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start the timeout clock, if the fragment has one."""

        timeout_ms = self._placeholder.timeout_ms
        if timeout_ms is not None and self._timer is None:
            self._timer = loop.call_later(timeout_ms / 1000.0, self._on_timeout)

    def run(self) -> None:
        """Invoke the producer callback; called once from the event loop."""

        if self._invoked:
            return
        self._invoked = True
        fragment_id = self._placeholder.fragment_id
        try:
            with log_mgr.log_context(
                render_id=self._scheduler.render_id, fragment_id=fragment_id
            ), fragment_span(fragment_id, {"render_id": self._scheduler.render_id}):
                result = self._callback(self._context, self.complete)
        except Exception as exc:
            if not self._fail(exc):
                logger.warning(
                    "Async fragment raised after completing",
                    exc_info=True,
                    extra={
                        "event": "fragment.late_exception",
                        "render_id": self._scheduler.render_id,
                        "fragment_id": fragment_id,
                    },
                )
            return
        if inspect.isawaitable(result):
            self._task = asyncio.ensure_future(self._await_result(result))

    async def _await_result(self, awaitable: Awaitable[Any]) -> None:
        try:
            value = await awaitable
        except asyncio.CancelledError:
            if not self._placeholder.is_terminal:
                self._fail(
                    FragmentError(
                        "Async fragment was cancelled",
                        fragment_id=self._placeholder.fragment_id,
                    )
                )
            raise
        except Exception as exc:
            self.complete(exc)
            return
        if not self._placeholder.is_terminal:
            self.complete(None, value)

    def complete(self, error: object = None, content: object = None) -> None:
        """Completion function handed to the producer callback."""

        if self._placeholder.is_terminal:
            logger.debug(
                "Ignoring completion of a settled fragment",
                extra={
                    "event": "fragment.late_completion",
                    "render_id": self._scheduler.render_id,
                    "fragment_id": self._placeholder.fragment_id,
                    "outcome": self._placeholder.state.value,
                },
            )
            return
        if error is not None:
            self._fail(error)
            return
        self._cancel_timer()
        self._scheduler.settle(
            self._placeholder,
            SegmentState.RESOLVED,
            content=coerce_chunk(content, self._scheduler.config.encoding),
        )

    def _fail(self, error: object) -> bool:
        if self._placeholder.is_terminal:
            return False
        self._cancel_timer()
        if not isinstance(error, BaseException):
            error = FragmentError(
                f"Async fragment failed: {error}",
                fragment_id=self._placeholder.fragment_id,
                value=error,
            )
        return self._scheduler.settle(self._placeholder, SegmentState.FAILED, error=error)

    def _on_timeout(self) -> None:
        self._timer = None
        if self._placeholder.is_terminal:
            return
        error = FragmentTimeoutError(
            self._placeholder.timeout_ms or 0,
            fragment_id=self._placeholder.fragment_id,
        )
        try:
            self._scheduler.settle(self._placeholder, SegmentState.TIMED_OUT, error=error)
        finally:
            if self._task is not None and not self._task.done():
                self._task.cancel()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


__all__ = ["CompleteFn", "FragmentCallback", "FragmentRunner"]
