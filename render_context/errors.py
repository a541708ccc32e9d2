"""Exception hierarchy for render contexts and their async fragments."""

from __future__ import annotations

from typing import Optional


class RenderContextError(RuntimeError):
    """Base exception raised by render contexts."""


class RenderStateError(RenderContextError):
    """Raised when a context operation is invalid for its lifecycle state."""


class FragmentError(RenderContextError):
    """Raised (or recorded) when an async fragment fails.

    Producers may report any value through ``complete(error)``; values that
    are not exceptions are wrapped in this class so every recorded error is
    an exception instance.
    """

    def __init__(
        self,
        message: str,
        *,
        fragment_id: Optional[int] = None,
        value: object = None,
    ) -> None:
        self.fragment_id = fragment_id
        self.value = value
        detail = f" (fragment {fragment_id})" if fragment_id is not None else ""
        super().__init__(f"{message}{detail}")


class FragmentTimeoutError(FragmentError):
    """Recorded when an async fragment does not complete within its deadline."""

    def __init__(self, timeout_ms: float, *, fragment_id: Optional[int] = None) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Async fragment timed out after {timeout_ms:g} ms",
            fragment_id=fragment_id,
        )


__all__ = [
    "FragmentError",
    "FragmentTimeoutError",
    "RenderContextError",
    "RenderStateError",
]
