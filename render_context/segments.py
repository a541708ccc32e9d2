"""Ordered output segments: literals and placeholders for async fragments."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union


class SegmentState(str, Enum):
    """Resolution state of a placeholder segment."""

    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self is not SegmentState.PENDING


@dataclass(frozen=True, slots=True)
class LiteralSegment:
    """Content produced synchronously by a ``write`` call."""

    content: str


@dataclass(slots=True)
class SegmentSequence:
    """Append-only list of segments with a flush cursor.

    Everything before ``cursor`` has already been handed to the sink.
    Once ``sealed`` no further segments may be appended.
    """

    segments: List["Segment"] = field(default_factory=list)
    cursor: int = 0
    sealed: bool = False

    def append(self, segment: "Segment") -> None:
        if self.sealed:
            raise ValueError("Cannot append to a sealed segment sequence")
        self.segments.append(segment)

    def __len__(self) -> int:
        return len(self.segments)


@dataclass(slots=True)
class Placeholder:
    """Reserved slot in the output awaiting an async fragment's outcome."""

    fragment_id: int
    timeout_ms: Optional[float] = None
    children: SegmentSequence = field(default_factory=SegmentSequence)
    state: SegmentState = SegmentState.PENDING
    content: Optional[str] = None
    error: Optional[BaseException] = None
    created_at: float = field(default_factory=time.perf_counter)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def settle(
        self,
        state: SegmentState,
        *,
        content: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> bool:
        """Move to ``state`` unless a terminal state was already reached.

        Returns ``True`` when this call performed the transition. Failed and
        timed-out placeholders never carry content.
        """

        if self.is_terminal:
            return False
        if not state.is_terminal:
            raise ValueError(f"{state.value!r} is not a terminal state")
        self.state = state
        self.children.sealed = True
        if state is SegmentState.RESOLVED:
            self.content = content
        else:
            self.content = None
            self.error = error
        return True


Segment = Union[LiteralSegment, Placeholder]


def coerce_chunk(value: object, encoding: str = "utf-8") -> Optional[str]:
    """Convert a written value to text; ``None`` means "nothing to write"."""

    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode(encoding)
    return str(value)


__all__ = [
    "LiteralSegment",
    "Placeholder",
    "Segment",
    "SegmentSequence",
    "SegmentState",
    "coerce_chunk",
]
