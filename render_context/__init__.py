"""Ordered rendering of synchronous writes and async fragments."""

from .environment import load_environment

# Load environment variables from .env-style files before configuration and
# logging read their overrides.
load_environment()

from . import logging_manager as log_mgr  # noqa: E402
from .config.loader import RenderConfig, get_render_config, load_render_config  # noqa: E402
from .context import EVENT_END, EVENT_ERROR, RenderContext, create  # noqa: E402
from .errors import (  # noqa: E402
    FragmentError,
    FragmentTimeoutError,
    RenderContextError,
    RenderStateError,
)
from .scheduler import RenderState  # noqa: E402
from .sink import BufferSink, ChunkStream, OutputSink, StreamSink  # noqa: E402

log_mgr.setup_logging(get_render_config().log_level)

__all__ = [
    "BufferSink",
    "ChunkStream",
    "EVENT_END",
    "EVENT_ERROR",
    "FragmentError",
    "FragmentTimeoutError",
    "OutputSink",
    "RenderConfig",
    "RenderContext",
    "RenderContextError",
    "RenderState",
    "RenderStateError",
    "StreamSink",
    "create",
    "get_render_config",
    "load_environment",
    "load_render_config",
]
