"""FastAPI helper that streams a render context as the response body."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from fastapi.responses import StreamingResponse

from . import logging_manager as log_mgr
from .config.loader import RenderConfig, get_render_config
from .context import RenderContext, create
from .sink import ChunkStream

logger = log_mgr.get_logger()


def stream_render(
    render: Callable[[RenderContext], Any],
    *,
    media_type: str = "text/html",
    headers: Optional[Mapping[str, str]] = None,
    config: Optional[RenderConfig] = None,
) -> StreamingResponse:
    """Return a response whose body is flushed incrementally by ``render``.

    ``render(ctx)`` receives a fresh root context; it should write and begin
    async fragments and finally call ``ctx.end_render()``. Chunks are sent
    as soon as they become contiguous in document order.
    """

    config = config or get_render_config()
    stream = ChunkStream(encoding=config.encoding)
    context = create(stream, config=config)
    context.on(
        "error",
        lambda error: logger.info(
            "Streaming render continued past a failed fragment",
            extra={"event": "webapi.fragment_error", "render_id": context.render_id, "error": str(error)},
        ),
    )

    async def body():
        render(context)
        async for chunk in stream:
            yield chunk

    response_headers = {"X-Render-Id": context.render_id}
    if headers:
        response_headers.update(headers)
    return StreamingResponse(body(), media_type=media_type, headers=response_headers)


__all__ = ["stream_render"]
