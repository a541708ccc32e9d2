"""Configuration helpers for render contexts."""

from .loader import RenderConfig, get_render_config, load_render_config

__all__ = [
    "RenderConfig",
    "get_render_config",
    "load_render_config",
]
