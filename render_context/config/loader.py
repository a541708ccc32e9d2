"""Render context configuration loader and validation utilities."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Optional

import yaml

_DEFAULT_RENDER_CONFIG_PATH = (
    Path(__file__).resolve().parent.parent.parent / "conf" / "render.yaml"
)

_DEFAULT_CONFIG = {
    "default_fragment_timeout_ms": None,
    "encoding": "utf-8",
    "close_destination": True,
    "log_level": "INFO",
}

_ENV_OVERRIDES = {
    "default_fragment_timeout_ms": "RENDER_CONTEXT_FRAGMENT_TIMEOUT_MS",
    "log_level": "RENDER_CONTEXT_LOG_LEVEL",
}


def _coerce_optional_timeout(name: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a positive integer, not a boolean")
    if isinstance(value, int):
        candidate = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or stripped.lower() in {"none", "null", "off"}:
            return None
        if not stripped.isdigit():
            raise ValueError(f"{name} must be a positive integer")
        candidate = int(stripped)
    else:
        raise ValueError(f"{name} must be a positive integer")
    if candidate <= 0:
        raise ValueError(f"{name} must be greater than zero")
    return candidate


def _coerce_encoding(name: str, value: Any) -> str:
    if isinstance(value, str) and value.strip():
        candidate = value.strip()
        try:
            "".encode(candidate)
        except LookupError as exc:
            raise ValueError(f"{name} is not a known codec: {candidate}") from exc
        return candidate
    raise ValueError(f"{name} must be a non-empty string")


def _coerce_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
    raise ValueError(f"{name} must be a boolean value")


def _coerce_level_name(name: str, value: Any) -> str:
    if isinstance(value, str) and value.strip():
        candidate = value.strip().upper()
        if candidate in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}:
            return candidate
    raise ValueError(f"{name} must be a logging level name")


def _normalise_payload(data: Mapping[str, Any] | None) -> MutableMapping[str, Any]:
    payload: MutableMapping[str, Any] = dict(_DEFAULT_CONFIG)
    if data:
        for key, value in data.items():
            if key not in payload:
                continue
            payload[key] = value
    for key, env_name in _ENV_OVERRIDES.items():
        env_value = os.environ.get(env_name)
        if env_value is not None and env_value.strip():
            payload[key] = env_value
    return payload


@dataclass(frozen=True, slots=True)
class RenderConfig:
    """Validated render context configuration values."""

    default_fragment_timeout_ms: Optional[int]
    encoding: str
    close_destination: bool
    log_level: str

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "RenderConfig":
        normalised = _normalise_payload(payload)
        return cls(
            default_fragment_timeout_ms=_coerce_optional_timeout(
                "default_fragment_timeout_ms", normalised["default_fragment_timeout_ms"]
            ),
            encoding=_coerce_encoding("encoding", normalised["encoding"]),
            close_destination=_coerce_bool("close_destination", normalised["close_destination"]),
            log_level=_coerce_level_name("log_level", normalised["log_level"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "default_fragment_timeout_ms": self.default_fragment_timeout_ms,
            "encoding": self.encoding,
            "close_destination": self.close_destination,
            "log_level": self.log_level,
        }


def load_render_config(path: Optional[Path | str] = None) -> RenderConfig:
    """Load and validate the render configuration from disk."""

    if path is None:
        path = os.environ.get("RENDER_CONTEXT_CONFIG") or _DEFAULT_RENDER_CONFIG_PATH
    config_path = Path(path)
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            raw_data = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        raw_data = {}
    if not isinstance(raw_data, Mapping):
        raise ValueError(f"{config_path} must contain a mapping of settings")
    return RenderConfig.from_mapping(raw_data)


@lru_cache(maxsize=1)
def get_render_config() -> RenderConfig:
    """Return the cached render configuration."""

    return load_render_config()


__all__ = ["RenderConfig", "get_render_config", "load_render_config"]
