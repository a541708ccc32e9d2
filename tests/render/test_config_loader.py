from pathlib import Path

import pytest

from render_context.config.loader import RenderConfig, load_render_config


def test_defaults_are_applied(monkeypatch) -> None:
    monkeypatch.delenv("RENDER_CONTEXT_FRAGMENT_TIMEOUT_MS", raising=False)
    monkeypatch.delenv("RENDER_CONTEXT_LOG_LEVEL", raising=False)
    config = RenderConfig.from_mapping(None)
    assert config.to_dict() == {
        "default_fragment_timeout_ms": None,
        "encoding": "utf-8",
        "close_destination": True,
        "log_level": "INFO",
    }


def test_values_are_coerced(monkeypatch) -> None:
    monkeypatch.delenv("RENDER_CONTEXT_FRAGMENT_TIMEOUT_MS", raising=False)
    monkeypatch.delenv("RENDER_CONTEXT_LOG_LEVEL", raising=False)
    config = RenderConfig.from_mapping(
        {
            "default_fragment_timeout_ms": "250",
            "close_destination": "no",
            "log_level": "debug",
            "unknown": "ignored",
        }
    )
    assert config.default_fragment_timeout_ms == 250
    assert config.close_destination is False
    assert config.log_level == "DEBUG"


@pytest.mark.parametrize(
    "payload",
    [
        {"default_fragment_timeout_ms": 0},
        {"default_fragment_timeout_ms": True},
        {"default_fragment_timeout_ms": "soon"},
        {"encoding": "not-a-codec"},
        {"close_destination": "maybe"},
        {"log_level": "LOUD"},
    ],
)
def test_invalid_values_raise(monkeypatch, payload) -> None:
    monkeypatch.delenv("RENDER_CONTEXT_FRAGMENT_TIMEOUT_MS", raising=False)
    monkeypatch.delenv("RENDER_CONTEXT_LOG_LEVEL", raising=False)
    with pytest.raises(ValueError):
        RenderConfig.from_mapping(payload)


def test_environment_overrides_file_values(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "render.yaml"
    config_path.write_text("default_fragment_timeout_ms: 100\nlog_level: WARNING\n", encoding="utf-8")
    monkeypatch.setenv("RENDER_CONTEXT_FRAGMENT_TIMEOUT_MS", "off")
    monkeypatch.setenv("RENDER_CONTEXT_LOG_LEVEL", "error")
    config = load_render_config(config_path)
    assert config.default_fragment_timeout_ms is None
    assert config.log_level == "ERROR"


def test_config_path_from_environment(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "custom.yaml"
    config_path.write_text("encoding: latin-1\nclose_destination: false\n", encoding="utf-8")
    monkeypatch.setenv("RENDER_CONTEXT_CONFIG", str(config_path))
    monkeypatch.delenv("RENDER_CONTEXT_FRAGMENT_TIMEOUT_MS", raising=False)
    monkeypatch.delenv("RENDER_CONTEXT_LOG_LEVEL", raising=False)
    config = load_render_config()
    assert config.encoding == "latin-1"
    assert config.close_destination is False


def test_missing_file_falls_back_to_defaults(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("RENDER_CONTEXT_FRAGMENT_TIMEOUT_MS", raising=False)
    monkeypatch.delenv("RENDER_CONTEXT_LOG_LEVEL", raising=False)
    config = load_render_config(tmp_path / "absent.yaml")
    assert config == RenderConfig.from_mapping({})


def test_non_mapping_file_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "render.yaml"
    config_path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_render_config(config_path)
