"""Tests for environment settings and the model registry."""

import pytest

from config import DEFAULT_MODEL, DEFAULT_PORT, build_model_registry, load_settings


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, DEFAULT_PORT),
        ("9000", 9000),
        ("not-a-port", DEFAULT_PORT),
        ("", DEFAULT_PORT),
    ],
)
def test_port_from_environment(monkeypatch, value, expected):
    if value is None:
        monkeypatch.delenv("PORT", raising=False)
    else:
        monkeypatch.setenv("PORT", value)

    assert load_settings().port == expected


def test_upstream_settings_from_environment(monkeypatch):
    monkeypatch.setenv("UPSTREAM_URL", "http://localhost:8081/chatkit")
    monkeypatch.setenv("UPSTREAM_TIMEOUT", "12.5")
    monkeypatch.setenv("STREAM_QUEUE_SIZE", "bogus")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = load_settings()

    assert settings.upstream_url == "http://localhost:8081/chatkit"
    assert settings.upstream_timeout == 12.5
    assert settings.queue_size == 64
    assert settings.log_level == "DEBUG"


def test_settings_are_frozen():
    settings = load_settings()
    with pytest.raises(AttributeError):
        settings.port = 1


def test_registry_is_read_only():
    registry = build_model_registry(created=1700000000)

    assert list(registry) == ["gpt-oss-120b", "gpt-oss-20b"]
    assert DEFAULT_MODEL in registry
    assert registry["gpt-oss-20b"].created == 1700000000
    with pytest.raises(TypeError):
        registry["gpt-oss-7b"] = registry["gpt-oss-20b"]
