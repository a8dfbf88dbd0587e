"""
Unit Tests for Configuration
============================

Tests for realtime_proxy/app/config.py

Run tests:
----------
    pytest realtime_proxy/app/tests/test_config.py -v
"""

import pytest
from pydantic import ValidationError

from realtime_proxy.app.config import Settings, describe_settings_error


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Remove variables that would leak into Settings from the host environment"""
    for name in (
        "OPENAI_API_KEY", "PORT", "PROXY_PORT", "PROXY_HOST", "UPSTREAM_URL",
        "REALTIME_MODEL", "OPENAI_BETA", "LOG_LEVEL", "MAX_MESSAGE_BYTES",
        "UPSTREAM_OPEN_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)


def make_settings(**overrides):
    values = {"OPENAI_API_KEY": "sk-test"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_defaults_target_openai_realtime():
    """Test the default upstream endpoint and headers"""
    settings = make_settings()

    assert settings.upstream_url == (
        "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview-2024-12-17"
    )
    assert settings.upstream_headers == {
        "Authorization": "Bearer sk-test",
        "OpenAI-Beta": "realtime=v1",
    }
    assert settings.PROXY_PORT == 8080
    assert settings.PROXY_HOST == "0.0.0.0"


def test_credential_is_not_exposed_in_repr():
    """Test that the API key never shows up in reprs or logs"""
    settings = make_settings(OPENAI_API_KEY="sk-very-secret")

    assert "sk-very-secret" not in repr(settings)
    assert "sk-very-secret" not in str(settings.model_dump())


def test_missing_credential_is_rejected():
    """Test that OPENAI_API_KEY is required"""
    with pytest.raises(ValidationError) as exc_info:
        Settings(_env_file=None)

    assert describe_settings_error(exc_info.value) == [
        "OPENAI_API_KEY not found in environment variables"
    ]


def test_blank_credential_is_rejected():
    """Test that a whitespace-only key counts as missing"""
    with pytest.raises(ValidationError) as exc_info:
        make_settings(OPENAI_API_KEY="  ")

    assert "OPENAI_API_KEY" in describe_settings_error(exc_info.value)[0]


def test_credential_read_from_environment(monkeypatch):
    """Test that the key is picked up from the environment"""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

    settings = Settings(_env_file=None)

    assert settings.OPENAI_API_KEY.get_secret_value() == "sk-env"


def test_port_prefers_port_over_proxy_port(monkeypatch):
    """Test that PORT (cloud hosts) wins over PROXY_PORT"""
    monkeypatch.setenv("PORT", "10000")
    monkeypatch.setenv("PROXY_PORT", "9000")

    assert make_settings().PROXY_PORT == 10000


def test_port_falls_back_to_proxy_port(monkeypatch):
    """Test that PROXY_PORT is used when PORT is absent"""
    monkeypatch.setenv("PROXY_PORT", "9000")

    assert make_settings().PROXY_PORT == 9000


def test_port_out_of_range_is_rejected(monkeypatch):
    """Test that the port must be a valid TCP port"""
    monkeypatch.setenv("PORT", "70000")

    with pytest.raises(ValidationError):
        make_settings()


def test_upstream_url_must_be_websocket():
    """Test that only ws:// and wss:// upstream URLs are accepted"""
    with pytest.raises(ValidationError):
        make_settings(UPSTREAM_URL="https://api.openai.com/v1/realtime")


def test_upstream_url_with_existing_query():
    """Test that the model parameter is appended to an existing query string"""
    settings = make_settings(UPSTREAM_URL="ws://localhost:9000/realtime?region=eu", REALTIME_MODEL="m 1")

    assert settings.upstream_url == "ws://localhost:9000/realtime?region=eu&model=m+1"


def test_log_level_is_normalized():
    """Test that log levels are case-insensitive and validated"""
    assert make_settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

    with pytest.raises(ValidationError):
        make_settings(LOG_LEVEL="verbose")


def test_settings_are_immutable():
    """Test that settings cannot be changed after startup"""
    settings = make_settings()

    with pytest.raises(ValidationError):
        settings.REALTIME_MODEL = "other"
