"""
Tests for environment-driven settings.

Covers:
- defaults, env overrides, blank values falling back to defaults
- limits must be positive, so a bad env value fails at startup
- the API key never appears in repr/str
"""
import pytest
from pydantic import ValidationError

import config
from config import Settings


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "ANTHROPIC_API_KEY", "RATE_LIMIT_MAX_REQUESTS", "RATE_LIMIT_WINDOW_MS",
        "RATE_LIMIT_MAX_IDENTITIES", "MAX_TEXT_LENGTH", "MAX_IMAGE_BYTES",
        "EXTRACTION_MODEL", "EXTRACTION_MAX_TOKENS", "TESSERACT_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestFromEnv:

    def test_defaults(self, clean_env):
        settings = Settings.from_env()
        assert settings.max_requests == config.MAX_REQUESTS
        assert settings.window_duration_ms == config.WINDOW_DURATION_MS
        assert settings.max_text_length == config.MAX_TEXT_LENGTH
        assert settings.has_credentials is False

    def test_overrides(self, clean_env):
        clean_env.setenv("RATE_LIMIT_MAX_REQUESTS", "3")
        clean_env.setenv("RATE_LIMIT_WINDOW_MS", "1000")
        clean_env.setenv("ANTHROPIC_API_KEY", "sk-ant-env")
        settings = Settings.from_env()
        assert settings.max_requests == 3
        assert settings.window_duration_ms == 1000
        assert settings.has_credentials is True

    def test_blank_value_uses_default(self, clean_env):
        clean_env.setenv("MAX_TEXT_LENGTH", "  ")
        assert Settings.from_env().max_text_length == config.MAX_TEXT_LENGTH

    def test_zero_limit_from_env_fails(self, clean_env):
        clean_env.setenv("RATE_LIMIT_MAX_REQUESTS", "0")
        with pytest.raises(ValidationError):
            Settings.from_env()


class TestBounds:

    @pytest.mark.parametrize("field", [
        "max_requests", "window_duration_ms", "max_identities",
        "max_text_length", "max_image_bytes", "extraction_max_tokens",
    ])
    @pytest.mark.parametrize("value", [0, -5])
    def test_limits_must_be_positive(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})

    def test_zero_max_requests_rejected(self):
        with pytest.raises(ValidationError):
            Settings(max_requests=0)


def test_repr_hides_key():
    settings = Settings(anthropic_api_key="sk-ant-secret-123")
    assert "sk-ant-secret-123" not in repr(settings)
    assert "sk-ant-secret-123" not in str(settings)
    assert "<set>" in repr(settings)
