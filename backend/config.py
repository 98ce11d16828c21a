"""
Runtime configuration.

Every knob is read from the environment.  Module-level constants hold the
defaults; ``Settings.from_env()`` re-reads the environment at call time so
tests (and the app factory) can build an isolated configuration.
"""
import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

MAX_REQUESTS = 10
WINDOW_DURATION_MS = 60_000
MAX_IDENTITIES = 10_000
MAX_TEXT_LENGTH = 10_000
MAX_IMAGE_BYTES = 10 * 1024 * 1024

EXTRACTION_MODEL = "claude-haiku-4-5"
EXTRACTION_MAX_TOKENS = 2048
TESSERACT_CONFIG = "--psm 6"


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw else default


class Settings(BaseModel):
    """Validated at construction, so a bad environment value fails at startup."""
    model_config = ConfigDict(frozen=True)

    anthropic_api_key: Optional[str] = None
    max_requests: int = Field(default=MAX_REQUESTS, gt=0)
    window_duration_ms: int = Field(default=WINDOW_DURATION_MS, gt=0)
    max_identities: int = Field(default=MAX_IDENTITIES, gt=0)
    max_text_length: int = Field(default=MAX_TEXT_LENGTH, gt=0)
    max_image_bytes: int = Field(default=MAX_IMAGE_BYTES, gt=0)
    extraction_model: str = EXTRACTION_MODEL
    extraction_max_tokens: int = Field(default=EXTRACTION_MAX_TOKENS, gt=0)
    tesseract_config: str = TESSERACT_CONFIG

    @property
    def has_credentials(self) -> bool:
        return bool(self.anthropic_api_key and self.anthropic_api_key.strip())

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY") or None,
            max_requests=_int_env("RATE_LIMIT_MAX_REQUESTS", MAX_REQUESTS),
            window_duration_ms=_int_env("RATE_LIMIT_WINDOW_MS", WINDOW_DURATION_MS),
            max_identities=_int_env("RATE_LIMIT_MAX_IDENTITIES", MAX_IDENTITIES),
            max_text_length=_int_env("MAX_TEXT_LENGTH", MAX_TEXT_LENGTH),
            max_image_bytes=_int_env("MAX_IMAGE_BYTES", MAX_IMAGE_BYTES),
            extraction_model=os.environ.get("EXTRACTION_MODEL", EXTRACTION_MODEL),
            extraction_max_tokens=_int_env("EXTRACTION_MAX_TOKENS", EXTRACTION_MAX_TOKENS),
            tesseract_config=os.environ.get("TESSERACT_CONFIG", TESSERACT_CONFIG),
        )

    def __repr__(self) -> str:
        # Never render the credential itself.
        key_state = "set" if self.has_credentials else "unset"
        return (
            f"Settings(anthropic_api_key=<{key_state}>, max_requests={self.max_requests}, "
            f"window_duration_ms={self.window_duration_ms}, max_text_length={self.max_text_length})"
        )

    __str__ = __repr__
