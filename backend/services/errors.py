"""
Error taxonomy for the parse pipeline.

Pipeline steps return a ``Failure`` instead of raising so the orchestrator can
stop at the first one.  Adapters (OCR, extraction) raise ``UpstreamError``
subclasses; the orchestrator logs those in full and turns them into a
``Failure`` whose message is fixed text, never the underlying error.
"""
import math
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorKind(str, Enum):
    ADMISSION = "admission"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    UPSTREAM = "upstream"


class ErrorCode(str, Enum):
    CONFIG_ERROR = "CONFIG_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    MALFORMED_BODY = "MALFORMED_BODY"
    MISSING_OR_INVALID_TEXT = "MISSING_OR_INVALID_TEXT"
    EMPTY_TEXT = "EMPTY_TEXT"
    TEXT_TOO_LONG = "TEXT_TOO_LONG"
    EMPTY_IMAGE = "EMPTY_IMAGE"
    IMAGE_TOO_LARGE = "IMAGE_TOO_LARGE"
    OCR_FAILED = "OCR_FAILED"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"


_KIND_BY_CODE = {
    ErrorCode.CONFIG_ERROR: ErrorKind.CONFIGURATION,
    ErrorCode.RATE_LIMITED: ErrorKind.ADMISSION,
    ErrorCode.MALFORMED_BODY: ErrorKind.VALIDATION,
    ErrorCode.MISSING_OR_INVALID_TEXT: ErrorKind.VALIDATION,
    ErrorCode.EMPTY_TEXT: ErrorKind.VALIDATION,
    ErrorCode.TEXT_TOO_LONG: ErrorKind.VALIDATION,
    ErrorCode.EMPTY_IMAGE: ErrorKind.VALIDATION,
    ErrorCode.IMAGE_TOO_LARGE: ErrorKind.VALIDATION,
    ErrorCode.OCR_FAILED: ErrorKind.UPSTREAM,
    ErrorCode.EXTRACTION_FAILED: ErrorKind.UPSTREAM,
}

# Fixed caller-facing text for failures whose cause must stay server-side.
CONFIG_ERROR_MESSAGE = "Server configuration error. Please try again later."
OCR_FAILED_MESSAGE = "Failed to read text from the image. Please try again."
EXTRACTION_FAILED_MESSAGE = "Failed to parse receipt. Please try again."
RATE_LIMITED_MESSAGE = "Too many requests. Please wait before trying again."


class Failure(BaseModel):
    """Terminal outcome of a pipeline step.  ``message`` is safe to show the caller."""
    model_config = ConfigDict(frozen=True)

    code: ErrorCode
    message: str
    status_code: int
    retry_after: Optional[int] = None   # whole seconds, only for RATE_LIMITED

    @property
    def kind(self) -> ErrorKind:
        return _KIND_BY_CODE[self.code]


def rate_limited(retry_after_ms: int) -> Failure:
    return Failure(
        code=ErrorCode.RATE_LIMITED,
        message=RATE_LIMITED_MESSAGE,
        status_code=429,
        retry_after=math.ceil(max(retry_after_ms, 0) / 1000),
    )


def invalid(code: ErrorCode, message: str, status_code: int = 400) -> Failure:
    return Failure(code=code, message=message, status_code=status_code)


def config_error() -> Failure:
    return Failure(code=ErrorCode.CONFIG_ERROR, message=CONFIG_ERROR_MESSAGE, status_code=500)


def ocr_failed() -> Failure:
    return Failure(code=ErrorCode.OCR_FAILED, message=OCR_FAILED_MESSAGE, status_code=500)


def extraction_failed() -> Failure:
    return Failure(code=ErrorCode.EXTRACTION_FAILED, message=EXTRACTION_FAILED_MESSAGE, status_code=500)


# ── Adapter exceptions ────────────────────────────────────────────────────────

class UpstreamError(Exception):
    """An external collaborator (OCR engine, language model) failed."""
    pass


class OcrError(UpstreamError):
    """Raised when Tesseract can't open or read the image."""
    pass


class ExtractionError(UpstreamError):
    """Raised when the Claude API call fails (network, auth, malformed tool input)."""
    pass
