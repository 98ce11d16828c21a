"""
Input Validator — bounds untrusted input before any expensive work happens.

Each function returns the cleaned value or a ``Failure``; checks run in a fixed
order and stop at the first problem so a given input always maps to the same
error code.
"""
import json
from typing import Union

import config
from services.errors import ErrorCode, Failure, invalid


def validate_body(
    raw_body: Union[bytes, str],
    max_length: int = config.MAX_TEXT_LENGTH,
) -> Union[str, Failure]:
    """Parse a ``{"text": ...}`` request body and return the trimmed text."""
    try:
        body = json.loads(raw_body)
    except (ValueError, TypeError):
        return invalid(
            ErrorCode.MALFORMED_BODY,
            "Invalid request body. Expected JSON with a 'text' field.",
        )
    if not isinstance(body, dict):
        return invalid(
            ErrorCode.MALFORMED_BODY,
            "Invalid request body. Expected JSON with a 'text' field.",
        )

    text = body.get("text")
    if not isinstance(text, str):
        return invalid(
            ErrorCode.MISSING_OR_INVALID_TEXT,
            "Missing or invalid 'text' field. Expected a non-empty string.",
        )

    return check_text(text, max_length)


def check_text(text: str, max_length: int = config.MAX_TEXT_LENGTH) -> Union[str, Failure]:
    """Trim, then enforce non-empty and the length limit (measured after trimming)."""
    trimmed = text.strip()
    if not trimmed:
        return invalid(
            ErrorCode.EMPTY_TEXT,
            "The 'text' field is empty after trimming whitespace.",
        )
    if len(trimmed) > max_length:
        return invalid(
            ErrorCode.TEXT_TOO_LONG,
            f"Text exceeds maximum length of {max_length} characters.",
        )
    return trimmed


def validate_image(data: bytes, max_bytes: int = config.MAX_IMAGE_BYTES) -> Union[bytes, Failure]:
    if not data:
        return invalid(ErrorCode.EMPTY_IMAGE, "The uploaded image is empty.")
    if len(data) > max_bytes:
        return invalid(
            ErrorCode.IMAGE_TOO_LARGE,
            f"Image exceeds maximum size of {max_bytes} bytes.",
            status_code=413,
        )
    return data
