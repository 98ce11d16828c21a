"""
Receipt Pipeline — the request orchestrator.

    parse_text:  config → rate limit → validate body → extract → enrich
    recognize:   rate limit → validate image → OCR
    scan:        config → rate limit → validate image → OCR → bound text → extract → enrich

Each step hands back either its value or a ``Failure``; the first ``Failure``
ends the request.  Nothing is retried.  Upstream errors are logged here in
full and the caller only ever sees the fixed message carried by the Failure.
"""
import logging
import uuid
from typing import Optional, Protocol, Union

from config import Settings
from models.schemas import LineItem, OcrResult, ParsedReceipt, ReceiptCandidate
from services import errors
from services.errors import Failure
from services.ocr_service import ProgressCallback
from services.rate_limiter import RateLimiter
from services.validation import check_text, validate_body, validate_image

logger = logging.getLogger("receiptlens.pipeline")


class TextExtractor(Protocol):
    async def extract(self, text: str) -> Optional[ReceiptCandidate]: ...


class ImageReader(Protocol):
    async def extract(
        self, image_bytes: bytes, on_progress: Optional[ProgressCallback] = None
    ) -> OcrResult: ...


def enrich(candidate: ReceiptCandidate) -> ParsedReceipt:
    """Give every line item a fresh id; everything else is copied as-is."""
    return ParsedReceipt(
        store=candidate.store,
        date=candidate.date,
        items=[
            LineItem(id=str(uuid.uuid4()), name=item.name, price=item.price)
            for item in candidate.items
        ],
        tax=candidate.tax,
        total=candidate.total,
    )


class ReceiptPipeline:

    def __init__(
        self,
        settings: Settings,
        limiter: RateLimiter,
        extractor: TextExtractor,
        ocr: Optional[ImageReader] = None,
    ):
        self.settings = settings
        self.limiter = limiter
        self.extractor = extractor
        self.ocr = ocr

    # ── Steps ─────────────────────────────────────────────────────────────────

    def _check_config(self) -> Optional[Failure]:
        if not self.settings.has_credentials:
            logger.error("ANTHROPIC_API_KEY is not configured")
            return errors.config_error()
        return None

    def _admit(self, identity: str) -> Optional[Failure]:
        result = self.limiter.check(identity)
        if not result.allowed:
            return errors.rate_limited(result.retry_after_ms or 0)
        return None

    async def _read_image(
        self, image_bytes: bytes, on_progress: Optional[ProgressCallback]
    ) -> Union[OcrResult, Failure]:
        if self.ocr is None:
            logger.error("OCR requested but no OCR adapter is configured")
            return errors.config_error()
        try:
            return await self.ocr.extract(image_bytes, on_progress=on_progress)
        except Exception as e:
            logger.error("OCR failed: %s", e, exc_info=e)
            return errors.ocr_failed()

    async def _extract(self, text: str) -> Union[ParsedReceipt, Failure]:
        try:
            candidate = await self.extractor.extract(text)
        except Exception as e:
            # Full detail stays in the server log; adapters may echo key fragments.
            logger.error("Failed to parse receipt: %s", e, exc_info=e)
            return errors.extraction_failed()
        if candidate is None:
            logger.error("Failed to parse receipt: extraction returned no data")
            return errors.extraction_failed()
        return enrich(candidate)

    # ── Entry points ──────────────────────────────────────────────────────────

    async def parse_text(self, identity: str, raw_body: Union[bytes, str]) -> Union[ParsedReceipt, Failure]:
        failure = self._check_config() or self._admit(identity)
        if failure:
            return failure

        text = validate_body(raw_body, self.settings.max_text_length)
        if isinstance(text, Failure):
            return text

        return await self._extract(text)

    async def recognize(
        self,
        identity: str,
        image_bytes: bytes,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Union[OcrResult, Failure]:
        failure = self._admit(identity)
        if failure:
            return failure

        image = validate_image(image_bytes, self.settings.max_image_bytes)
        if isinstance(image, Failure):
            return image

        return await self._read_image(image, on_progress)

    async def scan(
        self,
        identity: str,
        image_bytes: bytes,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Union[ParsedReceipt, Failure]:
        failure = self._check_config() or self._admit(identity)
        if failure:
            return failure

        image = validate_image(image_bytes, self.settings.max_image_bytes)
        if isinstance(image, Failure):
            return image

        ocr = await self._read_image(image, on_progress)
        if isinstance(ocr, Failure):
            return ocr
        logger.info("OCR confidence %.1f, %d chars", ocr.confidence, len(ocr.text))

        text = check_text(ocr.text, self.settings.max_text_length)
        if isinstance(text, Failure):
            return text

        return await self._extract(text)
