"""
Shared fixtures for backend tests.

Every test gets its own rate limiter on a fake clock and stub collaborators
(no Tesseract, no network), wired into a fresh ReceiptPipeline.  The fakes
record what they were called with so tests can assert ordering.
"""
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient

from config import Settings
from models.schemas import LineItemCandidate, OcrResult, ReceiptCandidate
from services.pipeline import ReceiptPipeline
from services.rate_limiter import InMemoryRateStore, RateLimiter

TEST_API_KEY = "sk-ant-REDACTED"


class FakeClock:
    """Millisecond clock the test moves by hand."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


class FakeExtractor:

    def __init__(self, result: Optional[ReceiptCandidate] = None):
        self.result = result
        self.error: Optional[Exception] = None
        self.calls: list[str] = []

    async def extract(self, text: str) -> Optional[ReceiptCandidate]:
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.result


class FakeOcr:

    def __init__(self, result: Optional[OcrResult] = None):
        self.result = result
        self.error: Optional[Exception] = None
        self.calls: list[bytes] = []

    async def extract(self, image_bytes: bytes, on_progress=None) -> OcrResult:
        self.calls.append(image_bytes)
        if self.error:
            raise self.error
        if on_progress:
            on_progress(0.0)
            on_progress(1.0)
        return self.result


def walmart_candidate() -> ReceiptCandidate:
    return ReceiptCandidate(
        store="Walmart",
        date="2024-01-15",
        items=[LineItemCandidate(name="Milk", price=3.99)],
        tax=0.32,
        total=4.31,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(anthropic_api_key=TEST_API_KEY)


@pytest.fixture
def limiter(clock, settings):
    return RateLimiter(
        store=InMemoryRateStore(max_identities=settings.max_identities),
        max_requests=settings.max_requests,
        window_ms=settings.window_duration_ms,
        clock=clock,
    )


@pytest.fixture
def extractor():
    return FakeExtractor(walmart_candidate())


@pytest.fixture
def ocr():
    return FakeOcr(OcrResult(text="WALMART\nMilk $3.99\nTax 0.32\nTotal $4.31", confidence=91.5))


@pytest.fixture
def pipeline(settings, limiter, extractor, ocr):
    return ReceiptPipeline(settings, limiter, extractor, ocr)


@pytest.fixture
def app(settings, pipeline):
    from main import create_app
    return create_app(settings=settings, pipeline=pipeline)


@pytest.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c


@pytest.fixture
def client_factory():
    """Build a client around a custom pipeline (e.g. different settings)."""
    from main import create_app

    def factory(pipeline: ReceiptPipeline) -> AsyncClient:
        app = create_app(settings=pipeline.settings, pipeline=pipeline)
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    return factory
