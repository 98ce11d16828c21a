from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import os
import time
from typing import Optional

import config
from config import Settings
from routers import parse
from services.extraction_service import ReceiptExtractor
from services.ocr_service import TesseractOcr
from services.pipeline import ImageReader, ReceiptPipeline, TextExtractor
from services.rate_limiter import InMemoryRateStore, RateLimiter

VERSION = "0.1.0"

# ── Logging setup ─────────────────────────────────────────────────────────────
LOG_LEVEL = config.LOG_LEVEL
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
# Quiet noisy libraries unless we're in DEBUG
if LOG_LEVEL != "DEBUG":
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)

logger = logging.getLogger("receiptlens")


def build_pipeline(
    settings: Settings,
    extractor: Optional[TextExtractor] = None,
    ocr: Optional[ImageReader] = None,
    limiter: Optional[RateLimiter] = None,
) -> ReceiptPipeline:
    if limiter is None:
        limiter = RateLimiter(
            store=InMemoryRateStore(max_identities=settings.max_identities),
            max_requests=settings.max_requests,
            window_ms=settings.window_duration_ms,
        )
    if extractor is None:
        extractor = ReceiptExtractor(
            api_key=settings.anthropic_api_key,
            model=settings.extraction_model,
            max_tokens=settings.extraction_max_tokens,
        )
    if ocr is None:
        ocr = TesseractOcr(tesseract_config=settings.tesseract_config)
    return ReceiptPipeline(settings, limiter, extractor, ocr)


def create_app(
    settings: Optional[Settings] = None,
    pipeline: Optional[ReceiptPipeline] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="Receiptlens — Receipt Parser",
        description="Receipt OCR and structured extraction with Claude",
        version=VERSION,
    )
    app.state.settings = settings
    app.state.pipeline = pipeline or build_pipeline(settings)

    _cors_origins = os.environ.get("CORS_ORIGINS", "").strip()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins.split(",") if _cors_origins else ["*"],
        allow_credentials=bool(_cors_origins),  # only send credentials when origins are explicit
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(parse.router, prefix="/api", tags=["parse"])

    # ── Error shape: every error body is {"error": "..."} ─────────────────────
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        return JSONResponse(status_code=400, content={"error": f"Invalid request: {fields}"})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error."})

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        elapsed = (time.time() - start) * 1000
        if LOG_LEVEL == "DEBUG" or response.status_code >= 400:
            logger.log(
                logging.WARNING if response.status_code >= 400 else logging.DEBUG,
                "%s %s → %s (%.0fms)",
                request.method, request.url.path, response.status_code, elapsed,
            )
        return response

    @app.on_event("startup")
    async def on_startup():
        logger.info(
            "Starting Receiptlens v%s  LOG_LEVEL=%s  limit=%d/%dms  key=%s",
            VERSION, LOG_LEVEL, settings.max_requests, settings.window_duration_ms,
            "set" if settings.has_credentials else "MISSING",
        )

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "version": VERSION}

    @app.get("/api/diagnose")
    async def diagnose():
        """Check that the OCR toolchain and Anthropic key are in place."""
        import pytesseract
        results = {}

        # Tesseract binary
        try:
            version = pytesseract.get_tesseract_version()
            results["tesseract"] = {"ok": True, "version": str(version)}
        except pytesseract.TesseractNotFoundError:
            results["tesseract"] = {"ok": False, "error": "tesseract binary not found in PATH"}
        except Exception as e:
            results["tesseract"] = {"ok": False, "error": type(e).__name__}

        # Anthropic key (presence only, never key material)
        results["anthropic_key"] = {
            "ok": settings.has_credentials,
            "set": settings.has_credentials,
        }

        return {"all_ok": all(v.get("ok") for v in results.values()), "checks": results}

    return app


app = create_app()
