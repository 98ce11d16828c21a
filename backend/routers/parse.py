"""
Parse Router

POST /api/parse   — receipt text (JSON {"text": ...}) → structured receipt
POST /api/ocr     — upload image, run OCR, return text + confidence
POST /api/scan    — upload image, OCR then structured extraction in one call
"""
import logging

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse

from models.schemas import ErrorResponse, OcrResult, ParsedReceipt
from services.errors import Failure
from services.pipeline import ReceiptPipeline

logger = logging.getLogger("receiptlens.parse")
router = APIRouter()

UNKNOWN_CLIENT = "unknown"

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def get_pipeline(request: Request) -> ReceiptPipeline:
    """Dependency: the pipeline built by the app factory."""
    return request.app.state.pipeline


def client_identity(request: Request) -> str:
    """First address in X-Forwarded-For; all header-less traffic shares one bucket."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    return first or UNKNOWN_CLIENT


def failure_response(failure: Failure) -> JSONResponse:
    headers = {}
    if failure.retry_after is not None:
        headers["Retry-After"] = str(failure.retry_after)
    return JSONResponse(
        status_code=failure.status_code,
        content={"error": failure.message},
        headers=headers,
    )


@router.post("/parse", response_model=ParsedReceipt, responses=_ERROR_RESPONSES)
async def parse_receipt(
    request: Request,
    pipeline: ReceiptPipeline = Depends(get_pipeline),
):
    """
    Turn OCR text into a structured receipt.  The body is read raw so that
    malformed JSON gets our own error code rather than FastAPI's 422.
    """
    raw_body = await request.body()
    result = await pipeline.parse_text(client_identity(request), raw_body)
    if isinstance(result, Failure):
        return failure_response(result)
    return result


@router.post("/ocr", response_model=OcrResult, responses=_ERROR_RESPONSES)
async def ocr_image(
    request: Request,
    file: UploadFile = File(...),
    pipeline: ReceiptPipeline = Depends(get_pipeline),
):
    contents = await file.read()
    result = await pipeline.recognize(client_identity(request), contents)
    if isinstance(result, Failure):
        return failure_response(result)
    return result


@router.post("/scan", response_model=ParsedReceipt, responses=_ERROR_RESPONSES)
async def scan_receipt(
    request: Request,
    file: UploadFile = File(...),
    pipeline: ReceiptPipeline = Depends(get_pipeline),
):
    """Upload an image and get the structured receipt back (OCR, then Claude)."""
    contents = await file.read()
    logger.debug("Scan upload %s (%d bytes)", file.filename, len(contents))
    result = await pipeline.scan(client_identity(request), contents)
    if isinstance(result, Failure):
        return failure_response(result)
    return result
