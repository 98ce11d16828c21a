from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List


# ── Extraction candidate (what the language model is allowed to return) ──────
class LineItemCandidate(BaseModel):
    """A line item as read by the model.  Carries no id: ids are assigned after extraction."""
    model_config = ConfigDict(extra="forbid")

    name: str
    price: float

class ReceiptCandidate(BaseModel):
    """
    Shape the extraction tool is constrained to.  ``store`` and ``date`` are
    nullable because the model returns null when it can't determine them.
    """
    model_config = ConfigDict(extra="forbid")

    store: Optional[str] = Field(description="Store name as printed, or null")
    date: Optional[str] = Field(description="Purchase date as YYYY-MM-DD, or null")
    items: List[LineItemCandidate] = Field(description="Purchased items in receipt order")
    tax: float = Field(description="Total tax charged, 0 if none")
    total: float = Field(description="Grand total charged")


# ── Parsed receipt (response body) ─────────────────────
class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    price: float

class ParsedReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    store: Optional[str] = None
    date: Optional[str] = None
    items: List[LineItem]
    tax: float
    total: float


# ── OCR ────────────────────────────────────────────────
class OcrResult(BaseModel):
    text: str
    confidence: float = Field(ge=0, le=100)


# ── Rate limiting ──────────────────────────────────────
class RateLimitResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    retry_after_ms: Optional[int] = Field(default=None, ge=0)


# ── Errors ─────────────────────────────────────────────
class ErrorResponse(BaseModel):
    error: str
