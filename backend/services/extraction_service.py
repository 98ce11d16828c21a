"""
Extraction Service — turns raw receipt text into a ``ReceiptCandidate`` via Claude.

The model is given exactly one tool whose input schema is the candidate
schema, marked ``strict`` and forced through ``tool_choice``, so the reply is
constrained by the API rather than scraped out of free text.  The input is
still validated against ``ReceiptCandidate``.  A reply without a tool call
(refusal, filtered or truncated output) is reported as ``None``.
"""
import logging
from typing import Any, Optional

import anthropic
from pydantic import ValidationError

import config
from models.schemas import ReceiptCandidate
from services.errors import ExtractionError

logger = logging.getLogger("receiptlens.extract")

RECEIPT_TOOL_NAME = "record_receipt"

SYSTEM_PROMPT = """You are a receipt parser. Extract structured data from receipt text
produced by OCR, then record it with the record_receipt tool.

Rules:
- store: the merchant name as printed, or null if it can't be determined.
- date: the purchase date as YYYY-MM-DD, or null if it can't be determined.
- items: one entry per purchased line, in receipt order. price is the amount
  charged for that line as a plain number (no currency symbol).
- Do not list subtotal, tax, total, payment or change lines as items.
- tax: total tax charged (0 if none is shown).
- total: the grand total charged.
"""


def receipt_tool() -> dict[str, Any]:
    return {
        "name": RECEIPT_TOOL_NAME,
        "description": "Record the structured contents of a grocery receipt.",
        "input_schema": ReceiptCandidate.model_json_schema(),
        # Strict tool use: the API only emits input that satisfies input_schema.
        "strict": True,
    }


class ReceiptExtractor:
    """Structured extraction adapter backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = config.EXTRACTION_MODEL,
        max_tokens: int = config.EXTRACTION_MAX_TOKENS,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self._api_key = api_key
        self._client = client

    def _get_client(self) -> anthropic.AsyncAnthropic:
        # Built on first use so the app can start without a key configured.
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def extract(self, text: str) -> Optional[ReceiptCandidate]:
        try:
            message = await self._get_client().messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=SYSTEM_PROMPT,
                tools=[receipt_tool()],
                tool_choice={"type": "tool", "name": RECEIPT_TOOL_NAME},
                messages=[{
                    "role": "user",
                    "content": f"Parse this receipt text:\n\n<receipt_text>\n{text}\n</receipt_text>",
                }],
            )
        except Exception as e:
            raise ExtractionError(f"Claude API error: {e}") from e

        if message.stop_reason == "max_tokens":
            logger.warning("Claude output truncated at %d tokens, no receipt", self.max_tokens)
            return None

        tool_input = next(
            (block.input for block in message.content
             if block.type == "tool_use" and block.name == RECEIPT_TOOL_NAME),
            None,
        )
        if tool_input is None:
            logger.warning("Claude returned no receipt (stop_reason=%s)", message.stop_reason)
            return None

        try:
            return ReceiptCandidate.model_validate(tool_input)
        except ValidationError as e:
            raise ExtractionError(f"Tool input does not match the receipt schema: {e}") from e
