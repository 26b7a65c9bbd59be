"""
Receipt ingestion: send a receipt image to an OCR service, read back
structured fields.

The parser is best effort by contract.  Every failure surfaces as
``ReceiptIngestionError``; the lifecycle coordinator turns that into a
warning on the submission result instead of failing the submission.
"""

from __future__ import annotations

import base64
import json
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from expense_kernel.domain.currency import CurrencyRegistry
from expense_kernel.domain.expense import ExpenseCategory, ReceiptData
from expense_kernel.exceptions import ReceiptIngestionError
from expense_kernel.logging_config import get_logger

logger = get_logger("services.receipt")

_FENCE = re.compile(r"```(?:json)?\s*|\s*```")


def is_parseable_content_type(content_type: str | None) -> bool:
    """Only images are sent for OCR."""
    return (content_type or "").lower().startswith("image/")


class ReceiptParser:
    """OCR client.

    POSTs ``{"image": <base64>, "mime_type": ...}`` to ``endpoint`` and
    expects a JSON object with merchant, amount, currency, date, category,
    items and raw_text.  Some extraction services wrap that object as a
    fenced string under ``"text"``; both shapes are accepted.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        timeout_seconds: float = 30.0,
        client: httpx.Client | None = None,
    ):
        self.endpoint = endpoint
        self._api_key = api_key
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def parse(self, content: bytes, content_type: str) -> ReceiptData:
        if not is_parseable_content_type(content_type):
            raise ReceiptIngestionError(f"Unsupported content type {content_type!r}")
        if not content:
            raise ReceiptIngestionError("Empty receipt file")

        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        body = {
            "image": base64.b64encode(content).decode("ascii"),
            "mime_type": content_type,
        }
        try:
            response = self._client.post(self.endpoint, json=body, headers=headers)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise ReceiptIngestionError(str(exc)) from exc
        except ValueError as exc:
            raise ReceiptIngestionError("OCR response is not valid JSON") from exc

        data = _unwrap(payload)
        try:
            receipt = _to_receipt(data)
        except (TypeError, ValueError, AttributeError) as exc:
            raise ReceiptIngestionError(f"Unusable OCR payload: {exc}") from exc
        logger.info(
            "receipt_parsed",
            extra={
                "merchant": receipt.merchant,
                "has_amount": receipt.amount is not None,
                "item_count": len(receipt.items),
            },
        )
        return receipt

    def close(self) -> None:
        self._client.close()


def _unwrap(payload: Any) -> dict[str, Any]:
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        payload = payload["data"]
    if isinstance(payload, dict) and isinstance(payload.get("text"), str) and (
        "merchant" not in payload
    ):
        try:
            payload = json.loads(_FENCE.sub("", payload["text"]).strip())
        except ValueError as exc:
            raise ReceiptIngestionError("OCR text is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ReceiptIngestionError("OCR response is not an object")
    return payload


def _text(value: Any) -> str | None:
    return (value.strip() or None) if isinstance(value, str) else None


def _to_receipt(data: dict[str, Any]) -> ReceiptData:
    amount = None
    if isinstance(data.get("amount"), (int, float, str)) and data["amount"] != "":
        try:
            amount = Decimal(str(data["amount"]))
        except InvalidOperation:
            amount = None

    currency = _text(data.get("currency"))
    currency = CurrencyRegistry.normalize(currency) if CurrencyRegistry.is_valid(currency) else None

    receipt_date = None
    if _text(data.get("date")):
        try:
            receipt_date = date.fromisoformat(data["date"].strip())
        except ValueError:
            receipt_date = None

    category = None
    if _text(data.get("category")):
        try:
            category = ExpenseCategory(data["category"].strip())
        except ValueError:
            category = ExpenseCategory.OTHER

    items = data.get("items")
    items = tuple(i for i in items if isinstance(i, dict)) if isinstance(items, list) else ()

    return ReceiptData(
        merchant=_text(data.get("merchant")),
        amount=amount,
        currency=currency,
        receipt_date=receipt_date,
        category=category,
        items=items,
        raw_text=_text(data.get("raw_text")) or _text(data.get("rawText")) or "",
    )
