from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Optional, Protocol

from rapidfuzz import fuzz

logger = logging.getLogger(__name__)

MERCHANT_CATEGORIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("foodDrink", ("restaurant", "cafe", "food")),
    ("transportation", ("gas", "fuel", "station")),
    ("groceries", ("grocery", "market")),
    ("health", ("pharmacy", "medical")),
    ("travel", ("hotel", "motel")),
)
FALLBACK_CATEGORY = "other"

# Fuzzy matching only kicks in for keywords long enough to survive an OCR typo.
FUZZY_MIN_KEYWORD_LENGTH = 5
FUZZY_THRESHOLD = 85


class ReceiptParseError(RuntimeError):
    pass


@dataclass
class ReceiptItem:
    description: str
    amount_cents: int


@dataclass
class ReceiptData:
    merchant_name: Optional[str]
    extracted_text: Optional[str]
    total_cents: Optional[int]
    confidence: Optional[float]
    tax_cents: Optional[int] = None
    items: list[ReceiptItem] = field(default_factory=list)


class ReceiptParser(Protocol):
    def parse(self, image: bytes, filename: str) -> ReceiptData: ...


class StubReceiptParser:
    """Returns the same sample receipt for any non-empty image."""

    def parse(self, image: bytes, filename: str) -> ReceiptData:
        if not image:
            raise ReceiptParseError("Empty receipt image")
        return ReceiptData(
            merchant_name="Restaurant ABC",
            extracted_text=(
                "RESTAURANT ABC\n123 Main St\nBurger & Fries $12.50\nDrink $2.50\n"
                "Tax $1.50\nTotal: $16.50\nThank you!"
            ),
            total_cents=1650,
            confidence=0.85,
            tax_cents=150,
            items=[
                ReceiptItem(description="Burger & Fries", amount_cents=1250),
                ReceiptItem(description="Drink", amount_cents=250),
            ],
        )


def category_from_merchant(merchant_name: Optional[str]) -> str:
    if not merchant_name:
        return FALLBACK_CATEGORY
    lower_name = merchant_name.lower()
    for category, keywords in MERCHANT_CATEGORIES:
        if any(keyword in lower_name for keyword in keywords):
            return category

    words = re.findall(r"[a-z]+", lower_name)
    for category, keywords in MERCHANT_CATEGORIES:
        for keyword in keywords:
            if len(keyword) < FUZZY_MIN_KEYWORD_LENGTH:
                continue
            if any(fuzz.ratio(keyword, word) >= FUZZY_THRESHOLD for word in words):
                return category
    return FALLBACK_CATEGORY


def parse_receipt(
    parser: ReceiptParser, image: bytes, filename: str, *, base_url: str
) -> dict[str, object]:
    try:
        data = parser.parse(image, filename)
    except ReceiptParseError as exc:
        logger.warning(f"receipt_parse_failed: filename={filename} error={exc}")
        return {"success": False, "error": str(exc)}

    return {
        "success": True,
        "data": {
            "image_url": f"{base_url}/{filename}",
            "receipt_data": asdict(data),
            "suggested_expense": {
                "description": f"Expense at {data.merchant_name or 'unknown merchant'}",
                "amount_cents": data.total_cents,
                "category": category_from_merchant(data.merchant_name),
            },
        },
    }
