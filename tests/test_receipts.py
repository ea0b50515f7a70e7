from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import SplitType, User
from receipts import (
    ReceiptData,
    ReceiptParseError,
    StubReceiptParser,
    category_from_merchant,
    parse_receipt,
)
from schemas import ExpenseIn, ReceiptAttachIn, ReceiptDataIn, SplitIn
from services import ExpenseService, NotAuthorized, ReceiptService, RecordNotFound


def _engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        session.add_all(
            [
                User(id=1, name="Ada", email="ada@example.com"),
                User(id=2, name="Bo", email="bo@example.com"),
            ]
        )
        session.commit()
    return engine


def _expense(session, category: str, when: datetime):
    return ExpenseService(session, 1).create(
        ExpenseIn(
            description="Receipt",
            amount_cents=1650,
            category=category,
            occurred_at=when,
            split_type=SplitType.exact,
            splits=[SplitIn(user_id=1, amount_cents=1650)],
        )
    )


def _attachment(merchant: str, confidence: float) -> ReceiptAttachIn:
    return ReceiptAttachIn(
        receipt_image_url=f"https://example.com/receipts/{merchant.lower()}.jpg",
        receipt_data=ReceiptDataIn(
            extracted_text=f"{merchant}\nTotal: 16.50",
            confidence=confidence,
            merchant_name=merchant,
            extracted_amount="16.50",
        ),
    )


class BrokenParser:
    def parse(self, image: bytes, filename: str) -> ReceiptData:
        raise ReceiptParseError("OCR backend unavailable")


@pytest.mark.parametrize(
    ("merchant", "expected"),
    [
        ("Restaurant ABC", "foodDrink"),
        ("Corner CAFE", "foodDrink"),
        ("Shell Gas Station", "transportation"),
        ("FreshMarket", "groceries"),
        ("City Pharmacy", "health"),
        ("Seaside Motel", "travel"),
        ("Acme Hardware", "other"),
        ("", "other"),
        (None, "other"),
    ],
)
def test_category_from_merchant_keywords(merchant, expected):
    assert category_from_merchant(merchant) == expected


def test_category_from_merchant_tolerates_ocr_typos():
    assert category_from_merchant("Restaurnt Milano") == "foodDrink"
    assert category_from_merchant("Markt Halle") == "groceries"
    assert category_from_merchant("Pharmcy Plus") == "health"


def test_parse_receipt_with_stub():
    result = parse_receipt(
        StubReceiptParser(), b"jpeg-bytes", "lunch.jpg", base_url="https://cdn.test/r"
    )
    assert result["success"] is True
    data = result["data"]
    assert data["image_url"] == "https://cdn.test/r/lunch.jpg"
    assert data["receipt_data"]["merchant_name"] == "Restaurant ABC"
    assert data["receipt_data"]["total_cents"] == 1650
    assert data["receipt_data"]["items"] == [
        {"description": "Burger & Fries", "amount_cents": 1250},
        {"description": "Drink", "amount_cents": 250},
    ]
    assert data["suggested_expense"] == {
        "description": "Expense at Restaurant ABC",
        "amount_cents": 1650,
        "category": "foodDrink",
    }


def test_parse_receipt_reports_failures():
    empty = parse_receipt(StubReceiptParser(), b"", "empty.jpg", base_url="https://x")
    assert empty == {"success": False, "error": "Empty receipt image"}

    broken = parse_receipt(BrokenParser(), b"data", "r.jpg", base_url="https://x")
    assert broken["success"] is False
    assert broken["error"] == "OCR backend unavailable"


def test_attach_is_limited_to_the_creator():
    engine = _engine()
    with Session(engine) as session:
        expense = _expense(session, "foodDrink", datetime(2025, 1, 5, 12))

        with pytest.raises(NotAuthorized):
            ReceiptService(session, 2).attach(expense.id, _attachment("Restaurant ABC", 0.9))
        with pytest.raises(RecordNotFound):
            ReceiptService(session, 1).attach(999, _attachment("Restaurant ABC", 0.9))

        updated = ReceiptService(session, 1).attach(
            expense.id, _attachment("Restaurant ABC", 0.9)
        )
        assert updated.receipt_merchant == "Restaurant ABC"
        assert updated.receipt_amount_cents == 1650
        assert updated.receipt_confidence == 0.9
        assert updated.receipt_image_url.endswith("restaurant abc.jpg")


def test_receipt_payload_rejects_unknown_fields():
    with pytest.raises(ValueError):
        ReceiptDataIn(merchant_name="Shop", tip="2.00")


def test_list_and_analyze_receipts():
    engine = _engine()
    with Session(engine) as session:
        first = _expense(session, "foodDrink", datetime(2025, 1, 5, 12))
        second = _expense(session, "food", datetime(2025, 1, 6, 12))
        _expense(session, "food", datetime(2025, 1, 7, 12))

        service = ReceiptService(session, 1)
        service.attach(first.id, _attachment("Restaurant ABC", 0.85))
        service.attach(second.id, _attachment("Cafe Luna", 0.65))

        assert [e.id for e in service.list_with_receipts()] == [second.id, first.id]
        assert ReceiptService(session, 2).list_with_receipts() == []

        analysis = service.analyze()
        assert analysis["total_receipts_scanned"] == 2
        assert analysis["average_confidence"] == pytest.approx(0.75)
        assert analysis["top_merchants"] == {"Restaurant ABC": 1, "Cafe Luna": 1}
        assert analysis["category_suggestion_accuracy"] == pytest.approx(0.5)


def test_analyze_without_receipts():
    engine = _engine()
    with Session(engine) as session:
        analysis = ReceiptService(session, 1).analyze()
        assert analysis == {
            "total_receipts_scanned": 0,
            "average_confidence": 0.0,
            "top_merchants": {},
            "category_suggestion_accuracy": 0.0,
        }


def test_service_parse_uses_configured_base_url():
    engine = _engine()
    with Session(engine) as session:
        result = ReceiptService(session, 1).parse(b"bytes", "scan.png")
        assert result["success"] is True
        assert result["data"]["image_url"].endswith("/scan.png")
