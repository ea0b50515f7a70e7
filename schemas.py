from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import RecurrenceFrequency, SplitType
from money import parse_amount
from periods import to_local_naive


def _coerce_amounts(data: Any, fields: dict[str, str]) -> Any:
    """Accept human amounts ("12.50") under ``fields`` keys as cents."""
    if not isinstance(data, dict):
        return data
    data = dict(data)
    for human_key, cents_key in fields.items():
        if human_key in data and cents_key not in data:
            raw = data.pop(human_key)
            data[cents_key] = None if raw is None else parse_amount(raw)
    return data


class SplitIn(BaseModel):
    user_id: int
    amount_cents: int = Field(..., ge=0)
    paid: bool = False

    @model_validator(mode="before")
    @classmethod
    def _amount(cls, data: Any) -> Any:
        return _coerce_amounts(data, {"amount": "amount_cents"})


class ExpenseIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    category: Optional[str] = Field(default=None, max_length=100)
    occurred_at: Optional[datetime] = None
    paid_by_id: Optional[int] = None
    split_type: SplitType = SplitType.equal
    splits: list[SplitIn] = Field(..., min_length=1)
    group_id: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _amount(cls, data: Any) -> Any:
        return _coerce_amounts(data, {"amount": "amount_cents"})

    @field_validator("occurred_at")
    @classmethod
    def _local_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Stored timestamps are naive local wall-clock time.
        return to_local_naive(value) if value is not None else None

    @model_validator(mode="after")
    def _splits_cover_amount(self) -> "ExpenseIn":
        total = sum(split.amount_cents for split in self.splits)
        if total != self.amount_cents:
            raise ValueError(
                f"Split amounts ({total}) must add up to the expense amount ({self.amount_cents})"
            )
        user_ids = [split.user_id for split in self.splits]
        if len(set(user_ids)) != len(user_ids):
            raise ValueError("Each user may appear only once in the splits")
        return self


class BudgetIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    monthly_limit_cents: int = Field(..., ge=0)

    @model_validator(mode="before")
    @classmethod
    def _amount(cls, data: Any) -> Any:
        return _coerce_amounts(data, {"monthly_limit": "monthly_limit_cents"})


class RecurringSplitIn(BaseModel):
    user_id: int
    amount_cents: int = Field(..., ge=0)
    percentage: Optional[float] = Field(default=None, ge=0, le=100)

    @model_validator(mode="before")
    @classmethod
    def _amount(cls, data: Any) -> Any:
        return _coerce_amounts(data, {"amount": "amount_cents"})


class RecurringExpenseIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    frequency: RecurrenceFrequency
    participants: list[int] = Field(default_factory=list)
    group_id: Optional[int] = None
    split_type: SplitType = SplitType.equal
    splits: list[RecurringSplitIn] = Field(..., min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _amount(cls, data: Any) -> Any:
        return _coerce_amounts(data, {"amount": "amount_cents"})

    @model_validator(mode="after")
    def _splits_cover_amount(self) -> "RecurringExpenseIn":
        total = sum(split.amount_cents for split in self.splits)
        if total != self.amount_cents:
            raise ValueError(
                f"Split amounts ({total}) must add up to the expense amount ({self.amount_cents})"
            )
        return self


class RecurringToggleIn(BaseModel):
    is_active: bool


class SuggestionUseIn(BaseModel):
    amount_cents: Optional[int] = Field(default=None, gt=0)
    participants: list[int] = Field(..., min_length=1)
    group_id: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _amount(cls, data: Any) -> Any:
        return _coerce_amounts(data, {"amount": "amount_cents"})


class ReceiptDataIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    extracted_text: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    merchant_name: Optional[str] = Field(default=None, max_length=200)
    extracted_amount_cents: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _amount(cls, data: Any) -> Any:
        return _coerce_amounts(data, {"extracted_amount": "extracted_amount_cents"})


class ReceiptAttachIn(BaseModel):
    receipt_image_url: str = Field(..., min_length=1, max_length=500)
    receipt_data: ReceiptDataIn
