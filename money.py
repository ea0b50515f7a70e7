from decimal import Decimal, InvalidOperation
from typing import Sequence, Union


def parse_amount(value: Union[str, int, float, Decimal], *, allow_negative: bool = False) -> int:
    """Parse a user-entered amount ("12,50", "$12.50", 12.5) into cents."""
    if isinstance(value, bool):
        raise ValueError("Invalid amount")
    if isinstance(value, (int, float, Decimal)):
        clean = str(value)
    else:
        clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
        clean = clean.replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = int((amount * 100).quantize(Decimal("1")))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def split_equally(total_cents: int, user_ids: Sequence[int]) -> list[tuple[int, int]]:
    if not user_ids:
        raise ValueError("At least one participant is required")
    share, remainder = divmod(total_cents, len(user_ids))
    # Leftover cents go to the first participants so the shares add up.
    return [
        (user_id, share + (1 if index < remainder else 0))
        for index, user_id in enumerate(user_ids)
    ]
