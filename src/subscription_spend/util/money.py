from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union


CENT = Decimal("0.01")
TENTH = Decimal("0.1")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """
    Build a Decimal for money math.

    Floats go through `str()` so 0.1 becomes Decimal("0.1") rather than its binary expansion.
    Raises ValueError for None, blanks, NaN and anything Decimal cannot parse.
    """
    if value is None:
        raise ValueError("to_decimal: value is None")
    if isinstance(value, bool):
        raise ValueError("to_decimal: bool is not an amount")
    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, int):
        dec = Decimal(value)
    else:
        s = str(value).strip().replace(",", "")
        if not s:
            raise ValueError("to_decimal: empty string")
        try:
            dec = Decimal(s)
        except InvalidOperation as e:
            raise ValueError(f"to_decimal: cannot parse {value!r}") from e
    if not dec.is_finite():
        raise ValueError(f"to_decimal: non-finite amount {value!r}")
    return dec


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def round_percent(value: Decimal) -> Decimal:
    return value.quantize(TENTH, rounding=ROUND_HALF_UP)
