"""
Currency conversion against an exchange-rate snapshot.

A missing rate is not fatal: `convert` hands back the original amount as `Unconverted` so
aggregations keep going and can still report how much of a total was actually converted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

from .errors import MissingRate
from .models import normalize_currency
from .util.money import Number, to_decimal


logger = logging.getLogger(__name__)

DEFAULT_PIVOT_CURRENCY = "CNY"

Pair = Tuple[str, str]


class ExchangeRateTable:
    """
    Immutable snapshot of exchange rates.

    Rates are multipliers: `amount_in_from * rate(from, to) == amount_in_to`.
    The pivot currency is used to compose a cross rate when no direct pair exists.
    """

    def __init__(self, pairs: Mapping[Pair, Number], *, pivot: str = DEFAULT_PIVOT_CURRENCY) -> None:
        rates: dict[Pair, Decimal] = {}
        for (src, dst), rate in pairs.items():
            dec = to_decimal(rate)
            if dec <= 0:
                raise ValueError(f"exchange rate {src}->{dst} must be positive, got {rate!r}")
            rates[(normalize_currency(src), normalize_currency(dst))] = dec
        self._rates: Mapping[Pair, Decimal] = MappingProxyType(rates)
        self.pivot = normalize_currency(pivot)

    @classmethod
    def from_pair_keys(cls, rates: Mapping[str, Number], *, pivot: str = DEFAULT_PIVOT_CURRENCY) -> "ExchangeRateTable":
        """Build from keys like "USD_CNY" (also "USD/CNY" or "USDCNY")."""
        pairs: dict[Pair, Number] = {}
        for key, rate in rates.items():
            k = key.strip().upper()
            if "_" in k:
                src, dst = k.split("_", 1)
            elif "/" in k:
                src, dst = k.split("/", 1)
            elif len(k) == 6:
                src, dst = k[:3], k[3:]
            else:
                raise ValueError(f"unrecognized currency pair key {key!r}")
            pairs[(src, dst)] = rate
        return cls(pairs, pivot=pivot)

    @classmethod
    def from_base_rates(cls, base: str, rates: Mapping[str, Number]) -> "ExchangeRateTable":
        """
        Build from a single-base table: `rates[X]` is how many X one unit of `base` buys.

        Both directions to and from the base are derived, and the base becomes the pivot.
        """
        base_code = normalize_currency(base)
        pairs: dict[Pair, Decimal] = {}
        for code, rate in rates.items():
            c = normalize_currency(code)
            if c == base_code:
                continue
            dec = to_decimal(rate)
            if dec <= 0:
                raise ValueError(f"exchange rate for {c} must be positive, got {rate!r}")
            pairs[(base_code, c)] = dec
            pairs[(c, base_code)] = Decimal(1) / dec
        return cls(pairs, pivot=base_code)

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "ExchangeRateTable":
        """
        Load from a serialized snapshot. Accepted shapes:
        - {"base": "CNY", "rates": {"USD": 0.14, ...}}
        - {"pivot": "CNY", "pairs": {"USD_CNY": 7.1, ...}}
        - {"USD_CNY": 7.1, ...}
        - {"CNY": 1, "USD": 0.14, ...}
        """
        if "base" in data and "rates" in data:
            return cls.from_base_rates(str(data["base"]), data["rates"])  # type: ignore[arg-type]
        if "pairs" in data:
            pivot = str(data.get("pivot") or DEFAULT_PIVOT_CURRENCY)
            return cls.from_pair_keys(data["pairs"], pivot=pivot)  # type: ignore[arg-type]
        if data and all(isinstance(k, str) and len(k.strip()) == 3 for k in data):
            # Bare single-base table like {"CNY": 1, "USD": 0.14}; the base is the code at 1.
            base = next((k for k, v in data.items() if to_decimal(v) == 1), DEFAULT_PIVOT_CURRENCY)
            return cls.from_base_rates(base, data)  # type: ignore[arg-type]
        return cls.from_pair_keys(data)  # type: ignore[arg-type]

    def rate(self, from_currency: str, to_currency: str) -> Optional[Decimal]:
        return self._rates.get((from_currency, to_currency))

    def pairs(self) -> Mapping[Pair, Decimal]:
        return self._rates

    def __len__(self) -> int:
        return len(self._rates)

    def __repr__(self) -> str:
        return f"ExchangeRateTable(pairs={len(self._rates)}, pivot={self.pivot!r})"


@dataclass(frozen=True)
class Converted:
    amount: Decimal
    rate: Decimal

    converted = True


@dataclass(frozen=True)
class Unconverted:
    """The original amount, returned because no rate path exists."""

    amount: Decimal
    reason: MissingRate

    converted = False


Conversion = Union[Converted, Unconverted]


def _resolve_rate(from_currency: str, to_currency: str, rates: ExchangeRateTable) -> Optional[Decimal]:
    direct = rates.rate(from_currency, to_currency)
    if direct is not None:
        return direct

    pivot = rates.pivot
    if pivot in (from_currency, to_currency):
        return None
    to_pivot = rates.rate(from_currency, pivot)
    from_pivot = rates.rate(pivot, to_currency)
    if to_pivot is not None and from_pivot is not None:
        return to_pivot * from_pivot
    return None


def convert(amount: Number, from_currency: str, to_currency: str, rates: ExchangeRateTable) -> Conversion:
    value = to_decimal(amount)
    src = normalize_currency(from_currency)
    dst = normalize_currency(to_currency)

    if src == dst:
        return Converted(amount=value, rate=Decimal(1))

    rate = _resolve_rate(src, dst, rates)
    if rate is None:
        err = MissingRate(src, dst)
        logger.warning("%s; using unconverted amount %s", err, value)
        return Unconverted(amount=value, reason=err)

    return Converted(amount=value * rate, rate=rate)


def convert_amount(amount: Number, from_currency: str, to_currency: str, rates: ExchangeRateTable) -> Decimal:
    return convert(amount, from_currency, to_currency, rates).amount


def convert_strict(amount: Number, from_currency: str, to_currency: str, rates: ExchangeRateTable) -> Decimal:
    result = convert(amount, from_currency, to_currency, rates)
    if isinstance(result, Unconverted):
        raise result.reason
    return result.amount
