from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .errors import SKIP_REASONS, FutureDate, InvalidDate, MalformedRecord, StaleDate
from .models import PeriodType
from .util.dates import DateLike, month_start, parse_date, quarter_start, year_start


logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_YEARS = 10

PeriodTypeLike = Union[PeriodType, str]


class PaymentPeriodClassifier:
    """Maps a date onto its calendar month ("2025-03"), quarter ("2025-Q1") and year ("2025") keys."""

    def month_key(self, value: DateLike) -> str:
        d = parse_date(value)
        return f"{d.year:04d}-{d.month:02d}"

    def quarter_key(self, value: DateLike) -> str:
        d = parse_date(value)
        return f"{d.year:04d}-Q{(d.month - 1) // 3 + 1}"

    def year_key(self, value: DateLike) -> str:
        d = parse_date(value)
        return f"{d.year:04d}"

    def key_for(self, period_type: PeriodTypeLike, value: DateLike) -> str:
        pt = PeriodType(period_type)
        if pt == PeriodType.MONTHLY:
            return self.month_key(value)
        if pt == PeriodType.QUARTERLY:
            return self.quarter_key(value)
        return self.year_key(value)

    def period_start(self, period_type: PeriodTypeLike, value: DateLike) -> date:
        pt = PeriodType(period_type)
        d = parse_date(value)
        if pt == PeriodType.MONTHLY:
            return month_start(d)
        if pt == PeriodType.QUARTERLY:
            return quarter_start(d)
        return year_start(d)


@dataclass
class GroupedPayments:
    monthly: Dict[str, List[Any]] = field(default_factory=dict)
    quarterly: Dict[str, List[Any]] = field(default_factory=dict)
    yearly: Dict[str, List[Any]] = field(default_factory=dict)
    processed: int = 0
    skipped: int = 0
    skip_reasons: Counter = field(default_factory=Counter)

    def bucket_map(self, period_type: PeriodTypeLike) -> Dict[str, List[Any]]:
        return getattr(self, PeriodType(period_type).value)


_ID_KEYS = ("id",)
_DATE_KEYS = ("payment_date", "paymentDate")


def _field(record: Any, names: Sequence[str]) -> Any:
    if isinstance(record, Mapping):
        for n in names:
            if n in record:
                return record[n]
        return None
    for n in names:
        if hasattr(record, n):
            return getattr(record, n)
    return None


def _stale_floor(today: date, stale_after_years: int) -> date:
    return date(today.year - stale_after_years, 1, 1)


def _accepted_payment_date(record: Any, today: date, floor: date) -> date:
    """Run one record through the acceptance gate; raises the reason it is rejected."""
    if record is None:
        raise MalformedRecord("payment record is None")
    rid = _field(record, _ID_KEYS)
    raw_date = _field(record, _DATE_KEYS)
    if rid in (None, "") or raw_date in (None, ""):
        raise MalformedRecord("payment record is missing id or payment_date")

    d = parse_date(raw_date)
    if d > today:
        raise FutureDate(f"payment {rid} is dated {d.isoformat()}, after {today.isoformat()}")
    if d < floor:
        raise StaleDate(f"payment {rid} is dated {d.isoformat()}, before {floor.isoformat()}")
    return d


def group(
    payments: Optional[Sequence[Any]],
    *,
    now: Optional[DateLike] = None,
    stale_after_years: int = DEFAULT_STALE_AFTER_YEARS,
) -> GroupedPayments:
    """
    Bucket payment records by calendar month, quarter and year.

    Records may be `PaymentRecord` models or plain mappings (camelCase or snake_case keys).
    Rejected records are logged and counted, never fatal:
    - missing `id` / payment date -> malformed
    - unparseable or impossible date -> invalid_date
    - dated after `now` -> future_date
    - dated before 1 Jan of (`now`.year - `stale_after_years`) -> stale_date

    The same record object lands in one bucket of each map.
    """
    result = GroupedPayments()
    if not payments:
        logger.debug("No payment records to group")
        return result

    today = parse_date(now) if now is not None else date.today()
    floor = _stale_floor(today, stale_after_years)
    classifier = PaymentPeriodClassifier()

    for record in payments:
        try:
            d = _accepted_payment_date(record, today, floor)
        except (MalformedRecord, InvalidDate, FutureDate, StaleDate) as e:
            result.skipped += 1
            result.skip_reasons[SKIP_REASONS[type(e)]] += 1
            logger.warning("Skipping payment record: %s", e)
            continue

        result.monthly.setdefault(classifier.month_key(d), []).append(record)
        result.quarterly.setdefault(classifier.quarter_key(d), []).append(record)
        result.yearly.setdefault(classifier.year_key(d), []).append(record)
        result.processed += 1

    logger.info(
        "Grouped payment records: processed=%d skipped=%d (months=%d quarters=%d years=%d)",
        result.processed,
        result.skipped,
        len(result.monthly),
        len(result.quarterly),
        len(result.yearly),
    )
    return result


def count_for_period(grouped: GroupedPayments, period_type: PeriodTypeLike, key: str) -> int:
    return len(grouped.bucket_map(period_type).get(key, ()))


def payments_for_period(grouped: GroupedPayments, period_type: PeriodTypeLike, key: str) -> List[Any]:
    return list(grouped.bucket_map(period_type).get(key, ()))


def validate_grouped(grouped: GroupedPayments) -> bool:
    """Each map must hold every accepted record exactly once."""
    for period_type in PeriodType:
        total = sum(len(v) for v in grouped.bucket_map(period_type).values())
        if total != grouped.processed:
            logger.warning(
                "Grouped payments mismatch: %s buckets hold %d records, expected %d",
                period_type.value,
                total,
                grouped.processed,
            )
            return False
    return True
