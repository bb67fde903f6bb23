from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from subscription_spend import periods
from subscription_spend.errors import InvalidDate
from subscription_spend.models import PaymentRecord, PeriodType


TODAY = date(2025, 6, 15)


def _payment(pid: str, paid: str) -> dict:
    return {"id": pid, "subscriptionId": "sub-1", "paymentDate": paid, "amountPaid": "9.99", "currency": "USD"}


@pytest.mark.parametrize(
    "value,month,quarter,year",
    [
        (date(2025, 1, 1), "2025-01", "2025-Q1", "2025"),
        (date(2025, 3, 31), "2025-03", "2025-Q1", "2025"),
        (date(2025, 4, 1), "2025-04", "2025-Q2", "2025"),
        (date(2025, 9, 30), "2025-09", "2025-Q3", "2025"),
        (date(2025, 12, 31), "2025-12", "2025-Q4", "2025"),
        ("2024-02-29", "2024-02", "2024-Q1", "2024"),
        (datetime(2023, 11, 5, 22, 10), "2023-11", "2023-Q4", "2023"),
    ],
)
def test_classifier_keys(value, month: str, quarter: str, year: str) -> None:
    c = periods.PaymentPeriodClassifier()
    assert c.month_key(value) == month
    assert c.quarter_key(value) == quarter
    assert c.year_key(value) == year


@pytest.mark.parametrize(
    "bad",
    ["", "not a date", "2025-02-30", "2025-13-01", None, "2025", "5", "March", "2025-03", "March 15"],
)
def test_classifier_rejects_invalid_dates(bad) -> None:
    c = periods.PaymentPeriodClassifier()
    with pytest.raises(InvalidDate):
        c.month_key(bad)


def test_classifier_period_start() -> None:
    c = periods.PaymentPeriodClassifier()
    assert c.period_start(PeriodType.MONTHLY, date(2025, 5, 20)) == date(2025, 5, 1)
    assert c.period_start(PeriodType.QUARTERLY, date(2025, 5, 20)) == date(2025, 4, 1)
    assert c.period_start(PeriodType.YEARLY, date(2025, 5, 20)) == date(2025, 1, 1)


def test_group_empty_returns_empty_maps() -> None:
    grouped = periods.group([], now=TODAY)
    assert grouped.monthly == {}
    assert grouped.quarterly == {}
    assert grouped.yearly == {}
    assert grouped.processed == 0
    assert grouped.skipped == 0
    assert periods.count_for_period(grouped, PeriodType.MONTHLY, "2025-06") == 0
    assert periods.count_for_period(grouped, "quarterly", "2025-Q2") == 0
    assert periods.count_for_period(grouped, "yearly", "1999") == 0


def test_group_none_is_empty() -> None:
    grouped = periods.group(None, now=TODAY)
    assert grouped.processed == 0


def test_group_places_same_record_in_each_map() -> None:
    p = _payment("p1", "2025-05-10")
    grouped = periods.group([p], now=TODAY)
    assert grouped.monthly["2025-05"][0] is p
    assert grouped.quarterly["2025-Q2"][0] is p
    assert grouped.yearly["2025"][0] is p
    assert periods.validate_grouped(grouped) is True


def test_group_counts_per_period() -> None:
    payments = [
        _payment("p1", "2025-01-10"),
        _payment("p2", "2025-02-10"),
        _payment("p3", "2025-02-20"),
        _payment("p4", "2024-12-31"),
    ]
    grouped = periods.group(payments, now=TODAY)
    assert grouped.processed == 4
    assert periods.count_for_period(grouped, "monthly", "2025-02") == 2
    assert periods.count_for_period(grouped, "quarterly", "2025-Q1") == 3
    assert periods.count_for_period(grouped, "quarterly", "2024-Q4") == 1
    assert periods.count_for_period(grouped, "yearly", "2025") == 3
    assert [p["id"] for p in periods.payments_for_period(grouped, "monthly", "2025-02")] == ["p2", "p3"]
    assert periods.payments_for_period(grouped, "monthly", "2030-01") == []


def test_group_today_accepted_tomorrow_rejected_as_future() -> None:
    grouped = periods.group([_payment("today", "2025-06-15"), _payment("tomorrow", "2025-06-16")], now=TODAY)
    assert grouped.processed == 1
    assert grouped.skipped == 1
    assert grouped.skip_reasons["future_date"] == 1
    assert periods.count_for_period(grouped, "monthly", "2025-06") == 1


def test_group_skips_bad_records_and_keeps_going() -> None:
    payments = [
        _payment("ok", "2025-03-01"),
        {"id": "", "paymentDate": "2025-03-01"},
        {"paymentDate": "2025-03-01"},
        {"id": "no-date"},
        None,
        _payment("bad-date", "2025-02-30"),
        _payment("garbage", "yesterday-ish"),
        _payment("stale", "2014-12-31"),
        _payment("edge-of-floor", "2015-01-01"),
    ]
    grouped = periods.group(payments, now=TODAY)
    assert grouped.processed == 2
    assert grouped.skipped == 7
    assert grouped.skip_reasons["malformed"] == 4
    assert grouped.skip_reasons["invalid_date"] == 2
    assert grouped.skip_reasons["stale_date"] == 1
    assert periods.count_for_period(grouped, "yearly", "2015") == 1


def test_group_accepts_payment_models() -> None:
    rec = PaymentRecord(
        id="p1",
        subscription_id="sub-1",
        payment_date=date(2025, 3, 15),
        amount_paid=Decimal("9.99"),
        currency="usd",
        billing_period_start=date(2025, 3, 1),
        billing_period_end=date(2025, 3, 31),
        status="succeeded",
    )
    grouped = periods.group([rec], now=TODAY)
    assert grouped.monthly["2025-03"] == [rec]
    assert rec.currency == "USD"


def test_group_stale_floor_is_configurable() -> None:
    grouped = periods.group([_payment("p", "2022-06-01")], now=TODAY, stale_after_years=2)
    assert grouped.skip_reasons["stale_date"] == 1


def test_group_rejects_partial_dates() -> None:
    grouped = periods.group([_payment("year-only", "2025"), _payment("full", "Mar 15 2025")], now=TODAY)
    assert grouped.processed == 1
    assert grouped.skip_reasons["invalid_date"] == 1
    assert periods.count_for_period(grouped, "monthly", "2025-03") == 1
    assert "2025-10" not in grouped.monthly
