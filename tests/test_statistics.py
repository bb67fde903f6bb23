from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from subscription_spend.config import ReportingConfig
from subscription_spend.currency import ExchangeRateTable
from subscription_spend.models import BillingCycle, PeriodType, Subscription
from subscription_spend.statistics import StatisticsAggregator, compute, normalize_amount, period_windows


TODAY = date(2025, 5, 20)


def _sub(sid: str, amount: str, cycle: str, start: str, currency: str = "USD", status: str = "active") -> dict:
    return {
        "id": sid,
        "name": sid,
        "amount": amount,
        "currency": currency,
        "billingCycle": cycle,
        "status": status,
        "startDate": start,
    }


def _amounts(rows) -> dict:
    return {r.period: r.amount for r in rows}


def test_empty_input_yields_zero_windows() -> None:
    result = compute([], [], {}, "USD", today=TODAY)
    assert [r.period for r in result.monthly] == ["2025-02", "2025-03", "2025-04", "2025-05"]
    assert [r.period for r in result.quarterly] == ["2024-Q3", "2024-Q4", "2025-Q1", "2025-Q2"]
    assert [r.period for r in result.yearly] == ["2023", "2024", "2025"]
    for rows in (result.monthly, result.quarterly, result.yearly):
        for r in rows:
            assert r.amount == Decimal("0.00")
            assert r.payment_count == 0
            assert r.currency == "USD"
    assert [r.change for r in result.yearly] == [Decimal("0.0")] * 3


def test_none_inputs_are_empty() -> None:
    result = compute(None, None, None, "CNY", today=TODAY)
    assert len(result.monthly) == 4
    assert len(result.quarterly) == 4
    assert len(result.yearly) == 3


def test_windows_cross_year_boundary() -> None:
    months = period_windows(PeriodType.MONTHLY, date(2025, 2, 3), 4)
    assert months == [
        ("2024-11", date(2024, 11, 1)),
        ("2024-12", date(2024, 12, 1)),
        ("2025-01", date(2025, 1, 1)),
        ("2025-02", date(2025, 2, 1)),
    ]
    quarters = period_windows(PeriodType.QUARTERLY, date(2025, 2, 3), 4)
    assert [k for k, _ in quarters] == ["2024-Q2", "2024-Q3", "2024-Q4", "2025-Q1"]
    assert quarters[0][1] == date(2024, 4, 1)


def test_yearly_subscription_scenario() -> None:
    subs = [_sub("annual", "120", "yearly", "2024-01-01")]
    result = compute(subs, [], {"USD": 1}, "USD", today=TODAY)

    assert all(r.amount == Decimal("10.00") for r in result.monthly)
    assert all(r.amount == Decimal("30.00") for r in result.quarterly)
    assert _amounts(result.yearly) == {
        "2023": Decimal("0.00"),
        "2024": Decimal("120.00"),
        "2025": Decimal("120.00"),
    }
    assert result.audit.converted == 1
    assert result.audit.fully_converted


@pytest.mark.parametrize(
    "cycle,monthly,quarterly,yearly",
    [
        ("monthly", "12", "36", "144"),
        ("quarterly", "4", "12", "48"),
        ("semiAnnually", "2", "6", "24"),
        ("yearly", "1", "3", "12"),
        ("weekly", "51.96", "155.88", "624"),
        ("daily", "365.28", "1095.84", "4380"),
    ],
)
def test_normalize_amount(cycle: str, monthly: str, quarterly: str, yearly: str) -> None:
    amount = Decimal("12")
    c = BillingCycle(cycle)
    assert normalize_amount(amount, c, PeriodType.MONTHLY) == Decimal(monthly)
    assert normalize_amount(amount, c, PeriodType.QUARTERLY) == Decimal(quarterly)
    assert normalize_amount(amount, c, PeriodType.YEARLY) == Decimal(yearly)


def test_subscription_starting_mid_period_is_excluded_without_proration() -> None:
    # Known approximation: a subscription that starts after a period's first day adds nothing to
    # that period, even though it was billed within it.
    subs = [_sub("late", "30", "monthly", "2025-04-15")]
    result = compute(subs, [], {}, "USD", today=TODAY)

    assert _amounts(result.monthly) == {
        "2025-02": Decimal("0.00"),
        "2025-03": Decimal("0.00"),
        "2025-04": Decimal("0.00"),
        "2025-05": Decimal("30.00"),
    }
    assert _amounts(result.quarterly)["2025-Q2"] == Decimal("0.00")
    assert _amounts(result.yearly)["2025"] == Decimal("0.00")


def test_subscription_starting_on_period_start_is_included() -> None:
    subs = [_sub("on-time", "30", "monthly", "2025-04-01")]
    result = compute(subs, [], {}, "USD", today=TODAY)
    assert _amounts(result.monthly)["2025-04"] == Decimal("30.00")
    assert _amounts(result.quarterly)["2025-Q2"] == Decimal("90.00")


def test_yearly_change_percent() -> None:
    subs = [
        _sub("a", "10", "monthly", "2023-01-01"),
        _sub("b", "10", "monthly", "2024-01-01"),
        _sub("c", "5", "monthly", "2025-01-01"),
    ]
    result = compute(subs, [], {}, "USD", today=TODAY)
    assert _amounts(result.yearly) == {
        "2023": Decimal("120.00"),
        "2024": Decimal("240.00"),
        "2025": Decimal("300.00"),
    }
    assert [r.change for r in result.yearly] == [Decimal("0.0"), Decimal("100.0"), Decimal("25.0")]
    assert all(r.change is None for r in result.monthly + result.quarterly)


def test_change_rounds_to_one_decimal() -> None:
    subs = [
        _sub("a", "30", "monthly", "2024-01-01"),
        _sub("b", "1", "monthly", "2025-01-01"),
    ]
    result = compute(subs, [], {}, "USD", today=TODAY)
    # 372 vs 360 -> 3.333...%
    assert result.yearly[-1].change == Decimal("3.3")


def test_currency_conversion_and_missing_rate_audit() -> None:
    rates = ExchangeRateTable.from_base_rates("CNY", {"CNY": 1, "USD": "0.14"})
    subs = [
        _sub("cny", "70", "monthly", "2024-01-01", currency="CNY"),
        _sub("usd", "10", "monthly", "2024-01-01", currency="USD"),
        _sub("gbp", "5", "monthly", "2024-01-01", currency="GBP"),
    ]
    result = compute(subs, [], rates, "USD", today=TODAY)

    # 70 CNY -> 9.80 USD, 10 USD as is, 5 GBP summed unconverted.
    assert result.monthly[-1].amount == Decimal("24.80")
    assert result.audit.converted == 2
    assert result.audit.unconverted == 1
    assert result.audit.missing_pairs == ["GBP->USD"]
    assert not result.audit.fully_converted


def test_malformed_subscription_contributes_zero() -> None:
    subs = [
        _sub("good", "10", "monthly", "2024-01-01"),
        _sub("bad-amount", "ten", "monthly", "2024-01-01"),
        {"id": "no-cycle", "amount": "5", "currency": "USD", "startDate": "2024-01-01"},
        _sub("bad-cycle", "5", "fortnightly", "2024-01-01"),
    ]
    result = compute(subs, [], {}, "USD", today=TODAY)
    assert result.monthly[-1].amount == Decimal("10.00")
    assert result.audit.skipped_subscriptions == ["bad-amount", "no-cycle", "bad-cycle"]


def test_status_filter_defaults_to_active_only() -> None:
    subs = [
        _sub("active", "10", "monthly", "2024-01-01"),
        _sub("trial", "20", "monthly", "2024-01-01", status="trial"),
        _sub("cancelled", "40", "monthly", "2024-01-01", status="cancelled"),
    ]
    assert compute(subs, [], {}, "USD", today=TODAY).monthly[-1].amount == Decimal("10.00")

    reporting = ReportingConfig(included_statuses=["active", "trial"])
    assert compute(subs, [], {}, "USD", today=TODAY, reporting=reporting).monthly[-1].amount == Decimal("30.00")


def test_payment_counts_come_from_payment_history() -> None:
    payments = [
        {"id": "p1", "paymentDate": "2025-05-02"},
        {"id": "p2", "paymentDate": "2025-05-19"},
        {"id": "p3", "paymentDate": "2025-03-10"},
        {"id": "p4", "paymentDate": "2024-08-10"},
        {"id": "future", "paymentDate": "2025-05-21"},
    ]
    result = compute([], payments, {}, "USD", today=TODAY)
    assert {r.period: r.payment_count for r in result.monthly} == {
        "2025-02": 0,
        "2025-03": 1,
        "2025-04": 0,
        "2025-05": 2,
    }
    assert {r.period: r.payment_count for r in result.quarterly}["2024-Q3"] == 1
    assert {r.period: r.payment_count for r in result.yearly} == {"2023": 0, "2024": 1, "2025": 3}
    # Counts never feed the amounts.
    assert all(r.amount == Decimal("0.00") for r in result.monthly)


def test_typed_subscriptions_are_accepted() -> None:
    sub = Subscription.model_validate(_sub("typed", "9.99", "monthly", "2024-01-01"))
    result = StatisticsAggregator().compute([sub], [], {}, "USD", today=TODAY)
    assert result.monthly[0].amount == Decimal("9.99")


def test_default_target_currency_from_reporting_config() -> None:
    result = StatisticsAggregator(reporting=ReportingConfig(target_currency="EUR")).compute([], [], {}, today=TODAY)
    assert result.monthly[0].currency == "EUR"


def test_window_sizes_follow_config() -> None:
    reporting = ReportingConfig(months_window=12, quarters_window=2, years_window=5)
    result = compute([], [], {}, "USD", today=TODAY, reporting=reporting)
    assert len(result.monthly) == 12
    assert result.monthly[0].period == "2024-06"
    assert [r.period for r in result.quarterly] == ["2025-Q1", "2025-Q2"]
    assert result.yearly[0].period == "2021"


def test_compute_without_today_uses_current_date() -> None:
    result = compute([], [], {}, "USD")
    today = date.today()
    assert result.monthly[-1].period == f"{today.year:04d}-{today.month:02d}"
    assert result.yearly[-1].period == str(today.year)
