"""
Spend statistics per calendar month, quarter and year.

For every period in the reporting window the aggregator sums each included subscription's amount,
normalized to the period's cadence and converted to the target currency. A subscription counts
toward a period only if it started on or before the period's first day; there is no pro-rating for
subscriptions that start mid-period. Payment counts come from the recorded payment history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from dateutil.relativedelta import relativedelta
from pydantic import ValidationError

from . import periods
from .config import GroupingConfig, ReportingConfig
from .currency import ExchangeRateTable, Unconverted, convert
from .models import (
    BillingCycle,
    ConversionAudit,
    PeriodStatistic,
    PeriodType,
    StatisticsResult,
    Subscription,
    normalize_currency,
)
from .util.dates import DateLike, month_start, parse_date, quarter_start
from .util.money import round_money, round_percent


logger = logging.getLogger(__name__)

RatesLike = Union[ExchangeRateTable, Mapping[str, Any]]

# Amount per period as (numerator, denominator) of the native amount.
_PER_MONTH: Dict[BillingCycle, Tuple[int, int]] = {
    BillingCycle.MONTHLY: (1, 1),
    BillingCycle.QUARTERLY: (1, 3),
    BillingCycle.SEMI_ANNUALLY: (1, 6),
    BillingCycle.YEARLY: (1, 12),
    BillingCycle.WEEKLY: (433, 100),  # 4.33 weeks per month
    BillingCycle.DAILY: (3044, 100),  # 30.44 days per month
}
_PER_QUARTER: Dict[BillingCycle, Tuple[int, int]] = {c: (n * 3, d) for c, (n, d) in _PER_MONTH.items()}
_PER_YEAR: Dict[BillingCycle, Tuple[int, int]] = {
    BillingCycle.MONTHLY: (12, 1),
    BillingCycle.QUARTERLY: (4, 1),
    BillingCycle.SEMI_ANNUALLY: (2, 1),
    BillingCycle.YEARLY: (1, 1),
    BillingCycle.WEEKLY: (52, 1),
    BillingCycle.DAILY: (365, 1),
}
_FACTORS = {
    PeriodType.MONTHLY: _PER_MONTH,
    PeriodType.QUARTERLY: _PER_QUARTER,
    PeriodType.YEARLY: _PER_YEAR,
}


def normalize_amount(amount: Decimal, cycle: BillingCycle, period_type: PeriodType) -> Decimal:
    """Express a native-cadence amount as the equivalent spend for one period of `period_type`."""
    num, den = _FACTORS[PeriodType(period_type)][BillingCycle(cycle)]
    return amount * num / den


def period_windows(period_type: PeriodType, today: date, size: int) -> List[Tuple[str, date]]:
    """(key, first day) for the last `size` periods up to and including today's, oldest first."""
    classifier = periods.PaymentPeriodClassifier()
    pt = PeriodType(period_type)
    out: List[Tuple[str, date]] = []
    for i in reversed(range(size)):
        if pt == PeriodType.MONTHLY:
            start = month_start(today) - relativedelta(months=i)
        elif pt == PeriodType.QUARTERLY:
            start = quarter_start(today) - relativedelta(months=3 * i)
        else:
            start = date(today.year - i, 1, 1)
        out.append((classifier.key_for(pt, start), start))
    return out


def _coerce_rates(rates: Optional[RatesLike], pivot: str) -> ExchangeRateTable:
    if rates is None:
        return ExchangeRateTable({}, pivot=pivot)
    if isinstance(rates, ExchangeRateTable):
        return rates
    return ExchangeRateTable.from_mapping(rates)


@dataclass(frozen=True)
class _Contributor:
    subscription: Subscription
    rate: Decimal


class StatisticsAggregator:
    """
    Computes monthly, quarterly and yearly spend over one consistent snapshot.

    `today` is captured once per `compute` call so the three period lists agree with each other.
    """

    def __init__(
        self,
        reporting: Optional[ReportingConfig] = None,
        grouping: Optional[GroupingConfig] = None,
    ) -> None:
        self.reporting = reporting or ReportingConfig()
        self.grouping = grouping or GroupingConfig()

    def compute(
        self,
        subscriptions: Optional[Sequence[Any]],
        payments: Optional[Sequence[Any]],
        rates: Optional[RatesLike],
        target_currency: Optional[str] = None,
        *,
        today: Optional[DateLike] = None,
    ) -> StatisticsResult:
        as_of = parse_date(today) if today is not None else date.today()
        target = normalize_currency(target_currency or self.reporting.target_currency)
        table = _coerce_rates(rates, self.reporting.pivot_currency)

        subs, skipped_ids = self._valid_subscriptions(subscriptions or [])
        contributors, audit = self._contributors(subs, table, target, skipped_ids)
        grouped = periods.group(payments, now=as_of, stale_after_years=self.grouping.stale_after_years)

        result = StatisticsResult(
            monthly=self._period_stats(PeriodType.MONTHLY, self.reporting.months_window, as_of, contributors, grouped, target),
            quarterly=self._period_stats(
                PeriodType.QUARTERLY, self.reporting.quarters_window, as_of, contributors, grouped, target
            ),
            yearly=self._period_stats(PeriodType.YEARLY, self.reporting.years_window, as_of, contributors, grouped, target),
            audit=audit,
        )
        logger.info(
            "Statistics computed (as_of=%s currency=%s subscriptions=%d skipped=%d unconverted=%d payments=%d)",
            as_of.isoformat(),
            target,
            len(contributors),
            len(skipped_ids),
            audit.unconverted,
            grouped.processed,
        )
        return result

    def _valid_subscriptions(self, raw: Sequence[Any]) -> Tuple[List[Subscription], List[str]]:
        included = set(self.reporting.included_statuses)
        subs: List[Subscription] = []
        skipped: List[str] = []
        for item in raw:
            if isinstance(item, Subscription):
                sub = item
            else:
                try:
                    sub = Subscription.model_validate(item)
                except ValidationError as e:
                    sid = str(item.get("id", "?")) if isinstance(item, Mapping) else "?"
                    logger.warning("Subscription %s contributes 0: %s", sid, e.errors()[0].get("msg", e))
                    skipped.append(sid)
                    continue
            if sub.status in included:
                subs.append(sub)
        return subs, skipped

    def _contributors(
        self,
        subs: List[Subscription],
        table: ExchangeRateTable,
        target: str,
        skipped_ids: List[str],
    ) -> Tuple[List[_Contributor], ConversionAudit]:
        out: List[_Contributor] = []
        converted = 0
        unconverted = 0
        missing: List[str] = []
        for sub in subs:
            # Conversion is linear, so one rate per subscription serves every period.
            conv = convert(Decimal(1), sub.currency, target, table)
            if isinstance(conv, Unconverted):
                unconverted += 1
                pair = f"{sub.currency}->{target}"
                if pair not in missing:
                    missing.append(pair)
            else:
                converted += 1
            out.append(_Contributor(subscription=sub, rate=conv.amount))
        audit = ConversionAudit(
            converted=converted,
            unconverted=unconverted,
            missing_pairs=missing,
            skipped_subscriptions=skipped_ids,
        )
        return out, audit

    def _period_stats(
        self,
        period_type: PeriodType,
        size: int,
        today: date,
        contributors: List[_Contributor],
        grouped: periods.GroupedPayments,
        target: str,
    ) -> List[PeriodStatistic]:
        rows: List[PeriodStatistic] = []
        previous: Optional[Decimal] = None
        for key, start in period_windows(period_type, today, size):
            total = Decimal(0)
            for c in contributors:
                sub = c.subscription
                if sub.start_date > start:
                    continue
                total += normalize_amount(sub.amount, sub.billing_cycle, period_type) * c.rate

            change: Optional[Decimal] = None
            if period_type == PeriodType.YEARLY:
                change = _percent_change(total, previous)
            previous = total

            rows.append(
                PeriodStatistic(
                    period=key,
                    amount=round_money(total),
                    change=change,
                    currency=target,
                    payment_count=periods.count_for_period(grouped, period_type, key),
                )
            )
        return rows


def _percent_change(current: Decimal, previous: Optional[Decimal]) -> Decimal:
    if previous is None or previous == 0:
        return Decimal("0.0")
    return round_percent((current - previous) / previous * 100)


def compute(
    subscriptions: Optional[Sequence[Any]],
    payments: Optional[Sequence[Any]],
    rates: Optional[RatesLike],
    target_currency: Optional[str] = None,
    *,
    today: Optional[DateLike] = None,
    reporting: Optional[ReportingConfig] = None,
    grouping: Optional[GroupingConfig] = None,
) -> StatisticsResult:
    return StatisticsAggregator(reporting=reporting, grouping=grouping).compute(
        subscriptions, payments, rates, target_currency, today=today
    )
