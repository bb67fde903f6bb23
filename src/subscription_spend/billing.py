"""
Billing-cycle date engine.

Pure date arithmetic over the closed `BillingCycle` set:
- advance a billing date by one cycle (true calendar months, so Jan 31 + 1 month = Feb 28/29)
- derive the next billing date for new and existing subscriptions
- decide renewal due-ness and compute renewal updates
- validate a payment's billing period against the cycle's expected length

Every function truncates to calendar dates. Unknown cycle values raise `InvalidCycle`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Tuple, Union

from dateutil.relativedelta import relativedelta

from .errors import AlreadyPaid, InvalidCycle
from .models import BillingCycle, RenewalType, RenewalUpdate, Subscription, SubscriptionStatus
from .util.dates import DateLike, parse_date


logger = logging.getLogger(__name__)

CycleLike = Union[BillingCycle, str]


_CYCLE_STEP: dict[BillingCycle, relativedelta] = {
    BillingCycle.MONTHLY: relativedelta(months=1),
    BillingCycle.QUARTERLY: relativedelta(months=3),
    BillingCycle.YEARLY: relativedelta(years=1),
    BillingCycle.SEMI_ANNUALLY: relativedelta(months=6),
    BillingCycle.WEEKLY: relativedelta(days=7),
    BillingCycle.DAILY: relativedelta(days=1),
}


@dataclass(frozen=True)
class PeriodDays:
    min: int
    max: int

    def __contains__(self, days: object) -> bool:
        return isinstance(days, int) and self.min <= days <= self.max


# Days from one billing anchor to the next (end - start).
_EXPECTED_DAYS: dict[BillingCycle, PeriodDays] = {
    BillingCycle.MONTHLY: PeriodDays(28, 31),
    BillingCycle.QUARTERLY: PeriodDays(89, 92),
    BillingCycle.YEARLY: PeriodDays(365, 366),
    BillingCycle.SEMI_ANNUALLY: PeriodDays(181, 184),
    BillingCycle.WEEKLY: PeriodDays(7, 7),
    BillingCycle.DAILY: PeriodDays(1, 1),
}


@dataclass(frozen=True)
class BillingPeriod:
    billing_date: date
    period_start: date
    period_end: date


def coerce_cycle(cycle: CycleLike) -> BillingCycle:
    if isinstance(cycle, BillingCycle):
        return cycle
    try:
        return BillingCycle(cycle)
    except ValueError as e:
        raise InvalidCycle(f"Unknown billing cycle: {cycle!r}") from e


def advance(d: DateLike, cycle: CycleLike) -> date:
    return parse_date(d) + _CYCLE_STEP[coerce_cycle(cycle)]


def retreat(d: DateLike, cycle: CycleLike) -> date:
    return parse_date(d) - _CYCLE_STEP[coerce_cycle(cycle)]


def next_billing_for_new_subscription(start_date: DateLike, cycle: CycleLike) -> date:
    return advance(start_date, cycle)


def next_billing_from_start(start_date: DateLike, as_of: DateLike, cycle: CycleLike) -> date:
    """
    First billing date strictly after `as_of`, stepping one cycle at a time from `start_date`.

    A start date already after `as_of` is returned as is.
    """
    c = coerce_cycle(cycle)
    cutoff = parse_date(as_of)
    nxt = parse_date(start_date)
    while nxt <= cutoff:
        nxt = advance(nxt, c)
    return nxt


def is_due(next_billing_date: DateLike, as_of: DateLike) -> bool:
    return parse_date(next_billing_date) <= parse_date(as_of)


def process_renewal(subscription: Subscription, as_of: DateLike) -> RenewalUpdate:
    if subscription.next_billing_date is None:
        raise ValueError(f"Subscription {subscription.id} has no next_billing_date to renew from")
    return RenewalUpdate(
        last_billing_date=parse_date(as_of),
        next_billing_date=advance(subscription.next_billing_date, subscription.billing_cycle),
    )


def expected_period_days(cycle: CycleLike) -> PeriodDays:
    return _EXPECTED_DAYS[coerce_cycle(cycle)]


def period_length_days(start: DateLike, end: DateLike) -> int:
    """Days between the two dates: 2025-01-15..2025-02-15 is 31 days."""
    return (parse_date(end) - parse_date(start)).days


def validate_period_length(start: DateLike, end: DateLike, cycle: CycleLike) -> bool:
    return period_length_days(start, end) in expected_period_days(cycle)


def billing_period_end(start: DateLike, cycle: CycleLike) -> date:
    return advance(start, cycle) - timedelta(days=1)


def period_matches_cycle(start: DateLike, end: DateLike, cycle: CycleLike) -> bool:
    """
    Accept a recorded billing period for `cycle`.

    Periods are recorded either anchor to anchor (checked by `validate_period_length`) or ending on
    the last covered day as `billing_period_end` produces; a 28-day February then measures 27 days.
    """
    return validate_period_length(start, end, cycle) or parse_date(end) == billing_period_end(start, cycle)


def billing_period_start_from_next_billing(next_billing_date: DateLike, cycle: CycleLike) -> date:
    return retreat(next_billing_date, cycle)


def billing_periods_between(start_date: DateLike, as_of: DateLike, cycle: CycleLike) -> List[BillingPeriod]:
    """
    Every billing period that begins on or before `as_of`, starting at `start_date`.

    Used to back-fill payment history for subscriptions entered after the fact.
    """
    c = coerce_cycle(cycle)
    cutoff = parse_date(as_of)
    cur = parse_date(start_date)
    out: List[BillingPeriod] = []
    while cur <= cutoff:
        out.append(BillingPeriod(billing_date=cur, period_start=cur, period_end=billing_period_end(cur, c)))
        cur = advance(cur, c)
    return out


def manual_renew(subscription: Subscription, today: DateLike) -> RenewalUpdate:
    """
    User-initiated renewal: the new period starts today.

    Refuses while the current period is still paid for (next billing date in the future).
    """
    t = parse_date(today)
    if subscription.next_billing_date is not None and subscription.next_billing_date > t:
        raise AlreadyPaid(
            f"Subscription {subscription.id} is already paid for the current period. "
            f"Next payment is on {subscription.next_billing_date.isoformat()}"
        )
    period_end = billing_period_end(t, subscription.billing_cycle)
    return RenewalUpdate(last_billing_date=t, next_billing_date=period_end + timedelta(days=1))


def apply_renewal(subscription: Subscription, update: RenewalUpdate) -> Subscription:
    return subscription.model_copy(
        update={
            "last_billing_date": update.last_billing_date,
            "next_billing_date": update.next_billing_date,
        }
    )


def cancel(subscription: Subscription) -> Subscription:
    return subscription.model_copy(update={"status": SubscriptionStatus.CANCELLED, "next_billing_date": None})


def renewals_due(subscriptions: Iterable[Subscription], as_of: DateLike) -> List[Tuple[Subscription, RenewalUpdate]]:
    """Auto-renew subscriptions whose next billing date has arrived, with their renewal updates."""
    t = parse_date(as_of)
    out: List[Tuple[Subscription, RenewalUpdate]] = []
    for sub in subscriptions:
        if sub.status == SubscriptionStatus.CANCELLED or sub.renewal_type != RenewalType.AUTO:
            continue
        if sub.next_billing_date is None or not is_due(sub.next_billing_date, t):
            continue
        out.append((sub, process_renewal(sub, t)))
    logger.info("Renewal scan as_of=%s: %d due", t.isoformat(), len(out))
    return out
