from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import List, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, Field

from . import billing
from .models import PaymentRecord, PaymentStatus, Subscription
from .util.dates import DateLike, parse_date


logger = logging.getLogger(__name__)


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DuplicateVerdict(BaseModel):
    """Risk verdict produced by an external duplicate-payment classifier."""

    severity: Severity = Severity.LOW
    conflicting_payments: List[PaymentRecord] = Field(default_factory=list)
    allow_force_add: bool = True

    @property
    def is_duplicate(self) -> bool:
        return bool(self.conflicting_payments)


class DuplicateClassifier(Protocol):
    def __call__(self, candidate: PaymentRecord, existing: Sequence[PaymentRecord]) -> DuplicateVerdict: ...


@dataclass(frozen=True)
class PaymentUpdateDecision:
    should_update: bool
    reason: str
    is_historical: bool = False


@dataclass(frozen=True)
class PaymentAcceptance:
    accepted: bool
    subscription: Subscription
    decision: Optional[PaymentUpdateDecision]
    verdict: DuplicateVerdict
    message: str = ""


def should_update_last_billing_date(
    payment: PaymentRecord,
    subscription: Subscription,
    today: Optional[DateLike] = None,
) -> PaymentUpdateDecision:
    """
    Decide whether an accepted payment moves the subscription's last billing date forward.

    Checks, in order: successful status, not future-dated, period newer than the current
    last billing date (otherwise it is a historical record), period length matching the cycle.
    """
    t = parse_date(today) if today is not None else date.today()

    if payment.status != PaymentStatus.SUCCESS:
        return PaymentUpdateDecision(False, "Only successful payment records update the last billing date")

    if payment.payment_date > t:
        return PaymentUpdateDecision(False, "Future payment records do not update the last billing date")

    current = subscription.last_billing_date
    if current is not None and payment.billing_period_start <= current:
        return PaymentUpdateDecision(
            False,
            "Billing period starts on or before the current last billing date; kept as a historical record",
            is_historical=True,
        )

    if not billing.period_matches_cycle(
        payment.billing_period_start, payment.billing_period_end, subscription.billing_cycle
    ):
        return PaymentUpdateDecision(
            False,
            f"Billing period {payment.billing_period_start.isoformat()}..{payment.billing_period_end.isoformat()} "
            f"does not match the {subscription.billing_cycle.value} billing cycle",
        )

    return PaymentUpdateDecision(True, "Last billing date moves to the billing period start")


def prefill_billing_period(subscription: Subscription, today: Optional[DateLike] = None) -> Tuple[date, date]:
    """
    Default (start, end) for a new payment record when the user has not entered dates.

    The period ends the day before the next billing date; without a next billing date, the
    period starting today is used.
    """
    cycle = subscription.billing_cycle
    if subscription.next_billing_date is not None:
        start = billing.billing_period_start_from_next_billing(subscription.next_billing_date, cycle)
    else:
        start = parse_date(today) if today is not None else date.today()
    return start, billing.billing_period_end(start, cycle)


def accept_payment(
    subscription: Subscription,
    payment: PaymentRecord,
    existing: Sequence[PaymentRecord],
    classifier: DuplicateClassifier,
    *,
    today: Optional[DateLike] = None,
    force: bool = False,
) -> PaymentAcceptance:
    """
    Gate a new payment record through the duplicate classifier, then apply it to the subscription.

    A high-severity verdict blocks the record unless `force` is set and the verdict allows it.
    The returned subscription carries the new last billing date when the payment qualifies.
    """
    if payment.subscription_id != subscription.id:
        raise ValueError(f"Payment {payment.id} belongs to {payment.subscription_id}, not {subscription.id}")

    related = [p for p in existing if p.subscription_id == subscription.id]
    verdict = classifier(payment, related)

    if verdict.severity == Severity.HIGH and not (force and verdict.allow_force_add):
        logger.info(
            "Payment %s held back: %d conflicting payments (force=%s allow_force_add=%s)",
            payment.id,
            len(verdict.conflicting_payments),
            force,
            verdict.allow_force_add,
        )
        return PaymentAcceptance(
            accepted=False,
            subscription=subscription,
            decision=None,
            verdict=verdict,
            message="Possible duplicate payment; confirm to add anyway" if verdict.allow_force_add else "Duplicate payment",
        )

    decision = should_update_last_billing_date(payment, subscription, today)
    updated = subscription
    if decision.should_update:
        updated = subscription.model_copy(update={"last_billing_date": payment.billing_period_start})
        # last_billing_date must not pass next_billing_date.
        if updated.next_billing_date is not None and updated.next_billing_date < payment.billing_period_start:
            updated = updated.model_copy(
                update={"next_billing_date": billing.advance(payment.billing_period_start, subscription.billing_cycle)}
            )
    logger.debug("Payment %s accepted (update_last_billing=%s): %s", payment.id, decision.should_update, decision.reason)
    return PaymentAcceptance(
        accepted=True,
        subscription=updated,
        decision=decision,
        verdict=verdict,
        message=decision.reason,
    )
