from .billing import (
    advance,
    billing_period_end,
    billing_period_start_from_next_billing,
    expected_period_days,
    is_due,
    next_billing_for_new_subscription,
    next_billing_from_start,
    process_renewal,
    validate_period_length,
)
from .currency import ExchangeRateTable, convert
from .models import BillingCycle, PaymentRecord, PeriodStatistic, PeriodType, StatisticsResult, Subscription
from .periods import GroupedPayments, PaymentPeriodClassifier, count_for_period, group
from .statistics import StatisticsAggregator, compute

__version__ = "0.1.0"

__all__ = [
    "advance",
    "billing_period_end",
    "billing_period_start_from_next_billing",
    "expected_period_days",
    "is_due",
    "next_billing_for_new_subscription",
    "next_billing_from_start",
    "process_renewal",
    "validate_period_length",
    "ExchangeRateTable",
    "convert",
    "BillingCycle",
    "PaymentRecord",
    "PeriodStatistic",
    "PeriodType",
    "StatisticsResult",
    "Subscription",
    "GroupedPayments",
    "PaymentPeriodClassifier",
    "count_for_period",
    "group",
    "StatisticsAggregator",
    "compute",
]
