from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def _normalize_currency(value: object) -> object:
    if not isinstance(value, str):
        raise ValueError(f"currency code must be a string, got {type(value).__name__}")
    code = value.strip().upper()
    if not _CURRENCY_RE.match(code):
        raise ValueError(f"invalid currency code {value!r} (expected three letters like 'USD')")
    return code


# ISO-4217-like code, normalized to upper case ("usd" -> "USD").
CurrencyCode = Annotated[str, BeforeValidator(_normalize_currency)]


def normalize_currency(value: str) -> str:
    return str(_normalize_currency(value))


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    SEMI_ANNUALLY = "semiAnnually"
    WEEKLY = "weekly"
    DAILY = "daily"

    @classmethod
    def _missing_(cls, value: object) -> Optional["BillingCycle"]:
        # Older exports wrote snake_case for the half-year cycle.
        if isinstance(value, str) and value.strip().lower() in {"semi_annually", "semiannually", "semi_annual"}:
            return cls.SEMI_ANNUALLY
        return None


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIAL = "trial"
    CANCELLED = "cancelled"


class RenewalType(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class PaymentStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"

    @classmethod
    def _missing_(cls, value: object) -> Optional["PaymentStatus"]:
        # The server-side renewal function records "succeeded".
        if value == "succeeded":
            return cls.SUCCESS
        return None


class PeriodType(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        str_strip_whitespace=True,
    )


class Subscription(_Record):
    id: str = Field(..., min_length=1)
    name: str = ""
    amount: Decimal = Field(..., gt=0)
    currency: CurrencyCode
    billing_cycle: BillingCycle
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    start_date: date
    last_billing_date: Optional[date] = None
    next_billing_date: Optional[date] = None
    renewal_type: RenewalType = RenewalType.MANUAL

    @field_validator("billing_cycle", mode="before")
    @classmethod
    def _coerce_cycle(cls, v: object) -> object:
        return BillingCycle(v) if isinstance(v, str) else v

    @model_validator(mode="after")
    def _validate_dates(self) -> "Subscription":
        if self.last_billing_date and self.next_billing_date:
            if self.last_billing_date > self.next_billing_date:
                raise ValueError("last_billing_date cannot be after next_billing_date")
        if self.last_billing_date and self.last_billing_date < self.start_date:
            raise ValueError("last_billing_date cannot be before start_date")
        return self


class PaymentRecord(_Record):
    id: str = Field(..., min_length=1)
    subscription_id: str
    payment_date: date
    amount_paid: Decimal = Field(..., ge=0)
    currency: CurrencyCode
    billing_period_start: date
    billing_period_end: date
    status: PaymentStatus = PaymentStatus.SUCCESS

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, v: object) -> object:
        return PaymentStatus(v) if isinstance(v, str) else v

    @model_validator(mode="after")
    def _validate_period(self) -> "PaymentRecord":
        if self.billing_period_start >= self.billing_period_end:
            raise ValueError("billing_period_start must be before billing_period_end")
        return self


class RenewalUpdate(_Record):
    last_billing_date: date
    next_billing_date: date


class PeriodStatistic(_Record):
    period: str
    amount: Decimal
    # Percent change against the previous period; only yearly rows carry it.
    change: Optional[Decimal] = None
    currency: CurrencyCode
    payment_count: int = 0


class ConversionAudit(_Record):
    converted: int = 0
    unconverted: int = 0
    missing_pairs: list[str] = Field(default_factory=list)
    skipped_subscriptions: list[str] = Field(default_factory=list)

    @property
    def fully_converted(self) -> bool:
        return self.unconverted == 0


class StatisticsResult(_Record):
    monthly: list[PeriodStatistic] = Field(default_factory=list)
    quarterly: list[PeriodStatistic] = Field(default_factory=list)
    yearly: list[PeriodStatistic] = Field(default_factory=list)
    audit: ConversionAudit = Field(default_factory=ConversionAudit)

    def for_period_type(self, period_type: PeriodType) -> list[PeriodStatistic]:
        return getattr(self, PeriodType(period_type).value)
