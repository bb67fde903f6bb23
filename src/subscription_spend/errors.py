from __future__ import annotations


class SubscriptionSpendError(Exception):
    """Base class for errors raised by this package."""


class InvalidDate(SubscriptionSpendError, ValueError):
    """A date failed to parse or is not a real calendar date."""


class MalformedRecord(SubscriptionSpendError, ValueError):
    """A record is missing required fields or has values of the wrong shape."""


class FutureDate(SubscriptionSpendError, ValueError):
    """A payment is dated after "today"."""


class StaleDate(SubscriptionSpendError, ValueError):
    """A payment is older than the grouping floor."""


class MissingRate(SubscriptionSpendError, LookupError):
    """No direct or pivot path exists between two currencies in a rate table."""

    def __init__(self, from_currency: str, to_currency: str) -> None:
        super().__init__(f"Missing exchange rate for {from_currency} to {to_currency}")
        self.from_currency = from_currency
        self.to_currency = to_currency


class InvalidCycle(SubscriptionSpendError, ValueError):
    """
    A billing cycle outside the known set reached date arithmetic.

    This is a caller bug (or corrupted data) and is never defaulted to "monthly".
    """


class AlreadyPaid(SubscriptionSpendError):
    """Manual renewal was requested while the current period is still paid for."""


# Reasons recorded by the grouper when it skips a record.
SKIP_REASONS = {
    MalformedRecord: "malformed",
    InvalidDate: "invalid_date",
    FutureDate: "future_date",
    StaleDate: "stale_date",
}
