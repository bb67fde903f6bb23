from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar, Union

import yaml

from .config import CacheConfig
from .currency import ExchangeRateTable
from .models import PaymentRecord, StatisticsResult, Subscription
from .statistics import StatisticsAggregator
from .util.dates import parse_date


logger = logging.getLogger(__name__)
T = TypeVar("T")


@dataclass(frozen=True)
class Snapshot:
    """
    One user's consistent inputs for an aggregation run.

    `subscriptions` / `payments` hold raw items as fetched; validation happens in the aggregator so a
    single bad row does not reject the whole snapshot.
    """

    subscriptions: Tuple[Any, ...]
    payments: Tuple[Any, ...]
    rates: ExchangeRateTable
    as_of: Optional[date] = None

    def compute(self, aggregator: StatisticsAggregator, target_currency: Optional[str] = None) -> StatisticsResult:
        return aggregator.compute(
            list(self.subscriptions),
            list(self.payments),
            self.rates,
            target_currency,
            today=self.as_of,
        )

    def typed_subscriptions(self) -> List[Subscription]:
        return [s if isinstance(s, Subscription) else Subscription.model_validate(s) for s in self.subscriptions]

    def typed_payments(self) -> List[PaymentRecord]:
        return [p if isinstance(p, PaymentRecord) else PaymentRecord.model_validate(p) for p in self.payments]


def snapshot_from_mapping(data: Dict[str, Any]) -> Snapshot:
    rates_raw = data.get("rates") or data.get("exchange_rates") or data.get("exchangeRates") or {}
    as_of_raw = data.get("as_of") or data.get("asOf")
    return Snapshot(
        subscriptions=tuple(data.get("subscriptions") or ()),
        payments=tuple(data.get("payments") or ()),
        rates=ExchangeRateTable.from_mapping(rates_raw),
        as_of=parse_date(as_of_raw) if as_of_raw else None,
    )


def load_snapshot(path: Union[str, Path]) -> Snapshot:
    """Load a snapshot dump (JSON, or YAML for `.yaml`/`.yml`) with subscriptions, payments and rates."""
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"{p}: snapshot must be a mapping with subscriptions/payments/rates")
    snap = snapshot_from_mapping(data)
    logger.info(
        "Loaded snapshot %s (subscriptions=%d payments=%d rate_pairs=%d)",
        p,
        len(snap.subscriptions),
        len(snap.payments),
        len(snap.rates),
    )
    return snap


class SnapshotCache(Generic[T]):
    """
    TTL cache in front of a data-fetch callable (subscription store, payment history, rate provider).

    Entries are keyed per argument tuple (e.g. per user id). `ttl_seconds=0` disables caching.
    Concurrent callers for the same key share one fetch; expired entries are dropped on the next write.
    """

    def __init__(
        self,
        fetch: Callable[..., T],
        *,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self._fetch = fetch
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, T]] = {}
        self._lock = threading.Lock()
        # Only keys with a fetch in flight hold a lock here.
        self._key_locks: Dict[Hashable, threading.Lock] = {}

    @classmethod
    def from_config(cls, fetch: Callable[..., T], config: CacheConfig) -> "SnapshotCache[T]":
        return cls(fetch, ttl_seconds=config.ttl_seconds)

    def get(self, *args: Hashable) -> T:
        key = args
        hit = self._fresh(key)
        if hit is not None:
            return hit[1]

        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())
        try:
            with key_lock:
                # Another caller may have filled the entry while we waited.
                hit = self._fresh(key)
                if hit is not None:
                    return hit[1]
                value = self._fetch(*args)
                if self._ttl > 0:
                    now = self._clock()
                    with self._lock:
                        self._evict_expired(now)
                        self._entries[key] = (now, value)
                logger.debug("Snapshot cache miss key=%r", key)
                return value
        finally:
            with self._lock:
                if self._key_locks.get(key) is key_lock:
                    del self._key_locks[key]

    def _fresh(self, key: Hashable) -> Optional[Tuple[float, T]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry[0] >= self._ttl:
                del self._entries[key]
                return None
            return entry

    def _evict_expired(self, now: float) -> None:
        doomed = [k for k, (stored_at, _) in self._entries.items() if now - stored_at >= self._ttl]
        for k in doomed:
            del self._entries[k]

    def invalidate(self, *args: Hashable) -> None:
        """Drop one key (when args are given) or everything. Call after writes to the backing store."""
        with self._lock:
            if not args:
                self._entries.clear()
                self._key_locks.clear()
                return
            self._entries.pop(args, None)
            self._key_locks.pop(args, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
