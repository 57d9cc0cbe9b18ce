"""Aggregation buckets: small counters keyed by date / category / symbol.

Every keyed family keeps a totals variant and a daily variant side by side
and `BucketFamily.add` updates both in the same call, so
`totals[key] == sum(daily[key].values())` holds after any ingest sequence.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Iterator, Tuple, TypeVar

from ..core.custom_types import DateKey, DateRange


@dataclass
class DailyAgg:
    date: DateKey
    fee_usd: float = 0.0
    volume_usd: float = 0.0
    revenue_tx_count: int = 0

    def accumulate(self, fee_usd: float, volume_usd: float, count: int = 1) -> None:
        self.fee_usd += fee_usd
        self.volume_usd += volume_usd
        self.revenue_tx_count += count


@dataclass
class FeeCategoryAgg:
    fee_usd: float = 0.0
    revenue_tx_count: int = 0

    @property
    def value(self) -> float:
        return self.fee_usd

    @property
    def count(self) -> int:
        return self.revenue_tx_count

    def accumulate(self, amount: float, count: int = 1) -> None:
        self.fee_usd += amount
        self.revenue_tx_count += count


@dataclass
class VolumeCategoryAgg:
    volume_usd: float = 0.0
    revenue_tx_count: int = 0

    @property
    def value(self) -> float:
        return self.volume_usd

    @property
    def count(self) -> int:
        return self.revenue_tx_count

    def accumulate(self, amount: float, count: int = 1) -> None:
        self.volume_usd += amount
        self.revenue_tx_count += count


@dataclass
class VolumeCountAgg:
    """Shared shape of token, token-category and swap-pair buckets."""
    volume_usd: float = 0.0
    tx_count: int = 0

    @property
    def value(self) -> float:
        return self.volume_usd

    @property
    def count(self) -> int:
        return self.tx_count

    def accumulate(self, amount: float, count: int = 1) -> None:
        self.volume_usd += amount
        self.tx_count += count


TokenVolumeAgg = VolumeCountAgg
TokenCategoryAgg = VolumeCountAgg
SwapFlowAgg = VolumeCountAgg

A = TypeVar("A", FeeCategoryAgg, VolumeCategoryAgg, VolumeCountAgg)


class BucketFamily(Generic[A]):
    """Totals + per-day buckets for one key space (category, symbol, pair)."""

    def __init__(self, factory: Callable[[], A]):
        self.factory = factory
        self.totals: Dict[str, A] = {}
        self.daily: Dict[str, Dict[DateKey, A]] = {}

    def add(self, key: str, date: DateKey, amount: float, count: int = 1) -> None:
        total = self.totals.get(key)
        if total is None:
            total = self.totals[key] = self.factory()
        total.accumulate(amount, count)
        per_day = self.daily.setdefault(key, {})
        bucket = per_day.get(date)
        if bucket is None:
            bucket = per_day[date] = self.factory()
        bucket.accumulate(amount, count)

    def sum_by_range(self, date_range: DateRange) -> Dict[str, A]:
        """Re-sum only the daily buckets inside the range; keys with no activity are omitted."""
        out: Dict[str, A] = {}
        for key, per_day in self.daily.items():
            acc = None
            for date, bucket in per_day.items():
                if not date_range.contains(date):
                    continue
                if acc is None:
                    acc = self.factory()
                acc.accumulate(bucket.value, bucket.count)
            if acc is not None:
                out[key] = acc
        return out

    def items_in_range(self, date_range: DateRange) -> Iterator[Tuple[str, DateKey, A]]:
        for key, per_day in self.daily.items():
            for date, bucket in per_day.items():
                if date_range.contains(date):
                    yield key, date, bucket

    def __len__(self) -> int:
        return len(self.totals)


def increment_map(counter: Dict[DateKey, int], key: DateKey, amount: int = 1) -> None:
    counter[key] = counter.get(key, 0) + amount


def ensure_daily(daily: Dict[DateKey, DailyAgg], date: DateKey) -> DailyAgg:
    existing = daily.get(date)
    if existing is None:
        existing = daily[date] = DailyAgg(date=date)
    return existing


def sum_map_by_range(counter: Dict[DateKey, int], date_range: DateRange) -> int:
    return sum(v for d, v in counter.items() if date_range.contains(d))


def sum_daily_by_range(daily: Dict[DateKey, DailyAgg], date_range: DateRange) -> DailyAgg:
    """Totals of the in-range daily buckets; the returned `date` is the range end."""
    out = DailyAgg(date=date_range.end)
    for date, agg in daily.items():
        if date_range.contains(date):
            out.accumulate(agg.fee_usd, agg.volume_usd, agg.revenue_tx_count)
    return out
