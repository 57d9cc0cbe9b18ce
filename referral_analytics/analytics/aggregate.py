"""Per-referral-code aggregate and per-wallet user rollup."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..core.custom_types import AnalyticsOptions, DateKey, RevenueTransaction, RevenueTxLite
from ..core.timeutils import RETENTION_WINDOW_MS
from .buckets import (
    BucketFamily,
    DailyAgg,
    FeeCategoryAgg,
    VolumeCategoryAgg,
    VolumeCountAgg,
    ensure_daily,
    increment_map,
)


@dataclass
class UserAggregate:
    wallet: str
    referral: str
    customer_id: str
    signup_at: Optional[int] = None
    signup_date: Optional[DateKey] = None
    kyc: bool = False
    tx_count: int = 0
    revenue_tx_count: int = 0
    fee_usd: float = 0.0
    volume_usd: float = 0.0
    first_revenue_tx_at: Optional[int] = None
    last_revenue_tx_at: Optional[int] = None
    retained_within_30d: bool = False
    time_to_first_tx_ms: Optional[int] = None

    def record_revenue(self, tx: RevenueTransaction) -> bool:
        """Apply one revenue transaction. Returns True when it is the wallet's first.

        Assumes transactions arrive in `created_at` order; the first-tx
        detection and the 30d retention flag are evaluated as encountered.
        """
        self.tx_count += 1
        self.revenue_tx_count += 1
        self.fee_usd += tx.fee_usd
        self.volume_usd += tx.volume_usd
        self.last_revenue_tx_at = tx.created_at
        if self.first_revenue_tx_at is None:
            self.first_revenue_tx_at = tx.created_at
            self.time_to_first_tx_ms = tx.created_at - self.signup_at if self.signup_at else None
            return True
        if not self.retained_within_30d and tx.created_at - self.first_revenue_tx_at <= RETENTION_WINDOW_MS:
            self.retained_within_30d = True
        return False


def _new_token_family() -> BucketFamily[VolumeCountAgg]:
    return BucketFamily(VolumeCountAgg)


@dataclass
class ReferralAggregate:
    code: str
    signups_by_date: Dict[DateKey, int] = field(default_factory=dict)
    kyc_by_date: Dict[DateKey, int] = field(default_factory=dict)
    first_revenue_tx_by_date: Dict[DateKey, int] = field(default_factory=dict)
    daily: Dict[DateKey, DailyAgg] = field(default_factory=dict)
    fee_by_category: BucketFamily[FeeCategoryAgg] = field(default_factory=lambda: BucketFamily(FeeCategoryAgg))
    volume_by_category: BucketFamily[VolumeCategoryAgg] = field(default_factory=lambda: BucketFamily(VolumeCategoryAgg))
    token_volume_by_symbol: BucketFamily[VolumeCountAgg] = field(default_factory=_new_token_family)
    # symbol -> date -> category -> bucket
    token_category_by_symbol_daily: Dict[str, Dict[DateKey, Dict[str, VolumeCountAgg]]] = field(default_factory=dict)
    swap_flow_by_pair: BucketFamily[VolumeCountAgg] = field(default_factory=_new_token_family)
    users: Dict[str, UserAggregate] = field(default_factory=dict)
    top_revenue_txs: List[RevenueTxLite] = field(default_factory=list)
    fee_usd_total: float = 0.0
    volume_usd_total: float = 0.0
    revenue_tx_count: int = 0

    def record_signup(self, date: DateKey, kyc: bool) -> None:
        increment_map(self.signups_by_date, date)
        if kyc:
            increment_map(self.kyc_by_date, date)

    def record_first_revenue(self, date: DateKey) -> None:
        increment_map(self.first_revenue_tx_by_date, date)

    def record_revenue(self, tx: RevenueTransaction, date: DateKey, category: str) -> None:
        """Update every bucket family and the running totals for one transaction."""
        ensure_daily(self.daily, date).accumulate(tx.fee_usd, tx.volume_usd)
        self.fee_by_category.add(category, date, tx.fee_usd)
        self.volume_by_category.add(category, date, tx.volume_usd)

        for token in tx.tokens:
            if not token.symbol or not token.volume_usd:
                continue
            self.token_volume_by_symbol.add(token.symbol, date, token.volume_usd)
            per_date = self.token_category_by_symbol_daily.setdefault(token.symbol, {})
            per_category = per_date.setdefault(date, {})
            bucket = per_category.get(category)
            if bucket is None:
                bucket = per_category[category] = VolumeCountAgg()
            bucket.accumulate(token.volume_usd)

        flow = tx.swap_flow
        if flow and flow.from_symbol and flow.to_symbol and flow.volume_usd > 0:
            self.swap_flow_by_pair.add(swap_pair_key(flow.from_symbol, flow.to_symbol), date, flow.volume_usd)

        self.fee_usd_total += tx.fee_usd
        self.volume_usd_total += tx.volume_usd
        self.revenue_tx_count += 1

    def store_tx(self, tx: RevenueTxLite, options: AnalyticsOptions) -> None:
        """Append to the retained sample, keeping the newest `max_stored_txs` entries.

        The sort is stable, so transactions sharing a `created_at` keep
        their arrival order.
        """
        self.top_revenue_txs.append(tx)
        if options.keep_full_tx:
            return
        if len(self.top_revenue_txs) > options.max_stored_txs:
            self.top_revenue_txs.sort(key=lambda t: t.created_at, reverse=True)
            del self.top_revenue_txs[options.max_stored_txs:]


PAIR_SEPARATOR = "→"


def swap_pair_key(from_symbol: str, to_symbol: str) -> str:
    return f"{from_symbol}{PAIR_SEPARATOR}{to_symbol}"


def split_pair_key(pair: str):
    source, _, target = pair.partition(PAIR_SEPARATOR)
    return source, target
