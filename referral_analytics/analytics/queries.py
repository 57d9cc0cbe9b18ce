"""Query engine: pure, range-bounded reads over a frozen AnalyticsIndex.

All functions take the index plus an inclusive `DateRange` of ISO day keys
and never mutate the index (unknown codes resolve to an empty aggregate
that is not registered). Rate fields fall back to 0 on a zero denominator.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from ..core.custom_types import Customer, DateKey, DateRange, ReferralMetrics
from ..core.timeutils import DAY_MS, day_end_ms, day_start_ms, each_day, to_date_key
from .aggregate import UserAggregate, split_pair_key
from .buckets import DailyAgg, sum_daily_by_range, sum_map_by_range
from .index import AnalyticsIndex, find_aggregate

VOLUME_CATEGORY_ORDER = [
    "Swap",
    "Crypto Deposits",
    "Crypto Withdraw",
    "Liquidity Pool",
    "On Ramp Transfers",
    "Off Ramp",
]


def normalize_volume_category(category: str) -> str:
    """Map a raw transaction type to its display label ('' when it has none)."""
    normalized = (category or "").strip().upper()
    if normalized in ("SWAP", "CROSS_SWAP"):
        return "Swap"
    if normalized == "CRYPTO_DEPOSIT":
        return "Crypto Deposits"
    if normalized == "CRYPTO_WITHDRAW":
        return "Crypto Withdraw"
    if normalized.startswith("LIQUIDITY_POOL"):
        return "Liquidity Pool"
    if normalized == "ON_RAMP":
        return "On Ramp Transfers"
    if normalized == "OFF_RAMP":
        return "Off Ramp"
    return ""


@dataclass
class DailySeriesRow:
    date: DateKey
    fee_usd: float = 0.0
    volume_usd: float = 0.0
    revenue_tx_count: int = 0
    signups: int = 0
    first_revenue_tx_users: int = 0


@dataclass
class FeeCategoryBreakdown:
    category: str
    fee_usd: float
    revenue_tx_count: int


@dataclass
class VolumeCategoryBreakdown:
    category: str
    volume_usd: float
    revenue_tx_count: int


@dataclass
class VolumeCategoryDailySeries:
    data: List[Dict[str, Union[str, float]]]
    keys: List[str]


@dataclass
class TokenVolumeBreakdown:
    symbol: str
    volume_usd: float
    tx_count: int


@dataclass
class TokenCategoryCount:
    category: str
    tx_count: int
    volume_usd: float


@dataclass
class TokenTransactionSummary:
    symbol: str
    tx_count: int
    volume_usd: float
    categories: List[TokenCategoryCount] = field(default_factory=list)


@dataclass
class SwapFlowLink:
    source: str
    target: str
    volume_usd: float
    tx_count: int


@dataclass
class SankeyLink:
    source: int
    target: int
    value: float
    tx_count: int


@dataclass
class SwapSankeyData:
    nodes: List[Dict[str, str]]
    links: List[SankeyLink]


@dataclass
class UsageSummary:
    fee_usd: float = 0.0
    volume_usd: float = 0.0
    revenue_tx_count: int = 0
    last_date: Optional[DateKey] = None


# --- Bounds / listing ---

def get_range_bounds(index: AnalyticsIndex) -> Optional[DateRange]:
    dates = set(index.global_agg.daily) | set(index.global_agg.signups_by_date)
    if not dates:
        return None
    ordered = sorted(dates)
    return DateRange(start=ordered[0], end=ordered[-1])


def get_referral_list(index: AnalyticsIndex) -> List[str]:
    return sorted(index.referrals)


# --- Funnel metrics ---

def _median(values: List[float]) -> float:
    if not values:
        return 0.0
    return float(np.median(np.asarray(values, dtype=float)))


def get_referral_metrics(index: AnalyticsIndex, code: str, date_range: DateRange) -> ReferralMetrics:
    referral = find_aggregate(index, code)
    signups = sum_map_by_range(referral.signups_by_date, date_range)
    kyc_users = sum_map_by_range(referral.kyc_by_date, date_range)
    first_revenue_tx_users = sum_map_by_range(referral.first_revenue_tx_by_date, date_range)
    daily = sum_daily_by_range(referral.daily, date_range)

    range_start_ms = day_start_ms(date_range.start)
    range_end_ms = day_end_ms(date_range.end)
    users_with_revenue_tx = 0
    retained_users = 0
    time_to_first_days: List[float] = []
    for user in referral.users.values():
        if user.first_revenue_tx_at is None or user.last_revenue_tx_at is None:
            continue
        if user.first_revenue_tx_at > range_end_ms or user.last_revenue_tx_at < range_start_ms:
            continue
        users_with_revenue_tx += 1
        if date_range.contains(to_date_key(user.first_revenue_tx_at)):
            if user.retained_within_30d:
                retained_users += 1
            if user.time_to_first_tx_ms is not None:
                time_to_first_days.append(user.time_to_first_tx_ms / DAY_MS)

    return ReferralMetrics(
        code=referral.code,
        signups=signups,
        kyc_users=kyc_users,
        users_with_revenue_tx=users_with_revenue_tx,
        first_revenue_tx_users=first_revenue_tx_users,
        fee_usd=daily.fee_usd,
        volume_usd=daily.volume_usd,
        conversion_rate=users_with_revenue_tx / signups if signups else 0.0,
        fee_per_user=daily.fee_usd / users_with_revenue_tx if users_with_revenue_tx else 0.0,
        retention_30d=retained_users / users_with_revenue_tx if users_with_revenue_tx else 0.0,
        time_to_first_tx_median_days=_median(time_to_first_days),
        kyc_rate=kyc_users / signups if signups else 0.0,
    )


def get_daily_series(index: AnalyticsIndex, code: str, date_range: DateRange) -> List[DailySeriesRow]:
    referral = find_aggregate(index, code)
    rows = []
    for date in each_day(date_range):
        daily = referral.daily.get(date)
        rows.append(DailySeriesRow(
            date=date,
            fee_usd=daily.fee_usd if daily else 0.0,
            volume_usd=daily.volume_usd if daily else 0.0,
            revenue_tx_count=daily.revenue_tx_count if daily else 0,
            signups=referral.signups_by_date.get(date, 0),
            first_revenue_tx_users=referral.first_revenue_tx_by_date.get(date, 0),
        ))
    return rows


# --- Category / token breakdowns ---

def get_fee_category_breakdown(index: AnalyticsIndex, code: str, date_range: DateRange) -> List[FeeCategoryBreakdown]:
    referral = find_aggregate(index, code)
    totals = referral.fee_by_category.sum_by_range(date_range)
    rows = [FeeCategoryBreakdown(category=c, fee_usd=a.fee_usd, revenue_tx_count=a.revenue_tx_count)
            for c, a in totals.items() if a.fee_usd > 0]
    return sorted(rows, key=lambda r: r.fee_usd, reverse=True)


def get_volume_category_breakdown(index: AnalyticsIndex, code: str, date_range: DateRange) -> List[VolumeCategoryBreakdown]:
    """Raw categories grouped into the fixed display taxonomy; unmapped ones are dropped here only."""
    referral = find_aggregate(index, code)
    grouped: Dict[str, Tuple[float, int]] = {}
    for category, agg in referral.volume_by_category.sum_by_range(date_range).items():
        if agg.volume_usd <= 0:
            continue
        label = normalize_volume_category(category)
        if not label:
            continue
        volume, count = grouped.get(label, (0.0, 0))
        grouped[label] = (volume + agg.volume_usd, count + agg.revenue_tx_count)
    return [
        VolumeCategoryBreakdown(category=label, volume_usd=grouped.get(label, (0.0, 0))[0],
                                revenue_tx_count=grouped.get(label, (0.0, 0))[1])
        for label in VOLUME_CATEGORY_ORDER
    ]


def get_volume_category_daily_series(index: AnalyticsIndex, code: str, date_range: DateRange) -> VolumeCategoryDailySeries:
    referral = find_aggregate(index, code)
    data: List[Dict[str, Union[str, float]]] = [{"date": d, "total": 0.0} for d in each_day(date_range)]
    row_by_date = {row["date"]: row for row in data}
    for category, date, bucket in referral.volume_by_category.items_in_range(date_range):
        label = normalize_volume_category(category)
        if not label:
            continue
        row = row_by_date.get(date)
        if row is None:
            continue
        row[label] = float(row.get(label, 0.0)) + bucket.volume_usd
        row["total"] = float(row["total"]) + bucket.volume_usd
    return VolumeCategoryDailySeries(data=data, keys=list(VOLUME_CATEGORY_ORDER))


def get_token_volume_breakdown(index: AnalyticsIndex, code: str, date_range: DateRange) -> List[TokenVolumeBreakdown]:
    referral = find_aggregate(index, code)
    totals = referral.token_volume_by_symbol.sum_by_range(date_range)
    rows = [TokenVolumeBreakdown(symbol=s, volume_usd=a.volume_usd, tx_count=a.tx_count)
            for s, a in totals.items() if a.volume_usd > 0]
    return sorted(rows, key=lambda r: r.volume_usd, reverse=True)


def get_top_token_by_volume(index: AnalyticsIndex, code: str, date_range: DateRange) -> Optional[TokenVolumeBreakdown]:
    breakdown = get_token_volume_breakdown(index, code, date_range)
    return breakdown[0] if breakdown else None


def get_top_token_transactions(index: AnalyticsIndex, code: str, date_range: DateRange,
                               limit: int = 10) -> List[TokenTransactionSummary]:
    referral = find_aggregate(index, code)
    summaries: Dict[str, TokenTransactionSummary] = {}
    per_category: Dict[str, Dict[str, TokenCategoryCount]] = {}
    for symbol, by_date in referral.token_category_by_symbol_daily.items():
        for date, by_category in by_date.items():
            if not date_range.contains(date):
                continue
            summary = summaries.setdefault(symbol, TokenTransactionSummary(symbol=symbol, tx_count=0, volume_usd=0.0))
            cats = per_category.setdefault(symbol, {})
            for category, agg in by_category.items():
                summary.tx_count += agg.tx_count
                summary.volume_usd += agg.volume_usd
                entry = cats.setdefault(category, TokenCategoryCount(category=category, tx_count=0, volume_usd=0.0))
                entry.tx_count += agg.tx_count
                entry.volume_usd += agg.volume_usd

    for symbol, summary in summaries.items():
        summary.categories = sorted(per_category[symbol].values(), key=lambda c: (-c.tx_count, -c.volume_usd))
    ranked = sorted(summaries.values(), key=lambda s: (-s.volume_usd, -s.tx_count))
    return ranked[:limit]


# --- Swap flows ---

def get_swap_flow_links(index: AnalyticsIndex, code: str, date_range: DateRange, limit: int = 20) -> List[SwapFlowLink]:
    referral = find_aggregate(index, code)
    links = []
    for pair, agg in referral.swap_flow_by_pair.sum_by_range(date_range).items():
        if agg.volume_usd <= 0:
            continue
        source, target = split_pair_key(pair)
        if not source or not target:
            continue
        links.append(SwapFlowLink(source=source, target=target, volume_usd=agg.volume_usd, tx_count=agg.tx_count))
    links.sort(key=lambda l: (-l.volume_usd, -l.tx_count))
    return links[:limit]


def get_swap_flow_sankey_data(index: AnalyticsIndex, code: str, date_range: DateRange, limit: int = 24) -> SwapSankeyData:
    """Bipartite flow graph: each token gets an `(out)` and/or `(in)` node, so no self-loops."""
    links = get_swap_flow_links(index, code, date_range, limit)
    weights: Dict[str, float] = {}
    for link in links:
        for name in (f"{link.source} (out)", f"{link.target} (in)"):
            weights[name] = weights.get(name, 0.0) + link.volume_usd

    ordered = sorted(weights, key=lambda name: weights[name], reverse=True)
    position = {name: i for i, name in enumerate(ordered)}
    sankey_links = [
        SankeyLink(
            source=position[f"{link.source} (out)"],
            target=position[f"{link.target} (in)"],
            value=link.volume_usd,
            tx_count=link.tx_count,
        )
        for link in links
    ]
    return SwapSankeyData(nodes=[{"name": name} for name in ordered], links=sankey_links)


# --- Owner / customer usage ---

def summarize_usage_by_range(daily: Optional[Dict[DateKey, DailyAgg]], date_range: DateRange) -> UsageSummary:
    out = UsageSummary()
    if not daily:
        return out
    for date, agg in daily.items():
        if not date_range.contains(date):
            continue
        out.fee_usd += agg.fee_usd
        out.volume_usd += agg.volume_usd
        out.revenue_tx_count += agg.revenue_tx_count
        if out.last_date is None or date > out.last_date:
            out.last_date = date
    return out


def get_owner_usage(index: AnalyticsIndex, owner_id: str, date_range: DateRange) -> UsageSummary:
    return summarize_usage_by_range(index.owner_usage_daily.get(owner_id), date_range)


def get_customer_usage(index: AnalyticsIndex, customer_id: str, date_range: DateRange) -> UsageSummary:
    return summarize_usage_by_range(index.customer_usage_daily.get(customer_id), date_range)


def lookup_wallet(index: AnalyticsIndex, query: str) -> Tuple[Optional[Customer], Optional[UserAggregate]]:
    """Resolve a customer id or a wallet address to (customer, user rollup)."""
    key = (query or "").strip()
    if not key:
        return None, None
    wallet = key.lower()
    customer = index.customers_by_id.get(key) or index.customers_by_wallet.get(wallet)
    user = index.users_by_wallet.get(wallet)
    if user is None and customer is not None:
        user = index.users_by_wallet.get(customer.smart_wallet)
    return customer, user
