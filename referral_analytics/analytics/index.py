"""The analytics index: the single-owner mutable structure every ingest call updates.

One index is built per ingestion session and then frozen; queries read it
without synchronisation, so ingestion and querying must not interleave.
Independent indexes share no state and can be built concurrently.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..core.custom_types import (
    GLOBAL_CODE,
    UNASSIGNED,
    AnalyticsOptions,
    Customer,
    DateKey,
    FileMeta,
    ReferralCodeMeta,
)
from .aggregate import ReferralAggregate, UserAggregate
from .buckets import DailyAgg


@dataclass
class IndexTotals:
    customers: int = 0
    kyc_users: int = 0
    tx_lines: int = 0
    revenue_tx_count: int = 0
    unattributed_tx_count: int = 0


@dataclass
class IndexMetadata:
    generated_at: int
    customers_file: Optional[FileMeta] = None
    tx_files: List[FileMeta] = field(default_factory=list)
    referral_codes_file: Optional[FileMeta] = None


@dataclass
class AnalyticsIndex:
    options: AnalyticsOptions
    customers_by_wallet: Dict[str, Customer] = field(default_factory=dict)
    customers_by_id: Dict[str, Customer] = field(default_factory=dict)
    users_by_wallet: Dict[str, UserAggregate] = field(default_factory=dict)
    referrals: Dict[str, ReferralAggregate] = field(default_factory=dict)
    referral_codes: Dict[str, ReferralCodeMeta] = field(default_factory=dict)
    owner_usage_daily: Dict[str, Dict[DateKey, DailyAgg]] = field(default_factory=dict)
    customer_usage_daily: Dict[str, Dict[DateKey, DailyAgg]] = field(default_factory=dict)
    global_agg: ReferralAggregate = field(default_factory=lambda: ReferralAggregate(code=GLOBAL_CODE))
    totals: IndexTotals = field(default_factory=IndexTotals)
    metadata: Optional[IndexMetadata] = None


def create_analytics_index(options: Optional[AnalyticsOptions] = None) -> AnalyticsIndex:
    return AnalyticsIndex(options=options or AnalyticsOptions())


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip() or UNASSIGNED


def get_referral(index: AnalyticsIndex, code: str) -> ReferralAggregate:
    """Fetch the aggregate for `code`, creating it on first reference (ingest only)."""
    key = normalize_code(code)
    existing = index.referrals.get(key)
    if existing is not None:
        return existing
    created = index.referrals[key] = ReferralAggregate(code=key)
    return created


def find_aggregate(index: AnalyticsIndex, code: str) -> ReferralAggregate:
    """Read-only lookup for queries; unknown codes yield an empty, unregistered aggregate."""
    if code == GLOBAL_CODE:
        return index.global_agg
    key = normalize_code(code)
    return index.referrals.get(key) or ReferralAggregate(code=key)
