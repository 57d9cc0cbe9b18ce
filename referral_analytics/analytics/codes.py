"""Referral-code and customer tables joining code metadata with range metrics."""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..core.custom_types import DateKey, DateRange, ReferralCodeMeta
from .index import AnalyticsIndex
from .queries import get_customer_usage, get_owner_usage, get_referral_metrics


@dataclass
class ReferralCodeRow:
    code: str
    note: str
    uses: int
    max_uses: Optional[int]
    usage_rate: Optional[float]
    is_active: bool
    is_exhausted: bool
    valid_from: Optional[int]
    valid_until: Optional[int]
    created_at: Optional[int]
    created_by: Optional[str]
    owner_label: str
    owner_type: str
    status: str
    is_live: bool
    signups: int
    users_with_revenue_tx: int
    fee_usd: float
    volume_usd: float
    conversion_rate: float
    fee_per_user: float
    owner_fee_usd: float


@dataclass
class CustomerRow:
    id: str
    label: str
    signup_date: DateKey
    referral_used: str
    codes_owned: int
    has_referral_code: bool
    fee_usd: float
    volume_usd: float
    last_revenue_date: Optional[DateKey]


def code_status(meta: ReferralCodeMeta, now_ms: int) -> str:
    if not meta.is_active:
        return "Inactive"
    if meta.is_exhausted:
        return "Exhausted"
    if meta.valid_from and meta.valid_from > now_ms:
        return "Scheduled"
    if meta.valid_until and meta.valid_until < now_ms:
        return "Expired"
    return "Active"


def build_referral_code_row(meta: ReferralCodeMeta, index: AnalyticsIndex, date_range: DateRange,
                            now_ms: int) -> ReferralCodeRow:
    metrics = get_referral_metrics(index, meta.code, date_range)
    owner = index.customers_by_id.get(meta.created_by) if meta.created_by else None
    if owner is not None:
        owner_type = "Customer"
    elif meta.created_by:
        owner_type = "External"
    else:
        owner_type = "Campaign"
    status = code_status(meta, now_ms)
    return ReferralCodeRow(
        code=meta.code,
        note=meta.note,
        uses=meta.uses,
        max_uses=meta.max_uses,
        usage_rate=meta.uses / meta.max_uses if meta.max_uses else None,
        is_active=meta.is_active,
        is_exhausted=meta.is_exhausted,
        valid_from=meta.valid_from,
        valid_until=meta.valid_until,
        created_at=meta.created_at,
        created_by=meta.created_by,
        owner_label=(owner.email if owner else "") or meta.created_by or "No owner",
        owner_type=owner_type,
        status=status,
        is_live=status == "Active",
        signups=metrics.signups,
        users_with_revenue_tx=metrics.users_with_revenue_tx,
        fee_usd=metrics.fee_usd,
        volume_usd=metrics.volume_usd,
        conversion_rate=metrics.conversion_rate,
        fee_per_user=metrics.fee_per_user,
        owner_fee_usd=get_owner_usage(index, meta.created_by, date_range).fee_usd if meta.created_by else 0.0,
    )


def build_referral_code_rows(index: AnalyticsIndex, date_range: DateRange, now_ms: int) -> List[ReferralCodeRow]:
    return [build_referral_code_row(meta, index, date_range, now_ms) for meta in index.referral_codes.values()]


def codes_by_owner(index: AnalyticsIndex) -> Dict[str, List[str]]:
    owned: Dict[str, List[str]] = {}
    for meta in index.referral_codes.values():
        if meta.created_by:
            owned.setdefault(meta.created_by, []).append(meta.code)
    return owned


def build_customer_rows(index: AnalyticsIndex, date_range: DateRange) -> List[CustomerRow]:
    owned = codes_by_owner(index)
    rows = []
    for customer in index.customers_by_id.values():
        usage = get_customer_usage(index, customer.id, date_range)
        codes = owned.get(customer.id, [])
        rows.append(CustomerRow(
            id=customer.id,
            label=customer.email or customer.id,
            signup_date=customer.signup_date,
            referral_used=customer.referral,
            codes_owned=len(codes),
            has_referral_code=bool(codes),
            fee_usd=usage.fee_usd,
            volume_usd=usage.volume_usd,
            last_revenue_date=usage.last_date,
        ))
    return rows
