"""Group queries over a selection of referral codes: leaderboard, summary, stacked series."""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Literal, Union

from ..core.custom_types import DateRange, ReferralMetrics
from ..core.timeutils import each_day
from .index import AnalyticsIndex
from .queries import get_referral_metrics

DailyMetric = Literal["signups", "fee_usd"]
TotalMode = Literal["selection", "global"]
LineMode = Literal["daily", "cumulative"]

OTHER_KEY = "OTHER"


@dataclass
class GroupSummary:
    signups: int = 0
    kyc_users: int = 0
    users_with_revenue_tx: int = 0
    volume_usd: float = 0.0
    fee_usd: float = 0.0
    conversion_rate: float = 0.0
    fee_per_user: float = 0.0
    kyc_rate: float = 0.0


@dataclass
class GroupConcentration:
    top1_share: float = 0.0
    top3_share: float = 0.0


@dataclass
class DailyStackedSeries:
    data: List[Dict[str, Union[str, float]]]
    keys: List[str]


def get_group_leaderboard(index: AnalyticsIndex, date_range: DateRange, codes: List[str]) -> List[ReferralMetrics]:
    return [get_referral_metrics(index, code, date_range) for code in codes]


def get_group_summary(index: AnalyticsIndex, date_range: DateRange, codes: List[str]) -> GroupSummary:
    metrics = get_group_leaderboard(index, date_range, codes)
    signups = sum(m.signups for m in metrics)
    kyc_users = sum(m.kyc_users for m in metrics)
    users = sum(m.users_with_revenue_tx for m in metrics)
    fee = sum(m.fee_usd for m in metrics)
    return GroupSummary(
        signups=signups,
        kyc_users=kyc_users,
        users_with_revenue_tx=users,
        volume_usd=sum(m.volume_usd for m in metrics),
        fee_usd=fee,
        conversion_rate=users / signups if signups else 0.0,
        fee_per_user=fee / users if users else 0.0,
        kyc_rate=kyc_users / signups if signups else 0.0,
    )


def get_group_concentration(metrics: List[ReferralMetrics]) -> GroupConcentration:
    """Share of fees captured by the top-1 and top-3 codes."""
    ranked = sorted(metrics, key=lambda m: m.fee_usd, reverse=True)
    total = sum(m.fee_usd for m in metrics)
    if not total:
        return GroupConcentration()
    top1 = ranked[0].fee_usd if ranked else 0.0
    top3 = sum(m.fee_usd for m in ranked[:3])
    return GroupConcentration(top1_share=top1 / total, top3_share=top3 / total)


def _daily_value(index: AnalyticsIndex, code: str, date: str, metric: DailyMetric) -> float:
    referral = index.global_agg if code == index.global_agg.code else index.referrals.get(code)
    if referral is None:
        return 0.0
    if metric == "signups":
        return referral.signups_by_date.get(date, 0)
    daily = referral.daily.get(date)
    return daily.fee_usd if daily else 0.0


def build_daily_stacked_series(
    index: AnalyticsIndex,
    date_range: DateRange,
    referral_codes: List[str],
    metric: DailyMetric,
    top_n: int,
    total_mode: TotalMode = "selection",
    line_mode: LineMode = "daily",
) -> DailyStackedSeries:
    """Per-day rows with the top-N codes as keys and the remainder folded into OTHER.

    `total` is the selection's (or the global aggregate's) daily value,
    `totalLine` the same value or its running sum depending on `line_mode`.
    """
    if not referral_codes:
        return DailyStackedSeries(data=[], keys=[])
    days = each_day(date_range)

    totals_by_code: Dict[str, float] = {}
    for code in referral_codes:
        if code not in index.referrals:
            continue
        totals_by_code[code] = sum(_daily_value(index, code, d, metric) for d in days)

    ranked = sorted(totals_by_code, key=lambda c: totals_by_code[c], reverse=True)
    top_codes = ranked[:max(1, top_n)]
    other_codes = ranked[len(top_codes):]
    include_other = sum(totals_by_code[c] for c in other_codes) > 0
    keys = top_codes + [OTHER_KEY] if include_other else list(top_codes)

    running = 0.0
    data = []
    for date in days:
        row: Dict[str, Union[str, float]] = {"date": date}
        total = 0.0
        for code in top_codes:
            value = _daily_value(index, code, date, metric)
            row[code] = value
            total += value
        if include_other:
            other = sum(_daily_value(index, c, date, metric) for c in other_codes)
            row[OTHER_KEY] = other
            total += other
        daily_total = _daily_value(index, index.global_agg.code, date, metric) if total_mode == "global" else total
        running += daily_total
        row["total"] = daily_total
        row["totalLine"] = running if line_mode == "cumulative" else daily_total
        data.append(row)
    return DailyStackedSeries(data=data, keys=keys)


def build_group_total_series(index: AnalyticsIndex, date_range: DateRange, codes: List[str],
                             metric: DailyMetric) -> DailyStackedSeries:
    stacked = build_daily_stacked_series(index, date_range, codes, metric, top_n=len(codes) or 1)
    data = []
    for row in stacked.data:
        total = float(row.get("total") or 0.0)
        data.append({"date": row["date"], "Group": total, "total": total, "totalLine": total})
    return DailyStackedSeries(data=data, keys=["Group"])
