"""Snapshot codec: AnalyticsIndex <-> JSON-compatible dict.

Every mapping is written as a list of `[key, value]` pairs in insertion
order, nested mappings recursively, so the encoded form is order-stable and
can be content-hashed. UserAggregate objects are shared between a referral,
the global aggregate and `users_by_wallet`; they are stored once under their
referral and the other two tables keep `[wallet, code]` references, which
`deserialize_index` re-links to the same objects.
"""
from __future__ import annotations
import hashlib
import json
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional

from ..core.custom_types import AnalyticsOptions, Customer, FileMeta, ReferralCodeMeta, RevenueTxLite
from .aggregate import ReferralAggregate, UserAggregate
from .buckets import BucketFamily, DailyAgg, FeeCategoryAgg, VolumeCategoryAgg, VolumeCountAgg
from .index import AnalyticsIndex, IndexMetadata, IndexTotals

SNAPSHOT_VERSION = 1

Snapshot = Dict[str, Any]


def _pairs(mapping: Dict[str, Any], encode: Callable[[Any], Any] = lambda v: v) -> List[list]:
    return [[key, encode(value)] for key, value in mapping.items()]


def _unpairs(pairs: Optional[List[list]], decode: Callable[[Any], Any] = lambda v: v) -> Dict[str, Any]:
    return {key: decode(value) for key, value in (pairs or [])}


def _encode_daily_map(daily: Dict[str, DailyAgg]) -> List[list]:
    return _pairs(daily, asdict)


def _decode_daily_map(pairs: Optional[List[list]]) -> Dict[str, DailyAgg]:
    return _unpairs(pairs, lambda v: DailyAgg(**v))


def _encode_family(family: BucketFamily) -> Dict[str, Any]:
    return {
        "totals": _pairs(family.totals, asdict),
        "daily": _pairs(family.daily, lambda per_day: _pairs(per_day, asdict)),
    }


def _decode_family(data: Optional[Dict[str, Any]], factory) -> BucketFamily:
    family = BucketFamily(factory)
    if not data:
        return family
    family.totals = _unpairs(data.get("totals"), lambda v: factory(**v))
    family.daily = _unpairs(data.get("daily"), lambda per_day: _unpairs(per_day, lambda v: factory(**v)))
    return family


def _encode_aggregate(agg: ReferralAggregate, with_users: bool = True) -> Dict[str, Any]:
    return {
        "code": agg.code,
        "signups_by_date": _pairs(agg.signups_by_date),
        "kyc_by_date": _pairs(agg.kyc_by_date),
        "first_revenue_tx_by_date": _pairs(agg.first_revenue_tx_by_date),
        "daily": _encode_daily_map(agg.daily),
        "fee_by_category": _encode_family(agg.fee_by_category),
        "volume_by_category": _encode_family(agg.volume_by_category),
        "token_volume_by_symbol": _encode_family(agg.token_volume_by_symbol),
        "token_category_by_symbol_daily": _pairs(
            agg.token_category_by_symbol_daily,
            lambda by_date: _pairs(by_date, lambda by_cat: _pairs(by_cat, asdict)),
        ),
        "swap_flow_by_pair": _encode_family(agg.swap_flow_by_pair),
        "users": _pairs(agg.users, asdict) if with_users else [],
        "top_revenue_txs": [asdict(tx) for tx in agg.top_revenue_txs],
        "fee_usd_total": agg.fee_usd_total,
        "volume_usd_total": agg.volume_usd_total,
        "revenue_tx_count": agg.revenue_tx_count,
    }


def _decode_aggregate(data: Dict[str, Any]) -> ReferralAggregate:
    agg = ReferralAggregate(code=data["code"])
    agg.signups_by_date = _unpairs(data.get("signups_by_date"))
    agg.kyc_by_date = _unpairs(data.get("kyc_by_date"))
    agg.first_revenue_tx_by_date = _unpairs(data.get("first_revenue_tx_by_date"))
    agg.daily = _decode_daily_map(data.get("daily"))
    agg.fee_by_category = _decode_family(data.get("fee_by_category"), FeeCategoryAgg)
    agg.volume_by_category = _decode_family(data.get("volume_by_category"), VolumeCategoryAgg)
    agg.token_volume_by_symbol = _decode_family(data.get("token_volume_by_symbol"), VolumeCountAgg)
    agg.token_category_by_symbol_daily = _unpairs(
        data.get("token_category_by_symbol_daily"),
        lambda by_date: _unpairs(by_date, lambda by_cat: _unpairs(by_cat, lambda v: VolumeCountAgg(**v))),
    )
    agg.swap_flow_by_pair = _decode_family(data.get("swap_flow_by_pair"), VolumeCountAgg)
    agg.users = _unpairs(data.get("users"), lambda v: UserAggregate(**v))
    agg.top_revenue_txs = [RevenueTxLite(**tx) for tx in data.get("top_revenue_txs") or []]
    agg.fee_usd_total = data.get("fee_usd_total", 0.0)
    agg.volume_usd_total = data.get("volume_usd_total", 0.0)
    agg.revenue_tx_count = data.get("revenue_tx_count", 0)
    return agg


def _encode_metadata(meta: Optional[IndexMetadata]) -> Optional[Dict[str, Any]]:
    if meta is None:
        return None
    return {
        "generated_at": meta.generated_at,
        "customers_file": asdict(meta.customers_file) if meta.customers_file else None,
        "tx_files": [asdict(f) for f in meta.tx_files],
        "referral_codes_file": asdict(meta.referral_codes_file) if meta.referral_codes_file else None,
    }


def _decode_metadata(data: Optional[Dict[str, Any]]) -> Optional[IndexMetadata]:
    if not data:
        return None
    customers_file = data.get("customers_file")
    codes_file = data.get("referral_codes_file")
    return IndexMetadata(
        generated_at=data.get("generated_at", 0),
        customers_file=FileMeta(**customers_file) if customers_file else None,
        tx_files=[FileMeta(**f) for f in data.get("tx_files") or []],
        referral_codes_file=FileMeta(**codes_file) if codes_file else None,
    )


def serialize_index(index: AnalyticsIndex) -> Snapshot:
    return {
        "version": SNAPSHOT_VERSION,
        "options": asdict(index.options),
        "customers_by_id": _pairs(index.customers_by_id, asdict),
        "customers_by_wallet": [[wallet, c.id] for wallet, c in index.customers_by_wallet.items()],
        "referrals": _pairs(index.referrals, _encode_aggregate),
        "users_by_wallet": [[wallet, u.referral] for wallet, u in index.users_by_wallet.items()],
        "global": _encode_aggregate(index.global_agg, with_users=False),
        "global_users": [[wallet, u.referral] for wallet, u in index.global_agg.users.items()],
        "referral_codes": _pairs(index.referral_codes, asdict),
        "owner_usage_daily": _pairs(index.owner_usage_daily, _encode_daily_map),
        "customer_usage_daily": _pairs(index.customer_usage_daily, _encode_daily_map),
        "totals": asdict(index.totals),
        "metadata": _encode_metadata(index.metadata),
    }


def deserialize_index(snapshot: Snapshot) -> AnalyticsIndex:
    index = AnalyticsIndex(options=AnalyticsOptions(**snapshot.get("options", {})))
    index.customers_by_id = _unpairs(snapshot.get("customers_by_id"), lambda v: Customer(**v))
    index.customers_by_wallet = {
        wallet: index.customers_by_id[cid]
        for wallet, cid in snapshot.get("customers_by_wallet") or []
        if cid in index.customers_by_id
    }
    index.referrals = _unpairs(snapshot.get("referrals"), _decode_aggregate)

    def resolve(refs: Optional[List[list]]) -> Dict[str, UserAggregate]:
        out = {}
        for wallet, code in refs or []:
            referral = index.referrals.get(code)
            user = referral.users.get(wallet) if referral else None
            if user is not None:
                out[wallet] = user
        return out

    if "users_by_wallet" in snapshot:
        index.users_by_wallet = resolve(snapshot["users_by_wallet"])
    else:
        for referral in index.referrals.values():
            index.users_by_wallet.update(referral.users)

    if "global" in snapshot:
        index.global_agg = _decode_aggregate(snapshot["global"])
    index.global_agg.users = (
        resolve(snapshot["global_users"]) if "global_users" in snapshot else dict(index.users_by_wallet)
    )
    index.referral_codes = _unpairs(snapshot.get("referral_codes"), lambda v: ReferralCodeMeta(**v))
    index.owner_usage_daily = _unpairs(snapshot.get("owner_usage_daily"), _decode_daily_map)
    index.customer_usage_daily = _unpairs(snapshot.get("customer_usage_daily"), _decode_daily_map)
    index.totals = IndexTotals(**snapshot.get("totals", {}))
    index.metadata = _decode_metadata(snapshot.get("metadata"))
    return index


def snapshot_to_json(snapshot: Snapshot, indent: Optional[int] = None) -> str:
    return json.dumps(snapshot, ensure_ascii=False, indent=indent)


def snapshot_from_json(text: str) -> Snapshot:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("snapshot JSON must be an object")
    return data


def snapshot_digest(snapshot: Snapshot) -> str:
    """SHA-256 of the canonical JSON form; equal indexes give equal digests."""
    canonical = json.dumps(snapshot, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
