from dataclasses import asdict

import pytest

from referral_analytics.analytics.propagation import build_descendant_stats
from referral_analytics.analytics.queries import (
    get_daily_series,
    get_referral_list,
    get_referral_metrics,
    get_swap_flow_sankey_data,
    get_token_volume_breakdown,
    get_volume_category_breakdown,
)
from referral_analytics.analytics.snapshot import (
    deserialize_index,
    serialize_index,
    snapshot_digest,
    snapshot_from_json,
    snapshot_to_json,
)
from referral_analytics.core.custom_types import GLOBAL_CODE, DateRange

JAN = DateRange("2025-01-01", "2025-01-31")


def _round_trip(index):
    return deserialize_index(snapshot_from_json(snapshot_to_json(serialize_index(index))))


def test_round_trip_queries_identical(small_index):
    restored = _round_trip(small_index)
    assert get_referral_list(restored) == get_referral_list(small_index)
    for code in get_referral_list(small_index) + [GLOBAL_CODE]:
        assert get_referral_metrics(restored, code, JAN) == get_referral_metrics(small_index, code, JAN)
        assert get_daily_series(restored, code, JAN) == get_daily_series(small_index, code, JAN)
        assert get_volume_category_breakdown(restored, code, JAN) == get_volume_category_breakdown(small_index, code, JAN)
        assert get_token_volume_breakdown(restored, code, JAN) == get_token_volume_breakdown(small_index, code, JAN)
        assert get_swap_flow_sankey_data(restored, code, JAN) == get_swap_flow_sankey_data(small_index, code, JAN)
    assert build_descendant_stats(restored) == build_descendant_stats(small_index)
    assert restored.totals == small_index.totals
    assert restored.options == small_index.options


def test_round_trip_relinks_shared_users(small_index):
    restored = _round_trip(small_index)
    user = restored.users_by_wallet["0xaaa"]
    assert restored.referrals["ALPHA"].users["0xaaa"] is user
    assert restored.global_agg.users["0xaaa"] is user
    assert asdict(user) == asdict(small_index.users_by_wallet["0xaaa"])
    assert restored.customers_by_wallet["0xaaa"] is restored.customers_by_id["c1"]


def test_round_trip_is_stable(small_index):
    snapshot = serialize_index(small_index)
    again = serialize_index(deserialize_index(snapshot))
    assert snapshot_digest(again) == snapshot_digest(snapshot)
    assert list(k for k, _ in again["referrals"]) == list(small_index.referrals)


def test_samples_survive(small_index):
    restored = _round_trip(small_index)
    assert restored.referrals["ALPHA"].top_revenue_txs == small_index.referrals["ALPHA"].top_revenue_txs
    assert restored.referral_codes == small_index.referral_codes


def test_missing_optional_sections_decode_empty(small_index):
    snapshot = serialize_index(small_index)
    for key in ("referral_codes", "owner_usage_daily", "customer_usage_daily", "metadata"):
        snapshot.pop(key)
    for _, agg in snapshot["referrals"]:
        for key in ("volume_by_category", "token_volume_by_symbol", "token_category_by_symbol_daily",
                    "swap_flow_by_pair"):
            agg.pop(key)
    restored = deserialize_index(snapshot)
    assert restored.referral_codes == {}
    assert restored.customer_usage_daily == {}
    assert len(restored.referrals["ALPHA"].swap_flow_by_pair) == 0
    assert get_referral_metrics(restored, "ALPHA", JAN) == get_referral_metrics(small_index, "ALPHA", JAN)


def test_snapshot_from_json_rejects_non_object():
    with pytest.raises(ValueError):
        snapshot_from_json("[1, 2]")
