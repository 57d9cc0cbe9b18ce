import pytest

from referral_analytics.analytics.codes import (
    build_customer_rows,
    build_referral_code_row,
    build_referral_code_rows,
    code_status,
    codes_by_owner,
)
from referral_analytics.analytics.groups import (
    OTHER_KEY,
    build_daily_stacked_series,
    build_group_total_series,
    get_group_concentration,
    get_group_leaderboard,
    get_group_summary,
)
from referral_analytics.analytics.ingest import add_referral_code_meta
from referral_analytics.core.custom_types import DateRange, ReferralCodeMeta

from conftest import ms

JAN = DateRange("2025-01-01", "2025-01-31")
NOW = ms("2025-06-01T00:00:00Z")


@pytest.mark.parametrize("meta,expected", [
    (ReferralCodeMeta(code="A", is_active=False), "Inactive"),
    (ReferralCodeMeta(code="A", is_active=True, is_exhausted=True), "Exhausted"),
    (ReferralCodeMeta(code="A", is_active=True, valid_from=ms("2025-07-01")), "Scheduled"),
    (ReferralCodeMeta(code="A", is_active=True, valid_until=ms("2025-05-01")), "Expired"),
    (ReferralCodeMeta(code="A", is_active=True, valid_from=ms("2025-01-01"), valid_until=ms("2025-12-31")), "Active"),
])
def test_code_status(meta, expected):
    assert code_status(meta, NOW) == expected


def test_code_rows_owner_resolution(small_index):
    add_referral_code_meta(small_index, ReferralCodeMeta(code="EXT", uses=5, max_uses=10, is_active=True,
                                                         created_by="partner-9"))
    rows = {r.code: r for r in build_referral_code_rows(small_index, JAN, NOW)}
    assert (rows["ALPHA"].owner_type, rows["ALPHA"].owner_label) == ("Campaign", "No owner")
    assert (rows["BETA"].owner_type, rows["BETA"].owner_label) == ("Customer", "a@x.com")
    assert (rows["EXT"].owner_type, rows["EXT"].owner_label) == ("External", "partner-9")
    assert rows["EXT"].usage_rate == pytest.approx(0.5)
    assert rows["BETA"].usage_rate is None
    assert rows["GAMMA"].status == "Inactive" and not rows["GAMMA"].is_live


def test_code_row_carries_range_metrics(small_index):
    row = build_referral_code_row(small_index.referral_codes["ALPHA"], small_index, JAN, NOW)
    assert row.signups == 2
    assert row.fee_usd == pytest.approx(3.0)
    assert row.conversion_rate == pytest.approx(0.5)
    assert row.is_live


def test_codes_by_owner_and_customer_rows(small_index):
    assert codes_by_owner(small_index) == {"c1": ["BETA"], "c3": ["GAMMA"]}
    rows = {r.id: r for r in build_customer_rows(small_index, JAN)}
    assert rows["c1"].codes_owned == 1 and rows["c1"].has_referral_code
    assert rows["c1"].fee_usd == pytest.approx(3.0)
    assert rows["c1"].last_revenue_date == "2025-01-10"
    assert rows["c2"].codes_owned == 0 and rows["c2"].last_revenue_date is None


def test_group_summary_and_concentration(small_index):
    summary = get_group_summary(small_index, JAN, ["ALPHA", "BETA"])
    assert summary.signups == 3
    assert summary.users_with_revenue_tx == 2
    assert summary.fee_usd == pytest.approx(3.5)
    assert summary.conversion_rate == pytest.approx(2 / 3)
    assert summary.kyc_rate == pytest.approx(2 / 3)

    concentration = get_group_concentration(get_group_leaderboard(small_index, JAN, ["ALPHA", "BETA"]))
    assert concentration.top1_share == pytest.approx(3.0 / 3.5)
    assert concentration.top3_share == pytest.approx(1.0)
    assert get_group_concentration([]).top1_share == 0


def test_empty_group_summary(small_index):
    summary = get_group_summary(small_index, JAN, [])
    assert summary.signups == 0 and summary.conversion_rate == 0 and summary.fee_per_user == 0


def test_daily_stacked_series_with_other(small_index):
    rng = DateRange("2025-01-01", "2025-01-03")
    series = build_daily_stacked_series(small_index, rng, ["ALPHA", "BETA", "NOPE"], "signups", top_n=1,
                                        line_mode="cumulative")
    assert series.keys == ["ALPHA", OTHER_KEY]
    last = series.data[-1]
    assert last["date"] == "2025-01-03"
    assert last["ALPHA"] == 0 and last[OTHER_KEY] == 1
    assert last["total"] == 1
    assert last["totalLine"] == 3


def test_daily_stacked_series_global_total(small_index):
    rng = DateRange("2025-01-04", "2025-01-05")
    series = build_daily_stacked_series(small_index, rng, ["BETA"], "fee_usd", top_n=5, total_mode="global")
    assert series.keys == ["BETA"]
    assert series.data[0]["BETA"] == 0.5
    # the unattributed tx is not in the global aggregate
    assert series.data[0]["total"] == 0.5


def test_group_total_series(small_index):
    series = build_group_total_series(small_index, DateRange("2025-01-01", "2025-01-02"), ["ALPHA", "BETA"], "fee_usd")
    assert series.keys == ["Group"]
    assert [row["Group"] for row in series.data] == [0.0, 1.0]
