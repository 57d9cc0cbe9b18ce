import pytest

from referral_analytics.analytics.queries import get_owner_usage, get_referral_metrics
from referral_analytics.core.custom_types import GLOBAL_CODE, DateRange
from referral_analytics.persist.snapshot_store import (
    MemorySnapshotStore,
    SqliteSnapshotStore,
    build_cache_key,
    file_meta,
)
from referral_analytics.core.config import Settings
from referral_analytics.pipeline import CACHE_UNAVAILABLE, BuildJob, build_index, build_many, settings_fingerprint

JAN = DateRange("2025-01-01", "2025-01-31")


class BrokenStore:
    def get(self, key):
        raise OSError("disk gone")

    def put(self, key, snapshot):
        raise OSError("disk gone")

    def clear(self):
        pass


def _build(data_files, settings, store=None):
    return build_index(data_files["customers"], [data_files["tx"]], data_files["codes"],
                       settings=settings, store=store)


def test_build_from_files(data_files, settings_fixture):
    result = _build(data_files, settings_fixture)
    ix = result.index
    assert result.status == "ready" and not result.from_cache
    assert ix.totals.customers == 5
    assert ix.totals.tx_lines == 8
    assert ix.totals.revenue_tx_count == 4
    assert ix.totals.unattributed_tx_count == 1
    assert list(ix.referral_codes) == ["ALPHA", "BETA", "GAMMA"]
    m = get_referral_metrics(ix, "ALPHA", JAN)
    assert m.signups == 2 and m.fee_usd == pytest.approx(3.0)
    assert result.errors == [
        "Row 4: missing code.",
        "Row 5: missing required fields.",
        "Row 6: invalid signup date.",
        "Line 5: invalid JSON.",
        "Line 8: missing sentBy wallet.",
    ]
    assert ix.metadata.customers_file.name == "customers.csv"
    assert [f.name for f in ix.metadata.tx_files] == ["tx.ndjson"]


def test_owner_usage_is_tracked(data_files, settings_fixture):
    ix = _build(data_files, settings_fixture).index
    # c1 owns BETA and transacts from its own wallet
    assert get_owner_usage(ix, "c1", JAN).fee_usd == pytest.approx(3.0)
    assert get_owner_usage(ix, "c3", JAN).fee_usd == pytest.approx(0.5)
    assert get_owner_usage(ix, "c2", JAN).revenue_tx_count == 0


def test_cache_hit_returns_equivalent_index(data_files, settings_fixture):
    store = MemorySnapshotStore()
    first = _build(data_files, settings_fixture, store)
    assert len(store) == 1
    second = _build(data_files, settings_fixture, store)
    assert second.from_cache and second.status == "cached"
    assert second.cache_key == first.cache_key
    for code in ("ALPHA", "BETA", GLOBAL_CODE):
        assert get_referral_metrics(second.index, code, JAN) == get_referral_metrics(first.index, code, JAN)


def test_cache_failure_builds_fresh(data_files, settings_fixture):
    result = _build(data_files, settings_fixture, BrokenStore())
    assert result.index is not None
    assert not result.from_cache
    assert result.warnings == [CACHE_UNAVAILABLE]


def test_schema_mismatch_aborts(tmp_path, data_files, settings_fixture):
    bad = tmp_path / "customers_bad.csv"
    bad.write_text("ID,E-mail\n1,a@x.com\n", encoding="utf-8")
    store = MemorySnapshotStore()
    result = build_index(bad, [data_files["tx"]], data_files["codes"], settings=settings_fixture, store=store)
    assert result.index is None
    assert result.status == "schema_error"
    assert result.errors[0].startswith("Missing required columns: EOA, Smart Wallet")
    assert len(store) == 0


def test_sqlite_store_round_trip(tmp_path, data_files, settings_fixture):
    store = SqliteSnapshotStore(tmp_path / "cache" / "snap.db")
    first = _build(data_files, settings_fixture, store)
    assert store.keys() == [first.cache_key]
    second = _build(data_files, settings_fixture, store)
    assert second.from_cache
    assert second.index.totals == first.index.totals
    store.clear()
    assert store.get(first.cache_key) is None
    store.close()


def test_cache_key_changes_with_inputs(data_files, settings_fixture):
    metas = [file_meta(data_files["tx"])]
    key = build_cache_key("v1", file_meta(data_files["customers"]), metas, file_meta(data_files["codes"]))
    assert key.startswith("v1__customers.csv:")
    assert "tx.ndjson" in key
    assert key != build_cache_key("v2", file_meta(data_files["customers"]), metas, file_meta(data_files["codes"]))
    assert key != build_cache_key("v1", file_meta(data_files["customers"]), metas, None)


def test_build_many_runs_independent_jobs(data_files, settings_fixture, tmp_path):
    bad = tmp_path / "missing.csv"
    jobs = [
        BuildJob(data_files["customers"], [data_files["tx"]], data_files["codes"]),
        BuildJob(data_files["customers"], [data_files["tx"]]),
        BuildJob(bad, [data_files["tx"]]),
    ]
    results = build_many(jobs, settings_fixture, max_workers=3)
    assert [r.status for r in results] == ["ready", "ready", "failed"]
    assert results[0].index is not results[1].index
    assert results[1].index.referral_codes == {}
    assert results[0].index.totals.revenue_tx_count == results[1].index.totals.revenue_tx_count


def test_stale_cached_snapshot_falls_back_to_fresh_build(data_files, settings_fixture):
    store = MemorySnapshotStore()
    first = _build(data_files, settings_fixture, store)
    store.put(first.cache_key, {"referrals": [["X", {"code": "X", "users": [["0x1", {"stale_field": 1}]]}]]})

    result = _build(data_files, settings_fixture, store)
    assert result.status == "ready" and not result.from_cache
    assert result.warnings == [CACHE_UNAVAILABLE]
    assert result.index.totals == first.index.totals
    # the fresh build replaced the unreadable entry
    assert _build(data_files, settings_fixture, store).from_cache


def test_cache_key_tracks_index_shaping_settings(data_files):
    base = Settings()
    smaller_sample = Settings(index={"max_stored_txs": 10})
    fewer_categories = Settings(ingest={"revenue_categories": ["SWAP"]})
    query_only = Settings(query={"sankey_limit": 3})

    keys = {_build(data_files, s).cache_key for s in (base, smaller_sample, fewer_categories)}
    assert len(keys) == 3
    assert settings_fingerprint(query_only) == settings_fingerprint(base)

    store = MemorySnapshotStore()
    _build(data_files, base, store)
    rebuilt = _build(data_files, fewer_categories, store)
    assert not rebuilt.from_cache
    # the CRYPTO_DEPOSIT line is no longer revenue
    assert rebuilt.index.totals.revenue_tx_count == 3


def test_customer_row_with_extra_field_does_not_abort_build(tmp_path, data_files, settings_fixture):
    customers = tmp_path / "customers_extra.csv"
    customers.write_text(
        data_files["customers"].read_text(encoding="utf-8")
        + "c7,g@x.com,,0x777,2025-01-06T00:00:00Z,google,ALPHA,N7,EXTRA\n",
        encoding="utf-8",
    )
    result = build_index(customers, [data_files["tx"]], data_files["codes"], settings=settings_fixture)
    assert result.status == "ready"
    assert result.index.totals.customers == 5
    assert "Row 7: malformed row." in result.errors
