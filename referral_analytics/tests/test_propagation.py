import pytest

from referral_analytics.analytics.index import create_analytics_index
from referral_analytics.analytics.ingest import add_customer, add_referral_code_meta
from referral_analytics.analytics.propagation import (
    DescendantStats,
    build_creation_graph,
    build_descendant_stats,
    get_propagation_stats,
    rank_codes_by_propagation,
)
from referral_analytics.core.custom_types import ReferralCodeMeta

from conftest import make_customer


def test_creation_graph(small_index):
    graph = build_creation_graph(small_index)
    assert graph == {"ALPHA": ["BETA"], "BETA": ["GAMMA"], "GAMMA": []}


def test_descendant_stats_chain(small_index):
    stats = build_descendant_stats(small_index)
    assert stats["ALPHA"] == DescendantStats(total=2, max_depth=2)
    assert stats["BETA"] == DescendantStats(total=1, max_depth=1)
    assert stats["GAMMA"] == DescendantStats(total=0, max_depth=0)


def test_propagation_stats(small_index):
    row = get_propagation_stats(small_index, "ALPHA")
    assert row.direct_children == 1
    assert row.total_descendants == 2
    assert row.signups == 2
    assert row.propagation_rate == pytest.approx(1.0)
    # no signups -> rate 0
    assert get_propagation_stats(small_index, "GAMMA").propagation_rate == 0


def test_rank_codes(small_index):
    rows = rank_codes_by_propagation(small_index)
    assert [r.code for r in rows] == ["ALPHA", "BETA", "GAMMA"]
    assert len(rank_codes_by_propagation(small_index, limit=1)) == 1


def _index_with_codes(pairs):
    """pairs: (code, owner id, code the owner signed up with)."""
    ix = create_analytics_index()
    for code, owner, signed_with in pairs:
        add_customer(ix, make_customer(owner, f"0x{owner}", "2025-01-01", signed_with))
        add_referral_code_meta(ix, ReferralCodeMeta(code=code, created_by=owner))
    return ix


def test_two_code_cycle_terminates():
    ix = _index_with_codes([("X", "ox", "Y"), ("Y", "oy", "X")])
    stats = build_descendant_stats(ix)
    assert set(stats) == {"X", "Y"}
    # the back edge to the code on the stack counts for nothing
    assert stats["X"] == DescendantStats(total=1, max_depth=1)
    assert stats["Y"] == DescendantStats(total=0, max_depth=0)


def test_self_loop_terminates():
    ix = _index_with_codes([("Z", "oz", "Z")])
    assert build_creation_graph(ix) == {"Z": ["Z"]}
    assert build_descendant_stats(ix)["Z"] == DescendantStats()


def test_deep_chain_has_no_recursion_limit():
    n = 5000
    ix = _index_with_codes([(f"K{i + 1}", f"u{i}", f"K{i}") for i in range(n)])
    add_referral_code_meta(ix, ReferralCodeMeta(code="K0"))
    stats = build_descendant_stats(ix)
    assert stats["K0"] == DescendantStats(total=n, max_depth=n)
    assert stats[f"K{n}"] == DescendantStats()


def test_owner_not_a_customer_is_a_root():
    ix = create_analytics_index()
    add_referral_code_meta(ix, ReferralCodeMeta(code="EXT", created_by="ghost"))
    assert build_creation_graph(ix) == {"EXT": []}


def test_three_code_cycle_gives_finite_stats():
    # A owned by someone who signed with C, B via A, C via B
    ix = _index_with_codes([("A", "oa", "C"), ("B", "ob", "A"), ("C", "oc", "B")])
    stats = build_descendant_stats(ix)
    assert set(stats) == {"A", "B", "C"}
    assert stats["A"] == DescendantStats(total=2, max_depth=2)
    assert all(s.total <= 2 for s in stats.values())
