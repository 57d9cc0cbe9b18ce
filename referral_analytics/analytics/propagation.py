"""Referral-creation graph and descendant statistics.

Code A is the parent of code B when B's owner (`created_by`) signed up
with code A. Malformed data can form cycles, so the traversal keeps an
on-stack set: an edge back to a code still being visited contributes
nothing, which breaks the cycle without resolving it. The closing edge
itself is not counted, so its target adds no descendant either.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional

from .index import AnalyticsIndex, normalize_code


@dataclass(frozen=True)
class DescendantStats:
    total: int = 0
    max_depth: int = 0


@dataclass
class PropagationStats:
    code: str
    direct_children: int
    total_descendants: int
    max_depth: int
    signups: int
    propagation_rate: float


def build_creation_graph(index: AnalyticsIndex) -> Dict[str, List[str]]:
    """Adjacency `parent code -> child codes`, children in metadata insertion order.

    Every known code is a node, including codes without a resolvable parent.
    """
    graph: Dict[str, List[str]] = {code: [] for code in index.referral_codes}
    for code, meta in index.referral_codes.items():
        if not meta.created_by:
            continue
        creator = index.customers_by_id.get(meta.created_by)
        if creator is None:
            continue
        parent = normalize_code(creator.referral)
        graph.setdefault(parent, []).append(code)
    return graph


def build_descendant_stats(index: AnalyticsIndex,
                           graph: Optional[Dict[str, List[str]]] = None) -> Dict[str, DescendantStats]:
    """Total descendants and deepest chain below every code in the graph.

    Iterative post-order DFS memoised per code, so ranking all codes costs a
    single pass and deep chains never hit the interpreter recursion limit.
    """
    graph = graph if graph is not None else build_creation_graph(index)
    memo: Dict[str, DescendantStats] = {}
    on_stack = set()

    for root in graph:
        if root in memo:
            continue
        # frames of (code, index of the next child to visit)
        stack = [(root, 0)]
        on_stack.add(root)
        while stack:
            code, pos = stack[-1]
            children = graph.get(code, [])
            if pos < len(children):
                stack[-1] = (code, pos + 1)
                child = children[pos]
                if child in memo or child in on_stack:
                    continue
                stack.append((child, 0))
                on_stack.add(child)
                continue

            total = 0
            max_depth = 0
            for child in children:
                stats = memo.get(child)
                # still on the stack: a back edge
                if stats is None:
                    continue
                total += 1 + stats.total
                max_depth = max(max_depth, 1 + stats.max_depth)
            memo[code] = DescendantStats(total=total, max_depth=max_depth)
            on_stack.discard(code)
            stack.pop()
    return memo


def _propagation_row(index: AnalyticsIndex, key: str, graph: Dict[str, List[str]],
                     stats: Dict[str, DescendantStats]) -> PropagationStats:
    own = stats.get(key, DescendantStats())
    referral = index.referrals.get(key)
    signups = sum(referral.signups_by_date.values()) if referral else 0
    return PropagationStats(
        code=key,
        direct_children=len(graph.get(key, [])),
        total_descendants=own.total,
        max_depth=own.max_depth,
        signups=signups,
        propagation_rate=own.total / signups if signups else 0.0,
    )


def get_propagation_stats(index: AnalyticsIndex, code: str) -> PropagationStats:
    graph = build_creation_graph(index)
    return _propagation_row(index, normalize_code(code), graph, build_descendant_stats(index, graph))


def rank_codes_by_propagation(index: AnalyticsIndex, limit: Optional[int] = None) -> List[PropagationStats]:
    graph = build_creation_graph(index)
    stats = build_descendant_stats(index, graph)
    rows = [_propagation_row(index, code, graph, stats) for code in graph]
    rows.sort(key=lambda r: (-r.total_descendants, -r.max_depth, r.code))
    return rows[:limit] if limit is not None else rows
