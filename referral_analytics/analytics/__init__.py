"""In-memory referral analytics: the index, its ingestion API and read-only queries.

An `AnalyticsIndex` is built once per import session through the four
`add_*` functions, then frozen and queried through the pure functions in
`queries`, `groups`, `codes` and `propagation`. `snapshot` round-trips it
through a JSON-compatible form for caching.
"""

from .index import AnalyticsIndex, create_analytics_index, find_aggregate
from .ingest import add_customer, add_owner_usage_daily, add_referral_code_meta, add_revenue_transaction
from .queries import (
    get_daily_series,
    get_referral_metrics,
    get_swap_flow_sankey_data,
    get_token_volume_breakdown,
    get_volume_category_breakdown,
)
from .propagation import DescendantStats, build_descendant_stats, get_propagation_stats
from .snapshot import deserialize_index, serialize_index

__all__ = [
    "AnalyticsIndex",
    "DescendantStats",
    "add_customer",
    "add_owner_usage_daily",
    "add_referral_code_meta",
    "add_revenue_transaction",
    "build_descendant_stats",
    "create_analytics_index",
    "deserialize_index",
    "find_aggregate",
    "get_daily_series",
    "get_propagation_stats",
    "get_referral_metrics",
    "get_swap_flow_sankey_data",
    "get_token_volume_breakdown",
    "get_volume_category_breakdown",
    "serialize_index",
]
