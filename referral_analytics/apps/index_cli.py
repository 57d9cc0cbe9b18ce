"""Referral analytics CLI (build / metrics / leaderboard / swaps / propagation).

Usage examples:
  python -m referral_analytics.apps.index_cli build --customers data/customers.csv --tx data/tx_2025_01.ndjson --tx data/tx_2025_02.ndjson --codes data/referral_codes.csv --out reports/index.json
  python -m referral_analytics.apps.index_cli metrics --snapshot reports/index.json --code ALICE10 --from 2025-01-01 --to 2025-01-31
  python -m referral_analytics.apps.index_cli leaderboard --snapshot reports/index.json --out reports/leaderboard.csv
  python -m referral_analytics.apps.index_cli --config settings.yaml swaps --snapshot reports/index.json --code ALICE10
  python -m referral_analytics.apps.index_cli propagation --snapshot reports/index.json --limit 20
"""
from __future__ import annotations
import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path

from loguru import logger

from ..analytics.index import AnalyticsIndex
from ..analytics.propagation import rank_codes_by_propagation
from ..analytics.queries import (
    get_range_bounds,
    get_referral_metrics,
    get_swap_flow_links,
    get_swap_flow_sankey_data,
    get_top_token_transactions,
)
from ..analytics.snapshot import deserialize_index, snapshot_from_json
from ..core.config import default_settings, load_settings
from ..core.custom_types import GLOBAL_CODE, DateRange
from ..export import export_snapshot_json, write_leaderboard_csv
from ..persist.snapshot_store import SqliteSnapshotStore
from ..pipeline import build_index


def _settings(args):
    return load_settings(args.config) if args.config else default_settings()


def _load_snapshot(path: str) -> AnalyticsIndex:
    return deserialize_index(snapshot_from_json(Path(path).read_text(encoding="utf-8")))


def _resolve_range(index: AnalyticsIndex, args) -> DateRange:
    bounds = get_range_bounds(index)
    start = args.from_ or (bounds.start if bounds else None)
    end = args.to or (bounds.end if bounds else None)
    if not start or not end:
        raise SystemExit("empty index: pass --from and --to explicitly")
    return DateRange(start=start, end=end)


def cmd_build(args) -> int:
    settings = _settings(args)
    store = None
    if settings.cache.enabled and not args.no_cache:
        store = SqliteSnapshotStore(settings.cache.path)
    result = build_index(args.customers, args.tx, args.codes, settings=settings, store=store)
    for msg in result.warnings:
        logger.warning(msg)
    if result.index is None:
        for msg in result.errors:
            logger.error(msg)
        return 1
    digest = export_snapshot_json(result.index, args.out)
    totals = asdict(result.index.totals)
    summary = {"status": result.status, "from_cache": result.from_cache, "digest": digest,
               "errors": len(result.errors), **totals}
    print(json.dumps(summary, indent=2))
    return 0


def cmd_metrics(args) -> int:
    index = _load_snapshot(args.snapshot)
    metrics = get_referral_metrics(index, args.code, _resolve_range(index, args))
    print(metrics.model_dump_json(indent=2))
    return 0


def cmd_leaderboard(args) -> int:
    index = _load_snapshot(args.snapshot)
    codes = args.codes.split(",") if args.codes else None
    out = write_leaderboard_csv(index, _resolve_range(index, args), args.out, codes)
    logger.info(f"leaderboard.complete out={out}")
    return 0


def cmd_propagation(args) -> int:
    index = _load_snapshot(args.snapshot)
    rows = rank_codes_by_propagation(index, args.limit)
    print(json.dumps([asdict(r) for r in rows], indent=2))
    return 0


def cmd_swaps(args) -> int:
    limits = _settings(args).query
    index = _load_snapshot(args.snapshot)
    date_range = _resolve_range(index, args)
    payload = {
        "links": [asdict(l) for l in get_swap_flow_links(index, args.code, date_range, limits.swap_links_limit)],
        "sankey": asdict(get_swap_flow_sankey_data(index, args.code, date_range, limits.sankey_limit)),
        "top_tokens": [
            asdict(t) for t in get_top_token_transactions(index, args.code, date_range, limits.top_tokens_limit)
        ],
    }
    print(json.dumps(payload, indent=2))
    return 0


def _add_range(p):
    p.add_argument("--from", dest="from_", default=None)
    p.add_argument("--to", dest="to", default=None)


def build_parser():
    p = argparse.ArgumentParser("index_cli")
    p.add_argument("--config", default=None)
    sub = p.add_subparsers(dest="cmd", required=True)

    pb = sub.add_parser("build")
    pb.add_argument("--customers", required=True)
    pb.add_argument("--tx", action="append", required=True)
    pb.add_argument("--codes", default=None)
    pb.add_argument("--out", required=True)
    pb.add_argument("--no-cache", action="store_true")
    pb.set_defaults(func=cmd_build)

    pm = sub.add_parser("metrics")
    pm.add_argument("--snapshot", required=True)
    pm.add_argument("--code", default=GLOBAL_CODE)
    _add_range(pm)
    pm.set_defaults(func=cmd_metrics)

    pl = sub.add_parser("leaderboard")
    pl.add_argument("--snapshot", required=True)
    pl.add_argument("--codes", default=None)
    pl.add_argument("--out", required=True)
    _add_range(pl)
    pl.set_defaults(func=cmd_leaderboard)

    ps = sub.add_parser("swaps")
    ps.add_argument("--snapshot", required=True)
    ps.add_argument("--code", default=GLOBAL_CODE)
    _add_range(ps)
    ps.set_defaults(func=cmd_swaps)

    pp = sub.add_parser("propagation")
    pp.add_argument("--snapshot", required=True)
    pp.add_argument("--limit", type=int, default=None)
    pp.set_defaults(func=cmd_propagation)
    return p


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
