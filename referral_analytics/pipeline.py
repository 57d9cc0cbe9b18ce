"""Import pipeline: source files -> AnalyticsIndex (with snapshot caching).

Order matters. Referral codes and customers are loaded before any
transaction so every wallet is registered when its revenue arrives, and the
NDJSON files are streamed one after another sorted by file name, each in
file order.
"""
from __future__ import annotations
import hashlib
import json
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from loguru import logger

from .analytics.index import AnalyticsIndex, IndexMetadata, create_analytics_index
from .analytics.ingest import add_customer, add_owner_usage_daily, add_referral_code_meta, add_revenue_transaction
from .analytics.snapshot import deserialize_index, serialize_index
from .core.config import Settings, default_settings
from .core.custom_types import RevenueTransaction
from .core.timeutils import to_date_key
from .parsers.customers import normalize_wallet, parse_customers_csv
from .parsers.errors import SchemaMismatchError, SchemaReport
from .parsers.referral_codes import parse_referral_codes_csv
from .parsers.transactions import parse_transactions_ndjson
from .persist.snapshot_store import SnapshotStore, build_cache_key, file_meta

CACHE_UNAVAILABLE = "Snapshot cache unavailable."

PathLike = Union[str, Path]
ProgressCallback = Callable[[str, Any], None]


@dataclass
class BuildResult:
    index: Optional[AnalyticsIndex]
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    from_cache: bool = False
    status: str = "ready"
    cache_key: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.index is not None


@dataclass
class BuildJob:
    customers_path: PathLike
    tx_paths: Sequence[PathLike]
    referral_codes_path: Optional[PathLike] = None


def _check_schema(report: SchemaReport, source: str) -> None:
    if report.missing_headers:
        raise SchemaMismatchError(report.missing_headers, source=source)


def build_owner_wallets(index: AnalyticsIndex) -> Dict[str, str]:
    """Wallet (smart wallet and EOA) -> id of the customer who owns a referral code."""
    owners: Dict[str, str] = {}
    for meta in index.referral_codes.values():
        if not meta.created_by:
            continue
        owner = index.customers_by_id.get(meta.created_by)
        if owner is None:
            continue
        for wallet in (owner.smart_wallet, normalize_wallet(owner.eoa)):
            if wallet:
                owners[wallet] = meta.created_by
    return owners


def _cache_get(store: SnapshotStore, key: str, result: BuildResult) -> Optional[dict]:
    try:
        return store.get(key)
    except Exception as e:
        logger.warning(f"pipeline.cache_get_failed key={key} err={e}")
        result.warnings.append(CACHE_UNAVAILABLE)
        return None


def settings_fingerprint(settings: Settings) -> str:
    """Short digest of the settings sections that change what gets indexed."""
    shaping = {"index": settings.index.model_dump(), "ingest": settings.ingest.model_dump()}
    canonical = json.dumps(shaping, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def _restore_cached(snapshot: dict, key: str, result: BuildResult) -> Optional[AnalyticsIndex]:
    try:
        return deserialize_index(snapshot)
    except Exception as e:
        logger.warning(f"pipeline.cache_restore_failed key={key} err={e}")
        result.warnings.append(CACHE_UNAVAILABLE)
        return None


def _cache_put(store: SnapshotStore, key: str, snapshot: dict, result: BuildResult) -> None:
    try:
        store.put(key, snapshot)
        logger.info(f"pipeline.cache_put key={key}")
    except Exception as e:
        logger.warning(f"pipeline.cache_put_failed key={key} err={e}")
        if CACHE_UNAVAILABLE not in result.warnings:
            result.warnings.append(CACHE_UNAVAILABLE)


def build_index(
    customers_path: PathLike,
    tx_paths: Sequence[PathLike],
    referral_codes_path: Optional[PathLike] = None,
    settings: Optional[Settings] = None,
    store: Optional[SnapshotStore] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> BuildResult:
    settings = settings or default_settings()
    ingest = settings.ingest
    tx_paths = sorted((Path(p) for p in tx_paths), key=lambda p: p.name)
    result = BuildResult(index=None)

    customers_meta = file_meta(customers_path)
    tx_metas = [file_meta(p) for p in tx_paths]
    codes_meta = file_meta(referral_codes_path) if referral_codes_path else None
    key = build_cache_key(settings.cache.version, customers_meta, tx_metas, codes_meta,
                          settings_digest=settings_fingerprint(settings))
    result.cache_key = key

    if store is not None:
        cached = _cache_get(store, key, result)
        restored = _restore_cached(cached, key, result) if cached else None
        if restored is not None:
            logger.info(f"pipeline.cache_hit key={key}")
            result.index = restored
            result.from_cache = True
            result.status = "cached"
            return result
        logger.info(f"pipeline.cache_miss key={key}")

    def progress(stage: str):
        if on_progress is None:
            return None
        return lambda p: on_progress(stage, p)

    codes_result = None
    try:
        if referral_codes_path:
            codes_result = parse_referral_codes_csv(referral_codes_path, progress("referral_codes"), ingest.max_errors)
            _check_schema(codes_result.report, "referral_codes")
        customers_result = parse_customers_csv(
            customers_path, progress("customers"), chunk_rows=ingest.csv_chunk_rows, max_errors=ingest.max_errors,
        )
        _check_schema(customers_result.report, "customers")
    except SchemaMismatchError as e:
        logger.error(f"pipeline.schema_abort source={e.source} missing={e.missing_columns}")
        result.status = "schema_error"
        result.errors = [str(e)]
        if e.source == "referral_codes" and codes_result is not None:
            result.errors.extend(codes_result.errors)
        return result

    index = create_analytics_index(settings.index.to_options())
    index.metadata = IndexMetadata(
        generated_at=int(time.time() * 1000),
        customers_file=customers_meta,
        tx_files=tx_metas,
        referral_codes_file=codes_meta,
    )
    if codes_result is not None:
        for meta in codes_result.codes:
            add_referral_code_meta(index, meta)
    for customer in customers_result.customers:
        add_customer(index, customer)
    logger.info(f"pipeline.registry_loaded customers={index.totals.customers} codes={len(index.referral_codes)}")

    owner_wallets = build_owner_wallets(index)

    def on_revenue_tx(tx: RevenueTransaction):
        add_revenue_transaction(index, tx)
        owner_id = owner_wallets.get(tx.wallet)
        if owner_id:
            add_owner_usage_daily(index, owner_id, to_date_key(tx.created_at), tx.fee_usd, tx.volume_usd)

    tx_errors: List[str] = []
    for path in tx_paths:
        tx_result = parse_transactions_ndjson(
            path,
            on_revenue_tx,
            progress(f"transactions:{path.name}"),
            revenue_categories=ingest.revenue_categories,
            max_errors=ingest.max_errors,
        )
        index.totals.tx_lines += tx_result.lines
        tx_errors.extend(tx_result.errors)

    if codes_result is not None:
        result.errors.extend(codes_result.errors)
    result.errors.extend(customers_result.errors)
    result.errors.extend(tx_errors)

    if store is not None:
        _cache_put(store, key, serialize_index(index), result)

    result.index = index
    logger.success(
        f"pipeline.complete customers={index.totals.customers} tx_lines={index.totals.tx_lines} "
        f"revenue={index.totals.revenue_tx_count} unattributed={index.totals.unattributed_tx_count}"
    )
    return result


def build_many(jobs: Sequence[BuildJob], settings: Optional[Settings] = None,
               max_workers: int = 4) -> List[BuildResult]:
    """Build independent indexes concurrently; results keep the job order.

    Jobs share nothing but the (read-only) settings, so a thread pool is
    enough. A job that raises yields a `failed` result instead of aborting
    the batch.
    """
    settings = settings or default_settings()

    def run(job: BuildJob) -> BuildResult:
        try:
            return build_index(job.customers_path, job.tx_paths, job.referral_codes_path, settings)
        except Exception as e:
            logger.error(f"pipeline.job_failed customers={job.customers_path} err={e}")
            return BuildResult(index=None, errors=[f"Failed to build index: {e}"], status="failed")

    if max_workers <= 1 or len(jobs) <= 1:
        return [run(job) for job in jobs]
    with ThreadPoolExecutor(max_workers=max_workers) as ex:
        return list(ex.map(run, jobs))
