"""Transaction NDJSON decoder.

One JSON object per line. Only revenue-bearing records become a
`RevenueTransaction`; records of another type or without a positive
collected fee are filtered silently, malformed ones become a `ParseError`.
"""
from __future__ import annotations
import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Union

from loguru import logger

from ..core.config import DEFAULT_REVENUE_CATEGORIES
from ..core.custom_types import ParseError, RevenueTransaction, SwapFlow, TokenVolume
from ..core.timeutils import parse_date_input
from .customers import normalize_wallet
from .errors import DEFAULT_MAX_ERRORS, ErrorLog

SWAP_TYPES = ("SWAP", "CROSS_SWAP")

DecodedLine = Union[RevenueTransaction, ParseError, None]


@dataclass
class NdjsonProgress:
    lines: int
    bytes: int
    revenue_tx_count: int


@dataclass
class NdjsonParseResult:
    lines: int = 0
    revenue_tx_count: int = 0
    errors: ErrorLog = field(default_factory=ErrorLog)


class CategoryMatcher:
    """Exact type names plus `PREFIX*` wildcards, compared upper-case."""

    def __init__(self, categories: Iterable[str]):
        cleaned = [c.strip().upper() for c in categories if c and c.strip()]
        self.exact = {c for c in cleaned if not c.endswith("*")}
        self.prefixes = tuple(c[:-1] for c in cleaned if c.endswith("*"))

    def __call__(self, tx_type: Any) -> bool:
        if not isinstance(tx_type, str):
            return False
        value = tx_type.strip().upper()
        return value in self.exact or (bool(self.prefixes) and value.startswith(self.prefixes))


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _to_number(value: Any) -> float:
    """Lenient numeric coercion; anything unusable becomes 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _to_timestamp(value: Any) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, str):
        return parse_date_input(value)
    return 0


def _leg_symbol(leg: Any) -> str:
    symbol = _dig(leg, "token", "symbol")
    return str(symbol).strip() if symbol else ""


def extract_tokens(data: dict, fallback_volume: float) -> List[TokenVolume]:
    tokens: List[TokenVolume] = []
    seen = set()
    for leg_name in ("sentAmount", "receivedAmount"):
        leg = data.get(leg_name)
        symbol = _leg_symbol(leg)
        if not symbol or symbol in seen:
            continue
        seen.add(symbol)
        volume = _to_number(_dig(leg, "amountIn", "usd")) or fallback_volume
        tokens.append(TokenVolume(symbol=symbol, volume_usd=volume))
    return tokens


def decode_transaction_line(line: str, line_number: int, is_revenue: Callable[[Any], bool]) -> DecodedLine:
    try:
        data = json.loads(line)
    except ValueError:
        return ParseError(line_number, "invalid JSON.")
    if not isinstance(data, dict):
        return ParseError(line_number, "invalid JSON.")

    tx_type = data.get("type")
    if not is_revenue(tx_type):
        return None
    fee_usd = _to_number(_dig(data, "collectedFee", "amountIn", "usd"))
    if fee_usd <= 0:
        return None

    received_usd = _to_number(_dig(data, "receivedAmount", "amountIn", "usd"))
    volume_usd = received_usd or _to_number(_dig(data, "sentAmount", "amountIn", "usd"))
    if not volume_usd:
        return ParseError(line_number, "missing volume usd.")

    sent_by = data.get("sentBy")
    if not sent_by:
        return ParseError(line_number, "missing sentBy wallet.")

    created_at = _to_timestamp(data.get("createdAt"))
    if not created_at:
        return ParseError(line_number, "invalid createdAt.")

    category = str(tx_type).strip().upper()
    swap_flow = None
    if category in SWAP_TYPES:
        from_symbol = _leg_symbol(data.get("sentAmount"))
        to_symbol = _leg_symbol(data.get("receivedAmount"))
        if from_symbol and to_symbol:
            swap_flow = SwapFlow(from_symbol=from_symbol, to_symbol=to_symbol, volume_usd=volume_usd)

    tx_hash = _dig(data, "transactionHash", "hash") or data.get("mainUserOpHash")
    return RevenueTransaction(
        wallet=normalize_wallet(str(sent_by)),
        created_at=created_at,
        fee_usd=fee_usd,
        volume_usd=volume_usd,
        category=category,
        tokens=extract_tokens(data, volume_usd),
        swap_flow=swap_flow,
        hash=str(tx_hash) if tx_hash else None,
    )


def parse_transactions_ndjson(
    path: Union[str, Path],
    on_revenue_tx: Callable[[RevenueTransaction], None],
    on_progress: Optional[Callable[[NdjsonProgress], None]] = None,
    revenue_categories: Optional[Iterable[str]] = None,
    max_errors: int = DEFAULT_MAX_ERRORS,
    progress_every: int = 10000,
) -> NdjsonParseResult:
    """Stream `path` line by line, handing each revenue transaction to `on_revenue_tx` in file order."""
    is_revenue = CategoryMatcher(revenue_categories or DEFAULT_REVENUE_CATEGORIES)
    result = NdjsonParseResult(errors=ErrorLog(cap=max_errors))
    consumed = 0
    with open(path, "rb") as f:
        for raw in f:
            consumed += len(raw)
            text = raw.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            result.lines += 1
            decoded = decode_transaction_line(text, result.lines, is_revenue)
            if isinstance(decoded, ParseError):
                result.errors.add(decoded)
            elif decoded is not None:
                result.revenue_tx_count += 1
                on_revenue_tx(decoded)
            if on_progress is not None and result.lines % progress_every == 0:
                on_progress(NdjsonProgress(lines=result.lines, bytes=consumed, revenue_tx_count=result.revenue_tx_count))

    if on_progress is not None:
        on_progress(NdjsonProgress(lines=result.lines, bytes=consumed, revenue_tx_count=result.revenue_tx_count))
    logger.info(f"ndjson.done file={Path(path).name} lines={result.lines} revenue={result.revenue_tx_count} "
                f"errors={len(result.errors)}")
    return result
