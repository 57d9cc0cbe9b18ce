"""Export surface: leaderboard CSV and full snapshot JSON."""
from __future__ import annotations
import csv
import io
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

import pandas as pd
from loguru import logger

from .analytics.groups import get_group_leaderboard
from .analytics.index import AnalyticsIndex
from .analytics.queries import get_referral_list
from .analytics.snapshot import serialize_index, snapshot_digest, snapshot_to_json
from .core.custom_types import DateRange, ReferralMetrics

LEADERBOARD_COLUMNS = list(ReferralMetrics.model_fields)


def to_csv_row(values: Iterable[Any]) -> str:
    """One RFC-4180 row without the line terminator; None becomes an empty field."""
    buf = io.StringIO()
    csv.writer(buf, lineterminator="\n").writerow(["" if v is None else v for v in values])
    return buf.getvalue()[:-1]


def leaderboard_frame(index: AnalyticsIndex, date_range: DateRange,
                      codes: Optional[List[str]] = None) -> pd.DataFrame:
    """Range metrics per code, highest fee first (ties keep code order)."""
    codes = codes if codes is not None else get_referral_list(index)
    rows = [m.model_dump() for m in get_group_leaderboard(index, date_range, codes)]
    df = pd.DataFrame(rows, columns=LEADERBOARD_COLUMNS)
    if df.empty:
        return df
    return df.sort_values("fee_usd", ascending=False, kind="mergesort").reset_index(drop=True)


def write_leaderboard_csv(index: AnalyticsIndex, date_range: DateRange, path: Union[str, Path],
                          codes: Optional[List[str]] = None) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    df = leaderboard_frame(index, date_range, codes)
    df.to_csv(out, index=False)
    logger.info(f"export.leaderboard rows={len(df)} out={out}")
    return out


def export_snapshot_json(index: AnalyticsIndex, path: Union[str, Path], indent: Optional[int] = None) -> str:
    """Write the serialized index to `path`; returns its digest."""
    snapshot = serialize_index(index)
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(snapshot_to_json(snapshot, indent=indent), encoding="utf-8")
    digest = snapshot_digest(snapshot)
    logger.success(f"export.snapshot out={out} digest={digest[:12]}")
    return digest
