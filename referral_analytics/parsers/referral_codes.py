"""Referral-code export decoder.

The export's headers are localised and not always spelled the same way, so
columns are read by position. A file with fewer than ten header columns is
reported as a schema mismatch.
"""
from __future__ import annotations
import csv
import math
import re
import unicodedata
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Union

from loguru import logger

from ..core.custom_types import ParseError, ReferralCodeMeta
from ..core.timeutils import parse_date_input
from .customers import CsvProgress
from .errors import DEFAULT_MAX_ERRORS, ErrorLog, SchemaReport

REQUIRED_HEADERS = [
    "Código",
    "Nota",
    "Usos",
    "Máximo de usos",
    "Ativo",
    "Válido a partir de",
    "Válido até",
    "Esgotado",
    "Criado em",
    "Criado por",
]

COL_CODE = 0
COL_NOTE = 1
COL_USES = 2
COL_MAX_USES = 3
COL_ACTIVE = 4
COL_VALID_FROM = 5
COL_VALID_UNTIL = 6
COL_EXHAUSTED = 7
COL_CREATED_AT = 8
COL_CREATED_BY = 9

TRUE_WORDS = {"sim", "yes", "true", "1"}
FALSE_WORDS = {"nao", "no", "false", "0"}

_NON_NUMERIC = re.compile(r"[^0-9.-]")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass
class ReferralCodesParseResult:
    codes: List[ReferralCodeMeta] = field(default_factory=list)
    report: SchemaReport = field(default_factory=SchemaReport)
    errors: ErrorLog = field(default_factory=ErrorLog)
    rows: int = 0


def normalize_word(value: str) -> str:
    """Lower-case, accent-free, alphanumeric-only form ("Não" -> "nao")."""
    decomposed = unicodedata.normalize("NFD", value or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub("", stripped.lower())


def parse_bool(value: str) -> bool:
    word = normalize_word(value)
    if word in TRUE_WORDS:
        return True
    # FALSE_WORDS and anything unrecognised
    return False


def parse_optional_int(value: str) -> Optional[int]:
    cleaned = _NON_NUMERIC.sub("", value or "").strip()
    if not cleaned:
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    # half-up, not banker's rounding
    return int(math.floor(number + 0.5))


def parse_optional_date(value: str) -> Optional[int]:
    if not (value or "").strip():
        return None
    return parse_date_input(value) or None


def _cell(row: List[str], position: int) -> str:
    return row[position] if position < len(row) else ""


def decode_referral_code_row(row: List[str], row_number: int) -> Union[ReferralCodeMeta, ParseError]:
    code = _cell(row, COL_CODE).strip()
    if not code:
        return ParseError(row_number, "missing code.", label="Row")
    max_uses = parse_optional_int(_cell(row, COL_MAX_USES))
    return ReferralCodeMeta(
        code=code,
        note=_cell(row, COL_NOTE).strip(),
        uses=parse_optional_int(_cell(row, COL_USES)) or 0,
        max_uses=max_uses if max_uses and max_uses > 0 else None,
        is_active=parse_bool(_cell(row, COL_ACTIVE)),
        is_exhausted=parse_bool(_cell(row, COL_EXHAUSTED)),
        valid_from=parse_optional_date(_cell(row, COL_VALID_FROM)),
        valid_until=parse_optional_date(_cell(row, COL_VALID_UNTIL)),
        created_at=parse_optional_date(_cell(row, COL_CREATED_AT)),
        created_by=_cell(row, COL_CREATED_BY).strip() or None,
    )


def parse_referral_codes_csv(
    path: Union[str, Path],
    on_progress: Optional[Callable[[CsvProgress], None]] = None,
    max_errors: int = DEFAULT_MAX_ERRORS,
    progress_every: int = 5000,
) -> ReferralCodesParseResult:
    result = ReferralCodesParseResult(errors=ErrorLog(cap=max_errors))
    consumed = 0
    with open(path, "r", encoding="utf-8-sig", newline="") as f:
        reader = csv.reader(f)
        for row in reader:
            # approximate, text-mode files cannot tell() while iterated
            consumed += sum(len(c) for c in row) + len(row)
            if not row:
                continue
            if not result.report.headers:
                result.report.headers = [h.strip() for h in row]
                if len(result.report.headers) < len(REQUIRED_HEADERS):
                    result.report.missing_headers = list(REQUIRED_HEADERS)
                    logger.warning(f"referral_codes.schema_mismatch columns={len(result.report.headers)}")
                    return result
                continue
            result.rows += 1
            if not result.report.sample:
                result.report.sample = {h: _cell(row, i) for i, h in enumerate(result.report.headers)}
            decoded = decode_referral_code_row(row, result.rows)
            if isinstance(decoded, ParseError):
                result.errors.add(decoded)
            else:
                result.codes.append(decoded)
            if on_progress is not None and result.rows % progress_every == 0:
                on_progress(CsvProgress(rows=result.rows, bytes=consumed))

    if on_progress is not None:
        on_progress(CsvProgress(rows=result.rows, bytes=Path(path).stat().st_size))
    if not result.report.headers:
        result.report.missing_headers = list(REQUIRED_HEADERS)
    logger.info(f"referral_codes.done rows={result.rows} codes={len(result.codes)} errors={len(result.errors)}")
    return result
