"""Customer registry CSV decoder.

The file is streamed in pandas chunks; every row is validated with a
pydantic model keyed by the export's (Portuguese) column headers. Rows
missing a required field, or carrying more fields than the header, are
skipped and logged. A row whose signup date does not parse is kept with
`signup_date = "Invalid"` so it still joins transactions, but it is
excluded from signup-date bucketing.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import pandas as pd
from loguru import logger
from pandas.errors import EmptyDataError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.custom_types import Customer, ParseError
from ..core.timeutils import INVALID_DATE, parse_date_input, to_date_key
from .errors import DEFAULT_MAX_ERRORS, ErrorLog, SchemaReport

REQUIRED_HEADERS = [
    "ID",
    "E-mail",
    "EOA",
    "Smart Wallet",
    "Cadastrado em",
    "Provedor de acesso",
    "Referral",
]

# placeholder ID for rows with more fields than headers; keeps row numbering aligned
MALFORMED_ROW = "\x00malformed"


class CustomerRow(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(alias="ID", min_length=1)
    smart_wallet: str = Field(alias="Smart Wallet", min_length=1)
    signup_raw: str = Field(alias="Cadastrado em", min_length=1)
    # blank referrals are attributed to "Unassigned" at ingestion
    referral: str = Field("", alias="Referral")
    email: str = Field("", alias="E-mail")
    eoa: str = Field("", alias="EOA")
    provider: str = Field("", alias="Provedor de acesso")
    notus_id: str = Field("", alias="Notus Individual ID")


@dataclass
class CsvProgress:
    rows: int
    bytes: int


@dataclass
class CsvParseResult:
    customers: List[Customer] = field(default_factory=list)
    report: SchemaReport = field(default_factory=SchemaReport)
    errors: ErrorLog = field(default_factory=ErrorLog)
    rows: int = 0


def normalize_wallet(value: str) -> str:
    return (value or "").strip().lower()


def _clean_row(row: Dict[str, Any]) -> Dict[str, str]:
    return {str(k): "" if pd.isna(v) else str(v) for k, v in row.items()}


def read_headers(path: Union[str, Path]) -> List[str]:
    try:
        return [str(c) for c in pd.read_csv(path, nrows=0, dtype=str, encoding="utf-8-sig").columns]
    except EmptyDataError:
        return []


def decode_customer_row(row: Dict[str, str], row_number: int) -> Union[Customer, ParseError]:
    try:
        parsed = CustomerRow.model_validate(row)
    except ValidationError:
        return ParseError(row_number, "missing required fields.", label="Row")
    signup_at = parse_date_input(parsed.signup_raw)
    return Customer(
        id=parsed.id.strip(),
        email=parsed.email.strip(),
        eoa=parsed.eoa.strip(),
        smart_wallet=normalize_wallet(parsed.smart_wallet),
        signup_at=signup_at,
        signup_date=to_date_key(signup_at) if signup_at else INVALID_DATE,
        referral=parsed.referral.strip(),
        provider=parsed.provider.strip(),
        notus_id=parsed.notus_id.strip() or None,
    )


def parse_customers_csv(
    path: Union[str, Path],
    on_progress: Optional[Callable[[CsvProgress], None]] = None,
    chunk_rows: int = 5000,
    max_errors: int = DEFAULT_MAX_ERRORS,
) -> CsvParseResult:
    result = CsvParseResult(errors=ErrorLog(cap=max_errors))
    headers = read_headers(path)
    result.report.headers = headers
    result.report.missing_headers = [h for h in REQUIRED_HEADERS if h not in headers]
    if result.report.missing_headers:
        logger.warning(f"customers.schema_mismatch missing={result.report.missing_headers}")
        return result

    width = len(headers)

    def on_bad_line(fields: List[str]) -> List[str]:
        return [MALFORMED_ROW] + [""] * (width - 1)

    with open(path, "rb") as handle:
        reader = pd.read_csv(
            handle,
            chunksize=chunk_rows,
            engine="python",
            on_bad_lines=on_bad_line,
            index_col=False,
            dtype=str,
            keep_default_na=False,
            encoding="utf-8-sig",
            skip_blank_lines=True,
        )
        for chunk in reader:
            for raw in chunk.to_dict("records"):
                result.rows += 1
                row = _clean_row(raw)
                if row.get("ID") == MALFORMED_ROW:
                    result.errors.add(ParseError(result.rows, "malformed row.", label="Row"))
                    continue
                if not result.report.sample:
                    result.report.sample = row
                decoded = decode_customer_row(row, result.rows)
                if isinstance(decoded, ParseError):
                    result.errors.add(decoded)
                    continue
                if decoded.signup_date == INVALID_DATE:
                    result.errors.add(ParseError(result.rows, "invalid signup date.", label="Row"))
                result.customers.append(decoded)
            if on_progress is not None:
                on_progress(CsvProgress(rows=result.rows, bytes=handle.tell()))

    logger.info(f"customers.done rows={result.rows} customers={len(result.customers)} errors={len(result.errors)}")
    return result
