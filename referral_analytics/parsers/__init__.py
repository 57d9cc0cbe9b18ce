"""Streaming decoders for the three source files."""
from .customers import CsvParseResult, CsvProgress, parse_customers_csv, normalize_wallet
from .errors import ErrorLog, SchemaMismatchError, SchemaReport
from .referral_codes import ReferralCodesParseResult, parse_referral_codes_csv
from .transactions import NdjsonParseResult, NdjsonProgress, decode_transaction_line, parse_transactions_ndjson

__all__ = [
    "CsvParseResult",
    "CsvProgress",
    "ErrorLog",
    "NdjsonParseResult",
    "NdjsonProgress",
    "ReferralCodesParseResult",
    "SchemaMismatchError",
    "SchemaReport",
    "decode_transaction_line",
    "normalize_wallet",
    "parse_customers_csv",
    "parse_referral_codes_csv",
    "parse_transactions_ndjson",
]
