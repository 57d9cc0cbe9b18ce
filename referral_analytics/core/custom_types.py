"""
Custom Type Definitions
-----------------------

Normalized record shapes handed to the analytics index by the streaming
decoders, plus the small value objects shared across the package.

- Customer: one row of the customer registry, immutable after ingestion.
- RevenueTransaction: an ephemeral, ingest-time view of a fee-bearing
  transaction. Only a RevenueTxLite sample and its aggregate contributions
  survive ingestion.
- ReferralCodeMeta: the referral code object itself (limits, window, owner),
  independent of signup / revenue activity.
- ReferralMetrics: the range-bounded funnel returned by the query engine.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional
from pydantic import BaseModel

# A simple type alias for an ISO day key ("YYYY-MM-DD").
DateKey = str

# Referral code used for customers whose Referral column is blank.
UNASSIGNED = "Unassigned"

# Code of the aggregate mirroring every referral code.
GLOBAL_CODE = "all"


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of ISO day keys; lexicographic order equals date order."""
    start: DateKey
    end: DateKey

    def contains(self, date: DateKey) -> bool:
        return self.start <= date <= self.end


@dataclass(frozen=True)
class FileMeta:
    name: str
    size: int
    last_modified: int


@dataclass(frozen=True)
class AnalyticsOptions:
    keep_full_tx: bool = False
    max_stored_txs: int = 500


@dataclass
class Customer:
    id: str
    email: str
    eoa: str
    smart_wallet: str
    signup_at: int  # epoch ms, 0 when the source date was unparseable
    signup_date: DateKey  # "Invalid" when signup_at is 0
    referral: str
    provider: str = ""
    notus_id: Optional[str] = None

    @property
    def kyc(self) -> bool:
        return bool(self.notus_id)


@dataclass(frozen=True)
class TokenVolume:
    symbol: str
    volume_usd: float


@dataclass(frozen=True)
class SwapFlow:
    from_symbol: str
    to_symbol: str
    volume_usd: float


@dataclass
class RevenueTransaction:
    wallet: str
    created_at: int
    fee_usd: float
    volume_usd: float
    category: str = ""
    tokens: List[TokenVolume] = field(default_factory=list)
    swap_flow: Optional[SwapFlow] = None
    hash: Optional[str] = None


@dataclass
class RevenueTxLite:
    """Retained sample of a revenue transaction."""
    created_at: int
    wallet: str
    fee_usd: float
    volume_usd: float
    referral: str
    hash: Optional[str] = None


@dataclass
class ReferralCodeMeta:
    code: str
    note: str = ""
    uses: int = 0
    max_uses: Optional[int] = None
    is_active: bool = False
    is_exhausted: bool = False
    valid_from: Optional[int] = None
    valid_until: Optional[int] = None
    created_at: Optional[int] = None
    created_by: Optional[str] = None  # customer id of the code owner


@dataclass(frozen=True)
class ParseError:
    """A record the decoder could not turn into a model; only ever logged."""
    line: int
    message: str
    label: str = "Line"

    def __str__(self) -> str:
        return f"{self.label} {self.line}: {self.message}"


class ReferralMetrics(BaseModel):
    """Range-bounded funnel for one referral code (or the global aggregate)."""
    code: str
    signups: int = 0
    kyc_users: int = 0
    users_with_revenue_tx: int = 0
    first_revenue_tx_users: int = 0
    fee_usd: float = 0.0
    volume_usd: float = 0.0
    conversion_rate: float = 0.0
    fee_per_user: float = 0.0
    retention_30d: float = 0.0
    time_to_first_tx_median_days: float = 0.0
    kyc_rate: float = 0.0
