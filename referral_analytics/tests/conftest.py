"""
Pytest Fixtures for the Referral Analytics Test Suite

Two views of the same small data set are provided: an index built directly
through the ingestion API (`small_index`) and the equivalent source files
on disk (`data_files`) for the decoder / pipeline / CLI tests.

Data set:
  ALPHA  <- c1 (KYC), c2          BETA <- c3 (KYC)        Unassigned <- c4
  BETA is owned by c1, GAMMA by c3, so ALPHA -> BETA -> GAMMA.
  Revenue: c1 swaps on 01-02 and deposits on 01-10, c3 swaps on 01-04,
  one transaction comes from a wallet that is not a customer.
"""
import json

import pytest

from referral_analytics.analytics.index import create_analytics_index
from referral_analytics.analytics.ingest import add_customer, add_referral_code_meta, add_revenue_transaction
from referral_analytics.core.config import Settings
from referral_analytics.core.custom_types import (
    AnalyticsOptions,
    Customer,
    ReferralCodeMeta,
    RevenueTransaction,
    SwapFlow,
    TokenVolume,
)
from referral_analytics.core.timeutils import parse_date_input, to_date_key


def ms(value: str) -> int:
    return parse_date_input(value)


def make_customer(cid, wallet, signup, referral, kyc=None, email=None, eoa=""):
    signup_at = ms(signup) if signup else 0
    return Customer(
        id=cid,
        email=email if email is not None else f"{cid}@example.com",
        eoa=eoa,
        smart_wallet=wallet,
        signup_at=signup_at,
        signup_date=to_date_key(signup_at),
        referral=referral,
        notus_id=kyc,
    )


def make_tx(wallet, created, fee, volume, category="SWAP", tokens=(), flow=None, tx_hash=None):
    return RevenueTransaction(
        wallet=wallet,
        created_at=ms(created),
        fee_usd=fee,
        volume_usd=volume,
        category=category,
        tokens=[TokenVolume(symbol=s, volume_usd=v) for s, v in tokens],
        swap_flow=SwapFlow(*flow) if flow else None,
        hash=tx_hash,
    )


CUSTOMERS = [
    make_customer("c1", "0xaaa", "2025-01-01T00:00:00Z", "ALPHA", kyc="N1", email="a@x.com", eoa="0xe1"),
    make_customer("c2", "0xbbb", "2025-01-02T00:00:00Z", "ALPHA"),
    make_customer("c3", "0xccc", "2025-01-03T00:00:00Z", "BETA", kyc="N3"),
    make_customer("c4", "0xddd", "2025-01-05T00:00:00Z", ""),
]

CODES = [
    ReferralCodeMeta(code="ALPHA", note="campanha", uses=10, max_uses=100, is_active=True),
    ReferralCodeMeta(code="BETA", uses=3, is_active=True, created_by="c1"),
    ReferralCodeMeta(code="GAMMA", uses=1, is_active=False, created_by="c3"),
]

TRANSACTIONS = [
    make_tx("0xaaa", "2025-01-02T10:00:00Z", 1.0, 100.0, "SWAP",
            tokens=[("USDC", 100.0), ("ETH", 100.0)], flow=("USDC", "ETH", 100.0), tx_hash="0x1"),
    make_tx("0xccc", "2025-01-04T00:00:00Z", 0.5, 50.0, "SWAP",
            tokens=[("ETH", 50.0), ("USDC", 50.0)], flow=("ETH", "USDC", 50.0)),
    make_tx("0xzzz", "2025-01-04T00:00:00Z", 9.0, 900.0, "SWAP"),
    make_tx("0xaaa", "2025-01-10T10:00:00Z", 2.0, 200.0, "CRYPTO_DEPOSIT", tokens=[("USDC", 200.0)]),
]


@pytest.fixture(scope="session")
def settings_fixture() -> Settings:
    """Validated defaults, independent of any settings.yaml or environment."""
    return Settings()


@pytest.fixture
def small_index():
    index = create_analytics_index(AnalyticsOptions(max_stored_txs=500))
    for meta in CODES:
        add_referral_code_meta(index, ReferralCodeMeta(**vars(meta)))
    for customer in CUSTOMERS:
        add_customer(index, customer)
    for tx in TRANSACTIONS:
        add_revenue_transaction(index, tx)
    return index


CUSTOMERS_CSV = """ID,E-mail,EOA,Smart Wallet,Cadastrado em,Provedor de acesso,Referral,Notus Individual ID
c1,a@x.com,0xE1,0xAAA,2025-01-01T00:00:00Z,google,ALPHA,N1
c2,b@x.com,,0xbbb,2025-01-02T00:00:00Z,apple,ALPHA,
c3,c@x.com,,0xccc,2025-01-03T00:00:00Z,google,BETA,N3
c4,d@x.com,,0xddd,2025-01-05T00:00:00Z,google,,
,e@x.com,,0xeee,2025-01-05T00:00:00Z,google,ALPHA,
c6,f@x.com,,0xfff,unknown,google,ALPHA,
"""

CODES_CSV = """Código,Nota,Usos,Máximo de usos,Ativo,Válido a partir de,Válido até,Esgotado,Criado em,Criado por
ALPHA,campanha,10,100,Sim,,,Não,2024-12-01,
BETA,,3,0,sim,2025-01-01,2025-12-31,nao,2025-01-01,c1
GAMMA,,1,,Não,,,,2025-01-02,c3
,orphan,,,,,,,,
"""


def _leg(usd, symbol=None):
    leg = {"amountIn": {"usd": usd}}
    if symbol:
        leg["token"] = {"symbol": symbol}
    return leg


TX_RECORDS = [
    {"type": "SWAP", "collectedFee": {"amountIn": {"usd": 1.0}}, "sentAmount": _leg(100.0, "USDC"),
     "receivedAmount": _leg(100.0, "ETH"), "sentBy": "0xAAA", "createdAt": "2025-01-02T10:00:00Z",
     "transactionHash": {"hash": "0x1"}},
    {"type": "SWAP", "collectedFee": {"amountIn": {"usd": "0.5"}}, "sentAmount": _leg(50.0, "ETH"),
     "receivedAmount": _leg(50.0, "USDC"), "sentBy": "0xccc", "createdAt": "2025-01-04T00:00:00Z"},
    {"type": "SWAP", "collectedFee": {"amountIn": {"usd": 9.0}}, "sentAmount": _leg(900.0),
     "sentBy": "0xzzz", "createdAt": "2025-01-04T00:00:00Z", "mainUserOpHash": "0xop"},
    {"type": "CRYPTO_DEPOSIT", "collectedFee": {"amountIn": {"usd": 2.0}}, "receivedAmount": _leg(200.0, "USDC"),
     "sentBy": "0xaaa", "createdAt": "2025-01-10T10:00:00Z"},
]


def _ndjson_text() -> str:
    lines = [json.dumps(r) for r in TX_RECORDS]
    lines.append("{not json")
    lines.append(json.dumps({"type": "TRANSFER", "collectedFee": {"amountIn": {"usd": 5}},
                             "sentAmount": _leg(10.0), "sentBy": "0xaaa", "createdAt": "2025-01-03"}))
    lines.append(json.dumps({"type": "SWAP", "collectedFee": {"amountIn": {"usd": 0}},
                             "sentAmount": _leg(10.0), "sentBy": "0xaaa", "createdAt": "2025-01-03"}))
    lines.append("")
    lines.append(json.dumps({"type": "SWAP", "collectedFee": {"amountIn": {"usd": 1}},
                             "sentAmount": _leg(10.0), "createdAt": "2025-01-03"}))
    return "\n".join(lines) + "\n"


@pytest.fixture
def data_files(tmp_path):
    """Customers CSV, referral codes CSV and one NDJSON file matching `small_index`."""
    customers = tmp_path / "customers.csv"
    customers.write_text(CUSTOMERS_CSV, encoding="utf-8")
    codes = tmp_path / "referral_codes.csv"
    codes.write_text(CODES_CSV, encoding="utf-8")
    tx = tmp_path / "tx.ndjson"
    tx.write_text(_ndjson_text(), encoding="utf-8")
    return {"customers": customers, "codes": codes, "tx": tx}
