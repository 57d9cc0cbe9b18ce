"""Ingestion API: the four mutating operations on an AnalyticsIndex.

Records must be applied in file order. Transactions whose wallet is not in
the customer registry are counted as unattributed and contribute to no
aggregate.
"""
from __future__ import annotations

from ..core.custom_types import Customer, DateKey, ReferralCodeMeta, RevenueTransaction, RevenueTxLite
from ..core.timeutils import INVALID_DATE, to_date_key
from .aggregate import UserAggregate
from .buckets import ensure_daily
from .index import AnalyticsIndex, get_referral


def add_customer(index: AnalyticsIndex, customer: Customer) -> None:
    referral = get_referral(index, customer.referral)
    index.customers_by_wallet[customer.smart_wallet] = customer
    index.customers_by_id[customer.id] = customer
    user = UserAggregate(
        wallet=customer.smart_wallet,
        referral=referral.code,
        customer_id=customer.id,
        signup_at=customer.signup_at,
        signup_date=customer.signup_date,
        kyc=customer.kyc,
    )
    # one shared object: referral, global and wallet tables all see the same rollup
    referral.users[customer.smart_wallet] = user
    index.global_agg.users[customer.smart_wallet] = user
    index.users_by_wallet[customer.smart_wallet] = user

    if customer.kyc:
        index.totals.kyc_users += 1
    if customer.signup_date and customer.signup_date != INVALID_DATE:
        referral.record_signup(customer.signup_date, customer.kyc)
        index.global_agg.record_signup(customer.signup_date, customer.kyc)
    index.totals.customers += 1


def add_referral_code_meta(index: AnalyticsIndex, meta: ReferralCodeMeta) -> None:
    code = (meta.code or "").strip()
    if not code:
        return
    meta.code = code
    index.referral_codes[code] = meta


def add_owner_usage_daily(index: AnalyticsIndex, owner_id: str, date_key: DateKey,
                          fee_usd: float, volume_usd: float) -> None:
    """Accumulate revenue generated by wallets of a code's creator (not its users)."""
    if not owner_id:
        return
    daily = index.owner_usage_daily.setdefault(owner_id, {})
    ensure_daily(daily, date_key).accumulate(fee_usd, volume_usd)


def add_revenue_transaction(index: AnalyticsIndex, tx: RevenueTransaction) -> None:
    index.totals.revenue_tx_count += 1
    customer = index.customers_by_wallet.get(tx.wallet)
    if customer is None:
        index.totals.unattributed_tx_count += 1
        return

    referral = get_referral(index, customer.referral)
    date_key = to_date_key(tx.created_at)
    category = tx.category or "Unknown"

    user = referral.users.get(tx.wallet) or index.users_by_wallet.get(tx.wallet)
    if user is None:
        return

    if user.record_revenue(tx):
        referral.record_first_revenue(date_key)
        index.global_agg.record_first_revenue(date_key)

    referral.record_revenue(tx, date_key, category)
    index.global_agg.record_revenue(tx, date_key, category)

    customer_daily = index.customer_usage_daily.setdefault(customer.id, {})
    ensure_daily(customer_daily, date_key).accumulate(tx.fee_usd, tx.volume_usd)

    referral.store_tx(
        RevenueTxLite(
            created_at=tx.created_at,
            wallet=tx.wallet,
            fee_usd=tx.fee_usd,
            volume_usd=tx.volume_usd,
            referral=referral.code,
            hash=tx.hash,
        ),
        index.options,
    )
