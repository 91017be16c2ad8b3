from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from kudifi.core.auth_guard import AuthGuard, RetryCounter
from kudifi.core.transactions import TransactionOrchestrator
from kudifi.services.chain import ChainQuery
from kudifi.services.engine import WalletEngine
from kudifi.services.price import PriceOracle
from kudifi.settings import Settings
from kudifi.store.account_repo import AccountRepo
from kudifi.store.redis_conn import get_redis


@dataclass
class AppContext:
    """Collaborator handles shared by every request; built once at startup."""
    settings: Settings
    redis: Any
    accounts: AccountRepo
    engine: WalletEngine
    chain: ChainQuery
    prices: PriceOracle
    auth: AuthGuard
    transactions: TransactionOrchestrator


def build_context(s: Settings) -> AppContext:
    r = get_redis()
    accounts = AccountRepo(r)
    engine = WalletEngine(
        s.ENGINE_BASE_URL,
        s.ENGINE_SECRET_KEY,
        s.ENGINE_VAULT_ACCESS_TOKEN,
        s.CHAIN_ID,
        timeout_sec=s.HTTP_TIMEOUT_SEC,
        tx_wait_sec=s.ENGINE_TX_WAIT_SEC,
        poll_interval_sec=s.ENGINE_TX_POLL_INTERVAL_SEC,
        wallet_label=s.ENGINE_WALLET_LABEL,
    )
    chain = ChainQuery(s.CHAIN_RPC_URL, timeout_sec=s.HTTP_TIMEOUT_SEC)
    prices = PriceOracle(
        r,
        s.HERMES_BASE_URL,
        s.FX_RATES_URL,
        s.FX_CURRENCY,
        fx_ttl_sec=s.FX_TTL_SEC,
        token_ttl_sec=s.TOKEN_PRICE_TTL_SEC,
        timeout_sec=s.HTTP_TIMEOUT_SEC,
    )
    auth = AuthGuard(
        accounts,
        RetryCounter(r, window_sec=s.PIN_LOCKOUT_SEC),
        max_attempts=s.PIN_MAX_ATTEMPTS,
        hash_rounds=s.PIN_HASH_ROUNDS,
        metrics_redis=r,
    )
    transactions = TransactionOrchestrator(
        accounts,
        engine,
        chain,
        prices,
        r,
        transfer_ceiling=Decimal(s.MAX_TRANSFER_AMOUNT),
        purchase_ceiling=Decimal(s.MAX_PURCHASE_AMOUNT),
        purchase_provider=s.PURCHASE_PROVIDER,
        lock_ttl_ms=s.IDENTITY_LOCK_TTL_MS,
        marker_ttl_sec=s.SUBMISSION_MARKER_TTL_SEC,
    )
    return AppContext(
        settings=s,
        redis=r,
        accounts=accounts,
        engine=engine,
        chain=chain,
        prices=prices,
        auth=auth,
        transactions=transactions,
    )
