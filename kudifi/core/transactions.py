"""
Transaction orchestration
-------------------------
Everything between "the caller confirmed" and "money moved": balance reads,
amount validation, recipient find-or-provision, the single transfer call and
purchase-intent inserts. The transfer primitive is invoked at most once per
confirmed step: a per-identity lock serializes confirm-and-execute and a
submission marker keyed by (session, confirmed input) rejects replays of the
same step.
"""
import hashlib
import time
from decimal import Decimal
from typing import Optional, Tuple

from redis.exceptions import RedisError

from kudifi.constants import Token
from kudifi.core.errors import Busy, InsufficientFunds, PersistenceError, UpstreamError
from kudifi.core.validators import validate_amount
from kudifi.observability import metrics
from kudifi.observability.logging import log
from kudifi.services.engine import TransferReceipt
from kudifi.store.models import Account, PurchaseIntent
from kudifi.utils.lock import identity_lock

SUBMISSION_PREFIX = "submitted:"


class TransactionOrchestrator:
    def __init__(
        self,
        accounts,
        engine,
        chain,
        prices,
        redis,
        *,
        transfer_ceiling: Decimal = Decimal("10000"),
        purchase_ceiling: Decimal = Decimal("5000"),
        purchase_provider: str = "MTN",
        lock_ttl_ms: int = 180000,
        marker_ttl_sec: int = 86400,
    ):
        self.accounts = accounts
        self.engine = engine
        self.chain = chain
        self.prices = prices
        self.redis = redis
        self.transfer_ceiling = Decimal(transfer_ceiling)
        self.purchase_ceiling = Decimal(purchase_ceiling)
        self.purchase_provider = purchase_provider
        self.lock_ttl_ms = int(lock_ttl_ms)
        self.marker_ttl_sec = int(marker_ttl_sec)

    # --- reads -----------------------------------------------------------

    def resolve_balance(self, account: Account, token: Token) -> Decimal:
        """Chain balance of the account's holding address. Upstream failures propagate; never 0."""
        return self.chain.get_balance(account.address, token)

    def validate_amount(self, raw: str, token: Optional[Token] = None) -> Decimal:
        return validate_amount(raw, self.transfer_ceiling, token.decimals if token else None)

    def validate_purchase_amount(self, raw: str) -> Decimal:
        return validate_amount(raw, self.purchase_ceiling, 2)

    def ensure_sufficient(self, account: Account, token: Token, amount: Decimal) -> Decimal:
        balance = self.resolve_balance(account, token)
        if balance < amount:
            raise InsufficientFunds(balance, amount)
        return balance

    def quote_purchase(self, token: Token, local_amount: Decimal) -> Tuple[Decimal, Decimal]:
        """(price of one token in local currency, tokens the amount buys)"""
        rate = self.prices.get_token_price(token.symbol)
        return rate, (local_amount / rate).quantize(Decimal("0.01"))

    # --- provisioning ----------------------------------------------------

    def provision_account(self, identity: str) -> Account:
        """
        Create a server wallet and the account record for identity.
        If another request created the record first, that record wins and the
        fresh wallet is left unused (logged for reconciliation).
        """
        wallet = self.engine.create_wallet()
        account = Account(
            phoneNumber=identity,
            walletAddr=wallet.address,
            smartWalletAddr=wallet.smartAccountAddress,
        )
        if self.accounts.create(account):
            metrics.increment(self.redis, metrics.WALLETS_CREATED)
            log(event="account_provisioned", phoneNumber=identity, walletAddr=wallet.address)
            return account

        existing = self.accounts.find(identity)
        if existing is None:
            raise PersistenceError(f"account for {identity} neither created nor found")
        log(event="account_provision_raced", phoneNumber=identity, unusedWalletAddr=wallet.address)
        return existing

    def resolve_or_provision_recipient(self, identity: str) -> Tuple[Account, bool]:
        """Find the recipient's account, onboarding them silently when they have none."""
        account = self.accounts.find(identity)
        if account is not None:
            return account, False
        with self.lock(identity):
            account = self.accounts.find(identity)
            if account is not None:
                return account, False
            return self.provision_account(identity), True

    # --- at-most-once guards ---------------------------------------------

    def lock(self, identity: str):
        return identity_lock(self.redis, identity, ttl_ms=self.lock_ttl_ms)

    def claim_submission(self, session_id: str, text: str) -> str:
        """
        Mark a confirmed step as submitted. A replay of the same session and
        input (gateway resend, double tap) raises Busy instead of executing again.
        """
        digest = hashlib.sha256(f"{session_id}\x00{text}".encode("utf-8")).hexdigest()[:32]
        key = f"{SUBMISSION_PREFIX}{digest}"
        try:
            claimed = self.redis.set(key, int(time.time()), nx=True, ex=self.marker_ttl_sec)
        except RedisError as e:
            raise PersistenceError(f"submission marker write failed: {e}") from e
        if not claimed:
            log(event="submission_replayed", sessionId=session_id)
            raise Busy("This request was already submitted")
        return key

    # --- side effects ----------------------------------------------------

    def execute_transfer(self, from_account: Account, to_address: str, token: Token, amount: Decimal) -> TransferReceipt:
        """
        One call to the engine's transfer primitive. Failures are surfaced,
        never retried here.
        """
        start = time.time()
        try:
            receipt = self.engine.send_token(from_account.address, to_address, token, amount)
        except UpstreamError as e:
            metrics.increment(self.redis, metrics.TRANSFERS_FAILED)
            log(
                event="transfer_failed",
                phoneNumber=from_account.phoneNumber,
                token=token.symbol,
                amount=str(amount),
                error=str(e)[:500],
            )
            raise
        elapsed_ms = int((time.time() - start) * 1000)
        metrics.increment(self.redis, metrics.TRANSFERS_SUBMITTED)
        metrics.record_transfer_latency(self.redis, elapsed_ms)
        log(
            event="transfer_submitted",
            phoneNumber=from_account.phoneNumber,
            token=token.symbol,
            amount=str(amount),
            transactionId=receipt.transactionId,
            transactionHash=receipt.transactionHash,
            elapsedMs=elapsed_ms,
        )
        return receipt

    def record_purchase_intent(self, account: Account, token: Token, amount: Decimal) -> PurchaseIntent:
        intent = PurchaseIntent(
            accountId=account.id,
            provider=self.purchase_provider,
            phoneNumber=account.phoneNumber,
            tokenSymbol=token.symbol,
            amount=amount,
        )
        self.accounts.insert_purchase(intent)
        metrics.increment(self.redis, metrics.PURCHASES)
        log(event="purchase_recorded", purchaseId=intent.id, phoneNumber=account.phoneNumber, token=token.symbol)
        return intent
