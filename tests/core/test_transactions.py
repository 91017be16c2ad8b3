from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from redis.exceptions import RedisError

from kudifi.constants import TOKENS_BY_SYMBOL
from kudifi.core.errors import Busy, InsufficientFunds, PersistenceError, UpstreamError, ValidationError
from kudifi.store.models import Account, PURCHASE_PENDING
from kudifi.utils.lock import identity_lock

APE = TOKENS_BY_SYMBOL["APE"]
USDT = TOKENS_BY_SYMBOL["USDT"]


@pytest.fixture
def tx(ctx):
    return ctx.transactions


@pytest.fixture
def sender(ctx):
    account = Account(phoneNumber="+233541234567", walletAddr="0xeoa", smartWalletAddr="0xsmart", pinHash="x")
    ctx.accounts.create(account)
    return account


def test_resolve_balance_reads_holding_address(tx, ctx, sender):
    ctx.chain.balance = Decimal("7.25")
    assert tx.resolve_balance(sender, USDT) == Decimal("7.25")
    assert ctx.chain.calls == [("0xsmart", "USDT")]


def test_resolve_balance_does_not_mask_upstream_errors(tx, ctx, sender):
    ctx.chain.error = UpstreamError("chain-rpc", "timeout")
    with pytest.raises(UpstreamError):
        tx.resolve_balance(sender, APE)


def test_ensure_sufficient(tx, ctx, sender):
    ctx.chain.balance = Decimal("10")
    assert tx.ensure_sufficient(sender, APE, Decimal("10")) == Decimal("10")
    with pytest.raises(InsufficientFunds) as exc:
        tx.ensure_sufficient(sender, APE, Decimal("10.5"))
    assert exc.value.balance == Decimal("10")
    assert exc.value.requested == Decimal("10.5")


def test_amount_ceilings(tx):
    assert tx.validate_amount("10000", APE) == Decimal("10000")
    with pytest.raises(ValidationError):
        tx.validate_amount("10000.5", APE)
    assert tx.validate_purchase_amount("5000") == Decimal("5000")
    with pytest.raises(ValidationError):
        tx.validate_purchase_amount("5001")
    with pytest.raises(ValidationError):
        tx.validate_purchase_amount("10.123")


def test_quote_purchase(tx, ctx):
    ctx.prices.price = Decimal("12.00")
    rate, quantity = tx.quote_purchase(APE, Decimal("100"))
    assert rate == Decimal("12.00")
    assert quantity == Decimal("8.33")


def test_provision_account_creates_wallet_and_record(tx, ctx):
    account = tx.provision_account("+233201234567")
    assert ctx.engine.created == 1
    assert ctx.accounts.find("+233201234567") is account
    assert account.pinHash is None


def test_provision_race_returns_existing_record(tx, ctx):
    existing = Account(phoneNumber="+233201234567", walletAddr="0xfirst")
    ctx.accounts.create(existing)
    account = tx.provision_account("+233201234567")
    assert account is existing
    assert ctx.engine.created == 1


def test_resolve_or_provision_recipient(tx, ctx):
    recipient, created = tx.resolve_or_provision_recipient("+233201234567")
    assert created
    again, created_again = tx.resolve_or_provision_recipient("+233201234567")
    assert again is recipient
    assert not created_again
    assert ctx.engine.created == 1


def test_claim_submission_rejects_replay(tx):
    tx.claim_submission("s1", "1*1*0201234567*10*1234")
    with pytest.raises(Busy):
        tx.claim_submission("s1", "1*1*0201234567*10*1234")
    # Another session or another input is a different step
    tx.claim_submission("s2", "1*1*0201234567*10*1234")
    tx.claim_submission("s1", "1*1*0201234567*11*1234")


def test_lock_is_exclusive_per_identity(tx, ctx):
    with tx.lock("+233541234567"):
        with pytest.raises(Busy):
            with tx.lock("+233541234567"):
                pass
        with tx.lock("+233201234567"):
            pass
    assert not any(k.startswith("lock:identity:") for k in ctx.redis.store)


def test_lock_redis_outage_is_persistence_error():
    r = MagicMock()
    r.set.side_effect = RedisError("down")
    with pytest.raises(PersistenceError, match="lock acquire failed"):
        with identity_lock(r, "+233541234567"):
            pass
    r.eval.assert_not_called()


def test_execute_transfer_calls_engine_once(tx, ctx, sender):
    receipt = tx.execute_transfer(sender, "0xdest", USDT, Decimal("2"))
    assert receipt.reference == "0xhash"
    assert ctx.engine.transfers == [("0xsmart", "0xdest", "USDT", Decimal("2"))]


def test_execute_transfer_failure_is_surfaced_not_retried(tx, ctx, sender):
    ctx.engine.fail_transfer = UpstreamError("wallet-engine", "500")
    with pytest.raises(UpstreamError):
        tx.execute_transfer(sender, "0xdest", USDT, Decimal("2"))
    assert len(ctx.engine.transfers) == 1


def test_record_purchase_intent(tx, ctx, sender):
    intent = tx.record_purchase_intent(sender, USDT, Decimal("50"))
    assert ctx.accounts.purchases == [intent]
    assert intent.accountId == sender.id
    assert intent.status == PURCHASE_PENDING
    assert intent.provider == "MTN"
    assert intent.phoneNumber == sender.phoneNumber


def test_metrics_failures_do_not_break_transfer(ctx, sender):
    ctx.redis.incr = MagicMock(side_effect=RuntimeError("redis down"))
    receipt = ctx.transactions.execute_transfer(sender, "0xdest", APE, Decimal("1"))
    assert receipt.transactionId == "tx-1"
