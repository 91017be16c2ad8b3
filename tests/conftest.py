import os
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

# Required settings must exist before kudifi.settings is imported anywhere
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENGINE_SECRET_KEY", "test-secret")
os.environ.setdefault("ENGINE_VAULT_ACCESS_TOKEN", "test-vault-token")
os.environ.setdefault("TEAM_WALLET_ADDRESS", "0x7ea0000000000000000000000000000000000001")

from kudifi.context import AppContext  # noqa: E402
from kudifi.core.auth_guard import AuthGuard  # noqa: E402
from kudifi.core.dispatcher import MenuDispatcher  # noqa: E402
from kudifi.core.transactions import TransactionOrchestrator  # noqa: E402
from kudifi.services.engine import CreatedWallet, TransferReceipt  # noqa: E402
from kudifi.settings import Settings  # noqa: E402

TEAM_ADDRESS = "0x7ea0000000000000000000000000000000000001"


class InMemoryAccounts:
    """Same surface as AccountRepo, backed by dicts."""

    def __init__(self):
        self.accounts = {}
        self.purchases = []
        self.pin_writes = 0

    def find(self, phone_number):
        return self.accounts.get(phone_number)

    def create(self, account):
        if account.phoneNumber in self.accounts:
            return False
        self.accounts[account.phoneNumber] = account
        return True

    def set_pin_hash(self, phone_number, pin_hash):
        account = self.accounts[phone_number]
        if account.pinHash:
            return False
        account.pinHash = pin_hash
        self.pin_writes += 1
        return True

    def insert_purchase(self, intent):
        self.purchases.append(intent)
        return intent


class InMemoryCounter:
    """Same surface as RetryCounter; expiry is simulated with expire()."""

    def __init__(self):
        self.counts = {}

    def get(self, identity):
        return self.counts.get(identity, 0)

    def increment(self, identity):
        self.counts[identity] = self.counts.get(identity, 0) + 1
        return self.counts[identity]

    def clear(self, identity):
        self.counts.pop(identity, None)

    def expire(self, identity):
        self.clear(identity)


class FakeEngine:
    def __init__(self):
        self.created = 0
        self.transfers = []
        self.fail_transfer = None

    def create_wallet(self):
        self.created += 1
        return CreatedWallet(address=f"0x{self.created:040x}")

    def send_token(self, from_address, to_address, token, amount):
        self.transfers.append((from_address, to_address, token.symbol, amount))
        if self.fail_transfer is not None:
            raise self.fail_transfer
        return TransferReceipt(transactionId=f"tx-{len(self.transfers)}", transactionHash="0xhash")


class FakeChain:
    def __init__(self, balance="100"):
        self.balance = Decimal(balance)
        self.calls = []
        self.error = None

    def get_balance(self, address, token):
        self.calls.append((address, token.symbol))
        if self.error is not None:
            raise self.error
        return self.balance


class FakePrices:
    def __init__(self, price="25.00"):
        self.price = Decimal(price)

    def get_token_price(self, symbol):
        return self.price


def make_redis():
    """MagicMock Redis with SET NX and compare-and-delete behaviour for locks and markers."""
    store = {}
    r = MagicMock()

    def _set(key, value, nx=False, px=None, ex=None):
        if nx and key in store:
            return None
        store[key] = value
        return True

    def _eval(script, numkeys, key, *args):
        if args and store.get(key) == args[0]:
            store.pop(key)
            return 1
        return 0

    r.set.side_effect = _set
    r.eval.side_effect = _eval
    r.store = store
    return r


@pytest.fixture
def test_settings():
    s = Settings()
    s.APP_NAME = "Kudifi"
    s.COUNTRY_CODE = "233"
    s.PIN_MAX_ATTEMPTS = 3
    s.PIN_LOCKOUT_SEC = 3600
    s.FX_CURRENCY = "ghs"
    s.TEAM_WALLET_ADDRESS = TEAM_ADDRESS
    return s


@pytest.fixture
def ctx(test_settings):
    r = make_redis()
    accounts = InMemoryAccounts()
    engine = FakeEngine()
    chain = FakeChain()
    prices = FakePrices()
    counter = InMemoryCounter()
    auth = AuthGuard(accounts, counter, max_attempts=3, hash_rounds=4)
    transactions = TransactionOrchestrator(
        accounts, engine, chain, prices, r,
        transfer_ceiling=Decimal("10000"),
        purchase_ceiling=Decimal("5000"),
        purchase_provider="MTN",
    )
    return AppContext(
        settings=test_settings,
        redis=r,
        accounts=accounts,
        engine=engine,
        chain=chain,
        prices=prices,
        auth=auth,
        transactions=transactions,
    )


@pytest.fixture
def dispatcher(ctx):
    return MenuDispatcher(ctx)
