from unittest.mock import MagicMock

import bcrypt
import pytest
from redis.exceptions import RedisError

from kudifi.core.auth_guard import AuthGuard, RetryCounter
from kudifi.core.errors import AuthFailure, LockedOut, PersistenceError, ValidationError
from kudifi.store.models import Account

from conftest import InMemoryAccounts, InMemoryCounter

IDENTITY = "+233541234567"


@pytest.fixture
def guard():
    accounts = InMemoryAccounts()
    accounts.create(Account(phoneNumber=IDENTITY, walletAddr="0xabc"))
    return AuthGuard(accounts, InMemoryCounter(), max_attempts=3, hash_rounds=4)


def test_hash_is_bcrypt_and_verifies(guard):
    h = guard.hash_pin("1234")
    assert h.startswith("$2")
    assert h != "1234"
    assert guard.verify_credential("1234", h)
    assert not guard.verify_credential("1235", h)


def test_verify_rejects_missing_or_corrupt_hash(guard):
    assert not guard.verify_credential("1234", None)
    assert not guard.verify_credential("", guard.hash_pin("1234"))
    assert not guard.verify_credential("1234", "not-a-bcrypt-hash")


def test_set_credential_writes_once(guard):
    assert guard.set_credential(IDENTITY, "1234") is True
    stored = guard.accounts.find(IDENTITY).pinHash
    assert bcrypt.checkpw(b"1234", stored.encode())
    assert guard.set_credential(IDENTITY, "9999") is False
    assert guard.accounts.find(IDENTITY).pinHash == stored


def test_set_credential_validates_shape(guard):
    with pytest.raises(ValidationError):
        guard.set_credential(IDENTITY, "12a4")
    assert guard.accounts.pin_writes == 0


def test_lockout_boundary(guard):
    stored = guard.hash_pin("1234")

    with pytest.raises(AuthFailure) as first:
        guard.authenticate(IDENTITY, "0000", stored)
    assert (first.value.attempts, first.value.max_attempts) == (1, 3)

    with pytest.raises(AuthFailure) as second:
        guard.authenticate(IDENTITY, "0000", stored)
    assert second.value.attempts == 2

    with pytest.raises(LockedOut):
        guard.authenticate(IDENTITY, "0000", stored)

    # Locked: even the right PIN is refused without a comparison
    guard.verify_credential = MagicMock()
    with pytest.raises(LockedOut):
        guard.authenticate(IDENTITY, "1234", stored)
    guard.verify_credential.assert_not_called()
    assert guard.counter.get(IDENTITY) == 3


def test_success_clears_counter(guard):
    stored = guard.hash_pin("1234")
    with pytest.raises(AuthFailure):
        guard.authenticate(IDENTITY, "0000", stored)
    guard.authenticate(IDENTITY, "1234", stored)
    assert guard.counter.get(IDENTITY) == 0


def test_window_expiry_unlocks(guard):
    stored = guard.hash_pin("1234")
    for _ in range(3):
        with pytest.raises((AuthFailure, LockedOut)):
            guard.authenticate(IDENTITY, "0000", stored)
    guard.counter.expire(IDENTITY)
    guard.authenticate(IDENTITY, "1234", stored)


def test_failures_are_counted_in_metrics():
    r = MagicMock()
    guard = AuthGuard(InMemoryAccounts(), InMemoryCounter(), max_attempts=1, hash_rounds=4, metrics_redis=r)
    guard.record_failure(IDENTITY)
    incremented = [c.args[0] for c in r.incr.call_args_list]
    assert incremented == ["metrics:pin:failures", "metrics:pin:lockouts"]


# --- RetryCounter ------------------------------------------------------------

def test_counter_increment_sets_expiry_atomically():
    r = MagicMock()
    pipe = r.pipeline.return_value
    pipe.execute.return_value = [2, True]

    counter = RetryCounter(r, window_sec=3600)
    assert counter.increment(IDENTITY) == 2

    r.pipeline.assert_called_once_with(transaction=True)
    pipe.incr.assert_called_once_with(f"pin:attempts:{IDENTITY}")
    pipe.expire.assert_called_once_with(f"pin:attempts:{IDENTITY}", 3600)


def test_counter_get_and_clear():
    r = MagicMock()
    r.get.return_value = "2"
    counter = RetryCounter(r)
    assert counter.get(IDENTITY) == 2
    r.get.return_value = None
    assert counter.get(IDENTITY) == 0
    counter.clear(IDENTITY)
    r.delete.assert_called_once_with(f"pin:attempts:{IDENTITY}")


def test_counter_redis_failure_is_persistence_error():
    r = MagicMock()
    r.get.side_effect = RedisError("down")
    with pytest.raises(PersistenceError):
        RetryCounter(r).get(IDENTITY)
