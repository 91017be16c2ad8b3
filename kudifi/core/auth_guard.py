"""
PIN gate
--------
Hashing, verification, and the per-identity retry counter that enforces the
lockout window. The counter lives only in Redis (native expiry), never in
process memory, so concurrent requests for one phone number see the same count.

Lockout boundary: with max_attempts=3, wrong attempts 1 and 2 report
"attempt N of 3"; the 3rd wrong attempt itself answers with the lockout
message, and every attempt after that is rejected before the PIN is even
compared, until the window expires.
"""
import bcrypt
from redis.exceptions import RedisError

from kudifi.core.errors import AuthFailure, LockedOut, PersistenceError
from kudifi.core.validators import validate_pin
from kudifi.observability import metrics
from kudifi.observability.logging import log

PREFIX = "pin:attempts:"


class RetryCounter:
    """Consecutive PIN failures per identity, expiring after the lockout window."""

    def __init__(self, redis, window_sec: int = 3600):
        self.redis = redis
        self.window_sec = int(window_sec)

    def _key(self, identity: str) -> str:
        return f"{PREFIX}{identity}"

    def get(self, identity: str) -> int:
        try:
            return int(self.redis.get(self._key(identity)) or 0)
        except RedisError as e:
            raise PersistenceError(f"retry counter read failed: {e}") from e

    def increment(self, identity: str) -> int:
        """INCR and (re)arm the expiry in one MULTI so a crash cannot leave a counter without TTL."""
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.incr(self._key(identity))
            pipe.expire(self._key(identity), self.window_sec)
            count, _ = pipe.execute()
        except RedisError as e:
            raise PersistenceError(f"retry counter write failed: {e}") from e
        return int(count)

    def clear(self, identity: str) -> None:
        try:
            self.redis.delete(self._key(identity))
        except RedisError as e:
            raise PersistenceError(f"retry counter delete failed: {e}") from e


class AuthGuard:
    def __init__(self, accounts, counter: RetryCounter, max_attempts: int = 3, hash_rounds: int = 10, metrics_redis=None):
        self.accounts = accounts
        self.metrics_redis = metrics_redis
        self.counter = counter
        self.max_attempts = int(max_attempts)
        self.hash_rounds = int(hash_rounds)

    def hash_pin(self, plaintext: str) -> str:
        return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self.hash_rounds)).decode("utf-8")

    def set_credential(self, identity: str, plaintext: str) -> bool:
        """
        Hash and store the PIN. Returns False if a hash was already present
        (the store only ever writes it once).
        """
        validate_pin(plaintext)
        written = self.accounts.set_pin_hash(identity, self.hash_pin(plaintext))
        log(event="pin_set", phoneNumber=identity, written=written)
        return written

    @staticmethod
    def verify_credential(plaintext: str, stored_hash: str) -> bool:
        if not plaintext or not stored_hash:
            return False
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), stored_hash.encode("utf-8"))
        except ValueError:
            # Corrupt hash on record; treat as a mismatch rather than a crash
            log(event="pin_hash_invalid")
            return False

    def check_attempts(self, identity: str) -> int:
        """
        Current failure count for the identity. Raises LockedOut once the
        maximum is reached; no PIN comparison may happen in that window.
        """
        attempts = self.counter.get(identity)
        if attempts >= self.max_attempts:
            log(event="pin_locked_out", phoneNumber=identity, attempts=attempts)
            raise LockedOut(attempts)
        return attempts

    def record_failure(self, identity: str) -> int:
        attempts = self.counter.increment(identity)
        log(event="pin_failed", phoneNumber=identity, attempts=attempts, maxAttempts=self.max_attempts)
        if self.metrics_redis is not None:
            metrics.increment(self.metrics_redis, metrics.PIN_FAILURES)
            if attempts >= self.max_attempts:
                metrics.increment(self.metrics_redis, metrics.LOCKOUTS)
        return attempts

    def record_success(self, identity: str) -> None:
        self.counter.clear(identity)

    def authenticate(self, identity: str, plaintext: str, stored_hash: str) -> None:
        """
        Gate an authenticated action. Returns on success; raises LockedOut or
        AuthFailure otherwise. Callers run check_attempts() before any costly
        preparation so a locked identity fails fast.
        """
        self.check_attempts(identity)
        if self.verify_credential(plaintext, stored_hash):
            self.record_success(identity)
            return
        attempts = self.record_failure(identity)
        if attempts >= self.max_attempts:
            raise LockedOut(attempts)
        raise AuthFailure(attempts, self.max_attempts)
