from contextlib import contextmanager
import time
import uuid

from redis.exceptions import RedisError

from kudifi.core.errors import Busy, PersistenceError
from kudifi.observability.logging import log

_RELEASE = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


@contextmanager
def identity_lock(r, identity: str, ttl_ms: int = 180000, retries: int = 0, retry_delay_sec: float = 0.1):
    """
    Distributed lock to ensure a single in-flight money movement per phone number.
    Fails fast by default: a second tap while the first is executing must not wait
    its turn and then send again.
    """
    key = f"lock:identity:{identity}"
    token = uuid.uuid4().hex
    try:
        acquired = r.set(key, token, px=ttl_ms, nx=True)
        if not acquired:
            for _ in range(retries):
                time.sleep(retry_delay_sec)
                if r.set(key, token, px=ttl_ms, nx=True):
                    acquired = True
                    break
    except RedisError as e:
        raise PersistenceError(f"lock acquire failed for {identity}: {e}") from e

    if not acquired:
        raise Busy(f"Could not acquire lock for {identity}")

    try:
        yield
    finally:
        # Release only if we still own it; the TTL reclaims it otherwise
        try:
            r.eval(_RELEASE, 1, key, token)
        except RedisError as e:
            log(event="identity_lock_release_failed", error=str(e)[:200])
