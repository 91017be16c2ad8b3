import json
import inspect
from dataclasses import asdict
from decimal import Decimal
from typing import Optional

from redis.exceptions import RedisError

from kudifi.core.errors import NotFound, PersistenceError
from kudifi.store.models import Account, PurchaseIntent
from kudifi.observability.logging import log

ACCOUNT_PREFIX = "account:"
PURCHASE_PREFIX = "purchase:"
PENDING_PURCHASES = "purchases:pending"

# Set the PIN hash only when none is stored yet.
# Returns 1 when written, 0 when a hash already exists, -1 when the account is missing.
_SET_PIN_ONCE = """
local raw = redis.call("get", KEYS[1])
if not raw then
    return -1
end
local data = cjson.decode(raw)
local current = data["pinHash"]
if current and current ~= cjson.null and current ~= "" then
    return 0
end
data["pinHash"] = ARGV[1]
redis.call("set", KEYS[1], cjson.encode(data))
return 1
"""


def _account_key(phone_number: str) -> str:
    return f"{ACCOUNT_PREFIX}{phone_number}"


def _purchase_key(purchase_id: str) -> str:
    return f"{PURCHASE_PREFIX}{purchase_id}"


def _json_safe(obj):
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {k: _json_safe(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_json_safe(v) for v in obj]
    return obj


def _filter_kwargs(cls, data: dict) -> dict:
    """
    Drop unknown fields so cls(**kwargs) never explodes on older records
    """
    allowed = set(inspect.signature(cls).parameters.keys())
    return {k: v for k, v in data.items() if k in allowed}


class AccountRepo:
    """Account and purchase-intent records, stored as JSON documents in Redis."""

    def __init__(self, redis):
        self.redis = redis

    def find(self, phone_number: str) -> Optional[Account]:
        try:
            raw = self.redis.get(_account_key(phone_number))
        except RedisError as e:
            raise PersistenceError(f"account lookup failed: {e}") from e
        if not raw:
            return None
        data = json.loads(raw)
        return Account(**_filter_kwargs(Account, data))

    def create(self, account: Account) -> bool:
        """
        Insert a new account. Returns False when the identity already has one;
        the existing record is never overwritten.
        """
        payload = json.dumps(_json_safe(asdict(account)))
        try:
            created = self.redis.set(_account_key(account.phoneNumber), payload, nx=True)
        except RedisError as e:
            raise PersistenceError(f"account insert failed: {e}") from e
        return bool(created)

    def set_pin_hash(self, phone_number: str, pin_hash: str) -> bool:
        try:
            result = int(self.redis.eval(_SET_PIN_ONCE, 1, _account_key(phone_number), pin_hash))
        except RedisError as e:
            raise PersistenceError(f"pin update failed: {e}") from e
        if result < 0:
            raise NotFound(f"no account for {phone_number}")
        if result == 0:
            log(event="pin_already_set", phoneNumber=phone_number)
        return result == 1

    def insert_purchase(self, intent: PurchaseIntent) -> PurchaseIntent:
        payload = json.dumps(_json_safe(asdict(intent)))
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.set(_purchase_key(intent.id), payload)
            pipe.lpush(PENDING_PURCHASES, intent.id)
            pipe.execute()
        except RedisError as e:
            raise PersistenceError(f"purchase insert failed: {e}") from e
        return intent

