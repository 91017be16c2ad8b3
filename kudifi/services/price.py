from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import httpx
from redis.exceptions import RedisError

from kudifi.core.errors import UpstreamError
from kudifi.observability.logging import log
from kudifi.services.http import send_request

SERVICE = "price-oracle"

FX_KEY = "price:fx:usd_{currency}"
TOKEN_KEY = "price:{currency}:{symbol}"


class PriceOracle:
    """
    Token prices in local currency: Pyth Hermes USD price times a daily USD->local FX rate.
    Both are cached in Redis so a menu screen does not cost two upstream calls.
    """

    def __init__(
        self,
        redis,
        hermes_base_url: str,
        fx_url: str,
        currency: str = "ghs",
        *,
        fx_ttl_sec: int = 86400,
        token_ttl_sec: int = 300,
        timeout_sec: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.redis = redis
        self.hermes_base_url = hermes_base_url.rstrip("/")
        self.fx_url = fx_url
        self.currency = currency.lower()
        self.fx_ttl_sec = int(fx_ttl_sec)
        self.token_ttl_sec = int(token_ttl_sec)
        self.client = client or httpx.Client(timeout=timeout_sec)

    def _cache_get(self, key: str) -> Optional[Decimal]:
        try:
            raw = self.redis.get(key)
        except RedisError as e:
            log(event="price_cache_read_failed", key=key, error=str(e)[:200])
            return None
        return Decimal(str(raw)) if raw else None

    def _cache_set(self, key: str, value: Decimal, ttl: int) -> None:
        try:
            self.redis.set(key, str(value), ex=ttl)
        except RedisError as e:
            log(event="price_cache_write_failed", key=key, error=str(e)[:200])

    def get_usd_rate(self) -> Decimal:
        key = FX_KEY.format(currency=self.currency)
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        data = send_request(self.client, SERVICE, "GET", self.fx_url)
        try:
            rate = Decimal(str(data["usd"][self.currency]))
        except (KeyError, TypeError) as e:
            raise UpstreamError(SERVICE, f"no USD/{self.currency.upper()} rate in FX feed") from e
        self._cache_set(key, rate, self.fx_ttl_sec)
        return rate

    def get_usd_price(self, symbol: str) -> Decimal:
        feeds = send_request(
            self.client, SERVICE, "GET", f"{self.hermes_base_url}/v2/price_feeds",
            params={"query": symbol, "asset_type": "crypto"},
        )
        if not feeds:
            raise UpstreamError(SERVICE, f"no price feed for {symbol}")
        try:
            feed_id = feeds[0]["id"]
        except (KeyError, IndexError, TypeError) as e:
            raise UpstreamError(SERVICE, f"malformed price feed list for {symbol}") from e

        updates = send_request(
            self.client, SERVICE, "GET", f"{self.hermes_base_url}/v2/updates/price/latest",
            params={"ids[]": feed_id},
        )
        try:
            parsed = (updates or {}).get("parsed") or []
            price = (parsed[0].get("price") if parsed else None) or {}
            if not price.get("price"):
                raise UpstreamError(SERVICE, f"no price for {symbol}")
            return Decimal(str(price["price"])).scaleb(int(price.get("expo", -8)))
        except (AttributeError, KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise UpstreamError(SERVICE, f"malformed price update for {symbol}") from e

    def get_token_price(self, symbol: str) -> Decimal:
        """Price of one token in local currency, rounded to 2 places."""
        key = TOKEN_KEY.format(currency=self.currency, symbol=symbol.lower())
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        local = (self.get_usd_price(symbol) * self.get_usd_rate()).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        if local <= 0:
            raise UpstreamError(SERVICE, f"non-positive price for {symbol}")
        self._cache_set(key, local, self.token_ttl_sec)
        return local
