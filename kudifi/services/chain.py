from decimal import Decimal
from typing import Optional

import httpx

from kudifi.constants import Token, from_units
from kudifi.core.errors import UpstreamError
from kudifi.services.http import send_request

SERVICE = "chain-rpc"

# keccak("balanceOf(address)")[:4]
BALANCE_OF_SELECTOR = "0x70a08231"


def encode_balance_of(address: str) -> str:
    addr = address.lower().removeprefix("0x")
    if len(addr) != 40:
        raise ValueError(f"not an address: {address}")
    return BALANCE_OF_SELECTOR + addr.rjust(64, "0")


class ChainQuery:
    """Read-only JSON-RPC access to balances. Every call here is safe to retry."""

    def __init__(self, rpc_url: str, *, timeout_sec: float = 10.0, client: Optional[httpx.Client] = None):
        self.rpc_url = rpc_url
        self.client = client or httpx.Client(timeout=timeout_sec)
        self._next_id = 0

    def _call(self, method: str, params: list) -> str:
        self._next_id += 1
        data = send_request(
            self.client, SERVICE, "POST", self.rpc_url,
            json={"jsonrpc": "2.0", "id": self._next_id, "method": method, "params": params},
        )
        if not isinstance(data, dict):
            raise UpstreamError(SERVICE, f"{method}: malformed response")
        if data.get("error"):
            raise UpstreamError(SERVICE, f"{method}: {data['error']}")
        result = data.get("result")
        if not isinstance(result, str) or not result.startswith("0x"):
            raise UpstreamError(SERVICE, f"{method}: unexpected result {result!r}")
        return result

    def get_balance(self, address: str, token: Token) -> Decimal:
        if token.is_native:
            raw = self._call("eth_getBalance", [address, "latest"])
        else:
            raw = self._call("eth_call", [{"to": token.address, "data": encode_balance_of(address)}, "latest"])
        units = int(raw, 16) if raw != "0x" else 0
        return from_units(units, token.decimals)
