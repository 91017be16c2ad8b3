"""
Wallet engine client
--------------------
Thin wrapper over the thirdweb Engine cloud API: it custodies the server
wallets, signs and broadcasts. Only three primitives are needed here:
create a wallet, enqueue a transfer, and wait for the transfer's hash.
"""
from __future__ import annotations
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx

from kudifi.constants import Token, to_units
from kudifi.core.errors import UpstreamError
from kudifi.observability.logging import log
from kudifi.services.http import send_request

SERVICE = "wallet-engine"

ERC20_TRANSFER = "function transfer(address to, uint256 amount) returns (bool)"


@dataclass
class CreatedWallet:
    address: str
    smartAccountAddress: Optional[str] = None


@dataclass
class TransferReceipt:
    transactionId: str
    # None when the engine accepted the transaction but the hash did not show up in time
    transactionHash: Optional[str] = None

    @property
    def reference(self) -> str:
        return self.transactionHash or self.transactionId


class WalletEngine:
    def __init__(
        self,
        base_url: str,
        secret_key: str,
        vault_access_token: str,
        chain_id: int,
        *,
        timeout_sec: float = 10.0,
        tx_wait_sec: float = 45.0,
        poll_interval_sec: float = 1.0,
        wallet_label: str = "Kudifi Account",
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.chain_id = int(chain_id)
        self.tx_wait_sec = float(tx_wait_sec)
        self.poll_interval_sec = float(poll_interval_sec)
        self.wallet_label = wallet_label
        self.client = client or httpx.Client(timeout=timeout_sec)
        self.client.headers.update({
            "Content-Type": "application/json",
            "x-secret-key": secret_key,
            "x-vault-access-token": vault_access_token,
        })

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def create_wallet(self) -> CreatedWallet:
        # Not idempotent either: a retried create can mint a second wallet
        data = send_request(
            self.client, SERVICE, "POST", self._url("accounts"),
            retry=False, json={"label": self.wallet_label},
        )
        result = (data or {}).get("result") or {}
        address = result.get("address")
        if not address:
            raise UpstreamError(SERVICE, "wallet creation returned no address")
        return CreatedWallet(address=address, smartAccountAddress=result.get("smartAccountAddress"))

    def send_token(self, from_address: str, to_address: str, token: Token, amount: Decimal) -> TransferReceipt:
        """
        Enqueue exactly one transfer and wait (bounded) for its hash.
        The enqueue call is never retried.
        """
        units = to_units(amount, token.decimals)
        execution = {"from": from_address, "chainId": str(self.chain_id)}
        if token.is_native:
            path = "write/transaction"
            body = {
                "executionOptions": execution,
                "params": [{"to": to_address, "data": "0x", "value": str(units)}],
            }
        else:
            path = "write/contract"
            body = {
                "executionOptions": execution,
                "params": [{
                    "contractAddress": token.address,
                    "method": ERC20_TRANSFER,
                    "params": [to_address, str(units)],
                }],
            }

        data = send_request(self.client, SERVICE, "POST", self._url(path), retry=False, json=body)
        transactions = ((data or {}).get("result") or {}).get("transactions") or []
        if not transactions or not transactions[0].get("id"):
            raise UpstreamError(SERVICE, "transfer was not enqueued")
        transaction_id = transactions[0]["id"]
        log(event="engine_transfer_enqueued", transactionId=transaction_id, token=token.symbol)

        return TransferReceipt(transactionId=transaction_id, transactionHash=self.wait_for_hash(transaction_id))

    def wait_for_hash(self, transaction_id: str) -> Optional[str]:
        deadline = time.time() + self.tx_wait_sec
        while True:
            try:
                data = send_request(
                    self.client, SERVICE, "GET", self._url("transactions"),
                    params={"id": transaction_id},
                )
            except UpstreamError as e:
                # The transfer is already enqueued; report it as pending rather than failed
                log(event="engine_transfer_status_unavailable", transactionId=transaction_id, error=str(e)[:200])
                return None
            rows = ((data or {}).get("result") or {}).get("transactions") or []
            row = rows[0] if rows else {}
            status = (row.get("status") or "").upper()
            if row.get("transactionHash"):
                return row["transactionHash"]
            if status == "FAILED":
                raise UpstreamError(SERVICE, f"transaction {transaction_id} failed: {row.get('errorMessage') or 'unknown'}")
            if time.time() + self.poll_interval_sec > deadline:
                log(event="engine_transfer_hash_pending", transactionId=transaction_id, status=status or "unknown")
                return None
            time.sleep(self.poll_interval_sec)
