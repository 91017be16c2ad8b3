from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional
import time
import uuid

PURCHASE_PENDING = "PENDING"


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Account:
    # Canonical (sanitized) phone number; unique key of the record
    phoneNumber: str
    walletAddr: str
    smartWalletAddr: Optional[str] = None
    # bcrypt hash; set exactly once, never reset
    pinHash: Optional[str] = None
    id: str = field(default_factory=_new_id)
    createdAtEpoch: int = field(default_factory=lambda: int(time.time()))

    @property
    def address(self) -> str:
        """Address that holds, sends and receives funds (smart wallet wins when present)."""
        return self.smartWalletAddr or self.walletAddr

    @property
    def has_pin(self) -> bool:
        return bool(self.pinHash)


@dataclass
class PurchaseIntent:
    accountId: str
    provider: str
    phoneNumber: str
    tokenSymbol: str
    # Amount in local currency the caller wants to spend
    amount: Decimal
    status: str = PURCHASE_PENDING
    id: str = field(default_factory=_new_id)
    createdAtEpoch: int = field(default_factory=lambda: int(time.time()))
