from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Optional

# Stand-in address engines and indexers use for a chain's native coin
NATIVE_TOKEN_ADDRESS = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"


@dataclass(frozen=True)
class Token:
    name: str
    symbol: str
    address: str
    decimals: int

    @property
    def is_native(self) -> bool:
        return self.address.lower() == NATIVE_TOKEN_ADDRESS


# ApeChain Curtis testnet
SUPPORTED_TOKENS = (
    Token(name="ApeCoin", symbol="APE", address=NATIVE_TOKEN_ADDRESS, decimals=18),
    Token(name="Tether USD", symbol="USDT", address="0xb56415964d3F47fd3390484676e4f394d198374a", decimals=6),
    Token(name="USD Coin", symbol="USDC", address="0xE0356B8aD7811dC3e4d61cFD6ac7653e0D31b096", decimals=6),
)

TOKENS_BY_SYMBOL: Dict[str, Token] = {t.symbol: t for t in SUPPORTED_TOKENS}

# USSD menu option -> token, in display order
TOKEN_OPTIONS: Dict[str, Token] = {str(i): t for i, t in enumerate(SUPPORTED_TOKENS, start=1)}


def token_for_option(option: str) -> Optional[Token]:
    return TOKEN_OPTIONS.get(option)


def token_menu() -> str:
    return "\n".join(f"{opt}. {t.symbol}" for opt, t in TOKEN_OPTIONS.items())


def to_units(amount: Decimal, decimals: int) -> int:
    """Human amount -> integer base units. Sub-unit dust is truncated."""
    return int((Decimal(amount) * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


def from_units(units: int, decimals: int) -> Decimal:
    return Decimal(int(units)) / (Decimal(10) ** decimals)


def format_amount(amount: Decimal, places: int = 4) -> str:
    """Compact display for a 160-character USSD screen."""
    q = Decimal(amount).quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)
    return format(q.normalize(), "f")
