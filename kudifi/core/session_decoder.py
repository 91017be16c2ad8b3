from dataclasses import dataclass
from typing import Tuple

DELIMITER = "*"


@dataclass(frozen=True)
class InputTrace:
    """Menu choices reconstructed from the gateway's cumulative input; never persisted."""
    tokens: Tuple[str, ...] = ()

    @property
    def depth(self) -> int:
        return len(self.tokens)

    @property
    def is_start(self) -> bool:
        return not self.tokens

    @property
    def last(self) -> str:
        return self.tokens[-1] if self.tokens else ""


def decode(text: str) -> InputTrace:
    """
    Split the accumulated USSD text into ordered tokens.
    Purely lexical: "" is a fresh session, "1*2*" keeps the trailing empty token
    so downstream matching sees exactly what the caller typed.
    """
    raw = (text or "").strip()
    if not raw:
        return InputTrace()
    return InputTrace(tuple(t.strip() for t in raw.split(DELIMITER)))
