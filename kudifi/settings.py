import os
from dotenv import load_dotenv

from kudifi.core.errors import ConfigError

load_dotenv()


def _csv_ints(raw: str) -> tuple:
    return tuple(int(x) for x in raw.split(",") if x.strip())


class Settings:
    APP_NAME: str = os.getenv("APP_NAME", "Kudifi")

    REDIS_URL: str = os.getenv("REDIS_URL", "")

    # Wallet engine (thirdweb Engine cloud API)
    ENGINE_BASE_URL: str = os.getenv("ENGINE_BASE_URL", "https://engine.thirdweb.com/v1").rstrip("/")
    ENGINE_SECRET_KEY: str = os.getenv("ENGINE_SECRET_KEY", "")
    ENGINE_VAULT_ACCESS_TOKEN: str = os.getenv("ENGINE_VAULT_ACCESS_TOKEN", "")
    ENGINE_WALLET_LABEL: str = os.getenv("ENGINE_WALLET_LABEL", "Kudifi Account")
    # Total time spent polling for a transaction hash after enqueueing a transfer
    ENGINE_TX_WAIT_SEC: float = float(os.getenv("ENGINE_TX_WAIT_SEC", "45.0"))
    ENGINE_TX_POLL_INTERVAL_SEC: float = float(os.getenv("ENGINE_TX_POLL_INTERVAL_SEC", "1.0"))

    # ApeChain Curtis
    CHAIN_ID: int = int(os.getenv("CHAIN_ID", "33111"))
    CHAIN_RPC_URL: str = os.getenv("CHAIN_RPC_URL", "https://curtis.rpc.caldera.xyz/http")

    # Price oracle
    HERMES_BASE_URL: str = os.getenv("HERMES_BASE_URL", "https://hermes.pyth.network").rstrip("/")
    FX_RATES_URL: str = os.getenv(
        "FX_RATES_URL", "https://latest.currency-api.pages.dev/v1/currencies/usd.json"
    )
    FX_CURRENCY: str = os.getenv("FX_CURRENCY", "ghs").lower()
    FX_TTL_SEC: int = int(os.getenv("FX_TTL_SEC", str(24 * 60 * 60)))
    TOKEN_PRICE_TTL_SEC: int = int(os.getenv("TOKEN_PRICE_TTL_SEC", str(5 * 60)))

    # Outbound HTTP (reads only are retried)
    HTTP_TIMEOUT_SEC: float = float(os.getenv("HTTP_TIMEOUT_SEC", "10.0"))
    HTTP_MAX_RETRIES: int = int(os.getenv("HTTP_MAX_RETRIES", "2"))
    HTTP_RETRY_STATUS_CODES: tuple = _csv_ints(os.getenv("HTTP_RETRY_STATUS_CODES", "408,500,502,503,504"))

    # PIN lockout
    PIN_MAX_ATTEMPTS: int = int(os.getenv("PIN_MAX_ATTEMPTS", "3"))
    PIN_LOCKOUT_SEC: int = int(os.getenv("PIN_LOCKOUT_SEC", "3600"))
    PIN_HASH_ROUNDS: int = int(os.getenv("PIN_HASH_ROUNDS", "10"))

    # Amount ceilings (token units for transfers/donations, local currency for purchases)
    MAX_TRANSFER_AMOUNT: str = os.getenv("MAX_TRANSFER_AMOUNT", "10000")
    MAX_PURCHASE_AMOUNT: str = os.getenv("MAX_PURCHASE_AMOUNT", "5000")
    PURCHASE_PROVIDER: str = os.getenv("PURCHASE_PROVIDER", "MTN")

    COUNTRY_CODE: str = os.getenv("COUNTRY_CODE", "233")
    TEAM_WALLET_ADDRESS: str = os.getenv("TEAM_WALLET_ADDRESS", "")

    # Serialization of confirm-and-execute per identity; must outlast execute_budget_sec()
    IDENTITY_LOCK_TTL_MS: int = int(os.getenv("IDENTITY_LOCK_TTL_MS", "180000"))
    SUBMISSION_MARKER_TTL_SEC: int = int(os.getenv("SUBMISSION_MARKER_TTL_SEC", "86400"))

    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "")
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")
    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"


REQUIRED_SETTINGS = (
    "ENGINE_SECRET_KEY",
    "ENGINE_VAULT_ACCESS_TOKEN",
    "REDIS_URL",
    "TEAM_WALLET_ADDRESS",
)


def read_call_budget_sec(s: "Settings") -> float:
    """Worst case for one retried read: every attempt times out, plus the capped jittered backoff between them."""
    retries = int(s.HTTP_MAX_RETRIES)
    backoff = sum(min(0.2 * attempt, 1.0) + 0.1 for attempt in range(1, retries + 1))
    return (retries + 1) * float(s.HTTP_TIMEOUT_SEC) + backoff


def execute_budget_sec(s: "Settings") -> float:
    """
    Longest time the identity lock can be held by one confirm-and-execute:
    balance recheck, recipient wallet creation, transfer enqueue, then the
    hash wait (whose last poll may start right before the deadline).
    """
    read = read_call_budget_sec(s)
    timeout = float(s.HTTP_TIMEOUT_SEC)
    return read + timeout + timeout + float(s.ENGINE_TX_WAIT_SEC) + float(s.ENGINE_TX_POLL_INTERVAL_SEC) + read


def validate_settings(s: "Settings") -> None:
    """
    Fail fast when a required value is missing or the lock TTL cannot cover a transfer.
    Called at import time of the ASGI app so the process never starts half-configured.
    """
    missing = [name for name in REQUIRED_SETTINGS if not str(getattr(s, name, "") or "").strip()]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")
    if s.PIN_MAX_ATTEMPTS < 1:
        raise ConfigError("PIN_MAX_ATTEMPTS must be at least 1")
    budget_ms = int(execute_budget_sec(s) * 1000)
    if int(s.IDENTITY_LOCK_TTL_MS) <= budget_ms:
        raise ConfigError(
            f"IDENTITY_LOCK_TTL_MS ({s.IDENTITY_LOCK_TTL_MS}) must exceed the transfer budget of {budget_ms} ms"
        )


settings = Settings()
