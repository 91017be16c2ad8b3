class KudifiError(Exception):
    """Base for every error the gateway knows how to turn into a USSD reply."""


class ConfigError(KudifiError):
    pass


class ValidationError(KudifiError):
    """Malformed amount, phone number or PIN. Recoverable with a re-prompt."""


class AuthFailure(KudifiError):
    def __init__(self, attempts: int, max_attempts: int):
        super().__init__(f"Incorrect PIN (attempt {attempts} of {max_attempts})")
        self.attempts = attempts
        self.max_attempts = max_attempts


class LockedOut(KudifiError):
    def __init__(self, attempts: int):
        super().__init__(f"Too many incorrect PIN attempts ({attempts})")
        self.attempts = attempts


class NotFound(KudifiError):
    pass


class UpstreamError(KudifiError):
    """Wallet engine, chain RPC or price feed failure."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class PersistenceError(KudifiError):
    pass


class Busy(KudifiError):
    """Identity lock held by another request, or the confirmed step was already submitted."""


class InsufficientFunds(ValidationError):
    def __init__(self, balance, requested):
        super().__init__(f"Insufficient balance: have {balance}, need {requested}")
        self.balance = balance
        self.requested = requested
