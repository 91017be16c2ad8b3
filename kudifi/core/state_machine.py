from typing import Optional

from kudifi.store.models import Account

# Top-level caller states, re-derived from the account record on every request

# No account for this phone number yet; only wallet creation is offered
UNREGISTERED = "UNREGISTERED"

# Wallet exists but no PIN hash; every input is treated as a PIN-setup attempt
REGISTERED_NO_CREDENTIAL = "REGISTERED_NO_CREDENTIAL"

# Wallet and PIN present; the full menu tree is available
AUTHENTICATED = "AUTHENTICATED"


def derive_state(account: Optional[Account]) -> str:
    if account is None:
        return UNREGISTERED
    if not account.has_pin:
        return REGISTERED_NO_CREDENTIAL
    return AUTHENTICATED
