"""
USSD session state machine
--------------------------
One call per gateway request. Nothing survives between calls except the
account record and Redis keys: the caller's position is re-derived from the
account state plus the decoded input trace every time.

    UNREGISTERED              -> offer / create a wallet
    REGISTERED_NO_CREDENTIAL  -> set the 4-digit PIN
    AUTHENTICATED             -> menu tree (send, balance, buy, wallet, donate)

Side effects (wallet creation, PIN write, transfers, purchase inserts) only
happen in the terminal handlers below; every other branch is a pure prompt.
"""
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from kudifi.api.schemas import UssdRequest
from kudifi.constants import Token, format_amount, token_for_option, token_menu
from kudifi.context import AppContext
from kudifi.core import state_machine as sm
from kudifi.core.errors import (
    AuthFailure,
    Busy,
    InsufficientFunds,
    KudifiError,
    LockedOut,
    NotFound,
    UpstreamError,
    ValidationError,
)
from kudifi.core.menu import (
    EXACT,
    PREFIX,
    MenuNode,
    Step,
    con,
    end,
    is_token_option,
    select_node,
    walk_steps,
)
from kudifi.core.session_decoder import InputTrace, decode
from kudifi.core.validators import is_pin, sanitize_phone_number, validate_phone_number
from kudifi.observability import metrics
from kudifi.observability.logging import log
from kudifi.store.models import Account

CANCEL = "0"
CONFIRM_PURCHASE = "1"
CANCEL_PURCHASE = "2"

MSG_GENERIC_FAILURE = "Service temporarily unavailable. Please try again later."
MSG_INVALID_OPTION = "Invalid option."
MSG_BUSY = "Your previous request is still being processed. Please try again shortly."


@dataclass
class Turn:
    """Everything one request knows about the caller."""
    sessionId: str
    identity: str
    text: str
    trace: InputTrace
    account: Optional[Account]


def _parse_pin_or_cancel(token: str) -> str:
    if token == CANCEL or is_pin(token):
        return token
    raise ValidationError("Enter your 4-digit PIN, or 0 to cancel.")


def _parse_purchase_choice(token: str) -> str:
    if token in (CONFIRM_PURCHASE, CANCEL_PURCHASE):
        return token
    raise ValidationError("Please choose 1 or 2.")


def _with_error(walk_error: Optional[ValidationError], prompt: str) -> str:
    if walk_error is None:
        return con(prompt)
    return con(f"{walk_error}\n{prompt}")


class MenuDispatcher:
    def __init__(self, ctx: AppContext):
        self.ctx = ctx
        self.nodes = (
            MenuNode("main_menu", EXACT, (), self._main_menu),
            MenuNode("send_choose_token", EXACT, ("1",), self._choose_token("Choose token to send:")),
            MenuNode("send_flow", PREFIX, ("1", is_token_option), self._transfer_flow),
            MenuNode("balance_choose_token", EXACT, ("2",), self._choose_token("Choose token:")),
            MenuNode("balance", EXACT, ("2", is_token_option), self._balance),
            MenuNode("buy_choose_token", EXACT, ("3",), self._choose_token("Select token to buy:")),
            MenuNode("buy_flow", PREFIX, ("3", is_token_option), self._purchase_flow),
            MenuNode("wallet_address", EXACT, ("4",), self._wallet_address),
            MenuNode("donate_choose_token", EXACT, ("5",), self._choose_token("Choose token to donate:")),
            MenuNode("donate_flow", PREFIX, ("5", is_token_option), self._donation_flow),
        )

    # --- entry point -----------------------------------------------------

    def handle(self, req: UssdRequest) -> str:
        start = time.time()
        metrics.increment(self.ctx.redis, metrics.REQUESTS)
        identity = sanitize_phone_number(req.phoneNumber, self.ctx.settings.COUNTRY_CODE)
        trace = decode(req.text)
        state = "?"
        try:
            if not identity:
                return end(MSG_INVALID_OPTION)
            account = self.ctx.accounts.find(identity)
            state = sm.derive_state(account)
            turn = Turn(sessionId=req.sessionId, identity=identity, text=req.text or "", trace=trace, account=account)
            if state == sm.UNREGISTERED:
                response = self._unregistered(turn)
            elif state == sm.REGISTERED_NO_CREDENTIAL:
                response = self._credential_setup(turn)
            else:
                response = self._authenticated(turn)
        except KudifiError as e:
            response = self._error_response(e, req, state)
        log(
            event="ussd_turn",
            sessionId=req.sessionId,
            state=state,
            depth=trace.depth,
            terminal=response.startswith("END"),
            elapsedMs=int((time.time() - start) * 1000),
        )
        return response

    def _error_response(self, e: KudifiError, req: UssdRequest, state: str) -> str:
        if isinstance(e, LockedOut):
            return end(self._lockout_message())
        if isinstance(e, AuthFailure):
            return end(f"Incorrect PIN. Attempt {e.attempts} of {e.max_attempts}")
        if isinstance(e, Busy):
            return end(MSG_BUSY)
        if isinstance(e, ValidationError):
            return end(f"{e}")
        if isinstance(e, NotFound):
            return end("Account not found.")
        # UpstreamError, PersistenceError and anything else we raise ourselves
        log(
            event="ussd_turn_failed",
            sessionId=req.sessionId,
            state=state,
            errorType=type(e).__name__,
            error=str(e)[:500],
        )
        return end(MSG_GENERIC_FAILURE)

    def _lockout_message(self) -> str:
        minutes = max(1, int(self.ctx.settings.PIN_LOCKOUT_SEC) // 60)
        return f"Too many incorrect PIN attempts. Try again in {minutes} minutes."

    # --- registration ----------------------------------------------------

    def _unregistered(self, turn: Turn) -> str:
        tokens = turn.trace.tokens
        if not tokens:
            return con(f"Welcome to {self.ctx.settings.APP_NAME}\n1. Create wallet")
        if tokens == ("1",):
            tx = self.ctx.transactions
            with tx.lock(turn.identity):
                # Re-read under the lock: a concurrent request may have just created it
                account = self.ctx.accounts.find(turn.identity) or tx.provision_account(turn.identity)
            return con(f"Wallet created:\n{account.address}\nSet a 4-digit PIN to continue:")
        if len(tokens) == 1 and is_pin(tokens[0]):
            return end("Please create a wallet first.")
        return end(MSG_INVALID_OPTION)

    @staticmethod
    def _pin_setup_candidate(tokens) -> str:
        """PIN attempt from "1234" (new session) or "1*1234" (right after wallet creation); "" otherwise."""
        if len(tokens) == 1:
            return tokens[0]
        if len(tokens) == 2 and tokens[0] == "1":
            return tokens[1]
        return ""

    def _credential_setup(self, turn: Turn) -> str:
        if turn.trace.is_start:
            return con("Your wallet is ready. Set a 4-digit PIN to proceed:")
        candidate = self._pin_setup_candidate(turn.trace.tokens)
        if not is_pin(candidate):
            return con("PIN must be exactly 4 digits.\nSet a 4-digit PIN:")
        if not self.ctx.auth.set_credential(turn.identity, candidate):
            return end("PIN already set. Dial again to continue.")
        return end(f"PIN set successfully. You can now use {self.ctx.settings.APP_NAME}.")

    # --- authenticated menu ----------------------------------------------

    def _authenticated(self, turn: Turn) -> str:
        node = select_node(self.nodes, turn.trace.tokens)
        if node is None:
            return end(MSG_INVALID_OPTION)
        return node.handler(turn)

    def _main_menu(self, turn: Turn) -> str:
        return con(
            f"Welcome to {self.ctx.settings.APP_NAME}\n"
            "1. Send tokens\n2. Check balance\n3. Buy tokens\n4. My wallet\n5. Donate"
        )

    @staticmethod
    def _choose_token(title: str):
        def handler(turn: Turn) -> str:
            return con(f"{title}\n{token_menu()}")
        return handler

    def _balance(self, turn: Turn) -> str:
        token = token_for_option(turn.trace.tokens[1])
        balance = self.ctx.transactions.resolve_balance(turn.account, token)
        return end(f"Your {token.symbol} balance is {format_amount(balance)}")

    def _wallet_address(self, turn: Turn) -> str:
        return end(f"Your wallet address:\n{turn.account.address}")

    # --- send ------------------------------------------------------------

    def _parse_recipient(self, turn: Turn):
        def parse(token: str) -> str:
            recipient = validate_phone_number(token, self.ctx.settings.COUNTRY_CODE)
            if recipient == turn.identity:
                raise ValidationError("You cannot send to your own number.")
            return recipient
        return parse

    def _parse_amount(self, token_def: Token):
        def parse(raw: str) -> Decimal:
            return self.ctx.transactions.validate_amount(raw, token_def)
        return parse

    def _transfer_flow(self, turn: Turn) -> str:
        token = token_for_option(turn.trace.tokens[1])
        steps = [
            Step("recipient", self._parse_recipient(turn)),
            Step("amount", self._parse_amount(token)),
            Step("confirm", _parse_pin_or_cancel),
        ]
        walk = walk_steps(steps, turn.trace.tokens[2:])
        if walk.extra:
            return end(MSG_INVALID_OPTION)
        if walk.position == 0:
            return _with_error(walk.error, "Enter recipient phone number (e.g. 054xxxxxxxx):")
        if walk.position == 1:
            return _with_error(walk.error, f"Enter amount of {token.symbol} to send:")
        recipient, amount = walk.values["recipient"], walk.values["amount"]
        if not walk.done(steps):
            balance = self._informational_balance(turn.account, token, amount)
            if isinstance(balance, str):
                return balance
            return _with_error(
                walk.error,
                f"Send {format_amount(amount)} {token.symbol} to {recipient}\n"
                f"Balance: {format_amount(balance)} {token.symbol}\n"
                "Enter 4-digit PIN to confirm\n0. Cancel",
            )
        if walk.values["confirm"] == CANCEL:
            return end("Transfer cancelled.")
        return self._execute(turn, token, amount, walk.values["confirm"], recipient_identity=recipient)

    # --- donate ----------------------------------------------------------

    def _donation_flow(self, turn: Turn) -> str:
        token = token_for_option(turn.trace.tokens[1])
        steps = [
            Step("amount", self._parse_amount(token)),
            Step("confirm", _parse_pin_or_cancel),
        ]
        walk = walk_steps(steps, turn.trace.tokens[2:])
        if walk.extra:
            return end(MSG_INVALID_OPTION)
        if walk.position == 0:
            return _with_error(walk.error, f"Enter amount of {token.symbol} to donate:")
        amount = walk.values["amount"]
        if not walk.done(steps):
            balance = self._informational_balance(turn.account, token, amount)
            if isinstance(balance, str):
                return balance
            return _with_error(
                walk.error,
                f"Donate {format_amount(amount)} {token.symbol} to the {self.ctx.settings.APP_NAME} team\n"
                f"Balance: {format_amount(balance)} {token.symbol}\n"
                "Enter 4-digit PIN to confirm\n0. Cancel",
            )
        if walk.values["confirm"] == CANCEL:
            return end("Donation cancelled.")
        return self._execute(
            turn, token, amount, walk.values["confirm"],
            to_address=self.ctx.settings.TEAM_WALLET_ADDRESS,
        )

    # --- buy -------------------------------------------------------------

    def _purchase_flow(self, turn: Turn) -> str:
        token = token_for_option(turn.trace.tokens[1])
        currency = self.ctx.settings.FX_CURRENCY.upper()
        steps = [
            Step("amount", self.ctx.transactions.validate_purchase_amount),
            Step("choice", _parse_purchase_choice),
        ]
        walk = walk_steps(steps, turn.trace.tokens[2:])
        if walk.extra:
            return end(MSG_INVALID_OPTION)
        if walk.position == 0:
            return _with_error(walk.error, f"Enter amount in {currency} to buy {token.symbol}:")
        amount = walk.values["amount"]
        if not walk.done(steps):
            rate, quantity = self.ctx.transactions.quote_purchase(token, amount)
            return _with_error(
                walk.error,
                f"Rate: 1 {token.symbol} = {rate} {currency}\n"
                f"You'll get {format_amount(quantity, 2)} {token.symbol}.\n"
                "1. Confirm\n2. Cancel",
            )
        if walk.values["choice"] == CANCEL_PURCHASE:
            return end("Purchase cancelled.")
        tx = self.ctx.transactions
        with tx.lock(turn.identity):
            tx.claim_submission(turn.sessionId, turn.text)
            tx.record_purchase_intent(turn.account, token, amount)
        return end(f"Your purchase of {currency} {format_amount(amount, 2)} {token.symbol} is being processed.")

    # --- shared ----------------------------------------------------------

    def _informational_balance(self, account: Account, token: Token, amount: Decimal):
        """Balance shown on the confirm screen; a shortfall ends the session early."""
        try:
            return self.ctx.transactions.ensure_sufficient(account, token, amount)
        except InsufficientFunds as e:
            return end(f"Insufficient {token.symbol} balance. Available: {format_amount(e.balance)} {token.symbol}")

    def _execute(
        self,
        turn: Turn,
        token: Token,
        amount: Decimal,
        pin: str,
        recipient_identity: Optional[str] = None,
        to_address: Optional[str] = None,
    ) -> str:
        """
        Confirm-and-execute, serialized per identity:
        replay guard -> lockout check -> authoritative balance -> PIN -> recipient -> one transfer.
        """
        tx = self.ctx.transactions
        auth = self.ctx.auth
        account = turn.account
        with tx.lock(turn.identity):
            tx.claim_submission(turn.sessionId, turn.text)
            auth.check_attempts(turn.identity)
            try:
                tx.ensure_sufficient(account, token, amount)
            except InsufficientFunds as e:
                return end(f"Insufficient {token.symbol} balance. Available: {format_amount(e.balance)} {token.symbol}")
            auth.authenticate(turn.identity, pin, account.pinHash)

            if recipient_identity is not None:
                recipient, created = tx.resolve_or_provision_recipient(recipient_identity)
                to_address = recipient.address
                if created:
                    log(event="recipient_onboarded", phoneNumber=turn.identity, recipient=recipient_identity)
            try:
                receipt = tx.execute_transfer(account, to_address, token, amount)
            except UpstreamError:
                return end("Transfer could not be completed. Check your balance before trying again.")

        if recipient_identity is None:
            metrics.increment(self.ctx.redis, metrics.DONATIONS)
            return end(f"Thank you! Donated {format_amount(amount)} {token.symbol}. Ref: {receipt.reference}")
        return end(f"Sent {format_amount(amount)} {token.symbol} to {recipient_identity}. Ref: {receipt.reference}")
