"""Account operations - every state-changing financial action for one session

Each money movement runs inside ``LedgerStore.run_transaction`` and re-checks
the live balance there with a conditional write; nothing trusts the cached
snapshot. Business failures are raised internally as ``DomainException`` and
converted to ``OperationResult`` at the public boundary, so callers (the API
and the conversation orchestrator) never see exceptions for expected outcomes.
"""

import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from nova_bank.domain.exceptions import (
    AccountNotFoundError,
    AmbiguousRecipientError,
    ApplicationRejectedError,
    DomainException,
    ExternalServiceError,
    InsufficientFundsError,
    InvalidAmountError,
    NotAuthenticatedError,
    RecipientNotFoundError,
    SelfTransferError,
)
from nova_bank.domain.models import (
    AccountSnapshot,
    AccountType,
    Card,
    CardApplicationDetails,
    Loan,
    LoanApplicationDetails,
    LoanStatus,
    OperationResult,
    Passkey,
    PaymentType,
    Transaction,
    User,
)
from nova_bank.domain.products import MAX_LOAN_TERM_MONTHS, issue_card, originate_loan
from nova_bank.domain.underwriting import Underwriting
from nova_bank.infrastructure.database.repositories import (
    Ledger,
    LedgerStore,
    passkey_from_record,
    transaction_from_record,
    user_from_record,
)
from nova_bank.infrastructure.observability.logging import log_operation
from nova_bank.infrastructure.observability.metrics import record_operation
from nova_bank.utils.date_utils import add_days, ensure_utc, format_long_date, utcnow
from nova_bank.utils.money import MAX_AMOUNT_CENTS, format_currency

logger = logging.getLogger(__name__)

EXTENSION_DAYS = 14
SNAPSHOT_TRANSACTION_LIMIT = 50

# Recipient lookups in order of trust; the first field with a match wins
RECIPIENT_LOOKUP_ORDER = ("savings_account_number", "email", "phone", "name", "username")


class AccountOperationsService:
    """
    Session-scoped service over the ledger store.

    Constructed once per signed-in session with the current user's id (or
    None when nobody is signed in). Holds a cached ``AccountSnapshot`` for
    display; ``refresh`` reloads it wholesale and each operation patches only
    the fields it is documented to change.
    """

    def __init__(
        self,
        store: LedgerStore,
        user_id: Optional[str],
        underwriting: Underwriting,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.user_id = user_id
        self.underwriting = underwriting
        self.clock = clock
        self.snapshot: Optional[AccountSnapshot] = None

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def _require_user(self) -> str:
        if not self.user_id:
            raise NotAuthenticatedError()
        return self.user_id

    def refresh(self) -> AccountSnapshot:
        """Reload user, cards, loans, recent savings history, and passkeys from the store"""
        uid = self._require_user()

        def _load(ledger: Ledger) -> AccountSnapshot:
            record = ledger.users.get(uid)
            if record is None:
                raise NotAuthenticatedError()
            return AccountSnapshot(
                user=user_from_record(record),
                transactions=[
                    transaction_from_record(t)
                    for t in ledger.transactions.list_for_user(uid, limit=SNAPSHOT_TRANSACTION_LIMIT)
                ],
                passkeys=[passkey_from_record(p) for p in ledger.passkeys.list_for_user(uid)],
            )

        self.snapshot = self.store.read(_load)
        return self.snapshot

    def current_user(self) -> User:
        """Cached user, loading it on first use"""
        if self.snapshot is None:
            self.refresh()
        return self.snapshot.user

    def savings_transactions(self, limit: int = 5) -> List[Transaction]:
        uid = self._require_user()
        return self.store.read(
            lambda ledger: [transaction_from_record(t) for t in ledger.transactions.list_for_user(uid, limit=limit)]
        )

    def combined_transactions(self, since: Optional[datetime] = None) -> List[Transaction]:
        """Savings and card history together, newest first"""
        uid = self._require_user()
        return self.store.read(
            lambda ledger: [transaction_from_record(t) for t in ledger.transactions.list_all_for_user(uid, since)]
        )

    def passkeys(self) -> List[Passkey]:
        uid = self._require_user()
        return self.store.read(lambda ledger: [passkey_from_record(p) for p in ledger.passkeys.list_for_user(uid)])

    # ------------------------------------------------------------------
    # Operation boundary
    # ------------------------------------------------------------------

    def _run(self, operation: str, action: Callable[[], OperationResult]) -> OperationResult:
        start_time = time.time()
        try:
            result = action()
        except DomainException as e:
            result = OperationResult.failure(e.message, e.code)
        except SQLAlchemyError:
            logger.exception("Ledger store failure", extra={"operation": operation, "user_id": self.user_id})
            error = ExternalServiceError()
            result = OperationResult.failure(error.message, error.code)
        except Exception:
            logger.exception("Unexpected operation failure", extra={"operation": operation, "user_id": self.user_id})
            error = ExternalServiceError()
            result = OperationResult.failure(error.message, error.code)

        duration_ms = (time.time() - start_time) * 1000
        amount_cents = result.data.get("amount_cents", 0) if result.success else 0
        record_operation(operation, result.success, result.error_code, amount_cents)
        log_operation(self.user_id, operation, result.success, duration_ms, result.error_code, amount_cents)
        return result

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    @staticmethod
    def _load_sender(ledger: Ledger, uid: str) -> Optional[User]:
        record = ledger.users.get(uid)
        return user_from_record(record, with_accounts=False) if record is not None else None

    def _resolve_recipient(self, ledger: Ledger, identifier: str) -> User:
        """
        Match the identifier against account number, email, phone, display
        name, then username (lowercased). The first field with any match
        decides; several users matching on that field is an error rather
        than an arbitrary pick.
        """
        for field in RECIPIENT_LOOKUP_ORDER:
            value = identifier.lower() if field == "username" else identifier
            matches = ledger.users.find_by_field(field, value)
            if len(matches) == 1:
                return user_from_record(matches[0], with_accounts=False)
            if len(matches) > 1:
                raise AmbiguousRecipientError(
                    f'Error: More than one customer matches "{identifier}". '
                    "Please use their account number, email, or phone number."
                )
        raise RecipientNotFoundError(f'Error: Contact or account "{identifier}" not found.')

    def transfer_money(self, recipient_identifier: str, amount_cents: int) -> OperationResult:
        """Move cash from the current user to another customer"""

        def _transfer() -> OperationResult:
            uid = self._require_user()
            if amount_cents <= 0:
                raise InvalidAmountError()
            if amount_cents > MAX_AMOUNT_CENTS:
                raise InvalidAmountError("Error: Amount is too large.")

            identifier = (recipient_identifier or "").strip()
            sender, recipient = self.store.read(
                lambda ledger: (
                    self._load_sender(ledger, uid),
                    self._resolve_recipient(ledger, identifier) if identifier else None,
                )
            )
            if sender is None:
                raise NotAuthenticatedError()
            # Optimistic check; the conditional debit below is authoritative
            if sender.balance_cents < amount_cents:
                raise InsufficientFundsError()
            if recipient is None:
                raise RecipientNotFoundError('Error: A recipient is required.')
            if recipient.uid == uid:
                raise SelfTransferError()

            sender_name = sender.name
            timestamp = self.clock()

            def _move(ledger: Ledger) -> int:
                if not ledger.users.debit_balance(uid, amount_cents):
                    raise InsufficientFundsError()
                if not ledger.users.credit_balance(recipient.uid, amount_cents):
                    raise RecipientNotFoundError(f'Error: Contact or account "{identifier}" not found.')
                ledger.transactions.append(
                    uid=uid,
                    type="debit",
                    amount_cents=amount_cents,
                    description=f"Payment to {recipient.name}",
                    timestamp=timestamp,
                    party_name=recipient.name,
                    category="Transfers",
                )
                ledger.transactions.append(
                    uid=recipient.uid,
                    type="credit",
                    amount_cents=amount_cents,
                    description=f"Payment from {sender_name}",
                    timestamp=timestamp,
                    party_name=sender_name,
                    category="Transfers",
                )
                return ledger.users.get(uid).balance_cents

            new_balance = self.store.run_transaction(_move)
            self._patch_user(balance_cents=new_balance)

            return OperationResult.ok(
                f"Success! You sent {format_currency(amount_cents)} to {recipient.name}.",
                amount_cents=amount_cents,
                recipient_name=recipient.name,
                new_balance_cents=new_balance,
            )

        return self._run("transfer_money", _transfer)

    # ------------------------------------------------------------------
    # Card and loan payments
    # ------------------------------------------------------------------

    def make_account_payment(
        self,
        account_id: str,
        account_type: AccountType | str,
        payment_type: PaymentType | str,
        custom_amount_cents: Optional[int] = None,
    ) -> OperationResult:
        """Pay down a card or loan from the cash balance"""

        def _pay() -> OperationResult:
            uid = self._require_user()
            kind = AccountType(account_type)
            method = PaymentType(payment_type)
            if custom_amount_cents is not None and custom_amount_cents > MAX_AMOUNT_CENTS:
                raise InvalidAmountError("Error: Amount is too large.")
            timestamp = self.clock()

            if kind is AccountType.CARD:
                return self._pay_card(uid, account_id, method, custom_amount_cents, timestamp)
            return self._pay_loan(uid, account_id, method, custom_amount_cents, timestamp)

        return self._run("make_account_payment", _pay)

    def _pay_card(
        self,
        uid: str,
        last4: str,
        method: PaymentType,
        custom_amount_cents: Optional[int],
        timestamp: datetime,
    ) -> OperationResult:
        def _txn(ledger: Ledger):
            if ledger.users.get(uid, for_update=True) is None:
                raise NotAuthenticatedError()
            card = ledger.cards.get_by_last4(uid, last4, for_update=True)
            if card is None:
                raise AccountNotFoundError(f"Error: Card ending in {last4} not found.")

            amount = {
                PaymentType.MINIMUM: card.minimum_payment_cents,
                PaymentType.STATEMENT: card.statement_balance_cents,
                PaymentType.FULL: card.credit_balance_cents,
                PaymentType.CUSTOM: custom_amount_cents or 0,
            }[method]
            if amount <= 0:
                raise InvalidAmountError("Error: A valid payment amount is required.")
            if not ledger.users.debit_balance(uid, amount):
                raise InsufficientFundsError()

            card_number, card_type = card.card_number, card.card_type
            ledger.cards.apply_payment(card_number, amount)
            ledger.transactions.append(
                uid=uid,
                type="debit",
                amount_cents=amount,
                description=f"{card_type} card payment (ending {last4})",
                timestamp=timestamp,
                party_name=f"{card_type} ending {last4}",
                category="Payments",
            )
            updated = ledger.cards.get_by_last4(uid, last4)
            return (
                amount,
                ledger.users.get(uid).balance_cents,
                updated.card_number,
                updated.credit_balance_cents,
                updated.statement_balance_cents,
            )

        amount, new_balance, card_number, credit_balance, statement_balance = self.store.run_transaction(_txn)
        self._patch_user(balance_cents=new_balance)
        self._patch_card(card_number, credit_balance_cents=credit_balance, statement_balance_cents=statement_balance)

        return OperationResult.ok(
            f"Successfully paid {format_currency(amount)} towards your card ending in {last4}.",
            amount_cents=amount,
            account_id=last4,
            account_type=AccountType.CARD.value,
            new_balance_cents=new_balance,
            credit_balance_cents=credit_balance,
            statement_balance_cents=statement_balance,
        )

    def _pay_loan(
        self,
        uid: str,
        loan_id: str,
        method: PaymentType,
        custom_amount_cents: Optional[int],
        timestamp: datetime,
    ) -> OperationResult:
        def _txn(ledger: Ledger):
            if ledger.users.get(uid, for_update=True) is None:
                raise NotAuthenticatedError()
            loan = ledger.loans.get(uid, loan_id, for_update=True)
            if loan is None:
                raise AccountNotFoundError(f"Error: Loan with ID {loan_id} not found.")

            remaining = loan.remaining_balance_cents
            amount = {
                PaymentType.MINIMUM: loan.monthly_payment_cents,
                PaymentType.STATEMENT: loan.monthly_payment_cents,
                PaymentType.FULL: remaining,
                PaymentType.CUSTOM: custom_amount_cents or 0,
            }[method]
            if amount <= 0 and remaining > 0:
                raise InvalidAmountError("Error: A valid payment amount is required.")
            amount = min(amount, remaining)
            if amount <= 0:
                raise InvalidAmountError(f"Error: Loan {loan_id} is already paid off.")
            if not ledger.users.debit_balance(uid, amount):
                raise InsufficientFundsError()

            ledger.loans.apply_payment(loan_id, amount)
            ledger.transactions.append(
                uid=uid,
                type="debit",
                amount_cents=amount,
                description=f"Loan payment ({loan_id})",
                timestamp=timestamp,
                party_name="Nova Bank",
                category="Payments",
            )
            updated = ledger.loans.get(uid, loan_id)
            return (
                amount,
                ledger.users.get(uid).balance_cents,
                updated.remaining_balance_cents,
                LoanStatus(updated.status),
            )

        amount, new_balance, remaining, status = self.store.run_transaction(_txn)
        self._patch_user(balance_cents=new_balance)
        self._patch_loan(loan_id, remaining_balance_cents=remaining, status=status)

        if status is LoanStatus.PAID_OFF:
            message = f"Successfully paid off your loan ({loan_id}). Congratulations!"
        else:
            message = f"Successfully paid {format_currency(amount)} towards your loan ({loan_id})."

        return OperationResult.ok(
            message,
            amount_cents=amount,
            account_id=loan_id,
            account_type=AccountType.LOAN.value,
            new_balance_cents=new_balance,
            remaining_balance_cents=remaining,
            status=status.value,
        )

    # ------------------------------------------------------------------
    # Extensions
    # ------------------------------------------------------------------

    def request_payment_extension(self, account_id: str, account_type: AccountType | str) -> OperationResult:
        """Push the payment due date 14 days past its current value"""

        def _extend() -> OperationResult:
            uid = self._require_user()
            kind = AccountType(account_type)

            def _txn(ledger: Ledger) -> datetime:
                if kind is AccountType.CARD:
                    card = ledger.cards.get_by_last4(uid, account_id, for_update=True)
                    if card is None:
                        raise AccountNotFoundError(f"Error: Card ending in {account_id} not found.")
                    key, current_due = card.card_number, card.payment_due_date
                else:
                    loan = ledger.loans.get(uid, account_id, for_update=True)
                    if loan is None:
                        raise AccountNotFoundError(f"Error: Loan with ID {account_id} not found.")
                    key, current_due = loan.id, loan.payment_due_date

                if not self.underwriting.extension():
                    raise ApplicationRejectedError(
                        "We're sorry, but we were unable to process a payment extension for this account."
                    )

                new_due = add_days(ensure_utc(current_due), EXTENSION_DAYS)
                if kind is AccountType.CARD:
                    ledger.cards.set_due_date(key, new_due)
                else:
                    ledger.loans.set_due_date(key, new_due)
                return new_due

            new_due = self.store.run_transaction(_txn)
            if kind is AccountType.CARD:
                self._patch_card_by_last4(account_id, payment_due_date=new_due)
            else:
                self._patch_loan(account_id, payment_due_date=new_due)

            return OperationResult.ok(
                f"Success! Your payment due date has been extended to {format_long_date(new_due)}.",
                account_id=account_id,
                account_type=kind.value,
                new_due_date=new_due,
            )

        return self._run("request_payment_extension", _extend)

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def apply_for_card(self, details: CardApplicationDetails) -> OperationResult:
        """Instant-decision credit card application"""

        def _apply() -> OperationResult:
            uid = self._require_user()
            if not self.underwriting.card():
                raise ApplicationRejectedError(
                    f"We're sorry, {details.full_name}, but we were unable to approve "
                    "your credit card application at this time."
                )

            issued_at = self.clock()
            card = issue_card(details.card_type, self.underwriting.rng, issued_at, details.annual_income_cents)

            def _txn(ledger: Ledger) -> None:
                if ledger.users.get(uid) is None:
                    raise NotAuthenticatedError()
                ledger.cards.add(uid, card, issued_at)

            self.store.run_transaction(_txn)
            if self.snapshot is not None:
                self.snapshot.user.cards.append(card)

            return OperationResult.ok(
                f"Congratulations, {details.full_name}! Your new {card.card_type.value} card has been approved.",
                card=card,
            )

        return self._run("apply_for_card", _apply)

    def apply_for_loan(self, details: LoanApplicationDetails) -> OperationResult:
        """Instant-decision loan application; approved principal lands in the cash balance"""

        def _apply() -> OperationResult:
            uid = self._require_user()
            if details.loan_amount_cents <= 0 or details.loan_term_months <= 0:
                raise InvalidAmountError("Error: Loan amount and term must be positive.")
            if details.loan_amount_cents > MAX_AMOUNT_CENTS or details.loan_term_months > MAX_LOAN_TERM_MONTHS:
                raise InvalidAmountError("Error: Loan amount or term is too large.")
            if not self.underwriting.loan():
                raise ApplicationRejectedError(
                    f"We're sorry, {details.full_name}, but we were unable to approve your loan "
                    f"application for {format_currency(details.loan_amount_cents)} at this time."
                )

            now = self.clock()
            loan = originate_loan(
                uid,
                details.loan_amount_cents,
                details.loan_term_months,
                self.underwriting.loan_interest_rate(),
                now,
            )

            def _txn(ledger: Ledger) -> int:
                if ledger.users.get(uid, for_update=True) is None:
                    raise NotAuthenticatedError()
                ledger.loans.add(loan)
                ledger.users.credit_balance(uid, loan.loan_amount_cents)
                ledger.transactions.append(
                    uid=uid,
                    type="credit",
                    amount_cents=loan.loan_amount_cents,
                    description=f"Loan disbursement ({loan.id})",
                    timestamp=now,
                    party_name="Nova Bank",
                    category="Loans",
                )
                return ledger.users.get(uid).balance_cents

            new_balance = self.store.run_transaction(_txn)
            self._patch_user(balance_cents=new_balance)
            if self.snapshot is not None:
                self.snapshot.user.loans.append(loan)

            return OperationResult.ok(
                f"Congratulations! Your loan for {format_currency(loan.loan_amount_cents)} has been approved.",
                amount_cents=loan.loan_amount_cents,
                loan=loan,
                new_balance_cents=new_balance,
            )

        return self._run("apply_for_loan", _apply)

    # ------------------------------------------------------------------
    # Passkeys
    # ------------------------------------------------------------------

    def register_passkey(self, credential_id: str) -> OperationResult:
        """Bind a credential id produced by the platform registration ceremony"""

        def _register() -> OperationResult:
            uid = self._require_user()
            passkey = Passkey(id=credential_id, created=self.clock())
            self.store.run_transaction(lambda ledger: ledger.passkeys.add(uid, passkey))
            if self.snapshot is not None:
                self.snapshot.passkeys.append(passkey)
            return OperationResult.ok("Passkey created successfully!", passkey=passkey)

        return self._run("register_passkey", _register)

    def remove_passkey(self, passkey_id: str) -> OperationResult:
        def _remove() -> OperationResult:
            uid = self._require_user()
            removed = self.store.run_transaction(lambda ledger: ledger.passkeys.delete(uid, passkey_id))
            if not removed:
                raise AccountNotFoundError("Error: Passkey not found.")
            if self.snapshot is not None:
                self.snapshot.passkeys = [p for p in self.snapshot.passkeys if p.id != passkey_id]
            return OperationResult.ok("Passkey removed.")

        return self._run("remove_passkey", _remove)

    # ------------------------------------------------------------------
    # Narrow optimistic patches to the cached snapshot
    # ------------------------------------------------------------------

    def _patch_user(self, **changes) -> None:
        if self.snapshot is not None:
            self.snapshot.user = replace(self.snapshot.user, **changes)

    def _patch_card(self, card_number: str, **changes) -> None:
        if self.snapshot is None:
            return
        self.snapshot.user.cards = [
            replace(card, **changes) if card.card_number == card_number else card
            for card in self.snapshot.user.cards
        ]

    def _patch_card_by_last4(self, last4: str, **changes) -> None:
        if self.snapshot is None:
            return
        for card in self.snapshot.user.cards:
            if card.last4 == last4:
                self._patch_card(card.card_number, **changes)
                return

    def _patch_loan(self, loan_id: str, **changes) -> None:
        if self.snapshot is None:
            return
        self.snapshot.user.loans = [
            replace(loan, **changes) if loan.id == loan_id else loan for loan in self.snapshot.user.loans
        ]


def find_card(user: User, last4: Optional[str]) -> Optional[Card]:
    """Card by last 4 digits, or the primary (first) card when none is given"""
    if not last4:
        return user.cards[0] if user.cards else None
    return next((card for card in user.cards if card.last4 == last4), None)


def active_loans(user: User) -> List[Loan]:
    return [loan for loan in user.loans if loan.status is LoanStatus.ACTIVE]
