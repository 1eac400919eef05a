"""Tool dispatch table - maps each registered tool to its handler

Every handler takes validated arguments and returns a ``ToolOutcome``: a
display message for the conversation and a structured result for the chat
service. Failures never escape ``dispatch``; they become negative outcomes
the assistant can talk about.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

from sqlalchemy.exc import SQLAlchemyError

from nova_bank.assistant.tools import (
    TOOL_REGISTRY,
    AccountTransactionsArgs,
    ApplyForCardArgs,
    ApplyForLoanArgs,
    CardStatementArgs,
    CardTransactionsArgs,
    MakeAccountPaymentArgs,
    RequestExtensionArgs,
    ToolArguments,
    TransferMoneyArgs,
    validate_arguments,
)
from nova_bank.domain.exceptions import DomainException, ExternalServiceError
from nova_bank.domain.models import (
    CardApplicationDetails,
    CardNetwork,
    LoanApplicationDetails,
    OperationResult,
)
from nova_bank.infrastructure.clients.chat import ToolCall
from nova_bank.services.insights import InsightsCache, insights_to_dict
from nova_bank.services.operations import AccountOperationsService, find_card
from nova_bank.utils.date_utils import format_long_date
from nova_bank.utils.money import format_currency, to_cents
from nova_bank.utils.serialization import to_jsonable

logger = logging.getLogger(__name__)

DEFAULT_TRANSACTION_LIMIT = 5


@dataclass
class ToolOutcome:
    success: bool
    message: str
    result: Dict[str, Any]

    @classmethod
    def failure(cls, message: str) -> "ToolOutcome":
        return cls(success=False, message=message, result={"success": False, "message": message})


def outcome_from_operation(result: OperationResult) -> ToolOutcome:
    payload = {"success": result.success, "message": result.message}
    payload.update(to_jsonable(result.data))
    return ToolOutcome(success=result.success, message=result.message, result=payload)


Handler = Callable[[Any], Awaitable[ToolOutcome]]


class ToolDispatcher:
    """Executes tool calls for one signed-in session"""

    def __init__(self, operations: AccountOperationsService, insights: InsightsCache, language: str = "en"):
        self.operations = operations
        self.insights = insights
        self.language = language
        self.handlers: Dict[str, Handler] = {
            "transfer_money": self._transfer_money,
            "get_card_statement": self._get_card_statement,
            "get_card_transactions": self._get_card_transactions,
            "make_account_payment": self._make_account_payment,
            "request_payment_extension": self._request_payment_extension,
            "apply_for_credit_card": self._apply_for_credit_card,
            "apply_for_loan": self._apply_for_loan,
            "get_account_transactions": self._get_account_transactions,
            "get_account_balance": self._get_account_balance,
            "get_spending_analysis": self._get_spending_analysis,
            "get_existing_insights": self._get_existing_insights,
        }
        missing = set(TOOL_REGISTRY) - set(self.handlers)
        if missing:
            raise RuntimeError(f"No handler for registered tools: {sorted(missing)}")

    async def dispatch(self, call: ToolCall) -> ToolOutcome:
        try:
            args = validate_arguments(call.name, call.arguments)
            return await self.handlers[call.name](args)
        except DomainException as e:
            return ToolOutcome.failure(e.message)
        except SQLAlchemyError:
            logger.exception("Ledger store failure during tool call", extra={"tool": call.name})
            return ToolOutcome.failure(ExternalServiceError().message)
        except Exception:
            logger.exception("Unexpected failure during tool call", extra={"tool": call.name})
            return ToolOutcome.failure(ExternalServiceError().message)

    # ------------------------------------------------------------------
    # Money movement (delegated to account operations)
    # ------------------------------------------------------------------

    async def _transfer_money(self, args: TransferMoneyArgs) -> ToolOutcome:
        result = self.operations.transfer_money(args.recipient_identifier(), to_cents(args.amount))
        return outcome_from_operation(result)

    async def _make_account_payment(self, args: MakeAccountPaymentArgs) -> ToolOutcome:
        custom = to_cents(args.amount) if args.amount is not None else None
        result = self.operations.make_account_payment(args.account_id, args.account_type, args.payment_type, custom)
        return outcome_from_operation(result)

    async def _request_payment_extension(self, args: RequestExtensionArgs) -> ToolOutcome:
        result = self.operations.request_payment_extension(args.account_id, args.account_type)
        return outcome_from_operation(result)

    async def _apply_for_credit_card(self, args: ApplyForCardArgs) -> ToolOutcome:
        application = args.application_details
        details = CardApplicationDetails(
            full_name=self.operations.current_user().name,
            address=application.address,
            date_of_birth=application.date_of_birth,
            employment_status=application.employment_status,
            employer=application.employer,
            annual_income_cents=to_cents(application.annual_income),
            card_type=CardNetwork(application.card_type),
        )
        outcome = outcome_from_operation(self.operations.apply_for_card(details))
        # Never hand full card credentials to the chat service
        card = outcome.result.pop("card", None)
        if card:
            outcome.result["card"] = {
                "card_type": card["card_type"],
                "last4": card["card_number"][-4:],
                "credit_limit": card["credit_limit"],
                "apr": card["apr"],
            }
        return outcome

    async def _apply_for_loan(self, args: ApplyForLoanArgs) -> ToolOutcome:
        application = args.application_details
        details = LoanApplicationDetails(
            full_name=self.operations.current_user().name,
            address=application.address,
            date_of_birth=application.date_of_birth,
            employment_status=application.employment_status,
            annual_income_cents=to_cents(application.annual_income),
            loan_amount_cents=to_cents(application.loan_amount),
            loan_term_months=application.loan_term,
        )
        return outcome_from_operation(self.operations.apply_for_loan(details))

    # ------------------------------------------------------------------
    # Read-only queries, always against fresh store state
    # ------------------------------------------------------------------

    async def _get_account_balance(self, args: ToolArguments) -> ToolOutcome:
        user = self.operations.refresh().user
        savings = user.balance_cents
        card_debt = sum(card.credit_balance_cents for card in user.cards)
        loan_debt = sum(loan.remaining_balance_cents for loan in user.loans)
        message = (
            "Here's your balance summary:\n"
            f"- Savings: {format_currency(savings)}\n"
            f"- Total Card Debt: {format_currency(card_debt)}\n"
            f"- Total Loan Debt: {format_currency(loan_debt)}"
        )
        result = to_jsonable(
            {
                "success": True,
                "savings_balance_cents": savings,
                "total_card_balance_cents": card_debt,
                "total_loan_balance_cents": loan_debt,
            }
        )
        return ToolOutcome(success=True, message=message, result=result)

    async def _get_account_transactions(self, args: AccountTransactionsArgs) -> ToolOutcome:
        limit = args.limit or DEFAULT_TRANSACTION_LIMIT
        transactions = self.operations.savings_transactions(limit)
        if not transactions:
            return ToolOutcome(
                success=True,
                message="You have no transactions in your savings account.",
                result={"success": True, "transactions": []},
            )
        lines = "\n".join(
            f"- {'+' if tx.type == 'credit' else '-'}{format_currency(tx.amount_cents)} "
            f'for "{tx.description}" on {format_long_date(tx.timestamp)}'
            for tx in transactions
        )
        return ToolOutcome(
            success=True,
            message=f"Here are your last {len(transactions)} savings account transactions:\n{lines}",
            result={"success": True, "transactions": to_jsonable(transactions)},
        )

    async def _get_card_statement(self, args: CardStatementArgs) -> ToolOutcome:
        card = find_card(self.operations.refresh().user, args.card_last4)
        if card is None:
            return ToolOutcome.failure("Card not found.")
        message = (
            f"Your {card.card_type.value} ending in {card.last4} has a statement balance of "
            f"{format_currency(card.statement_balance_cents)}. The minimum payment is "
            f"{format_currency(card.minimum_payment_cents)}, due on {format_long_date(card.payment_due_date)}."
        )
        result = {
            "success": True,
            "card_type": card.card_type.value,
            "last4": card.last4,
            "credit_limit_cents": card.credit_limit_cents,
            "credit_balance_cents": card.credit_balance_cents,
            "statement_balance_cents": card.statement_balance_cents,
            "minimum_payment_cents": card.minimum_payment_cents,
            "apr": card.apr,
            "payment_due_date": card.payment_due_date,
        }
        return ToolOutcome(success=True, message=message, result=to_jsonable(result))

    async def _get_card_transactions(self, args: CardTransactionsArgs) -> ToolOutcome:
        card = find_card(self.operations.refresh().user, args.card_last4)
        if card is None:
            return ToolOutcome.failure("Card not found.")
        limit = args.limit or DEFAULT_TRANSACTION_LIMIT
        recent = card.transactions[:limit]
        lines = "\n".join(
            f"- {tx.description}: {format_currency(tx.amount_cents)} on {format_long_date(tx.timestamp)}"
            for tx in recent
        )
        return ToolOutcome(
            success=True,
            message=f"Here are the latest {len(recent)} transactions for your card ending in {card.last4}:\n{lines}",
            result={"success": True, "transactions": to_jsonable(recent)},
        )

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    async def _get_spending_analysis(self, args: ToolArguments) -> ToolOutcome:
        cached = await self.insights.load_or_generate()
        data = cached.data.get(self.language) if cached else None

        if data is None or not data.spending_breakdown:
            return ToolOutcome(
                success=True,
                message="You have no spending data to analyze for this period.",
                result={"success": True, "total": 0, "breakdown": []},
            )

        lines = "\n".join(
            f"- {item.name}: {format_currency(to_cents(item.value))}" for item in data.spending_breakdown
        )
        return ToolOutcome(
            success=True,
            message=f"Based on my analysis, you've spent a total of "
            f"{format_currency(to_cents(data.total_spending))} recently. Here's the breakdown:\n{lines}",
            result={
                "success": True,
                "total": data.total_spending,
                "breakdown": insights_to_dict(data)["spendingBreakdown"],
            },
        )

    async def _get_existing_insights(self, args: ToolArguments) -> ToolOutcome:
        cached = self.insights.peek()
        data = cached.data.get(self.language) if cached else None

        if data is None:
            return ToolOutcome(
                success=False,
                message="I'm generating your first spending analysis. This might take a moment...",
                result={
                    "success": False,
                    "message": "No cached insights found. Please use the 'get_spending_analysis' tool "
                    "to generate them now.",
                },
            )

        top = ", ".join(item.name for item in data.spending_breakdown[:2])
        message = (
            "Here are your latest spending insights:\n"
            f"You've spent a total of {format_currency(to_cents(data.total_spending))} recently. "
            f"The top categories are {top}. Your overall spending has changed by "
            f"{data.overall_spending_change:.1f}% compared to the last period. Would you like more details?"
        )
        return ToolOutcome(success=True, message=message, result={"success": True, "insights": insights_to_dict(data)})
