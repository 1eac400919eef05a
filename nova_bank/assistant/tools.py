"""Tool registry - the operations the chat service may call

Each tool is declared once as a pydantic argument model. The JSON schema
handed to the chat service is generated from that model, and the same model
validates the arguments the service sends back, so the declaration and the
check can never drift apart.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nova_bank.domain.exceptions import ToolArgumentError, UnknownToolError
from nova_bank.domain.products import MAX_LOAN_TERM_MONTHS
from nova_bank.utils.money import MAX_AMOUNT_DOLLARS


class ToolArguments(BaseModel):
    model_config = ConfigDict(extra="forbid")


class TransferMoneyArgs(ToolArguments):
    recipient_name: Optional[str] = Field(
        None,
        description="The full name, first name, or username of the person to receive the money. "
        "Use this OR recipient_account_number OR recipient_email OR recipient_phone.",
    )
    recipient_account_number: Optional[str] = Field(
        None,
        description="The 16-digit account number of the recipient. "
        "Use this OR recipient_name OR recipient_email OR recipient_phone.",
    )
    recipient_email: Optional[str] = Field(
        None,
        description="The email address of the recipient. "
        "Use this OR recipient_name OR recipient_account_number OR recipient_phone.",
    )
    recipient_phone: Optional[str] = Field(
        None,
        description="The phone number of the recipient. "
        "Use this OR recipient_name OR recipient_account_number OR recipient_email.",
    )
    amount: float = Field(
        description="The amount of money to send, in dollars.", le=MAX_AMOUNT_DOLLARS, allow_inf_nan=False
    )

    def recipient_identifier(self) -> str:
        """Most specific identifier supplied: account number, email, phone, then name"""
        return (
            self.recipient_account_number
            or self.recipient_email
            or self.recipient_phone
            or self.recipient_name
            or ""
        )


class CardStatementArgs(ToolArguments):
    card_last4: Optional[str] = Field(
        None,
        description="The last 4 digits of the card number to query. "
        "If not provided, defaults to the user's primary card.",
    )


class CardTransactionsArgs(ToolArguments):
    card_last4: Optional[str] = Field(
        None,
        description="The last 4 digits of the card number. If not provided, defaults to the primary card.",
    )
    limit: Optional[int] = Field(None, description="The number of recent transactions to return. Defaults to 5.")


class MakeAccountPaymentArgs(ToolArguments):
    account_id: str = Field(description="The last 4 digits of the card number or the full loan ID.")
    account_type: Literal["card", "loan"] = Field(description="The type of account to pay.")
    payment_type: Literal["minimum", "statement", "full", "custom"] = Field(
        description="'minimum' for the minimum due, 'statement' for the statement balance (cards only), "
        "'full' for the total outstanding balance, or 'custom' for a specific amount."
    )
    amount: Optional[float] = Field(
        None,
        description="The specific amount to pay in dollars. ONLY required if payment_type is 'custom'.",
        le=MAX_AMOUNT_DOLLARS,
        allow_inf_nan=False,
    )


class RequestExtensionArgs(ToolArguments):
    account_type: Literal["card", "loan"] = Field(description="The type of account.")
    account_id: str = Field(description="The last 4 digits of the card number or the loan ID.")


class CardApplication(ToolArguments):
    address: str = Field(description="The user's full residential address.")
    date_of_birth: str = Field(description="The user's date of birth (e.g., YYYY-MM-DD).")
    employment_status: str = Field(description="e.g., Employed, Self-Employed, Unemployed.")
    employer: str = Field(description="Name of the user's employer. Can be 'N/A'.")
    annual_income: float = Field(
        description="The user's total annual income in dollars.", ge=0, le=MAX_AMOUNT_DOLLARS, allow_inf_nan=False
    )
    card_type: Literal["Visa", "Mastercard"] = Field(description="The preferred card network.")


class ApplyForCardArgs(ToolArguments):
    application_details: CardApplication = Field(description="All user-provided application details.")


class LoanApplication(ToolArguments):
    loan_amount: float = Field(
        description="The amount of money the user wants to borrow, in dollars.",
        le=MAX_AMOUNT_DOLLARS,
        allow_inf_nan=False,
    )
    loan_term: int = Field(
        description="The desired loan term in months (e.g., 24, 36, 48, 60).", le=MAX_LOAN_TERM_MONTHS
    )
    address: str = Field(description="The user's full residential address.")
    date_of_birth: str = Field(description="The user's date of birth (e.g., YYYY-MM-DD).")
    employment_status: str = Field(description="e.g., Employed, Self-Employed, Unemployed.")
    annual_income: float = Field(
        description="The user's total annual income in dollars.", ge=0, le=MAX_AMOUNT_DOLLARS, allow_inf_nan=False
    )


class ApplyForLoanArgs(ToolArguments):
    application_details: LoanApplication = Field(description="All user-provided loan application details.")


class AccountTransactionsArgs(ToolArguments):
    limit: Optional[int] = Field(None, description="The number of recent transactions to return. Defaults to 5.")


class AccountBalanceArgs(ToolArguments):
    pass


class SpendingAnalysisArgs(ToolArguments):
    period: Optional[str] = Field(
        None,
        description="The time period for the analysis, e.g., 'this month', 'last week'. Defaults to 'this month'.",
    )


class ExistingInsightsArgs(ToolArguments):
    pass


def _inline_schema(node: Any, defs: Dict[str, Any]) -> Any:
    """Resolve $ref, collapse Optional unions, and drop pydantic titles"""
    if isinstance(node, list):
        return [_inline_schema(item, defs) for item in node]
    if not isinstance(node, dict):
        return node

    if "$ref" in node:
        target = defs[node["$ref"].rsplit("/", 1)[-1]]
        merged = {**target, **{k: v for k, v in node.items() if k != "$ref"}}
        return _inline_schema(merged, defs)

    if len(node.get("allOf", [])) == 1:
        merged = {**node["allOf"][0], **{k: v for k, v in node.items() if k != "allOf"}}
        return _inline_schema(merged, defs)

    if "anyOf" in node:
        variants = [v for v in node["anyOf"] if v.get("type") != "null"]
        if len(variants) == 1:
            merged = {**variants[0], **{k: v for k, v in node.items() if k != "anyOf"}}
            return _inline_schema(merged, defs)

    out = {}
    for key, value in node.items():
        if key in ("title", "$defs", "default"):
            continue
        if key == "properties":
            out[key] = {name: _inline_schema(prop, defs) for name, prop in value.items()}
        else:
            out[key] = _inline_schema(value, defs)
    return out


def parameters_schema(model: Type[ToolArguments]) -> Dict[str, Any]:
    raw = model.model_json_schema()
    schema = _inline_schema(raw, raw.get("$defs", {}))
    schema.setdefault("properties", {})
    schema.setdefault("required", [])
    return schema


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    arguments: Type[ToolArguments]
    sensitive: bool = False

    def schema(self) -> Dict[str, Any]:
        """Function declaration in the chat-completions tools format"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters_schema(self.arguments),
            },
        }


TOOL_DEFINITIONS: List[ToolDefinition] = [
    ToolDefinition(
        name="transfer_money",
        description="Initiates a payment from the current user to a specified recipient.",
        arguments=TransferMoneyArgs,
        sensitive=True,
    ),
    ToolDefinition(
        name="get_card_statement",
        description="Retrieves the current statement details for a user's credit card, "
        "including balance, minimum payment, and due date.",
        arguments=CardStatementArgs,
    ),
    ToolDefinition(
        name="get_card_transactions",
        description="Fetches the recent transaction history for a specified credit card.",
        arguments=CardTransactionsArgs,
    ),
    ToolDefinition(
        name="make_account_payment",
        description="Makes a payment towards a user's credit card bill or loan from their main account.",
        arguments=MakeAccountPaymentArgs,
        sensitive=True,
    ),
    ToolDefinition(
        name="request_payment_extension",
        description="Requests a 14-day payment extension for a credit card or loan.",
        arguments=RequestExtensionArgs,
        sensitive=True,
    ),
    ToolDefinition(
        name="apply_for_credit_card",
        description="Processes a new credit card application for the user. All necessary personal and "
        "financial information must be collected before calling this function.",
        arguments=ApplyForCardArgs,
        sensitive=True,
    ),
    ToolDefinition(
        name="apply_for_loan",
        description="Processes a new loan application for the user after collecting necessary personal "
        "and financial information.",
        arguments=ApplyForLoanArgs,
        sensitive=True,
    ),
    ToolDefinition(
        name="get_account_transactions",
        description="Fetches the recent transaction history for the user's main savings account.",
        arguments=AccountTransactionsArgs,
    ),
    ToolDefinition(
        name="get_account_balance",
        description="Retrieves the user's current account balances, including savings, total credit card "
        "debt, and total loan debt.",
        arguments=AccountBalanceArgs,
    ),
    ToolDefinition(
        name="get_spending_analysis",
        description="Analyzes the user's spending habits using AI. Covers both bank and card transactions.",
        arguments=SpendingAnalysisArgs,
    ),
    ToolDefinition(
        name="get_existing_insights",
        description="Retrieves pre-calculated spending insights for the user, such as spending breakdown by "
        "category, trends, and financial advice. This is the fastest way to get a general overview of "
        "recent spending. Use this tool FIRST for any questions related to spending analysis, spending "
        "habits, financial summaries, or advice.",
        arguments=ExistingInsightsArgs,
    ),
]

TOOL_REGISTRY: Dict[str, ToolDefinition] = {tool.name: tool for tool in TOOL_DEFINITIONS}

SENSITIVE_TOOLS = frozenset(tool.name for tool in TOOL_DEFINITIONS if tool.sensitive)


def tool_schemas() -> List[Dict[str, Any]]:
    return [tool.schema() for tool in TOOL_DEFINITIONS]


def validate_arguments(name: str, raw_arguments: str) -> ToolArguments:
    """
    Parse a tool call's raw JSON arguments against its declared model.

    Raises:
        UnknownToolError: The name is not in the registry
        ToolArgumentError: The arguments are not valid JSON or do not match the model
    """
    definition = TOOL_REGISTRY.get(name)
    if definition is None:
        raise UnknownToolError(f"Error: Unknown tool '{name}'.")

    try:
        return definition.arguments.model_validate_json(raw_arguments or "{}")
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'arguments'}: {error['msg']}" for error in e.errors()
        )
        raise ToolArgumentError(f"Error: Invalid arguments for {name}: {problems}") from e
