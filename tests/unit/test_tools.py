"""Unit tests for the tool registry, argument validation, and prompt assembly"""

import pytest
from datetime import timedelta

from nova_bank.assistant.messages import notice
from nova_bank.assistant.prompts import build_system_instruction, card_instruction, loan_instruction
from nova_bank.assistant.tools import (
    SENSITIVE_TOOLS,
    TOOL_REGISTRY,
    ApplyForCardArgs,
    TransferMoneyArgs,
    tool_schemas,
    validate_arguments,
)
from nova_bank.domain.exceptions import ToolArgumentError, UnknownToolError
from nova_bank.domain.models import Card, CardNetwork, Loan, LoanStatus
from tests.fakes import FIXED_NOW


def _keys(node):
    """Every dict key anywhere in a JSON schema"""
    if isinstance(node, dict):
        for key, value in node.items():
            yield key
            yield from _keys(value)
    elif isinstance(node, list):
        for item in node:
            yield from _keys(item)


def _schema(name):
    return next(s for s in tool_schemas() if s["function"]["name"] == name)["function"]["parameters"]


def make_loan(loan_id, amount_cents=1_000_000, status=LoanStatus.ACTIVE) -> Loan:
    return Loan(
        id=loan_id,
        uid="user-1",
        loan_amount_cents=amount_cents,
        interest_rate=6.0,
        term_months=36,
        monthly_payment_cents=30_422,
        remaining_balance_cents=amount_cents,
        status=status,
        start_date=FIXED_NOW,
        payment_due_date=FIXED_NOW + timedelta(days=20),
    )


def make_card(number="4111111111111234", network=CardNetwork.VISA) -> Card:
    return Card(
        card_number=number,
        expiry_date="08/29",
        cvv="123",
        card_type=network,
        credit_limit_cents=500_000,
        credit_balance_cents=0,
        apr=19.99,
        statement_balance_cents=0,
        minimum_payment_cents=0,
        payment_due_date=FIXED_NOW,
    )


# ----------------------------------------------------------------------
# Registry and schemas
# ----------------------------------------------------------------------


def test_registry_declares_every_tool():
    """Test the eleven tools and which of them need re-authentication"""
    assert set(TOOL_REGISTRY) == {
        "transfer_money",
        "get_card_statement",
        "get_card_transactions",
        "make_account_payment",
        "request_payment_extension",
        "apply_for_credit_card",
        "apply_for_loan",
        "get_account_transactions",
        "get_account_balance",
        "get_spending_analysis",
        "get_existing_insights",
    }
    assert SENSITIVE_TOOLS == {
        "transfer_money",
        "make_account_payment",
        "request_payment_extension",
        "apply_for_credit_card",
        "apply_for_loan",
    }


def test_schemas_use_function_tool_format():
    """Test every declaration is a self-contained function schema"""
    schemas = tool_schemas()

    assert len(schemas) == len(TOOL_REGISTRY)
    for schema in schemas:
        assert schema["type"] == "function"
        assert schema["function"]["description"]
        parameters = schema["function"]["parameters"]
        assert parameters["type"] == "object"
        keys = set(_keys(parameters))
        assert not keys & {"$ref", "$defs", "anyOf", "allOf"}
        assert "title" not in keys


def test_transfer_schema_optional_identifiers():
    """Test only the amount is required and optional identifiers stay plain strings"""
    parameters = _schema("transfer_money")

    assert parameters["required"] == ["amount"]
    assert parameters["properties"]["amount"]["type"] == "number"
    assert parameters["properties"]["recipient_email"]["type"] == "string"
    assert parameters["additionalProperties"] is False


def test_nested_application_schema_is_inlined():
    """Test the card application object is embedded with its enum"""
    parameters = _schema("apply_for_credit_card")
    details = parameters["properties"]["application_details"]

    assert details["type"] == "object"
    assert details["properties"]["card_type"]["enum"] == ["Visa", "Mastercard"]
    assert set(details["required"]) == {
        "address",
        "date_of_birth",
        "employment_status",
        "employer",
        "annual_income",
        "card_type",
    }


def test_payment_schema_enums():
    """Test account and payment types are closed enums"""
    properties = _schema("make_account_payment")["properties"]

    assert properties["account_type"]["enum"] == ["card", "loan"]
    assert properties["payment_type"]["enum"] == ["minimum", "statement", "full", "custom"]


# ----------------------------------------------------------------------
# Argument validation
# ----------------------------------------------------------------------


def test_validate_arguments_parses_model():
    """Test raw JSON becomes the declared argument model"""
    args = validate_arguments("transfer_money", '{"recipient_name": "Bob", "amount": 200}')

    assert isinstance(args, TransferMoneyArgs)
    assert args.amount == 200.0
    assert args.recipient_identifier() == "Bob"


def test_recipient_identifier_prefers_account_number():
    """Test the most specific identifier wins"""
    args = TransferMoneyArgs(
        recipient_name="Bob", recipient_email="bob@bank.test", recipient_account_number="1" * 16, amount=1
    )
    assert args.recipient_identifier() == "1" * 16

    args = TransferMoneyArgs(recipient_name="Bob", recipient_phone="+15550001234", amount=1)
    assert args.recipient_identifier() == "+15550001234"


def test_validate_arguments_nested():
    """Test nested application details validate as a unit"""
    raw = (
        '{"application_details": {"address": "1 Main St", "date_of_birth": "1990-01-01", '
        '"employment_status": "Employed", "employer": "Acme", "annual_income": 75000, "card_type": "Visa"}}'
    )
    args = validate_arguments("apply_for_credit_card", raw)

    assert isinstance(args, ApplyForCardArgs)
    assert args.application_details.card_type == "Visa"


def test_validate_arguments_empty_for_no_arg_tools():
    """Test tools without parameters accept empty arguments"""
    validate_arguments("get_account_balance", "")
    validate_arguments("get_existing_insights", "{}")


def test_unknown_tool_rejected():
    """Test names outside the registry"""
    with pytest.raises(UnknownToolError) as exc_info:
        validate_arguments("drain_account", "{}")
    assert exc_info.value.message == "Error: Unknown tool 'drain_account'."


@pytest.mark.parametrize(
    "name,raw",
    [
        ("transfer_money", '{"recipient_name": "Bob"}'),  # missing amount
        ("transfer_money", '{"recipient_name": "Bob", "amount": 5, "memo": "x"}'),  # undeclared field
        ("make_account_payment", '{"account_id": "1234", "account_type": "card", "payment_type": "weekly"}'),
        ("get_card_statement", "{not json"),
    ],
)
def test_invalid_arguments_rejected(name, raw):
    """Test mismatches with the declared schema never reach a handler"""
    with pytest.raises(ToolArgumentError) as exc_info:
        validate_arguments(name, raw)
    assert exc_info.value.message.startswith(f"Error: Invalid arguments for {name}: ")


# ----------------------------------------------------------------------
# Prompts and notices
# ----------------------------------------------------------------------


def test_loan_instruction_without_active_loans():
    """Test paid-off loans do not count"""
    text = loan_instruction([make_loan("loan-old", status=LoanStatus.PAID_OFF)])
    assert "no active loans" in text


def test_loan_instruction_single_loan_uses_its_id():
    """Test one active loan is assumed without asking"""
    text = loan_instruction([make_loan("loan-abc123")])
    assert "'loan-abc123'" in text
    assert "You do not need to ask for the loan ID" in text


def test_loan_instruction_multiple_loans_requires_clarification():
    """Test several active loans are listed with amounts and the model must ask"""
    text = loan_instruction([make_loan("loan-a", 1_000_000), make_loan("loan-b", 250_000)])

    assert "multiple active loans" in text
    assert "$10,000.00 (ID: 'loan-a')" in text
    assert "$2,500.00 (ID: 'loan-b')" in text
    assert "MUST ask for clarification" in text


def test_card_instruction():
    """Test cards are described by network and last four digits"""
    assert card_instruction([]) == "The user has no credit cards."
    text = card_instruction([make_card(), make_card("5222333344445678", CardNetwork.MASTERCARD)])
    assert text == "The user has the following card(s): Visa ending in 1234, Mastercard ending in 5678."


def test_system_instruction_language_and_context():
    """Test persona, account context, and the response-language constraint"""
    text = build_system_instruction("Ana Reyes", "es", [make_card()], [make_loan("loan-abc123")])

    assert "user named Ana Reyes" in text
    assert "Visa ending in 1234" in text
    assert "'loan-abc123'" in text
    assert "You MUST respond exclusively in Spanish" in text
    for tool in TOOL_REGISTRY:
        assert f"'{tool}'" in text


def test_notices_localized_with_fallback():
    """Test notices render in the session language and fall back to English"""
    assert notice("greeting", "es", name="Ana").startswith("¡Hola Ana!")
    assert notice("action_cancelled", "tl") == "Kinansela ang aksyon."
    assert notice("action_cancelled", "fr") == "Action cancelled."
