"""Unit tests for tool handlers"""

import json

import pytest
from sqlalchemy.exc import OperationalError

from nova_bank.assistant.dispatch import ToolDispatcher
from nova_bank.assistant.tools import TOOL_REGISTRY
from nova_bank.infrastructure.clients.chat import ToolCall


@pytest.fixture
def alice(seed):
    uid = seed.user("Alice Smith", balance_cents=100_000)
    seed.card(uid)
    seed.loan(uid)
    seed.user("Bob Jones", balance_cents=0)
    return uid


@pytest.fixture
def dispatcher(alice, make_operations, insights_for) -> ToolDispatcher:
    return ToolDispatcher(make_operations(alice), insights_for(alice), "en")


async def run(dispatcher, name, arguments=None):
    return await dispatcher.dispatch(ToolCall("c1", name, json.dumps(arguments or {})))


async def test_account_balance_summary(dispatcher):
    """Test savings, card debt, and loan debt in one overview"""
    outcome = await run(dispatcher, "get_account_balance")

    assert outcome.success is True
    assert outcome.message == (
        "Here's your balance summary:\n"
        "- Savings: $1,000.00\n"
        "- Total Card Debt: $500.00\n"
        "- Total Loan Debt: $8,000.00"
    )
    assert outcome.result["savings_balance"] == 1000.0


async def test_account_transactions_empty(dispatcher):
    """Test an empty savings history"""
    outcome = await run(dispatcher, "get_account_transactions")

    assert outcome.message == "You have no transactions in your savings account."
    assert outcome.result == {"success": True, "transactions": []}


async def test_account_transactions_listing(dispatcher, seed, alice):
    """Test signed amounts with descriptions and dates"""
    seed.transaction(alice, 1_250, description="Groceries", days_ago=1)
    seed.transaction(alice, 20_000, type="credit", description="Refund", days_ago=2)

    outcome = await run(dispatcher, "get_account_transactions", {"limit": 2})

    assert outcome.message == (
        "Here are your last 2 savings account transactions:\n"
        '- -$12.50 for "Groceries" on March 9, 2026\n'
        '- +$200.00 for "Refund" on March 8, 2026'
    )
    assert len(outcome.result["transactions"]) == 2


async def test_card_statement_defaults_to_primary_card(dispatcher):
    """Test statement details for the first card when none is named"""
    outcome = await run(dispatcher, "get_card_statement")

    assert outcome.message == (
        "Your Visa ending in 1234 has a statement balance of $400.00. "
        "The minimum payment is $25.00, due on March 15, 2026."
    )
    assert outcome.result["last4"] == "1234"
    assert "card_number" not in outcome.result


async def test_card_statement_unknown_card(dispatcher):
    """Test a card the user does not hold"""
    outcome = await run(dispatcher, "get_card_statement", {"card_last4": "0000"})

    assert outcome.success is False
    assert outcome.message == "Card not found."


async def test_card_transactions(dispatcher, seed, alice):
    """Test the latest card entries, newest first"""
    seed.transaction(alice, 4_000, description="Bookstore", days_ago=3, card_id="4111111111111234")
    seed.transaction(alice, 1_500, description="Cinema", days_ago=1, card_id="4111111111111234")

    outcome = await run(dispatcher, "get_card_transactions", {"card_last4": "1234", "limit": 1})

    assert outcome.message == (
        "Here are the latest 1 transactions for your card ending in 1234:\n- Cinema: $15.00 on March 9, 2026"
    )


async def test_card_transactions_counts_what_is_shown(dispatcher, seed, alice):
    """Test the heading reports the entries listed when fewer exist than requested"""
    seed.transaction(alice, 4_000, description="Bookstore", days_ago=3, card_id="4111111111111234")
    seed.transaction(alice, 1_500, description="Cinema", days_ago=1, card_id="4111111111111234")

    outcome = await run(dispatcher, "get_card_transactions", {"card_last4": "1234", "limit": 10})

    assert outcome.message.startswith("Here are the latest 2 transactions for your card ending in 1234:\n")
    assert len(outcome.result["transactions"]) == 2


async def test_transfer_converts_dollars_to_cents(dispatcher, make_operations, alice):
    """Test the dollar amount from the model moves the exact cents"""
    outcome = await run(dispatcher, "transfer_money", {"recipient_name": "Bob Jones", "amount": 10.005})

    assert outcome.success is True
    assert outcome.result["amount_cents"] == 1_001
    assert make_operations(alice).refresh().user.balance_cents == 100_000 - 1_001


async def test_custom_payment_amount(dispatcher):
    """Test custom card payments carry the converted amount"""
    outcome = await run(
        dispatcher,
        "make_account_payment",
        {"account_id": "1234", "account_type": "card", "payment_type": "custom", "amount": 25.5},
    )

    assert outcome.message == "Successfully paid $25.50 towards your card ending in 1234."


async def test_card_application_hides_credentials(dispatcher):
    """Test the chat service never receives the full card number or CVV"""
    outcome = await run(
        dispatcher,
        "apply_for_credit_card",
        {
            "application_details": {
                "address": "1 Main St",
                "date_of_birth": "1990-01-01",
                "employment_status": "Employed",
                "employer": "Acme",
                "annual_income": 45000,
                "card_type": "Visa",
            }
        },
    )

    assert outcome.success is True
    assert outcome.message == "Congratulations, Alice Smith! Your new Visa card has been approved."
    card = outcome.result["card"]
    assert set(card) == {"card_type", "last4", "credit_limit", "apr"}
    assert card["credit_limit"] == 10_000.0


async def test_loan_application(dispatcher):
    """Test loan applications use the signed-in user's name and converted amounts"""
    outcome = await run(
        dispatcher,
        "apply_for_loan",
        {
            "application_details": {
                "loan_amount": 5000,
                "loan_term": 24,
                "address": "1 Main St",
                "date_of_birth": "1990-01-01",
                "employment_status": "Employed",
                "annual_income": 45000,
            }
        },
    )

    assert outcome.message == "Congratulations! Your loan for $5,000.00 has been approved."
    assert outcome.result["new_balance_cents"] == 600_000


async def test_invalid_arguments_become_failures(dispatcher):
    """Test schema violations are reported, not raised"""
    outcome = await run(dispatcher, "transfer_money", {"recipient_name": "Bob Jones"})

    assert outcome.success is False
    assert outcome.message.startswith("Error: Invalid arguments for transfer_money:")


@pytest.mark.parametrize("amount", [1e20, float("inf")])
async def test_unusable_transfer_amount_becomes_failure(dispatcher, make_operations, alice, amount):
    """Test amounts that cannot be held in cents are refused without moving money"""
    outcome = await run(dispatcher, "transfer_money", {"recipient_name": "Bob Jones", "amount": amount})

    assert outcome.success is False
    assert outcome.message.startswith("Error: Invalid arguments for transfer_money:")
    assert make_operations(alice).refresh().user.balance_cents == 100_000


def test_every_registered_tool_has_a_handler(dispatcher):
    """Test the handler table covers the whole tool registry"""
    assert set(dispatcher.handlers) == set(TOOL_REGISTRY)


async def test_store_failure_becomes_failure(dispatcher, monkeypatch):
    """Test ledger errors on read tools are reported, not raised"""

    def _broken():
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(dispatcher.operations, "refresh", _broken)

    outcome = await run(dispatcher, "get_account_balance")

    assert outcome.success is False
    assert outcome.message == "The service is temporarily unavailable. Please try again later."


async def test_spending_analysis_without_data(dispatcher):
    """Test too little history reports no spending"""
    outcome = await run(dispatcher, "get_spending_analysis", {"period": "this month"})

    assert outcome.message == "You have no spending data to analyze for this period."
    assert outcome.result == {"success": True, "total": 0, "breakdown": []}


async def test_spending_analysis_with_data(dispatcher, seed, alice):
    """Test the breakdown for the session language"""
    for day in (1, 2, 3):
        seed.transaction(alice, 1_250, days_ago=day)

    outcome = await run(dispatcher, "get_spending_analysis")

    assert "a total of $440.50 recently" in outcome.message
    assert "- Groceries: $320.50" in outcome.message
    assert outcome.result["breakdown"][1] == {"name": "Dining", "value": 120.0}


async def test_existing_insights_miss_points_to_generation(dispatcher):
    """Test a cache miss tells the model to generate"""
    outcome = await run(dispatcher, "get_existing_insights")

    assert outcome.success is False
    assert outcome.message == "I'm generating your first spending analysis. This might take a moment..."
    assert "get_spending_analysis" in outcome.result["message"]


async def test_existing_insights_hit(dispatcher, seed, alice):
    """Test cached insights are summarized without calling the chat service again"""
    for day in (1, 2, 3):
        seed.transaction(alice, 1_250, days_ago=day)
    await run(dispatcher, "get_spending_analysis")

    outcome = await run(dispatcher, "get_existing_insights")

    assert outcome.success is True
    assert outcome.message.startswith("Here are your latest spending insights:\n")
    assert "The top categories are Groceries, Dining." in outcome.message
    assert "changed by 12.5%" in outcome.message
