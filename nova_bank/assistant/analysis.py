"""Batch AI analyses: spending insights and payment extraction from images"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from nova_bank.config import settings
from nova_bank.domain.exceptions import ExternalServiceError
from nova_bank.domain.models import InsightsData, Transaction
from nova_bank.services.insights import insights_from_dict
from nova_bank.utils.date_utils import utcnow
from nova_bank.utils.money import to_cents

logger = logging.getLogger(__name__)


class StructuredGenerator(Protocol):
    async def generate_structured(
        self,
        prompt: str,
        schema: Dict[str, Any],
        schema_name: str,
        image: Optional[bytes] = None,
        mime_type: str = "image/jpeg",
    ) -> Dict[str, Any]:
        ...


def _object(properties: Dict[str, Any], description: Optional[str] = None) -> Dict[str, Any]:
    schema = {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }
    if description:
        schema["description"] = description
    return schema


def _array(items: Dict[str, Any], description: str) -> Dict[str, Any]:
    return {"type": "array", "description": description, "items": items}


SINGLE_LANGUAGE_INSIGHTS_SCHEMA = _object(
    {
        "spendingBreakdown": _array(
            _object({"name": {"type": "string"}, "value": {"type": "number"}}),
            "Categorical breakdown of spending in the last 30 days.",
        ),
        "overallSpendingChange": {
            "type": "number",
            "description": "Overall percentage change in spending compared to the previous 30 days.",
        },
        "topCategoryChanges": _array(
            _object({"category": {"type": "string"}, "changePercent": {"type": "number"}}),
            "Top 2 categories with the largest spending change.",
        ),
        "subscriptions": _array(
            _object({"name": {"type": "string"}, "amount": {"type": "number"}}),
            "Identified recurring monthly subscriptions.",
        ),
        "cashFlowForecast": {
            "type": "string",
            "description": "A brief, one-sentence forecast of the user's cash flow for the next 30 days.",
        },
        "savingOpportunities": _array(
            _object({"suggestion": {"type": "string"}, "potentialSavings": {"type": "number"}}),
            "Two actionable saving tips.",
        ),
    }
)

PAYMENT_DETAILS_SCHEMA = _object(
    {
        "recipientName": {"type": "string"},
        "amount": {"type": "number"},
        "recipientAccountNumber": {"type": "string"},
    }
)

PAYMENT_EXTRACTION_PROMPT = """Analyze the provided image, which could be a photo of a handwritten note or a document. Extract the following three pieces of information for a financial transaction:
1. The recipient's full name (recipientName).
2. The monetary amount (amount).
3. The recipient's account number (recipientAccountNumber), which should be a string of digits.

Return the information as a JSON object. If any piece of information is unclear or missing, return an empty string for that field (0 for the amount)."""


def insights_schema(languages: List[str]) -> Dict[str, Any]:
    return _object({lang: SINGLE_LANGUAGE_INSIGHTS_SCHEMA for lang in languages})


def format_transaction_line(tx: Transaction) -> str:
    direction = "IN" if tx.type == "credit" else "OUT"
    return f'{direction}: ${tx.amount_cents / 100:.2f} for "{tx.description}" on {tx.timestamp.date().isoformat()}'


class SpendingAnalyzer:
    """Produces InsightsData for every supported language in one structured call"""

    def __init__(
        self,
        generator: StructuredGenerator,
        languages: Optional[List[str]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.generator = generator
        self.languages = languages or list(settings.supported_languages)
        self.clock = clock

    def build_prompt(self, transactions: List[Transaction]) -> str:
        today = self.clock().date().isoformat()
        transaction_list = "\n".join(format_transaction_line(tx) for tx in transactions)
        keys = ", ".join(f'"{lang}"' for lang in self.languages)

        return f"""You are an expert financial analyst named Nova. Today is {today}. 'This month' means the last 30 days from today. 'Last month' means the 30 days prior to that. All monetary values must be numbers in dollars.

Here are the user's transactions for the last 60 days:
{transaction_list}

Provide a complete financial analysis in a single JSON object matching the provided schema. The object must contain the top-level keys {keys}.
For each language key, provide the full analysis. All text within a language key's object (like category names, suggestions, forecasts) MUST be in that specific language.

For each language, the analysis must include:
1.  **spendingBreakdown**: Group all 'OUT' (debit) transactions from 'this month' into meaningful categories. Sum the total for each category.
2.  **overallSpendingChange** and **topCategoryChanges**: Compare total spending for 'this month' vs 'last month'. Calculate the overall percentage change. Find the top 2 categories with the biggest percentage change (positive or negative).
3.  **subscriptions**: Identify recurring monthly subscriptions from all transactions.
4.  **cashFlowForecast** and **savingOpportunities**: Identify likely income from large, recurring 'IN' (credit) transactions. Based on income and spending, provide a brief, one-sentence cash flow forecast for the next 30 days, and two actionable saving suggestions with estimated monthly savings."""

    async def analyze(self, transactions: List[Transaction]) -> Dict[str, InsightsData]:
        """
        Raises:
            ExternalServiceError: The chat service failed or returned an incomplete analysis
        """
        payload = await self.generator.generate_structured(
            self.build_prompt(transactions),
            insights_schema(self.languages),
            "spending_insights",
        )
        try:
            return {lang: insights_from_dict(payload[lang]) for lang in self.languages}
        except (KeyError, TypeError, ValueError) as e:
            raise ExternalServiceError(f"Incomplete insights from chat service: {e}") from e


@dataclass
class PaymentDetails:
    recipient_name: str
    amount_cents: int
    recipient_account_number: str

    @property
    def has_recipient(self) -> bool:
        return bool(self.recipient_name or self.recipient_account_number)

    @property
    def recipient_identifier(self) -> str:
        """Account number when readable, else the name"""
        return self.recipient_account_number or self.recipient_name


async def extract_payment_details(
    generator: StructuredGenerator,
    image: bytes,
    mime_type: str = "image/jpeg",
) -> PaymentDetails:
    """
    Read recipient and amount from a photo of a note or document.

    Raises:
        ExternalServiceError: The chat service failed or returned malformed fields
    """
    payload = await generator.generate_structured(
        PAYMENT_EXTRACTION_PROMPT,
        PAYMENT_DETAILS_SCHEMA,
        "payment_details",
        image=image,
        mime_type=mime_type,
    )
    try:
        return PaymentDetails(
            recipient_name=str(payload.get("recipientName") or "").strip(),
            amount_cents=to_cents(payload.get("amount") or 0),
            recipient_account_number=str(payload.get("recipientAccountNumber") or "").strip(),
        )
    except (ArithmeticError, TypeError, ValueError) as e:
        raise ExternalServiceError(f"Invalid payment details from chat service: {e}") from e
