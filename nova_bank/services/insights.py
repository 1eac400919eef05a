"""Insights cache - lazily generated, persisted spending analysis per user"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol

from nova_bank.domain.models import (
    CachedInsight,
    CategoryChange,
    InsightsData,
    SavingOpportunity,
    SpendingBreakdownItem,
    Subscription,
    Transaction,
)
from nova_bank.infrastructure.database.repositories import LedgerStore, transaction_from_record
from nova_bank.infrastructure.observability.metrics import insights_generation_counter
from nova_bank.utils.date_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

INSIGHTS_KEY = "latest"


class Analyzer(Protocol):
    async def analyze(self, transactions: List[Transaction]) -> Dict[str, InsightsData]:
        ...


def insights_from_dict(payload: Dict[str, Any]) -> InsightsData:
    """Parse one language's analysis in the wire shape (camelCase keys)"""
    return InsightsData(
        spending_breakdown=[
            SpendingBreakdownItem(name=item["name"], value=float(item["value"]))
            for item in payload.get("spendingBreakdown", [])
        ],
        overall_spending_change=float(payload.get("overallSpendingChange", 0.0)),
        top_category_changes=[
            CategoryChange(category=item["category"], change_percent=float(item["changePercent"]))
            for item in payload.get("topCategoryChanges", [])
        ],
        cash_flow_forecast=payload.get("cashFlowForecast", ""),
        saving_opportunities=[
            SavingOpportunity(suggestion=item["suggestion"], potential_savings=float(item["potentialSavings"]))
            for item in payload.get("savingOpportunities", [])
        ],
        subscriptions=[
            Subscription(name=item["name"], amount=float(item["amount"])) for item in payload.get("subscriptions", [])
        ],
    )


def insights_to_dict(data: InsightsData) -> Dict[str, Any]:
    return {
        "spendingBreakdown": [{"name": i.name, "value": i.value} for i in data.spending_breakdown],
        "overallSpendingChange": data.overall_spending_change,
        "topCategoryChanges": [
            {"category": c.category, "changePercent": c.change_percent} for c in data.top_category_changes
        ],
        "cashFlowForecast": data.cash_flow_forecast,
        "savingOpportunities": [
            {"suggestion": s.suggestion, "potentialSavings": s.potential_savings} for s in data.saving_opportunities
        ],
        "subscriptions": [{"name": s.name, "amount": s.amount} for s in data.subscriptions],
    }


class InsightsCache:
    """
    Per-user insights, persisted under the key "latest".

    ``load_or_generate`` returns the stored blob when present. On a miss it
    needs at least ``min_debits`` debit transactions across savings and card
    history; with fewer it returns None without calling the analyzer. The
    ``in_progress`` flag makes overlapping calls no-ops that return None.
    """

    def __init__(
        self,
        store: LedgerStore,
        analyzer: Analyzer,
        user_id: str,
        lookback_days: int = 60,
        min_debits: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.analyzer = analyzer
        self.user_id = user_id
        self.lookback_days = lookback_days
        self.min_debits = min_debits
        self.clock = clock
        self.current: Optional[CachedInsight] = None
        self.in_progress = False

    def _load_persisted(self) -> Optional[CachedInsight]:
        def _get(ledger) -> Optional[CachedInsight]:
            record = ledger.insights.get(self.user_id, INSIGHTS_KEY)
            if record is None:
                return None
            return CachedInsight(
                data={lang: insights_from_dict(payload) for lang, payload in record.data.items()},
                last_updated=ensure_utc(record.last_updated),
            )

        return self.store.read(_get)

    def _history(self) -> List[Transaction]:
        return self.store.read(
            lambda ledger: [transaction_from_record(t) for t in ledger.transactions.list_all_for_user(self.user_id)]
        )

    def peek(self) -> Optional[CachedInsight]:
        """Cached insights if any exist, never generating"""
        if self.current is None:
            self.current = self._load_persisted()
        return self.current

    async def load_or_generate(self) -> Optional[CachedInsight]:
        if self.in_progress:
            insights_generation_counter.labels(outcome="busy").inc()
            return None
        if self.current is not None:
            return self.current

        self.in_progress = True
        try:
            cached = self._load_persisted()
            if cached is not None:
                self.current = cached
                return cached

            history = self._history()
            debits = [t for t in history if t.type == "debit"]
            if len(debits) < self.min_debits:
                insights_generation_counter.labels(outcome="insufficient_data").inc()
                logger.info(
                    "Not enough history for insights",
                    extra={"user_id": self.user_id, "debit_count": len(debits)},
                )
                return None

            now = self.clock()
            cutoff = now - timedelta(days=self.lookback_days)
            recent = [t for t in history if t.timestamp >= cutoff]

            try:
                data = await self.analyzer.analyze(recent)
            except Exception:
                insights_generation_counter.labels(outcome="failed").inc()
                raise

            payload = {lang: insights_to_dict(value) for lang, value in data.items()}
            self.store.run_transaction(lambda ledger: ledger.insights.put(self.user_id, payload, now, INSIGHTS_KEY))
            self.current = CachedInsight(data=data, last_updated=now)
            insights_generation_counter.labels(outcome="generated").inc()
            logger.info(
                "Insights generated",
                extra={"user_id": self.user_id, "transaction_count": len(recent)},
            )
            return self.current
        finally:
            self.in_progress = False

    async def refresh(self) -> Optional[CachedInsight]:
        """Drop the persisted and in-memory cache, then regenerate"""
        if self.in_progress:
            insights_generation_counter.labels(outcome="busy").inc()
            return None
        self.store.run_transaction(lambda ledger: ledger.insights.delete_all(self.user_id))
        self.current = None
        return await self.load_or_generate()
