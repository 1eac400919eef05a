"""Spending insights endpoints"""

from typing import Optional

from fastapi import APIRouter, Depends

from nova_bank.api.dependencies import get_banking_session
from nova_bank.domain.models import CachedInsight
from nova_bank.services.insights import insights_to_dict
from nova_bank.services.sessions import BankingSession

router = APIRouter()


def _render(cached: Optional[CachedInsight]) -> dict:
    if cached is None:
        return {"insights": None}
    return {
        "insights": {lang: insights_to_dict(data) for lang, data in cached.data.items()},
        "last_updated": cached.last_updated.isoformat(),
    }


@router.get("/insights")
async def get_insights(session: BankingSession = Depends(get_banking_session)):
    """
    Cached insights, generated on first request.

    Returns ``insights: null`` when there is not enough history yet or a
    generation is already running.
    """
    return _render(await session.insights.load_or_generate())


@router.post("/insights/refresh")
async def refresh_insights(session: BankingSession = Depends(get_banking_session)):
    return _render(await session.insights.refresh())
