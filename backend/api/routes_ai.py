"""
API routes for AI insight features.

Provides endpoints for:
- Per-metric coaching insights
- Pattern discovery over trade history
- Gateway status
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from services.account_tracker import tracker_registry
from services.ai import LLMGatewayError, analyze_patterns, get_gateway_client, get_trade_insight
from services.ai.insights import PROMPT_TEMPLATES

logger = logging.getLogger(__name__)

router = APIRouter()


class InsightRequest(BaseModel):
    metric_type: str = Field(default="overall_performance")
    data: Any = Field(default_factory=dict)


class PatternRequest(BaseModel):
    trades: Optional[list[dict]] = Field(
        default=None, description="Trades with timestamp, market_id, size, price, usd_amount, pnl"
    )
    wallet_address: Optional[str] = Field(
        default=None, description="Use the trades of a tracked account instead"
    )


@router.get("/ai/status")
async def ai_status():
    client = get_gateway_client()
    return {
        "configured": client.configured,
        "model": client.model,
        "metric_types": sorted(PROMPT_TEMPLATES),
    }


@router.post("/ai/insight")
async def trade_insight(request: InsightRequest):
    try:
        insight = await get_trade_insight(request.metric_type, request.data)
    except LLMGatewayError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"metric_type": request.metric_type, "insight": insight}


@router.post("/ai/patterns")
async def trade_patterns(request: PatternRequest):
    trades = request.trades
    if trades is None and request.wallet_address:
        try:
            tracker = tracker_registry.get(request.wallet_address)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if tracker is None:
            raise HTTPException(status_code=404, detail="Account is not being tracked")
        trades = tracker.snapshot()["trades"]
    if not trades:
        raise HTTPException(status_code=400, detail="No trades to analyze")

    try:
        analysis = await analyze_patterns(trades)
    except LLMGatewayError as e:
        logger.error("Pattern analysis failed: %s", e)
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return analysis.model_dump()
