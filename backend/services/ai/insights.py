"""
Narrative trading insights from the AI gateway.

Three calls are exposed:

- ``get_trade_insight``: a short coaching paragraph for one metric group.
- ``analyze_patterns``: a forced ``identify_patterns`` tool call returning
  structured high-probability setups.
- ``auto_map_headers``: maps arbitrary CSV headers onto the standard import
  fields.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Literal, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, ValidationError

from config import settings
from models.lighter import normalize_epoch_seconds, to_float
from services.ai.llm_provider import (
    GatewayClient,
    GatewayResponseError,
    LLMGatewayError,
    LLMMessage,
    ToolDefinition,
    parse_json_content,
)
from services.exchange_mappings import STANDARD_FIELDS
from utils.logger import get_logger

logger = get_logger("ai_insights")

_COACH = "You are an elite trading psychologist and performance coach. "

PROMPT_TEMPLATES: dict[str, str] = {
    "side_analysis": _COACH
    + "Analyze this trader's Long vs Short performance data and provide 2-3 sentences of insight. "
    "Focus on: Is their strategy better suited for bull or bear markets? Do they have a directional bias? "
    "Provide one actionable recommendation.",
    "maker_taker": _COACH
    + "Analyze this trader's Maker vs Taker performance data and provide 2-3 sentences of insight. "
    "Focus on: Are they more profitable when providing liquidity (Maker) or taking it (Taker)? "
    "Does their edge come from patience or aggression? Provide one actionable recommendation.",
    "limit_market": _COACH
    + "Analyze this trader's Limit vs Market order performance data and provide 2-3 sentences of insight. "
    "Focus on: Do they profit more from planned Limit orders or reactive Market orders? "
    "What does this reveal about their trading style? Provide one actionable recommendation.",
    "time_pattern": _COACH
    + "Analyze this trader's time-based performance patterns and provide 2-3 sentences of insight. "
    "Focus on: Which hours or days show consistent profitability or losses? "
    "What psychological factors might explain these patterns? Provide one actionable recommendation.",
    "market_performance": _COACH
    + "Analyze this trader's per-market performance data and provide 2-3 sentences of insight. "
    "Focus on: Which markets show the best risk-adjusted returns? "
    "Is there a mismatch between win rate and payoff ratio? Provide one actionable recommendation.",
    "overall_performance": _COACH
    + "Analyze this trader's overall KPI metrics and provide 3-4 sentences of comprehensive insight. "
    "Focus on: What story do these numbers tell about their trading approach? "
    "What is their biggest strength and weakness? Provide 2-3 prioritized recommendations for improvement.",
}

DEFAULT_METRIC_TYPE = "overall_performance"
INSIGHT_FALLBACK = "Unable to generate insight."

PATTERN_SYSTEM_PROMPT = """You are an expert trading pattern analyst. Analyze the provided trading data to identify high-probability setups.

Focus on:
1. Time-based patterns (best hours/days for trading)
2. Position size patterns (optimal size ranges)
3. Market volatility patterns (price movement correlations)
4. Win/loss streak patterns
5. Entry/exit timing patterns

Provide actionable insights with specific thresholds and conditions that lead to higher win rates."""

IDENTIFY_PATTERNS_TOOL = ToolDefinition(
    name="identify_patterns",
    description="Identify high-probability trading patterns from historical data",
    parameters={
        "type": "object",
        "properties": {
            "patterns": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "description": {"type": "string"},
                        "conditions": {"type": "array", "items": {"type": "string"}},
                        "winRate": {"type": "number"},
                        "avgPnL": {"type": "number"},
                        "sampleSize": {"type": "number"},
                        "confidence": {"type": "string", "enum": ["low", "medium", "high"]},
                        "recommendation": {"type": "string"},
                    },
                    "required": [
                        "name",
                        "description",
                        "conditions",
                        "winRate",
                        "sampleSize",
                        "confidence",
                        "recommendation",
                    ],
                    "additionalProperties": False,
                },
            },
            "summary": {"type": "string"},
            "topRecommendations": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["patterns", "summary", "topRecommendations"],
        "additionalProperties": False,
    },
)

HEADER_MAPPING_FIELDS = [field["key"] for field in STANDARD_FIELDS]

HEADER_MAPPING_PROMPT = """You are a data mapping expert for trading CSV files. Your job is to analyze CSV column headers from trading platforms and map them to our standard format.

Our standard fields are:
- date: The timestamp or date of the trade (required)
- market: The trading pair, symbol, or asset name (required)
- side: The direction of the trade - Long/Short or Buy/Sell (required)
- size: The position size or amount traded
- price: The entry or exit price
- closedPnL: The realized profit or loss (required)
- fee: Trading fees or commissions
- role: Whether the trader was Maker or Taker
- type: Order type - Limit or Market

You MUST respond with ONLY a valid JSON object mapping our standard field names to the user's column headers.
Do not include any explanations, markdown, or additional text.
If you cannot find a good match for a field, use an empty string "".

Example response format:
{"date":"Time","market":"Symbol","side":"Direction","size":"Amount","price":"Price","closedPnL":"PnL","fee":"Fee","role":"","type":""}"""


class TradingPattern(BaseModel):
    name: str
    description: str
    conditions: list[str] = Field(default_factory=list)
    winRate: float
    avgPnL: Optional[float] = None
    sampleSize: float
    confidence: Literal["low", "medium", "high"]
    recommendation: str


class PatternAnalysis(BaseModel):
    patterns: list[TradingPattern] = Field(default_factory=list)
    summary: str = ""
    topRecommendations: list[str] = Field(default_factory=list)


_client: Optional[GatewayClient] = None


def get_gateway_client() -> GatewayClient:
    global _client
    if _client is None:
        _client = GatewayClient()
    return _client


def set_gateway_client(client: Optional[GatewayClient]) -> None:
    """Swap the shared client; ``None`` rebuilds it from settings on next use."""
    global _client
    _client = client


async def get_trade_insight(
    metric_type: str, data: Any, client: Optional[GatewayClient] = None
) -> str:
    """Return a coaching paragraph for *data* using the metric's prompt."""
    client = client or get_gateway_client()
    system_prompt = PROMPT_TEMPLATES.get(metric_type) or PROMPT_TEMPLATES[DEFAULT_METRIC_TYPE]
    user_prompt = (
        "Here is the trader's performance data:\n"
        f"{json.dumps(data, indent=2, default=str)}\n\n"
        "Provide your analysis."
    )
    logger.info("Generating trade insight", metric_type=metric_type)

    response = await client.chat(
        messages=[
            LLMMessage(role="system", content=system_prompt),
            LLMMessage(role="user", content=user_prompt),
        ],
        max_tokens=500,
        temperature=0.7,
    )
    return response.content.strip() or INSIGHT_FALLBACK


def summarize_trade(trade: dict, tz: Optional[ZoneInfo] = None) -> dict:
    """Compact per-trade record sent to the pattern analyst."""
    tz = tz or ZoneInfo(settings.ANALYSIS_TIMEZONE)
    timestamp = trade.get("timestamp") or 0
    moment = datetime.fromtimestamp(normalize_epoch_seconds(timestamp), tz)
    pnl = to_float(trade.get("pnl"))
    return {
        "timestamp": timestamp,
        "market_id": trade.get("market_id"),
        "size": trade.get("size"),
        "price": trade.get("price"),
        "usd_amount": trade.get("usd_amount"),
        "hour": moment.hour,
        # Sunday is 0
        "day": (moment.weekday() + 1) % 7,
        "pnl": pnl,
        "isWin": pnl > 0,
    }


async def analyze_patterns(
    trades: list[dict], client: Optional[GatewayClient] = None
) -> PatternAnalysis:
    client = client or get_gateway_client()
    summary = [summarize_trade(t) for t in trades]
    user_prompt = (
        f"Analyze these {len(trades)} trades and identify high-probability trading patterns:\n"
        f"{json.dumps(summary, indent=2, default=str)}\n\n"
        "Identify patterns and provide specific trading rules based on historical performance."
    )
    logger.info("Analyzing trade patterns", trade_count=len(trades))

    arguments = await client.call_tool(
        messages=[
            LLMMessage(role="system", content=PATTERN_SYSTEM_PROMPT),
            LLMMessage(role="user", content=user_prompt),
        ],
        tool=IDENTIFY_PATTERNS_TOOL,
    )
    try:
        return PatternAnalysis.model_validate(arguments)
    except ValidationError as e:
        raise GatewayResponseError(f"Malformed pattern analysis: {e.error_count()} errors") from e


def empty_header_mapping() -> dict[str, str]:
    return {key: "" for key in HEADER_MAPPING_FIELDS}


async def auto_map_headers(
    headers: list[str],
    sample: Optional[dict] = None,
    client: Optional[GatewayClient] = None,
) -> dict[str, str]:
    """Map the standard import fields onto *headers*.

    Values that are not one of *headers* come back as ``""``; an
    unparseable reply yields an all-empty mapping.
    """
    if not isinstance(headers, list) or not headers:
        raise ValueError("headers must be a non-empty list")

    client = client or get_gateway_client()
    sample_preview = f"\nSample data row:\n{json.dumps(sample, indent=2)}" if sample else ""
    user_prompt = (
        "Analyze these CSV headers and map them to our standard trading fields:\n\n"
        f"User's CSV headers: {json.dumps(headers)}{sample_preview}\n\n"
        "Return ONLY a JSON object mapping our fields "
        f"({', '.join(HEADER_MAPPING_FIELDS)}) to the user's headers."
    )
    logger.info("Auto-mapping CSV headers", header_count=len(headers))

    response = await client.chat(
        messages=[
            LLMMessage(role="system", content=HEADER_MAPPING_PROMPT),
            LLMMessage(role="user", content=user_prompt),
        ]
    )

    mapping = empty_header_mapping()
    try:
        parsed = parse_json_content(response.content)
    except LLMGatewayError:
        logger.warning("Header mapping reply was not JSON", content=response.content[:200])
        return mapping
    if not isinstance(parsed, dict):
        return mapping

    known = set(headers)
    for key in HEADER_MAPPING_FIELDS:
        value = parsed.get(key)
        if isinstance(value, str) and value in known:
            mapping[key] = value
    return mapping
