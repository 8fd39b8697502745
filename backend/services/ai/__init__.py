"""
AI insight layer.

Sends trading metrics to an OpenAI-compatible gateway for:
- Coaching insights per metric group
- Structured pattern discovery over trade history
- CSV header auto-mapping
"""

from __future__ import annotations

from services.ai.insights import (
    PatternAnalysis,
    analyze_patterns,
    auto_map_headers,
    get_gateway_client,
    get_trade_insight,
    set_gateway_client,
)
from services.ai.llm_provider import (
    GatewayClient,
    GatewayPaymentRequiredError,
    GatewayRateLimitError,
    LLMGatewayError,
    LLMMessage,
    LLMResponse,
    ToolCall,
    ToolDefinition,
)

__all__ = [
    "GatewayClient",
    "GatewayPaymentRequiredError",
    "GatewayRateLimitError",
    "LLMGatewayError",
    "LLMMessage",
    "LLMResponse",
    "PatternAnalysis",
    "ToolCall",
    "ToolDefinition",
    "analyze_patterns",
    "auto_map_headers",
    "get_gateway_client",
    "get_trade_insight",
    "set_gateway_client",
]
