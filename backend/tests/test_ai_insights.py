import json
import sys
from pathlib import Path
from zoneinfo import ZoneInfo

import httpx
import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from services.ai.insights import (
    INSIGHT_FALLBACK,
    PROMPT_TEMPLATES,
    analyze_patterns,
    auto_map_headers,
    get_trade_insight,
    summarize_trade,
)
from services.ai.llm_provider import (
    GatewayClient,
    GatewayNotConfiguredError,
    GatewayPaymentRequiredError,
    GatewayRateLimitError,
    GatewayResponseError,
    parse_json_content,
)


def _completion(content="", tool_calls=None):
    message = {"role": "assistant", "content": content}
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    return {
        "choices": [{"message": message}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }


def _client(*responses):
    """Client whose transport replays *responses* (status, body) in order."""
    queue = list(responses)
    requests = []

    def handler(request):
        requests.append(json.loads(request.content))
        status, body = queue.pop(0)
        return httpx.Response(status, json=body)

    client = GatewayClient(
        api_key="test-key",
        base_url="https://gateway.test/v1",
        model="test-model",
        transport=httpx.MockTransport(handler),
        retry_base_delay=0,
    )
    client.requests = requests
    return client


# ---------------------------------------------------------------------------
# Gateway client
# ---------------------------------------------------------------------------


def test_parse_json_content_tolerates_fences_and_prose():
    assert parse_json_content('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_content('Sure! {"a": 2} hope that helps') == {"a": 2}
    with pytest.raises(GatewayResponseError):
        parse_json_content("no json here")


@pytest.mark.asyncio
async def test_unconfigured_client_raises():
    client = GatewayClient(api_key="")
    assert client.configured is False
    with pytest.raises(GatewayNotConfiguredError) as exc_info:
        await client.chat([])
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_retries_server_errors_then_succeeds():
    client = _client((500, {"error": "boom"}), (200, _completion("ok")))

    response = await client.chat([])

    assert response.content == "ok"
    assert response.usage.total_tokens == 15
    assert len(client.requests) == 2


@pytest.mark.asyncio
async def test_rate_limit_after_retries():
    client = _client(*[(429, {"error": {"message": "slow down"}})] * 3)

    with pytest.raises(GatewayRateLimitError) as exc_info:
        await client.chat([])

    assert exc_info.value.status_code == 429
    assert len(client.requests) == 3


@pytest.mark.asyncio
async def test_payment_required_is_not_retried():
    client = _client((402, {"error": "no credits"}))

    with pytest.raises(GatewayPaymentRequiredError):
        await client.chat([])
    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_reply_without_choices_is_a_response_error():
    client = _client((200, {"choices": []}))
    with pytest.raises(GatewayResponseError):
        await client.chat([])


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_trade_insight_uses_metric_prompt():
    client = _client((200, _completion("  Trade less at night.  ")))

    text = await get_trade_insight("side_analysis", {"long": {"pnl": 10}}, client=client)

    assert text == "Trade less at night."
    sent = client.requests[0]
    assert sent["model"] == "test-model"
    assert sent["max_tokens"] == 500
    assert sent["messages"][0]["content"] == PROMPT_TEMPLATES["side_analysis"]
    assert '"pnl": 10' in sent["messages"][1]["content"]


@pytest.mark.asyncio
async def test_unknown_metric_falls_back_to_overall_prompt():
    client = _client((200, _completion("")))

    text = await get_trade_insight("nonsense", {}, client=client)

    assert text == INSIGHT_FALLBACK
    assert client.requests[0]["messages"][0]["content"] == PROMPT_TEMPLATES["overall_performance"]


def test_summarize_trade_uses_local_hour_and_sunday_first_day():
    # 2025-01-05 02:00 UTC is Saturday 21:00 in New York.
    summary = summarize_trade(
        {"timestamp": 1736042400000, "market_id": 0, "pnl": "12.5"},
        tz=ZoneInfo("America/New_York"),
    )

    assert summary["hour"] == 21
    assert summary["day"] == 6
    assert summary["pnl"] == 12.5
    assert summary["isWin"] is True


@pytest.mark.asyncio
async def test_analyze_patterns_forces_tool_call():
    arguments = {
        "patterns": [
            {
                "name": "Morning momentum",
                "description": "Longs opened 09:00-11:00 win more often",
                "conditions": ["hour between 9 and 11", "side long"],
                "winRate": 68,
                "sampleSize": 25,
                "confidence": "medium",
                "recommendation": "Concentrate size in the morning",
            }
        ],
        "summary": "Mornings are your edge.",
        "topRecommendations": ["Avoid late-night trades"],
    }
    tool_call = {
        "id": "call_1",
        "type": "function",
        "function": {"name": "identify_patterns", "arguments": json.dumps(arguments)},
    }
    client = _client((200, _completion(tool_calls=[tool_call])))

    result = await analyze_patterns([{"timestamp": 1736042400, "pnl": 3}], client=client)

    assert result.patterns[0].winRate == 68
    assert result.topRecommendations == ["Avoid late-night trades"]
    sent = client.requests[0]
    assert sent["tool_choice"] == {"type": "function", "function": {"name": "identify_patterns"}}
    assert sent["tools"][0]["function"]["name"] == "identify_patterns"


@pytest.mark.asyncio
async def test_analyze_patterns_without_tool_call():
    client = _client((200, _completion("I think you trade too much.")))
    with pytest.raises(GatewayResponseError, match="No tool call"):
        await analyze_patterns([], client=client)


@pytest.mark.asyncio
async def test_analyze_patterns_rejects_malformed_arguments():
    tool_call = {"id": "c", "function": {"name": "identify_patterns", "arguments": '{"patterns": "nope"}'}}
    client = _client((200, _completion(tool_calls=[tool_call])))
    with pytest.raises(GatewayResponseError):
        await analyze_patterns([], client=client)


@pytest.mark.asyncio
async def test_auto_map_keeps_only_real_headers():
    reply = '```json\n{"date": "Time", "market": "Pair", "side": "Made Up", "closedPnL": "PnL"}\n```'
    client = _client((200, _completion(reply)))

    mapping = await auto_map_headers(["Time", "Pair", "Dir", "PnL"], {"Time": "2025-01-01"}, client=client)

    assert mapping["date"] == "Time"
    assert mapping["market"] == "Pair"
    assert mapping["side"] == ""
    assert mapping["closedPnL"] == "PnL"
    assert mapping["fee"] == ""


@pytest.mark.asyncio
async def test_auto_map_unparseable_reply_is_all_empty():
    client = _client((200, _completion("I could not find anything")))

    mapping = await auto_map_headers(["a"], client=client)

    assert set(mapping.values()) == {""}


@pytest.mark.asyncio
async def test_auto_map_requires_headers():
    with pytest.raises(ValueError):
        await auto_map_headers([], client=_client())
