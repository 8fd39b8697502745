"""
OpenAI-compatible chat-completions client for the AI gateway.

The gateway speaks the OpenAI ``/chat/completions`` protocol, so one
provider covers plain completions as well as forced tool calls.

Usage:
    client = GatewayClient()

    response = await client.chat(
        messages=[LLMMessage(role="user", content="Summarize these trades")],
    )

    # Forced tool call; returns the parsed arguments
    result = await client.call_tool(
        messages=[...],
        tool=ToolDefinition(name="identify_patterns", description="...", parameters=schema),
    )
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)


# ==================== ERRORS ====================


class LLMGatewayError(RuntimeError):
    """Gateway call failed; ``status_code`` is the HTTP status to report."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class GatewayRateLimitError(LLMGatewayError):
    status_code = 429


class GatewayPaymentRequiredError(LLMGatewayError):
    status_code = 402


class GatewayNotConfiguredError(LLMGatewayError):
    status_code = 503


class GatewayResponseError(LLMGatewayError):
    status_code = 502


# ==================== DATA CLASSES ====================


@dataclass
class LLMMessage:
    """A single message in a chat conversation."""

    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class ToolDefinition:
    """Definition of a tool that can be called by the LLM."""

    name: str
    description: str
    parameters: dict  # JSON Schema


@dataclass
class ToolCall:
    """A tool call requested by the LLM."""

    id: str
    name: str
    arguments: dict  # Parsed JSON arguments


@dataclass
class TokenUsage:
    """Token usage for a single LLM call."""

    input_tokens: int
    output_tokens: int
    total_tokens: int


@dataclass
class LLMResponse:
    """Response from the gateway."""

    content: str
    tool_calls: Optional[list[ToolCall]] = None
    usage: Optional[TokenUsage] = None
    model: str = ""
    latency_ms: int = 0


# ==================== HELPERS ====================


def _safe_response_json(response: httpx.Response) -> Any:
    """Return parsed response JSON, or an empty dict when parsing fails."""
    try:
        return response.json()
    except ValueError:
        return {}


def _extract_error_message(data: Any, fallback: str) -> str:
    """Extract a readable API error message from varied payload formats."""
    fallback_text = (fallback or "").strip()

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            for key in ("message", "detail", "error"):
                value = error.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
            if error:
                return json.dumps(error, default=str)
        if isinstance(error, str) and error.strip():
            return error.strip()
        for key in ("message", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    elif isinstance(data, str) and data.strip():
        return data.strip()

    return fallback_text or "Unknown error"


def parse_json_content(content: Any) -> Any:
    """Parse JSON from a model reply, tolerating code fences and stray prose."""
    if isinstance(content, (dict, list)):
        return content

    text = str(content or "").strip()
    if not text:
        raise GatewayResponseError("LLM returned empty JSON content")

    candidates = [text]
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text, flags=re.IGNORECASE)
    if fenced:
        candidates.append(fenced.group(1).strip())

    obj_start = text.find("{")
    obj_end = text.rfind("}")
    if obj_start != -1 and obj_end > obj_start:
        candidates.append(text[obj_start : obj_end + 1])

    seen = set()
    last_error = None
    for candidate in candidates:
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        try:
            return json.loads(candidate)
        except json.JSONDecodeError as exc:
            last_error = exc

    raise GatewayResponseError(f"LLM returned invalid JSON: {last_error}")


# ==================== RETRY LOGIC ====================

_MAX_RETRIES = 3
_BASE_DELAY = 1.0  # seconds


async def _retry_with_backoff(
    coro_factory, max_retries: int = _MAX_RETRIES, base_delay: float = _BASE_DELAY
) -> httpx.Response:
    """Execute an async callable with exponential backoff on retryable errors.

    Retries on HTTP 429 (rate limit), 5xx (server errors) and transport
    errors.  The last 429/5xx response is returned as-is once retries run
    out so the caller can map its status.

    Args:
        coro_factory: A callable that returns a new coroutine each invocation.
        max_retries: Maximum number of attempts.
        base_delay: Base delay in seconds for exponential backoff.
    """
    for attempt in range(max_retries):
        last_attempt = attempt == max_retries - 1
        try:
            response = await coro_factory()
        except httpx.RequestError as exc:
            if last_attempt:
                raise
            delay = base_delay * (2**attempt)
            logger.warning(
                "LLM request failed (%s), retrying in %.1fs (attempt %d/%d)",
                str(exc),
                delay,
                attempt + 1,
                max_retries,
            )
            await asyncio.sleep(delay)
            continue

        if (response.status_code == 429 or response.status_code >= 500) and not last_attempt:
            delay = base_delay * (2**attempt)
            logger.warning(
                "LLM request returned %d, retrying in %.1fs (attempt %d/%d)",
                response.status_code,
                delay,
                attempt + 1,
                max_retries,
            )
            await asyncio.sleep(delay)
            continue
        return response

    raise LLMGatewayError("LLM request retries exhausted")


# ==================== CLIENT ====================


class GatewayClient:
    """Chat-completions client for an OpenAI-compatible gateway."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int = _MAX_RETRIES,
        retry_base_delay: float = _BASE_DELAY,
    ):
        self.api_key = api_key if api_key is not None else settings.AI_GATEWAY_API_KEY
        self.base_url = (base_url or settings.AI_GATEWAY_URL).rstrip("/")
        self.model = model or settings.AI_MODEL
        self._timeout = timeout or settings.AI_REQUEST_TIMEOUT
        self._transport = transport
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _build_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    @staticmethod
    def _format_tools(tools: list[ToolDefinition]) -> list[dict]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    @staticmethod
    def _parse_tool_calls(raw_tool_calls: list[dict]) -> list[ToolCall]:
        result = []
        for tc in raw_tool_calls:
            function = tc.get("function", {}) if isinstance(tc, dict) else {}
            if not isinstance(function, dict):
                function = {}
            raw_arguments = function.get("arguments", {})
            if isinstance(raw_arguments, str):
                try:
                    arguments = json.loads(raw_arguments)
                except json.JSONDecodeError as exc:
                    raise GatewayResponseError(f"Tool call arguments are not JSON: {exc}") from exc
            elif isinstance(raw_arguments, dict):
                arguments = raw_arguments
            else:
                arguments = {}
            result.append(
                ToolCall(
                    id=str(tc.get("id", "")),
                    name=str(function.get("name", "") or ""),
                    arguments=arguments,
                )
            )
        return result

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code == 200:
            return
        data = _safe_response_json(response)
        message = _extract_error_message(data, response.text)
        logger.error("AI gateway error %d: %s", response.status_code, message[:300])
        if response.status_code == 429:
            raise GatewayRateLimitError("Rate limit exceeded. Please try again later.")
        if response.status_code == 402:
            raise GatewayPaymentRequiredError("AI credits exhausted. Please add funds.")
        raise LLMGatewayError(f"AI gateway error ({response.status_code}): {message}")

    async def chat(
        self,
        messages: list[LLMMessage],
        tools: Optional[list[ToolDefinition]] = None,
        tool_choice: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> LLMResponse:
        """Send one chat completion request.

        ``tool_choice`` names a tool the model is forced to call.
        """
        if not self.configured:
            raise GatewayNotConfiguredError("AI_GATEWAY_API_KEY is not configured")

        model_name = model or self.model
        payload: dict[str, Any] = {
            "model": model_name,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if tools:
            payload["tools"] = self._format_tools(tools)
        if tool_choice:
            payload["tool_choice"] = {"type": "function", "function": {"name": tool_choice}}

        start_ms = int(time.time() * 1000)
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await _retry_with_backoff(
                lambda: client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self._build_headers(),
                    json=payload,
                ),
                max_retries=self._max_retries,
                base_delay=self._retry_base_delay,
            )
        latency_ms = int(time.time() * 1000) - start_ms

        self._raise_for_status(response)
        data = _safe_response_json(response)
        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GatewayResponseError("AI gateway returned no choices") from exc

        parsed_tool_calls = None
        if message.get("tool_calls"):
            parsed_tool_calls = self._parse_tool_calls(message["tool_calls"])

        usage_data = data.get("usage") or {}
        return LLMResponse(
            content=message.get("content") or "",
            tool_calls=parsed_tool_calls,
            usage=TokenUsage(
                input_tokens=usage_data.get("prompt_tokens", 0),
                output_tokens=usage_data.get("completion_tokens", 0),
                total_tokens=usage_data.get("total_tokens", 0),
            ),
            model=model_name,
            latency_ms=latency_ms,
        )

    async def call_tool(self, messages: list[LLMMessage], tool: ToolDefinition) -> dict:
        """Force a call to *tool* and return its parsed arguments."""
        response = await self.chat(messages, tools=[tool], tool_choice=tool.name)
        for call in response.tool_calls or []:
            if call.name == tool.name:
                return call.arguments
        raise GatewayResponseError("No tool call in response")
