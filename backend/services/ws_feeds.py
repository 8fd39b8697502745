"""
WebSocket real-time account feed for the Lighter exchange.

One :class:`LighterFeed` keeps a persistent connection to the exchange
stream for a single account index.  It subscribes to the account channels
on every successful open, hands each decoded frame to its owner, and
reconnects with capped exponential backoff when the socket drops.

Key classes:
    ReconnectPolicy  -- attempt counter and backoff schedule
    FeedStats        -- counters for one feed
    LighterFeed      -- WebSocket client for one account
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

import websockets

from config import settings
from utils.logger import feed_logger as logger

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ACCOUNT_CHANNELS = (
    "user_stats/{account}",
    "account_all_positions/{account}",
    "account_all/{account}",
    "account_all_trades/{account}",
    "account_all_orders/{account}",
    "account_tx/{account}",
    "notification/{account}",
)
MARKET_TRADE_CHANNEL = "trade/{market}"
ORDER_BOOK_CHANNEL = "order_book/{market}"
MARKET_STATS_CHANNEL = "market_stats/all"


# ---------------------------------------------------------------------------
# Connection state
# ---------------------------------------------------------------------------


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Reconnection policy
# ---------------------------------------------------------------------------


@dataclass
class ReconnectPolicy:
    """Capped exponential backoff with a bounded number of attempts.

    The delay before attempt *n* (0-based) is ``min(base * 2**n, max)``.
    Once ``max_attempts`` automatic attempts have been scheduled without a
    successful open, :meth:`next_delay` returns ``None``.
    """

    base_delay: float = settings.WS_RECONNECT_BASE_DELAY
    max_delay: float = settings.WS_RECONNECT_MAX_DELAY
    max_attempts: int = settings.WS_RECONNECT_MAX_ATTEMPTS
    multiplier: float = 2.0
    attempts: int = 0

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (self.multiplier**attempt), self.max_delay)

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def next_delay(self) -> Optional[float]:
        """Delay for the next attempt, or ``None`` when the cap is reached."""
        if self.exhausted:
            return None
        delay = self.delay_for(self.attempts)
        self.attempts += 1
        return delay

    def reset(self) -> None:
        self.attempts = 0


# ---------------------------------------------------------------------------
# Shared feed statistics
# ---------------------------------------------------------------------------


@dataclass
class FeedStats:
    """Lightweight statistics counters for a single feed."""

    messages_received: int = 0
    messages_parsed: int = 0
    parse_errors: int = 0
    handler_errors: int = 0
    reconnections: int = 0
    last_message_at: float = 0.0  # monotonic
    connection_uptime_start: float = 0.0

    @property
    def uptime_seconds(self) -> float:
        if self.connection_uptime_start == 0.0:
            return 0.0
        return time.monotonic() - self.connection_uptime_start

    def to_dict(self) -> dict:
        return {
            "messages_received": self.messages_received,
            "messages_parsed": self.messages_parsed,
            "parse_errors": self.parse_errors,
            "handler_errors": self.handler_errors,
            "reconnections": self.reconnections,
            "uptime_seconds": round(self.uptime_seconds, 1),
        }


MessageCallback = Callable[[dict], None]
StatusCallback = Callable[[ConnectionState], None]


# ---------------------------------------------------------------------------
# LighterFeed
# ---------------------------------------------------------------------------


class LighterFeed:
    """Manages a WebSocket connection to the Lighter stream for one account.

    ``on_message`` receives every decoded JSON object.  ``on_status_change``
    receives each :class:`ConnectionState` transition.  Both are plain
    callables invoked on the event loop.
    """

    def __init__(
        self,
        account_index: int,
        on_message: Optional[MessageCallback] = None,
        on_status_change: Optional[StatusCallback] = None,
        ws_url: Optional[str] = None,
        policy: Optional[ReconnectPolicy] = None,
        ping_interval: Optional[float] = None,
        subscribe_market_stats: Optional[bool] = None,
    ) -> None:
        self.account_index = account_index
        self._on_message = on_message
        self._on_status_change = on_status_change
        self._ws_url = ws_url or settings.LIGHTER_WS_URL
        self.policy = policy or ReconnectPolicy()
        self._ping_interval = (
            settings.WS_PING_INTERVAL if ping_interval is None else ping_interval
        )

        self._market_channels: List[str] = []
        if (
            settings.WS_SUBSCRIBE_MARKET_STATS
            if subscribe_market_stats is None
            else subscribe_market_stats
        ):
            self._market_channels.append(MARKET_STATS_CHANNEL)

        # Connection state
        self._ws: Any = None  # websockets connection object
        self._state = ConnectionState.DISCONNECTED
        self._run_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

        self.stats = FeedStats()

    # -- public API ---------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def channels(self) -> List[str]:
        """Every channel subscribed on open, account channels first."""
        account = [c.format(account=self.account_index) for c in ACCOUNT_CHANNELS]
        return account + list(self._market_channels)

    async def start(self) -> None:
        """Start the feed in the background.  Idempotent."""
        if self._run_task is not None and not self._run_task.done():
            return
        self._stop_event.clear()
        self._run_task = asyncio.create_task(
            self._run_loop(), name=f"lighter-feed-{self.account_index}"
        )
        logger.info("LighterFeed started", account_index=self.account_index)

    async def stop(self) -> None:
        """Close the socket, cancel any pending backoff wait and stop."""
        await self._shutdown()
        self._set_state(ConnectionState.CLOSED)
        logger.info("LighterFeed stopped", account_index=self.account_index)

    async def reconnect(self) -> None:
        """Manual reconnect: reset the attempt counter and connect now.

        This is the only way out of ``FAILED``.
        """
        await self._shutdown()
        self.policy.reset()
        logger.info("LighterFeed manual reconnect", account_index=self.account_index)
        await self.start()

    async def subscribe_market(self, market_id: int) -> None:
        """Follow the public trade channel of one market."""
        await self._add_channel(MARKET_TRADE_CHANNEL.format(market=market_id))

    async def subscribe_order_book(self, market_id: int) -> None:
        await self._add_channel(ORDER_BOOK_CHANNEL.format(market=market_id))

    async def _add_channel(self, channel: str) -> None:
        if channel in self._market_channels:
            return
        self._market_channels.append(channel)
        if self._ws is not None and self._state == ConnectionState.CONNECTED:
            await self._send_subscribe(channel)

    # -- internal connection loop -------------------------------------------

    async def _shutdown(self) -> None:
        self._stop_event.set()
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as exc:
                logger.debug("Error closing Lighter WS", error=repr(exc))
        if self._run_task and not self._run_task.done():
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass
        self._run_task = None
        self._ws = None

    async def _run_loop(self) -> None:
        """Outer loop: connect, listen, and reconnect on failure."""
        while not self._stop_event.is_set():
            self._set_state(
                ConnectionState.CONNECTING
                if self.policy.attempts == 0
                else ConnectionState.RECONNECTING
            )
            error: Optional[BaseException] = None
            try:
                await self._connect_and_listen()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = exc

            if self._stop_event.is_set():
                break

            self._set_state(ConnectionState.DISCONNECTED)
            delay = self.policy.next_delay()
            if delay is None:
                logger.error(
                    "Lighter WS reconnect attempts exhausted",
                    account_index=self.account_index,
                    attempts=self.policy.max_attempts,
                )
                self._set_state(ConnectionState.FAILED)
                return

            self.stats.reconnections += 1
            logger.warning(
                "Lighter WS disconnected, reconnecting",
                account_index=self.account_index,
                error=repr(error) if error else "closed by server",
                delay=delay,
                attempt=self.policy.attempts,
                max_attempts=self.policy.max_attempts,
            )
            self._set_state(ConnectionState.RECONNECTING)
            if await self._wait_before_retry(delay):
                break

    async def _wait_before_retry(self, delay: float) -> bool:
        """Sleep for *delay* seconds; ``True`` if stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    async def _connect_and_listen(self) -> None:
        """Establish connection, subscribe, and process messages."""
        async with websockets.connect(
            self._ws_url,
            ping_interval=self._ping_interval or None,
            close_timeout=5,
        ) as ws:
            self._ws = ws
            self.policy.reset()
            self.stats.connection_uptime_start = time.monotonic()
            self._set_state(ConnectionState.CONNECTED)
            logger.info(
                "Lighter WS connected",
                url=self._ws_url,
                account_index=self.account_index,
            )

            for channel in self.channels:
                await self._send_subscribe(channel)

            try:
                async for raw in ws:
                    if self._stop_event.is_set():
                        break
                    self._handle_raw(raw)
            finally:
                self._ws = None
                self.stats.connection_uptime_start = 0.0

    async def _send_subscribe(self, channel: str) -> None:
        if not self._ws:
            return
        await self._ws.send(json.dumps({"type": "subscribe", "channel": channel}))
        logger.debug("Lighter WS subscribed", channel=channel)

    # -- message handling ---------------------------------------------------

    def _handle_raw(self, raw: Any) -> None:
        self.stats.messages_received += 1
        self.stats.last_message_at = time.monotonic()
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            self.stats.parse_errors += 1
            logger.debug("Lighter WS parse error", error=repr(exc))
            return
        if not isinstance(data, dict):
            self.stats.parse_errors += 1
            return
        self.stats.messages_parsed += 1

        if self._on_message is None:
            return
        try:
            self._on_message(data)
        except Exception:
            self.stats.handler_errors += 1
            logger.exception(
                "Lighter WS message handler failed",
                message_type=data.get("type"),
            )

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        if self._on_status_change is None:
            return
        try:
            self._on_status_change(state)
        except Exception:
            logger.exception("Lighter WS status callback failed", state=state.value)
