"""
Live account state built from the Lighter WebSocket feed.

An :class:`AccountTracker` owns one :class:`LighterFeed`, folds every frame
into an :class:`AccountState`, raises alerts after stats and position
updates, records liquidation / deleverage notices and keeps the latest
public market stats, recent public trades and order books for subscribed
markets.  Listeners (the API WebSocket broadcaster) are told
after every change.

:class:`TrackerRegistry` keeps one tracker per wallet address.
"""

from __future__ import annotations

import asyncio
import inspect
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError

from config import settings
from models.database import AsyncSessionLocal
from models.lighter import (
    MarketStats,
    NotificationEvent,
    Order,
    OrderBook,
    Position,
    Trade,
    UserStats,
)
from services.alerts import Alert, AlertConfig, check_alerts
from services.comparison import compare_performance
from services.liquidations import save_event
from services.markets import (
    MarketResolver,
    market_resolver,
    normalize_market_stats,
    platform_volume,
)
from services.trade_metrics import (
    analyze_day_patterns,
    analyze_entry_patterns,
    calculate_trade_pnl,
    find_streaks,
    streak_summary,
)
from services.ws_feeds import ConnectionState, LighterFeed
from utils.logger import get_logger
from utils.utcnow import utc_iso
from utils.validation import sanitize_for_json, validate_eth_address

logger = get_logger("account_tracker")

Listener = Callable[["AccountTracker"], Any]


class AccountNotFoundError(LookupError):
    """The wallet has no account on the exchange."""


@dataclass
class AccountState:
    wallet_address: str
    account_index: int
    stats: Optional[UserStats] = None
    positions: list[Position] = field(default_factory=list)
    trades: list[Trade] = field(default_factory=list)
    orders: list[Order] = field(default_factory=list)
    alerts: list[Alert] = field(default_factory=list)
    events: list[NotificationEvent] = field(default_factory=list)
    market_stats: dict[int, MarketStats] = field(default_factory=dict)
    market_trades: dict[int, list[Trade]] = field(default_factory=dict)
    order_books: dict[int, OrderBook] = field(default_factory=dict)
    connection: ConnectionState = ConnectionState.DISCONNECTED
    previous_pnl: Optional[float] = None
    updated_at: Optional[str] = None

    @property
    def total_unrealized_pnl(self) -> float:
        return sum(p.unrealized_pnl for p in self.positions)


_CHANNEL_MARKET_RE = re.compile(r"[:/](\d+)$")


def _market_key(key: Any) -> Optional[int]:
    try:
        return int(key)
    except (TypeError, ValueError):
        return None


def _flatten(payload: Any, key_field: Optional[str] = None) -> list[dict]:
    """Entries of a payload that is a list, or a dict of entries / lists keyed by market.

    With *key_field*, entries of a keyed dict that lack that field get the
    dict key (as an int) in its place.
    """
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if not isinstance(payload, dict):
        return []
    items: list[dict] = []
    for key, value in payload.items():
        entries = value if isinstance(value, list) else [value]
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            if key_field and key_field not in entry:
                market_id = _market_key(key)
                if market_id is not None:
                    entry = {**entry, key_field: market_id}
            items.append(entry)
    return items


def _channel_market_id(message: dict) -> Optional[int]:
    """Market id of a public frame: ``"order_book:3"`` style channel first, then the body."""
    match = _CHANNEL_MARKET_RE.search(str(message.get("channel") or ""))
    if match:
        return int(match.group(1))
    for key in ("market_id", "market_index"):
        if key in message:
            return _market_key(message[key])
    return None


def _trade_key(trade: Trade) -> str:
    return trade.trade_id or f"{trade.market_id}:{trade.timestamp}:{trade.price}:{trade.size}"


class AccountTracker:
    def __init__(
        self,
        wallet_address: str,
        account_index: int,
        resolver: Optional[MarketResolver] = None,
        alert_config: Optional[AlertConfig] = None,
        session_factory: Optional[Callable[[], Any]] = None,
        feed_factory: Callable[..., LighterFeed] = LighterFeed,
        max_events: Optional[int] = None,
        max_trades: Optional[int] = None,
        alert_window: Optional[float] = None,
    ):
        self.state = AccountState(wallet_address=wallet_address, account_index=account_index)
        self.resolver = resolver or market_resolver
        self.alert_config = alert_config or AlertConfig()
        self._session_factory = session_factory
        self._max_events = max_events or settings.MAX_TRACKED_EVENTS
        self._max_trades = max_trades or settings.MAX_TRACKED_TRADES
        self._alert_window = (
            settings.ALERT_DEDUPE_SECONDS if alert_window is None else alert_window
        )
        self._listeners: list[Listener] = []
        self._pending: set[asyncio.Task] = set()
        self.feed = feed_factory(
            account_index,
            on_message=self.handle_message,
            on_status_change=self._on_status_change,
        )
        self._log = logger.with_context(wallet=wallet_address, account_index=account_index)

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        await self.feed.start()

    async def stop(self) -> None:
        await self.feed.stop()
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

    async def reconnect(self) -> None:
        await self.feed.reconnect()

    async def subscribe_market(self, market_id: int, order_book: bool = False) -> list[str]:
        """Follow a market's public trades, and optionally its order book."""
        await self.feed.subscribe_market(market_id)
        if order_book:
            await self.feed.subscribe_order_book(market_id)
        self.state.market_trades.setdefault(market_id, [])
        self._log.info("Subscribed to market", market_id=market_id, order_book=order_book)
        return list(self.feed.channels)

    # -- listeners ----------------------------------------------------------

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        self.state.updated_at = utc_iso()
        for listener in list(self._listeners):
            try:
                result = listener(self)
            except Exception:
                self._log.exception("Tracker listener failed")
                continue
            if inspect.isawaitable(result):
                self._spawn(result)

    def _spawn(self, awaitable) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._log.error("Tracker background task failed", error=repr(task.exception()))

    # -- feed callbacks -----------------------------------------------------

    def _on_status_change(self, state: ConnectionState) -> None:
        self.state.connection = state
        self._log.info("Feed status changed", state=state.value)
        self._notify()

    def handle_message(self, message: dict) -> None:
        """Apply one decoded feed frame to the account state."""
        msg_type = str(message.get("type") or "")
        channel_kind = msg_type.split("/", 1)[1] if "/" in msg_type else msg_type

        if channel_kind == "user_stats":
            self._apply_stats(message.get("stats"))
        elif channel_kind == "account_all_positions":
            self._apply_positions(message.get("positions"))
        elif channel_kind in ("account_all_trades", "account_all"):
            changed = self._apply_trades(message.get("trades"))
            if channel_kind == "account_all" and "positions" in message:
                self._apply_positions(message.get("positions"), notify=False)
                changed = True
            if changed:
                self._notify()
        elif channel_kind == "account_all_orders":
            self._apply_orders(message.get("orders"))
        elif channel_kind == "notification":
            self._apply_notifications(message.get("notifs"))
        elif channel_kind == "market_stats":
            self._apply_market_stats(message)
        elif channel_kind == "trade":
            self._apply_market_trades(message)
        elif channel_kind == "order_book":
            self._apply_order_book(message)

    # -- reducers -----------------------------------------------------------

    def _validate_each(self, model: type, entries: list[dict]) -> list:
        """Validate entries one by one; a malformed entry is logged and dropped."""
        parsed = []
        for raw in entries:
            try:
                parsed.append(model.model_validate(raw))
            except ValidationError as e:
                self._log.warning(
                    "Dropping malformed feed entry",
                    model=model.__name__,
                    errors=e.error_count(),
                )
        return parsed

    def _apply_stats(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            return
        self.state.stats = UserStats.model_validate(payload)
        self._refresh_alerts()
        self._notify()

    def _apply_positions(self, payload: Any, notify: bool = True) -> None:
        positions = []
        for position in self._validate_each(Position, _flatten(payload, "market_id")):
            if not position.symbol:
                position.symbol = self.resolver.resolve_symbol(position.market_id)
            positions.append(position)
        self.state.positions = [p for p in positions if p.size > 0]
        self._refresh_alerts()
        if notify:
            self._notify()

    def _apply_trades(self, payload: Any) -> bool:
        incoming = self._validate_each(Trade, _flatten(payload, "market_id"))
        if not incoming:
            return False
        by_id = {_trade_key(t): t for t in self.state.trades}
        added = 0
        for trade in incoming:
            key = _trade_key(trade)
            if key not in by_id:
                added += 1
            by_id[key] = trade
        trades = sorted(by_id.values(), key=lambda t: t.epoch_seconds, reverse=True)
        self.state.trades = trades[: self._max_trades]
        return added > 0

    def _apply_orders(self, payload: Any) -> None:
        self.state.orders = [Order.from_ws(raw) for raw in _flatten(payload)]
        self._notify()

    def _apply_market_stats(self, message: dict) -> None:
        updated = normalize_market_stats(message, self.resolver)
        if not updated:
            return
        for stats in updated:
            self.state.market_stats[stats.market_id] = stats
        self._notify()

    def _apply_market_trades(self, message: dict) -> None:
        market_id = _channel_market_id(message)
        if market_id is None:
            return
        incoming = self._validate_each(Trade, _flatten(message.get("trades"), "market_id"))
        if not incoming:
            return
        known = {_trade_key(t) for t in self.state.market_trades.get(market_id, [])}
        fresh = []
        for trade in incoming:
            trade.market_id = market_id
            key = _trade_key(trade)
            if key in known:
                continue
            known.add(key)
            fresh.append(trade)
        if not fresh:
            return
        trades = fresh + self.state.market_trades.get(market_id, [])
        trades.sort(key=lambda t: t.epoch_seconds, reverse=True)
        self.state.market_trades[market_id] = trades[: settings.MAX_MARKET_TRADES]
        self._notify()

    def _apply_order_book(self, message: dict) -> None:
        market_id = _channel_market_id(message)
        book = message.get("order_book")
        if market_id is None or not isinstance(book, dict):
            return
        self.state.order_books[market_id] = OrderBook.from_ws(
            market_id, book, depth=settings.ORDER_BOOK_DEPTH
        )
        self._notify()

    def _apply_notifications(self, payload: Any) -> None:
        if not isinstance(payload, list):
            return
        known = {e.id for e in self.state.events}
        new_events: list[NotificationEvent] = []
        for notif in payload:
            if not isinstance(notif, dict):
                continue
            event = NotificationEvent.from_notification(notif)
            if event is None or event.id in known:
                continue
            known.add(event.id)
            new_events.append(event)

        if not new_events:
            return
        new_events.sort(key=lambda e: e.timestamp, reverse=True)
        self.state.events = (new_events + self.state.events)[: self._max_events]
        for event in new_events:
            self._log.warning(
                "Account event received",
                kind=event.kind,
                market=self.resolver.resolve_symbol(event.market_index),
                usdc_amount=event.usdc_amount,
            )
        if self._session_factory is not None:
            self._spawn(self._persist_events(new_events))
        self._notify()

    async def _persist_events(self, events: Iterable[NotificationEvent]) -> None:
        async with self._session_factory() as session:
            for event in events:
                await save_event(
                    session,
                    self.state.wallet_address,
                    event,
                    symbol=self.resolver.resolve_symbol(event.market_index),
                )

    def _refresh_alerts(self) -> None:
        current_pnl = self.state.total_unrealized_pnl
        previous_pnl = (
            self.state.previous_pnl if self.state.previous_pnl is not None else current_pnl
        )
        fresh = check_alerts(
            self.state.stats,
            self.state.positions,
            previous_pnl,
            current_pnl,
            self.alert_config,
        )
        self.state.previous_pnl = current_pnl
        # Same type and title (symbol included) inside the window counts as a repeat.
        window_ms = self._alert_window * 1000
        fresh = [
            alert
            for alert in fresh
            if not any(
                seen.type == alert.type
                and seen.title == alert.title
                and alert.timestamp - seen.timestamp < window_ms
                for seen in self.state.alerts
            )
        ]
        if fresh:
            self.state.alerts = (fresh + self.state.alerts)[: self._max_events]

    # -- read model ---------------------------------------------------------

    def snapshot(self) -> dict:
        """JSON-safe view of everything the dashboard shows for this account."""
        state = self.state
        with_pnl = [calculate_trade_pnl(t) for t in state.trades]
        streaks = find_streaks(with_pnl)
        wins = sum(1 for t in with_pnl if t.is_win)
        total_pnl = sum(t.pnl for t in with_pnl)
        win_rate = wins / len(with_pnl) * 100 if with_pnl else 0.0
        leverage = state.stats.leverage if state.stats else 0.0

        return sanitize_for_json(
            {
                "wallet_address": state.wallet_address,
                "account_index": state.account_index,
                "connection": state.connection.value,
                "feed": self.feed.stats.to_dict(),
                "stats": state.stats.model_dump() if state.stats else None,
                "positions": [p.to_dict() for p in state.positions],
                "trades": [t.to_dict() for t in with_pnl],
                "orders": [o.model_dump() for o in state.orders],
                "alerts": [a.model_dump() for a in state.alerts],
                "events": [
                    {**e.model_dump(), "side": e.side, "symbol": self.resolver.resolve_symbol(e.market_index)}
                    for e in state.events
                ],
                "streaks": {
                    **streak_summary(streaks),
                    "streaks": [s.to_dict() for s in streaks],
                },
                "patterns": {
                    "hourly": [asdict(p) for p in analyze_entry_patterns(with_pnl)],
                    "daily": [asdict(p) for p in analyze_day_patterns(with_pnl)],
                },
                "comparison": [
                    c.to_dict()
                    for c in compare_performance(win_rate, leverage, total_pnl, len(with_pnl))
                ],
                "market_stats": [
                    state.market_stats[market_id].model_dump()
                    for market_id in sorted(state.market_stats)
                ],
                "platform_volume": platform_volume(state.market_stats.values()),
                "market_trades": {
                    str(market_id): [t.to_dict() for t in trades]
                    for market_id, trades in sorted(state.market_trades.items())
                },
                "order_books": {
                    str(market_id): book.to_dict()
                    for market_id, book in sorted(state.order_books.items())
                },
                "updated_at": state.updated_at,
            }
        )


class TrackerRegistry:
    """One tracker per wallet address"""

    def __init__(
        self,
        tracker_factory: Callable[..., AccountTracker] = AccountTracker,
        resolver: Optional[MarketResolver] = None,
        session_factory: Optional[Callable[[], Any]] = None,
    ):
        self._factory = tracker_factory
        self._resolver = resolver or market_resolver
        self._session_factory = session_factory
        self._trackers: dict[str, AccountTracker] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(wallet_address: str) -> str:
        return validate_eth_address(wallet_address).lower()

    def get(self, wallet_address: str) -> Optional[AccountTracker]:
        return self._trackers.get(self._key(wallet_address))

    def wallets(self) -> list[str]:
        return list(self._trackers)

    async def track(
        self,
        wallet_address: str,
        client: Any,
        alert_config: Optional[AlertConfig] = None,
    ) -> AccountTracker:
        """Start (or reuse) the tracker for *wallet_address*."""
        key = self._key(wallet_address)
        async with self._lock:
            tracker = self._trackers.get(key)
            if tracker is not None:
                return tracker

            account_index = await client.get_account_index(wallet_address)
            if account_index is None:
                raise AccountNotFoundError(f"No Lighter account for {wallet_address}")

            await self._resolver.load_markets(client)
            tracker = self._factory(
                key,
                account_index,
                resolver=self._resolver,
                alert_config=alert_config,
                session_factory=self._session_factory,
            )
            self._trackers[key] = tracker
            await tracker.start()
            logger.info("Tracking account", wallet=key, account_index=account_index)
            return tracker

    async def untrack(self, wallet_address: str) -> bool:
        key = self._key(wallet_address)
        async with self._lock:
            tracker = self._trackers.pop(key, None)
        if tracker is None:
            return False
        await tracker.stop()
        logger.info("Stopped tracking account", wallet=key)
        return True

    async def stop_all(self) -> None:
        async with self._lock:
            trackers = list(self._trackers.values())
            self._trackers.clear()
        for tracker in trackers:
            await tracker.stop()


tracker_registry = TrackerRegistry(session_factory=AsyncSessionLocal)
