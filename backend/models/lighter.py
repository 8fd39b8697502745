"""Exchange DTOs decoded from Lighter REST and WebSocket payloads.

The exchange sends most numbers as strings.  Every numeric field below
parses to a finite float; anything unparseable or non-finite becomes 0.0.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from utils.utcnow import utcfromtimestamp


def to_float(value: Any, default: float = 0.0) -> float:
    """Parse a JSON scalar as a finite float."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return number


def to_int(value: Any, default: int = 0) -> int:
    number = to_float(value, float(default))
    return int(number)


def normalize_epoch_seconds(ts: Any) -> float:
    """Exchange timestamps come in seconds or milliseconds."""
    value = to_float(ts)
    if value > 1e12:
        value /= 1000.0
    return value


def timestamp_to_datetime(ts: Any) -> datetime:
    """Naive UTC datetime for an exchange timestamp."""
    return utcfromtimestamp(normalize_epoch_seconds(ts))


class _NumericModel(BaseModel):
    """Base for DTOs whose float fields may arrive as strings."""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_numbers(cls, value: Any, info) -> Any:
        field = cls.model_fields.get(info.field_name)
        if field is None:
            return value
        if field.annotation is float:
            return to_float(value)
        if field.annotation is int:
            return to_int(value)
        if field.annotation is str and value is not None and not isinstance(value, str):
            return str(value)
        return value


class SubAccount(_NumericModel):
    index: int
    l1_address: str = ""
    account_type: int = 0
    cancel_all_time: int = 0
    total_order_count: int = 0
    total_isolated_order_count: int = 0
    pending_order_count: int = 0
    available_balance: float = 0.0
    status: int = 0
    collateral: float = 0.0


class StatsBlock(_NumericModel):
    collateral: float = 0.0
    portfolio_value: float = 0.0
    leverage: float = 0.0
    available_balance: float = 0.0
    margin_usage: float = 0.0
    buying_power: float = 0.0


class UserStats(StatsBlock):
    cross_stats: Optional[StatsBlock] = None
    total_stats: Optional[StatsBlock] = None


class Position(_NumericModel):
    market_id: int
    symbol: str = ""
    initial_margin_fraction: float = 0.0
    open_order_count: int = 0
    pending_order_count: int = 0
    position_tied_order_count: int = 0
    sign: int = 1
    position: float = 0.0
    avg_entry_price: float = 0.0
    position_value: float = 0.0
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    liquidation_price: float = 0.0
    total_funding_paid_out: float = 0.0
    margin_mode: int = 0
    allocated_margin: float = 0.0

    @property
    def signed_size(self) -> float:
        # ``position`` is unsigned on some payloads; ``sign`` carries direction.
        if self.position < 0:
            return self.position
        return self.position * (-1 if self.sign < 0 else 1)

    @property
    def side(self) -> str:
        return "LONG" if self.signed_size > 0 else "SHORT"

    @property
    def size(self) -> float:
        return abs(self.position)

    @property
    def leverage(self) -> float:
        if self.initial_margin_fraction <= 0:
            return 0.0
        # Exchange reports the fraction in percent (e.g. "20.00" -> 5x).
        fraction = self.initial_margin_fraction
        if fraction > 1:
            fraction /= 100.0
        return 1.0 / fraction

    @property
    def margin(self) -> float:
        if self.allocated_margin > 0:
            return self.allocated_margin
        leverage = self.leverage
        if leverage <= 0:
            return 0.0
        return abs(self.position_value) / leverage

    @property
    def roe(self) -> float:
        """Unrealized PnL as a percentage of margin."""
        margin = self.margin
        if margin == 0:
            return 0.0
        return self.unrealized_pnl / margin * 100.0

    def to_dict(self) -> dict:
        data = self.model_dump()
        data.update(
            side=self.side,
            size=self.size,
            leverage=self.leverage,
            margin=self.margin,
            roe=self.roe,
        )
        return data


class Order(_NumericModel):
    order_id: str = ""
    market_id: int = 0
    side: str = ""
    type: str = ""
    price: float = 0.0
    size: float = 0.0
    remaining_size: float = 0.0
    timestamp: float = 0.0

    @classmethod
    def from_ws(cls, data: dict) -> "Order":
        """Build from an ``account_all_orders`` entry."""
        side = data.get("side")
        if not side and "is_ask" in data:
            side = "sell" if data.get("is_ask") else "buy"
        return cls(
            order_id=data.get("order_id") or data.get("order_index") or "",
            market_id=data.get("market_index", data.get("market_id", 0)),
            side=side or "",
            type=data.get("type", ""),
            price=data.get("price"),
            size=data.get("initial_base_amount", data.get("size")),
            remaining_size=data.get("remaining_base_amount", data.get("size")),
            timestamp=data.get("timestamp"),
        )


class Trade(_NumericModel):
    trade_id: str = ""
    market_id: int = 0
    type: str = ""
    size: float = 0.0
    price: float = 0.0
    usd_amount: float = 0.0
    timestamp: float = 0.0
    maker_fee: float = 0.0
    taker_fee: float = 0.0
    taker_position_size_before: Optional[float] = None
    taker_entry_quote_before: Optional[float] = None
    maker_position_size_before: Optional[float] = None
    maker_entry_quote_before: Optional[float] = None
    is_maker_ask: bool = False

    @field_validator(
        "taker_position_size_before",
        "taker_entry_quote_before",
        "maker_position_size_before",
        "maker_entry_quote_before",
        mode="before",
    )
    @classmethod
    def _optional_float(cls, value: Any) -> Optional[float]:
        if value is None or value == "":
            return None
        return to_float(value)

    @property
    def epoch_seconds(self) -> float:
        return normalize_epoch_seconds(self.timestamp)

    @property
    def executed_at(self) -> datetime:
        return timestamp_to_datetime(self.timestamp)

    @property
    def is_buy(self) -> bool:
        """Buy side as the live trade feed shows it: an explicit buy or a fill whose maker was not the ask."""
        return self.type == "buy" or not self.is_maker_ask

    def to_dict(self) -> dict:
        return {**self.model_dump(), "side": "buy" if self.is_buy else "sell"}


class MarketStats(_NumericModel):
    market_id: int
    symbol: str = ""
    index_price: float = 0.0
    mark_price: float = 0.0
    last_trade_price: float = 0.0
    open_interest: float = 0.0
    current_funding_rate: float = 0.0
    daily_price_change: float = 0.0
    daily_base_token_volume: float = 0.0
    daily_quote_token_volume: float = 0.0
    daily_price_high: float = 0.0
    daily_price_low: float = 0.0

    @property
    def reference_price(self) -> float:
        return self.mark_price or self.last_trade_price or self.index_price


class OrderBookLevel(_NumericModel):
    price: float = 0.0
    size: float = 0.0


class OrderBook(BaseModel):
    """Top of one market's book from ``order_book/{id}``, best prices first."""

    market_id: int
    asks: list[OrderBookLevel] = Field(default_factory=list)
    bids: list[OrderBookLevel] = Field(default_factory=list)

    @classmethod
    def from_ws(cls, market_id: int, data: dict, depth: int = 10) -> "OrderBook":
        def levels(raw: Any, descending: bool) -> list[OrderBookLevel]:
            parsed = [
                OrderBookLevel.model_validate(level)
                for level in (raw if isinstance(raw, list) else [])
                if isinstance(level, dict)
            ]
            parsed = [level for level in parsed if level.price > 0 and level.size > 0]
            parsed.sort(key=lambda level: level.price, reverse=descending)
            return parsed[:depth]

        return cls(
            market_id=market_id,
            asks=levels(data.get("asks"), descending=False),
            bids=levels(data.get("bids"), descending=True),
        )

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0].price if self.asks else None

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0].price if self.bids else None

    @property
    def spread(self) -> Optional[float]:
        if self.best_ask is None or self.best_bid is None:
            return None
        return self.best_ask - self.best_bid

    @property
    def mid_price(self) -> Optional[float]:
        if self.best_ask is None or self.best_bid is None:
            return None
        return (self.best_ask + self.best_bid) / 2

    def to_dict(self) -> dict:
        return {
            **self.model_dump(),
            "best_ask": self.best_ask,
            "best_bid": self.best_bid,
            "spread": self.spread,
            "mid_price": self.mid_price,
        }


class NotificationEvent(BaseModel):
    """Liquidation or auto-deleverage notice from ``notification/{id}``."""

    id: str
    kind: str  # "liquidation" or "deleverage"
    market_index: int = 0
    price: float = 0.0
    size: float = 0.0
    usdc_amount: float = 0.0
    is_ask: bool = False
    timestamp: float = 0.0
    created_at: Optional[str] = None

    @property
    def side(self) -> str:
        return "SHORT" if self.is_ask else "LONG"

    @classmethod
    def from_notification(cls, notif: dict) -> Optional["NotificationEvent"]:
        kind = notif.get("kind")
        if kind not in ("liquidation", "deleverage"):
            return None
        content = notif.get("content") or {}
        if kind == "liquidation":
            price = content.get("avg_price", content.get("price"))
        else:
            price = content.get("settlement_price")
        event_id = notif.get("id") or content.get("id")
        if not event_id:
            return None
        return cls(
            id=str(event_id),
            kind=kind,
            market_index=to_int(content.get("market_index")),
            price=to_float(price),
            size=to_float(content.get("size")),
            usdc_amount=to_float(content.get("usdc_amount")),
            is_ask=bool(content.get("is_ask", False)),
            timestamp=to_float(content.get("timestamp")),
            created_at=notif.get("created_at"),
        )
