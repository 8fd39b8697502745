"""Realized PnL estimates, streaks and timing patterns for exchange fills."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from config import settings
from models.lighter import Trade
from services.trade_analyzer import DAY_NAMES, day_index


@dataclass
class TradeWithPnL:
    trade: Trade
    pnl: float
    is_win: bool

    @property
    def timestamp(self) -> float:
        return self.trade.epoch_seconds

    def to_dict(self) -> dict:
        data = self.trade.model_dump()
        data.update(pnl=self.pnl, isWin=self.is_win)
        return data


@dataclass
class StreakInfo:
    type: str  # "win" or "loss"
    count: int
    start_date: datetime
    end_date: datetime
    total_pnl: float

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "count": self.count,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "total_pnl": self.total_pnl,
        }


@dataclass
class EntryPattern:
    hour: int
    count: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    avg_pnl: float = 0.0


@dataclass
class DayPattern:
    day: int  # 0 = Sunday
    day_name: str
    count: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    avg_pnl: float = 0.0


def _local_time(epoch_seconds: float) -> datetime:
    """Naive wall-clock time in the analysis zone."""
    zone = ZoneInfo(settings.ANALYSIS_TIMEZONE)
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).astimezone(zone).replace(tzinfo=None)


def _pnl_from_position(
    position_before: Optional[float],
    entry_quote_before: Optional[float],
    price: float,
    size: float,
    fee: float,
) -> Optional[float]:
    if position_before is None or entry_quote_before is None:
        return None
    if position_before == 0:
        return 0.0
    avg_entry = entry_quote_before / abs(position_before)
    direction = 1 if position_before < 0 else -1
    return (price - avg_entry) * size * direction - fee


def calculate_trade_pnl(trade: Trade) -> TradeWithPnL:
    """Estimate realized PnL from the position held before the fill.

    Uses the taker side when its before-fields are present, else the
    maker side.  Fills with no position before them have zero PnL.
    """
    fee = trade.taker_fee or trade.maker_fee or 0.0
    pnl = _pnl_from_position(
        trade.taker_position_size_before,
        trade.taker_entry_quote_before,
        trade.price,
        trade.size,
        fee,
    )
    if pnl is None:
        pnl = _pnl_from_position(
            trade.maker_position_size_before,
            trade.maker_entry_quote_before,
            trade.price,
            trade.size,
            fee,
        )
    pnl = pnl or 0.0
    return TradeWithPnL(trade=trade, pnl=pnl, is_win=pnl > 0)


def find_streaks(trades: list[TradeWithPnL]) -> list[StreakInfo]:
    """Runs of consecutive wins or losses in time order."""
    streaks: list[StreakInfo] = []
    current: Optional[StreakInfo] = None

    for item in sorted(trades, key=lambda t: t.timestamp):
        when = _local_time(item.timestamp)
        kind = "win" if item.is_win else "loss"
        if current is not None and current.type == kind:
            current.count += 1
            current.end_date = when
            current.total_pnl += item.pnl
            continue
        if current is not None:
            streaks.append(current)
        current = StreakInfo(kind, 1, when, when, item.pnl)

    if current is not None:
        streaks.append(current)
    return streaks


def streak_summary(streaks: list[StreakInfo]) -> dict:
    longest_win = max((s for s in streaks if s.type == "win"), key=lambda s: s.count, default=None)
    longest_loss = max((s for s in streaks if s.type == "loss"), key=lambda s: s.count, default=None)
    current = streaks[-1] if streaks else None
    return {
        "longest_win_streak": longest_win.count if longest_win else 0,
        "longest_loss_streak": longest_loss.count if longest_loss else 0,
        "current_streak": current.to_dict() if current else None,
        "total_streaks": len(streaks),
    }


def analyze_entry_patterns(trades: list[TradeWithPnL]) -> list[EntryPattern]:
    patterns = [EntryPattern(hour=hour) for hour in range(24)]
    totals = [0.0] * 24
    for item in trades:
        hour = _local_time(item.timestamp).hour
        _tally(patterns[hour], item)
        totals[hour] += item.pnl
    for pattern, total in zip(patterns, totals):
        _finish(pattern, total)
    return patterns


def analyze_day_patterns(trades: list[TradeWithPnL]) -> list[DayPattern]:
    patterns = [DayPattern(day=idx, day_name=DAY_NAMES[idx]) for idx in range(7)]
    totals = [0.0] * 7
    for item in trades:
        idx = day_index(_local_time(item.timestamp))
        _tally(patterns[idx], item)
        totals[idx] += item.pnl
    for pattern, total in zip(patterns, totals):
        _finish(pattern, total)
    return patterns


def _tally(pattern, item: TradeWithPnL) -> None:
    pattern.count += 1
    if item.is_win:
        pattern.wins += 1
    else:
        pattern.losses += 1


def _finish(pattern, total_pnl: float) -> None:
    if pattern.count:
        pattern.win_rate = pattern.wins / pattern.count * 100
        pattern.avg_pnl = total_pnl / pattern.count
