"""Normalized CSV trade record and the analyzer's result types."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

from utils.validation import sanitize_for_json

Side = Literal["Long", "Short"]
Role = Literal["Maker", "Taker"]
OrderType = Literal["Limit", "Market"]


@dataclass
class CSVTrade:
    """One closed fill from an imported trade-history file.

    ``date`` is a naive wall-clock time in the analysis timezone.
    """

    date: datetime
    market: str
    side: Side
    size: float = 0.0
    price: float = 0.0
    closed_pnl: float = 0.0
    fee: float = 0.0
    role: Role = "Taker"
    type: OrderType = "Market"

    @property
    def is_win(self) -> bool:
        return self.closed_pnl > 0

    @property
    def is_loss(self) -> bool:
        return self.closed_pnl < 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data


@dataclass
class KPIMetrics:
    net_pnl: float = 0.0
    total_fees: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    avg_winning_trade: float = 0.0
    avg_losing_trade: float = 0.0
    payoff_ratio: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0


@dataclass
class GroupStats:
    """PnL summary for one slice (a side, role or order type)."""

    pnl: float = 0.0
    win_rate: float = 0.0
    trades: int = 0
    profit_factor: float = 0.0


@dataclass
class HourlyPattern:
    hour: int
    pnl: float = 0.0
    win_rate: float = 0.0
    trades: int = 0


@dataclass
class DailyPattern:
    day: str
    day_index: int  # 0 = Sunday
    pnl: float = 0.0
    win_rate: float = 0.0
    trades: int = 0


@dataclass
class MarketBreakdown:
    market: str
    net_pnl: float
    win_rate: float
    profit_factor: float
    total_fees: float
    total_trades: int
    avg_pnl_per_trade: float


@dataclass
class CumulativePnLPoint:
    date: datetime
    pnl: float
    date_str: str


@dataclass
class PeriodPnL:
    period: str
    pnl: float


@dataclass
class AnalysisResult:
    kpis: KPIMetrics
    side_analysis: dict[str, GroupStats]
    role_analysis: dict[str, GroupStats]
    type_analysis: dict[str, GroupStats]
    hourly_patterns: list[HourlyPattern] = field(default_factory=list)
    daily_patterns: list[DailyPattern] = field(default_factory=list)
    market_breakdown: list[MarketBreakdown] = field(default_factory=list)
    cumulative_pnl: list[CumulativePnLPoint] = field(default_factory=list)
    period_pnl: list[PeriodPnL] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe dict: datetimes as ISO strings, infinite ratios as None."""
        data = asdict(self)
        for point in data["cumulative_pnl"]:
            point["date"] = point["date"].isoformat()
        return sanitize_for_json(data)
