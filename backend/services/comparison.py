"""Compare a trader's figures with typical exchange-wide values."""

from dataclasses import asdict, dataclass
from typing import Literal

Performance = Literal["above", "below", "average"]


@dataclass(frozen=True)
class MarketAverages:
    avg_win_rate: float = 52.5
    avg_leverage: float = 3.2
    avg_position_size: float = 150.0
    avg_trade_duration: float = 4.5  # hours
    avg_pnl_per_trade: float = 12.5


MARKET_AVERAGES = MarketAverages()


@dataclass
class PerformanceComparison:
    metric: str
    user_value: float
    market_avg: float
    percentile: float  # 0-100
    performance: Performance

    def to_dict(self) -> dict:
        return asdict(self)


def calculate_percentile(user_value: float, avg_value: float, higher_is_better: bool = True) -> float:
    """50 plus (or minus) the percent difference from average, clamped to [0, 100]."""
    if avg_value == 0:
        return 50.0
    percent_diff = (user_value - avg_value) / avg_value * 100
    raw = 50 + percent_diff if higher_is_better else 50 - percent_diff
    return min(100.0, max(0.0, raw))


def performance_band(percentile: float) -> Performance:
    if percentile > 60:
        return "above"
    if percentile < 40:
        return "below"
    return "average"


def compare_performance(
    win_rate: float,
    leverage: float,
    total_pnl: float,
    total_trades: int,
    averages: MarketAverages = MARKET_AVERAGES,
) -> list[PerformanceComparison]:
    pnl_per_trade = total_pnl / total_trades if total_trades > 0 else 0.0
    rows = (
        ("Win Rate", win_rate, averages.avg_win_rate, True),
        ("Leverage", leverage, averages.avg_leverage, False),
        ("Avg PnL per Trade", pnl_per_trade, averages.avg_pnl_per_trade, True),
    )
    comparisons = []
    for metric, user_value, market_avg, higher_is_better in rows:
        percentile = calculate_percentile(user_value, market_avg, higher_is_better)
        comparisons.append(
            PerformanceComparison(
                metric=metric,
                user_value=user_value,
                market_avg=market_avg,
                percentile=percentile,
                performance=performance_band(percentile),
            )
        )
    return comparisons
