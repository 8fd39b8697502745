"""KPIs and breakdowns over imported CSV trades.

Every function takes the full trade list and is independent of the others;
``analyze_all_trades`` runs them all.  Ratios with a zero denominator are
``inf`` when the numerator is positive and ``0.0`` otherwise.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable, Literal

from models.analysis import (
    AnalysisResult,
    CSVTrade,
    CumulativePnLPoint,
    DailyPattern,
    GroupStats,
    HourlyPattern,
    KPIMetrics,
    MarketBreakdown,
    PeriodPnL,
)
from utils.logger import analyzer_logger as logger

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def _ratio(numerator: float, denominator: float) -> float:
    if denominator > 0:
        return numerator / denominator
    return float("inf") if numerator > 0 else 0.0


def _gross(trades: Iterable[CSVTrade]) -> tuple[float, float]:
    profit = 0.0
    loss = 0.0
    for t in trades:
        if t.closed_pnl > 0:
            profit += t.closed_pnl
        elif t.closed_pnl < 0:
            loss += -t.closed_pnl
    return profit, loss


def _win_rate(trades: list[CSVTrade]) -> float:
    if not trades:
        return 0.0
    return sum(1 for t in trades if t.is_win) / len(trades) * 100


def day_index(date: datetime) -> int:
    """Day of week with Sunday as 0."""
    return (date.weekday() + 1) % 7


def calculate_kpis(trades: list[CSVTrade]) -> KPIMetrics:
    if not trades:
        return KPIMetrics()

    wins = [t for t in trades if t.is_win]
    losses = [t for t in trades if t.is_loss]
    gross_profit, gross_loss = _gross(trades)

    avg_win = gross_profit / len(wins) if wins else 0.0
    avg_loss = gross_loss / len(losses) if losses else 0.0

    return KPIMetrics(
        net_pnl=sum(t.closed_pnl for t in trades),
        total_fees=sum(t.fee for t in trades),
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        win_rate=len(wins) / len(trades) * 100,
        profit_factor=_ratio(gross_profit, gross_loss),
        avg_winning_trade=avg_win,
        avg_losing_trade=avg_loss,
        payoff_ratio=_ratio(avg_win, avg_loss),
        total_trades=len(trades),
        winning_trades=len(wins),
        losing_trades=len(losses),
    )


def _group_stats(group: list[CSVTrade]) -> GroupStats:
    if not group:
        return GroupStats()
    gross_profit, gross_loss = _gross(group)
    return GroupStats(
        pnl=sum(t.closed_pnl for t in group),
        win_rate=_win_rate(group),
        trades=len(group),
        profit_factor=_ratio(gross_profit, gross_loss),
    )


def _split(trades: list[CSVTrade], attr: str, values: tuple[str, ...]) -> dict[str, GroupStats]:
    return {
        value.lower(): _group_stats([t for t in trades if getattr(t, attr) == value])
        for value in values
    }


def analyze_by_side(trades: list[CSVTrade]) -> dict[str, GroupStats]:
    return _split(trades, "side", ("Long", "Short"))


def analyze_by_role(trades: list[CSVTrade]) -> dict[str, GroupStats]:
    return _split(trades, "role", ("Maker", "Taker"))


def analyze_by_type(trades: list[CSVTrade]) -> dict[str, GroupStats]:
    return _split(trades, "type", ("Limit", "Market"))


def analyze_hourly_patterns(trades: list[CSVTrade]) -> list[HourlyPattern]:
    buckets: dict[int, list[CSVTrade]] = {hour: [] for hour in range(24)}
    for trade in trades:
        buckets[trade.date.hour].append(trade)
    return [
        HourlyPattern(
            hour=hour,
            pnl=sum(t.closed_pnl for t in bucket),
            win_rate=_win_rate(bucket),
            trades=len(bucket),
        )
        for hour, bucket in buckets.items()
    ]


def analyze_daily_patterns(trades: list[CSVTrade]) -> list[DailyPattern]:
    buckets: dict[int, list[CSVTrade]] = {idx: [] for idx in range(7)}
    for trade in trades:
        buckets[day_index(trade.date)].append(trade)
    return [
        DailyPattern(
            day=DAY_NAMES[idx],
            day_index=idx,
            pnl=sum(t.closed_pnl for t in bucket),
            win_rate=_win_rate(bucket),
            trades=len(bucket),
        )
        for idx, bucket in buckets.items()
    ]


def analyze_by_market(trades: list[CSVTrade]) -> list[MarketBreakdown]:
    by_market: dict[str, list[CSVTrade]] = defaultdict(list)
    for trade in trades:
        by_market[trade.market].append(trade)

    breakdown = []
    for market, group in by_market.items():
        net_pnl = sum(t.closed_pnl for t in group)
        gross_profit, gross_loss = _gross(group)
        breakdown.append(
            MarketBreakdown(
                market=market,
                net_pnl=net_pnl,
                win_rate=_win_rate(group),
                profit_factor=_ratio(gross_profit, gross_loss),
                total_fees=sum(t.fee for t in group),
                total_trades=len(group),
                avg_pnl_per_trade=net_pnl / len(group),
            )
        )
    breakdown.sort(key=lambda m: m.net_pnl, reverse=True)
    return breakdown


def calculate_cumulative_pnl(trades: list[CSVTrade]) -> list[CumulativePnLPoint]:
    cumulative = 0.0
    points = []
    for trade in sorted(trades, key=lambda t: t.date):
        cumulative += trade.closed_pnl
        points.append(
            CumulativePnLPoint(
                date=trade.date,
                pnl=cumulative,
                date_str=trade.date.strftime("%Y-%m-%d"),
            )
        )
    return points


def calculate_period_pnl(
    trades: list[CSVTrade], period: Literal["daily", "weekly"] = "daily"
) -> list[PeriodPnL]:
    """Net PnL per calendar day, or per week starting on Sunday."""
    totals: dict[datetime, float] = defaultdict(float)
    for trade in trades:
        start = trade.date.replace(hour=0, minute=0, second=0, microsecond=0)
        if period == "weekly":
            start -= timedelta(days=day_index(start))
        totals[start] += trade.closed_pnl

    result = []
    for start in sorted(totals):
        label = start.strftime("%Y-%m-%d")
        if period == "weekly":
            label = f"Week of {label}"
        result.append(PeriodPnL(period=label, pnl=totals[start]))
    return result


def analyze_all_trades(trades: list[CSVTrade]) -> AnalysisResult:
    logger.debug("Analyzing trades", trades=len(trades))
    return AnalysisResult(
        kpis=calculate_kpis(trades),
        side_analysis=analyze_by_side(trades),
        role_analysis=analyze_by_role(trades),
        type_analysis=analyze_by_type(trades),
        hourly_patterns=analyze_hourly_patterns(trades),
        daily_patterns=analyze_daily_patterns(trades),
        market_breakdown=analyze_by_market(trades),
        cumulative_pnl=calculate_cumulative_pnl(trades),
        period_pnl=calculate_period_pnl(trades, "daily"),
    )
