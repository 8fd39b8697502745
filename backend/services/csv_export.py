"""
CSV exports of a tracked account.

Every export has a fixed column set so files from different sessions line
up in a spreadsheet.

positions:      symbol,side,size,entry_price,position_value,unrealized_pnl,
                realized_pnl,liquidation_price,initial_margin_fraction
trades:         trade_id,market_id,type,size,price,usd_amount,timestamp,
                maker_fee,taker_fee
account_stats:  collateral,portfolio_value,leverage,available_balance,
                margin_usage,buying_power,timestamp
trading_summary: wallet_address,total_positions,total_trades,portfolio_value,
                collateral,leverage,export_date
"""

import csv
import io
from datetime import date, datetime
from typing import Iterable, Optional

from models.lighter import Position, Trade, UserStats
from utils.utcnow import utc_iso, utcnow

POSITION_COLUMNS = [
    "symbol", "side", "size", "entry_price", "position_value", "unrealized_pnl",
    "realized_pnl", "liquidation_price", "initial_margin_fraction",
]
TRADE_COLUMNS = [
    "trade_id", "market_id", "type", "size", "price", "usd_amount", "timestamp",
    "maker_fee", "taker_fee",
]
ACCOUNT_STATS_COLUMNS = [
    "collateral", "portfolio_value", "leverage", "available_balance",
    "margin_usage", "buying_power", "timestamp",
]
SUMMARY_COLUMNS = [
    "wallet_address", "total_positions", "total_trades", "portfolio_value",
    "collateral", "leverage", "export_date",
]

EXPORT_KINDS = ("positions", "trades", "account_stats", "trading_summary")


def export_filename(kind: str, on: Optional[date] = None) -> str:
    day = on or utcnow().date()
    return f"{kind}_{day.isoformat()}.csv"


def rows_to_csv(columns: list[str], rows: Iterable[dict]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow(["" if row.get(col) is None else row.get(col) for col in columns])
    return buffer.getvalue()


def position_rows(positions: list[Position]) -> list[dict]:
    return [
        {
            "symbol": p.symbol,
            "side": p.side,
            "size": p.size,
            "entry_price": p.avg_entry_price,
            "position_value": p.position_value,
            "unrealized_pnl": p.unrealized_pnl,
            "realized_pnl": p.realized_pnl,
            "liquidation_price": p.liquidation_price,
            "initial_margin_fraction": p.initial_margin_fraction,
        }
        for p in positions
    ]


def trade_rows(trades: list[Trade]) -> list[dict]:
    return [
        {
            "trade_id": t.trade_id,
            "market_id": t.market_id,
            "type": t.type,
            "size": t.size,
            "price": t.price,
            "usd_amount": t.usd_amount,
            "timestamp": utc_iso(t.executed_at, timespec="milliseconds"),
            "maker_fee": t.maker_fee,
            "taker_fee": t.taker_fee,
        }
        for t in trades
    ]


def account_stats_rows(stats: Optional[UserStats], now: Optional[datetime] = None) -> list[dict]:
    if stats is None:
        return []
    return [
        {
            "collateral": stats.collateral,
            "portfolio_value": stats.portfolio_value,
            "leverage": stats.leverage,
            "available_balance": stats.available_balance,
            "margin_usage": stats.margin_usage,
            "buying_power": stats.buying_power,
            "timestamp": utc_iso(now, timespec="milliseconds"),
        }
    ]


def summary_rows(
    wallet_address: str,
    positions: list[Position],
    trades: list[Trade],
    stats: Optional[UserStats],
    now: Optional[datetime] = None,
) -> list[dict]:
    return [
        {
            "wallet_address": wallet_address,
            "total_positions": len(positions),
            "total_trades": len(trades),
            "portfolio_value": stats.portfolio_value if stats else 0,
            "collateral": stats.collateral if stats else 0,
            "leverage": stats.leverage if stats else 0,
            "export_date": utc_iso(now, timespec="milliseconds"),
        }
    ]


def build_export(
    kind: str,
    wallet_address: str,
    positions: list[Position],
    trades: list[Trade],
    stats: Optional[UserStats],
) -> tuple[str, str]:
    """``(filename, csv_text)`` for one export kind."""
    if kind == "positions":
        content = rows_to_csv(POSITION_COLUMNS, position_rows(positions))
    elif kind == "trades":
        content = rows_to_csv(TRADE_COLUMNS, trade_rows(trades))
    elif kind == "account_stats":
        content = rows_to_csv(ACCOUNT_STATS_COLUMNS, account_stats_rows(stats))
    elif kind == "trading_summary":
        content = rows_to_csv(
            SUMMARY_COLUMNS, summary_rows(wallet_address, positions, trades, stats)
        )
    else:
        raise ValueError(f"Unknown export kind: {kind}")
    return export_filename(kind), content
