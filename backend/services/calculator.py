"""Futures position math: margin, PnL, ROE, liquidation and target prices."""

from typing import Iterable, Literal, Optional, Tuple

from config import settings

Side = Literal["long", "short"]


def calculate_initial_margin(quantity: float, entry_price: float, leverage: float) -> float:
    """Initial margin required for a position"""
    if leverage == 0:
        return 0.0
    return quantity * entry_price / leverage


def calculate_pnl(side: Side, entry_price: float, exit_price: float, quantity: float) -> float:
    if side == "long":
        return (exit_price - entry_price) * quantity
    return (entry_price - exit_price) * quantity


def calculate_roe(pnl: float, initial_margin: float) -> float:
    """Return on equity, in percent"""
    if initial_margin == 0:
        return 0.0
    return pnl / initial_margin * 100


def calculate_liquidation_price(
    side: Side,
    entry_price: float,
    leverage: float,
    mmf: Optional[float] = None,
) -> float:
    """Price at which the position's margin falls to maintenance.

    ``mmf`` is the maintenance margin fraction (0.005 = 0.5%).
    """
    if leverage == 0:
        return 0.0
    if mmf is None:
        mmf = settings.MAINTENANCE_MARGIN_FRACTION
    if side == "long":
        return entry_price * (1 - 1 / leverage + mmf)
    return entry_price * (1 + 1 / leverage - mmf)


def calculate_target_price(
    side: Side,
    entry_price: float,
    quantity: float,
    leverage: float,
    roe_percent: float,
) -> float:
    """Exit price needed to reach ``roe_percent`` return on margin"""
    if quantity == 0:
        return 0.0
    initial_margin = calculate_initial_margin(quantity, entry_price, leverage)
    required_pnl = roe_percent / 100 * initial_margin
    if side == "long":
        return entry_price + required_pnl / quantity
    return entry_price - required_pnl / quantity


def calculate_max_open_quantity(balance: float, leverage: float, price: float) -> float:
    if price <= 0:
        return 0.0
    return balance * leverage / price


def calculate_average_open_price(entries: Iterable[Tuple[float, float]]) -> float:
    """Size-weighted average of ``(price, quantity)`` entries"""
    total_quantity = 0.0
    total_cost = 0.0
    for price, quantity in entries:
        total_quantity += quantity
        total_cost += price * quantity
    if total_quantity == 0:
        return 0.0
    return total_cost / total_quantity


def liquidation_distance_percent(entry_price: float, liquidation_price: float) -> float:
    if entry_price == 0 or liquidation_price <= 0:
        return 0.0
    return abs(liquidation_price - entry_price) / entry_price * 100


def summarize_position(
    side: Side,
    entry_price: float,
    exit_price: float,
    quantity: float,
    leverage: float,
    mmf: Optional[float] = None,
) -> dict:
    """Every figure the PnL calculator shows for one hypothetical trade"""
    margin = calculate_initial_margin(quantity, entry_price, leverage)
    pnl = calculate_pnl(side, entry_price, exit_price, quantity)
    liquidation_price = calculate_liquidation_price(side, entry_price, leverage, mmf)
    return {
        "initial_margin": margin,
        "pnl": pnl,
        "roe": calculate_roe(pnl, margin),
        "liquidation_price": liquidation_price,
        "liquidation_distance_percent": liquidation_distance_percent(entry_price, liquidation_price),
        "position_value": quantity * entry_price,
    }
