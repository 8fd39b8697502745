"""Account risk alerts raised after stats or position updates."""

import time
from typing import Literal, Optional

from pydantic import BaseModel, Field

from models.lighter import Position, UserStats

AlertType = Literal["margin", "pnl", "liquidation", "position"]
Severity = Literal["info", "warning", "error"]

LIQUIDATION_PROXIMITY = 0.1  # liquidation price within 10% of entry


class AlertConfig(BaseModel):
    low_margin_threshold: float = Field(default=0.2, ge=0)
    high_margin_threshold: float = Field(default=0.8, ge=0)
    pnl_change_threshold: float = Field(default=100.0, ge=0)
    notify_on_liquidation: bool = True
    notify_on_large_pnl: bool = True
    # Governs both the low and the high margin-usage alerts.
    notify_on_low_margin: bool = True


class Alert(BaseModel):
    id: str
    type: AlertType
    severity: Severity
    title: str
    description: str
    timestamp: int  # epoch milliseconds


def _now_ms() -> int:
    return int(time.time() * 1000)


def check_alerts(
    stats: Optional[UserStats],
    positions: list[Position],
    previous_pnl: float,
    current_pnl: float,
    config: Optional[AlertConfig] = None,
    now_ms: Optional[int] = None,
) -> list[Alert]:
    """Alerts for the current account snapshot; nothing without stats."""
    if stats is None:
        return []
    config = config or AlertConfig()
    ts = now_ms if now_ms is not None else _now_ms()
    alerts: list[Alert] = []

    margin_usage = stats.margin_usage
    if config.notify_on_low_margin and margin_usage < config.low_margin_threshold:
        alerts.append(
            Alert(
                id=f"margin-low-{ts}",
                type="margin",
                severity="warning",
                title="Low Margin Usage",
                description=(
                    f"Your margin usage is at {margin_usage * 100:.1f}%, which is below "
                    f"the {config.low_margin_threshold * 100:g}% threshold."
                ),
                timestamp=ts,
            )
        )

    if config.notify_on_low_margin and margin_usage > config.high_margin_threshold:
        alerts.append(
            Alert(
                id=f"margin-high-{ts}",
                type="margin",
                severity="error",
                title="High Margin Usage - Risk Warning",
                description=(
                    f"Your margin usage is at {margin_usage * 100:.1f}%, which is above "
                    f"the {config.high_margin_threshold * 100:g}% threshold. "
                    "Consider reducing leverage."
                ),
                timestamp=ts,
            )
        )

    pnl_change = abs(current_pnl - previous_pnl)
    if config.notify_on_large_pnl and pnl_change > config.pnl_change_threshold:
        gained = current_pnl > previous_pnl
        alerts.append(
            Alert(
                id=f"pnl-change-{ts}",
                type="pnl",
                severity="info" if gained else "warning",
                title="Significant PnL Change",
                description=(
                    f"Your PnL has changed by ${pnl_change:.2f} "
                    f"({'gain' if gained else 'loss'})."
                ),
                timestamp=ts,
            )
        )

    if config.notify_on_liquidation:
        for position in positions:
            liq_price = position.liquidation_price
            entry_price = position.avg_entry_price
            if liq_price <= 0 or entry_price <= 0:
                continue
            if abs((liq_price - entry_price) / entry_price) < LIQUIDATION_PROXIMITY:
                alerts.append(
                    Alert(
                        id=f"liquidation-{position.symbol}-{ts}",
                        type="liquidation",
                        severity="error",
                        title=f"{position.symbol} Near Liquidation",
                        description=(
                            f"Your {position.symbol} position is within 10% of "
                            f"liquidation price (${liq_price:.2f})."
                        ),
                        timestamp=ts,
                    )
                )

    return alerts
