from .lighter import (
    MarketStats,
    NotificationEvent,
    Order,
    OrderBook,
    OrderBookLevel,
    Position,
    SubAccount,
    Trade,
    UserStats,
)
from .analysis import AnalysisResult, CSVTrade, KPIMetrics

__all__ = [
    "MarketStats",
    "NotificationEvent",
    "Order",
    "OrderBook",
    "OrderBookLevel",
    "Position",
    "SubAccount",
    "Trade",
    "UserStats",
    "AnalysisResult",
    "CSVTrade",
    "KPIMetrics",
]
