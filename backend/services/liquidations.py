"""Persistence and aggregation of liquidation / auto-deleverage events."""

import math
from collections import defaultdict
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.database import LiquidationRecord
from models.lighter import NotificationEvent, normalize_epoch_seconds
from utils.logger import get_logger

logger = get_logger("liquidations")

HEATMAP_BUCKET = 100.0  # USD price increment


def record_to_dict(record: LiquidationRecord) -> dict:
    return {
        "id": record.id,
        "wallet_address": record.wallet_address,
        "market_id": record.market_id,
        "symbol": record.symbol,
        "event_type": record.event_type,
        "price": record.price,
        "size": record.size,
        "usdc_amount": record.usdc_amount,
        "settlement_price": record.settlement_price,
        "timestamp": record.timestamp,
    }


async def save_event(
    session: AsyncSession,
    wallet_address: str,
    event: NotificationEvent,
    symbol: Optional[str] = None,
) -> Optional[LiquidationRecord]:
    """Insert *event* unless a row with its id already exists."""
    existing = await session.get(LiquidationRecord, event.id)
    if existing is not None:
        return None
    record = LiquidationRecord(
        id=event.id,
        wallet_address=wallet_address.strip().lower(),
        market_id=event.market_index,
        symbol=symbol,
        event_type=event.kind,
        price=event.price,
        size=event.size,
        usdc_amount=event.usdc_amount,
        settlement_price=event.price if event.kind == "deleverage" else None,
        timestamp=int(normalize_epoch_seconds(event.timestamp)),
    )
    session.add(record)
    await session.commit()
    logger.info(
        "Liquidation event stored",
        event_id=event.id,
        kind=event.kind,
        wallet=record.wallet_address,
        usdc_amount=event.usdc_amount,
    )
    return record


async def list_events(
    session: AsyncSession,
    limit: int = 100,
    event_type: Optional[str] = None,
    symbol: Optional[str] = None,
    wallet_address: Optional[str] = None,
) -> list[LiquidationRecord]:
    """Newest first, optionally filtered"""
    query = select(LiquidationRecord)
    if event_type:
        query = query.where(LiquidationRecord.event_type == event_type)
    if symbol:
        query = query.where(LiquidationRecord.symbol == symbol)
    if wallet_address:
        query = query.where(
            LiquidationRecord.wallet_address == wallet_address.strip().lower()
        )
    query = query.order_by(LiquidationRecord.timestamp.desc()).limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


def build_heatmap(records: Iterable[LiquidationRecord]) -> list[dict]:
    """Event count and USDC volume per $100 price bucket, lowest price first"""
    buckets: dict[float, dict] = defaultdict(lambda: {"count": 0, "volume": 0.0})
    for record in records:
        level = math.floor((record.price or 0.0) / HEATMAP_BUCKET) * HEATMAP_BUCKET
        bucket = buckets[level]
        bucket["count"] += 1
        bucket["volume"] += record.usdc_amount or 0.0
    return [
        {"price": price, "count": data["count"], "volume": data["volume"]}
        for price, data in sorted(buckets.items())
    ]
