from sqlalchemy import (
    Column,
    String,
    Integer,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Text,
    JSON,
    Index,
    UniqueConstraint,
    event,
)
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from pathlib import Path
import logging

from config import settings
from utils.utcnow import utcnow

logger = logging.getLogger(__name__)

Base = declarative_base()


# ==================== LEADERBOARD ====================


class LeaderboardEntry(Base):
    """Public (or private) performance summary submitted for a wallet."""

    __tablename__ = "leaderboard_entries"

    id = Column(String, primary_key=True)
    wallet_address = Column(String, nullable=False, unique=True)
    display_name = Column(String, nullable=True)
    total_pnl = Column(Float, nullable=False, default=0.0)
    win_rate = Column(Float, nullable=True)
    total_trades = Column(Integer, nullable=False, default=0)
    total_volume = Column(Float, nullable=False, default=0.0)
    rank = Column(Integer, nullable=True)
    is_public = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("idx_leaderboard_pnl", "total_pnl"),)


# ==================== TRADE COMMENTS ====================


class TradeComment(Base):
    __tablename__ = "trade_comments"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    wallet_address = Column(String, nullable=False)
    trade_id = Column(String, nullable=False)
    market_id = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False)
    likes = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (Index("idx_comment_trade", "trade_id", "market_id"),)


class CommentLike(Base):
    """One like per (comment, user); the comment row keeps the counter."""

    __tablename__ = "trade_comment_likes"

    id = Column(String, primary_key=True)
    comment_id = Column(String, nullable=False)
    user_id = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("comment_id", "user_id", name="uq_comment_like_user"),
    )


# ==================== COPY TRADING SIGNALS ====================


class CopyTradingSignal(Base):
    __tablename__ = "copy_trading_signals"

    id = Column(String, primary_key=True)
    wallet_address = Column(String, nullable=False, index=True)
    display_name = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    total_pnl = Column(Float, nullable=False, default=0.0)
    win_rate = Column(Float, nullable=True)
    total_followers = Column(Integer, nullable=False, default=0)
    is_public = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class SignalFollower(Base):
    __tablename__ = "copy_trading_followers"

    id = Column(String, primary_key=True)
    signal_id = Column(String, nullable=False)
    user_id = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("signal_id", "user_id", name="uq_signal_follower_user"),
    )


# ==================== TRADING JOURNAL ====================


class TradeNote(Base):
    __tablename__ = "trade_notes"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    wallet_address = Column(String, nullable=False)
    trade_id = Column(String, nullable=False)
    market_id = Column(Integer, nullable=False, default=0)
    note = Column(Text, nullable=False, default="")
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "wallet_address", "trade_id", name="uq_trade_note"),
    )


# ==================== LIQUIDATIONS ====================


class LiquidationRecord(Base):
    """Liquidation or auto-deleverage event observed on a tracked account."""

    __tablename__ = "liquidations"

    id = Column(String, primary_key=True)
    wallet_address = Column(String, nullable=False, index=True)
    market_id = Column(Integer, nullable=False, default=0)
    symbol = Column(String, nullable=True)
    event_type = Column(String, nullable=False)  # liquidation | deleverage
    price = Column(Float, nullable=False, default=0.0)
    size = Column(Float, nullable=False, default=0.0)
    usdc_amount = Column(Float, nullable=False, default=0.0)
    settlement_price = Column(Float, nullable=True)
    timestamp = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (Index("idx_liquidation_timestamp", "timestamp"),)


# ==================== DATABASE SETUP ====================

_engine_kw: dict = {"echo": False}
if "sqlite" in settings.DATABASE_URL:
    _engine_kw["connect_args"] = {"timeout": 30}  # Wait up to 30s when DB is locked

async_engine = create_async_engine(settings.DATABASE_URL, **_engine_kw)


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """WAL mode and a busy timeout for concurrent SQLite access."""
    if "sqlite" not in settings.DATABASE_URL:
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


event.listens_for(async_engine.sync_engine, "connect")(_set_sqlite_pragma)

AsyncSessionLocal = sessionmaker(
    async_engine, class_=AsyncSession, expire_on_commit=False
)


def _ensure_sqlite_directory(url: str) -> None:
    prefix = "sqlite+aiosqlite:///"
    if not url.startswith(prefix):
        return
    path_part = url[len(prefix):]
    if not path_part or path_part == ":memory:":
        return
    Path(path_part).parent.mkdir(parents=True, exist_ok=True)


async def init_database(engine=None):
    """Create all tables that do not exist yet."""
    target = engine or async_engine
    _ensure_sqlite_directory(str(target.url))
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


async def get_db_session() -> AsyncSession:
    """Get database session"""
    async with AsyncSessionLocal() as session:
        yield session
