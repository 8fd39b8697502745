import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.database import (
    CommentLike,
    CopyTradingSignal,
    LeaderboardEntry,
    SignalFollower,
    TradeComment,
    TradeNote,
)
from utils.logger import get_logger
from utils.utcnow import utcnow

logger = get_logger("social")


class NotFoundError(LookupError):
    """Referenced row does not exist."""


def _new_id() -> str:
    return str(uuid.uuid4())


def _normalize_wallet(address: str) -> str:
    return address.strip().lower()


def leaderboard_to_dict(entry: LeaderboardEntry, rank: Optional[int] = None) -> dict:
    return {
        "id": entry.id,
        "wallet_address": entry.wallet_address,
        "display_name": entry.display_name,
        "total_pnl": entry.total_pnl,
        "win_rate": entry.win_rate,
        "total_trades": entry.total_trades,
        "total_volume": entry.total_volume,
        "rank": rank if rank is not None else entry.rank,
        "is_public": entry.is_public,
        "updated_at": entry.updated_at.isoformat() if entry.updated_at else None,
    }


def comment_to_dict(comment: TradeComment) -> dict:
    return {
        "id": comment.id,
        "user_id": comment.user_id,
        "wallet_address": comment.wallet_address,
        "trade_id": comment.trade_id,
        "market_id": comment.market_id,
        "comment": comment.comment,
        "likes": comment.likes,
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
    }


def signal_to_dict(signal: CopyTradingSignal) -> dict:
    return {
        "id": signal.id,
        "wallet_address": signal.wallet_address,
        "display_name": signal.display_name,
        "description": signal.description,
        "total_pnl": signal.total_pnl,
        "win_rate": signal.win_rate,
        "total_followers": signal.total_followers,
        "is_public": signal.is_public,
        "created_at": signal.created_at.isoformat() if signal.created_at else None,
    }


def note_to_dict(note: TradeNote) -> dict:
    return {
        "id": note.id,
        "user_id": note.user_id,
        "wallet_address": note.wallet_address,
        "trade_id": note.trade_id,
        "market_id": note.market_id,
        "note": note.note or "",
        "tags": list(note.tags or []),
        "updated_at": note.updated_at.isoformat() if note.updated_at else None,
    }


class SocialService:
    """Leaderboard, trade comments, copy-trading signals and journal notes"""

    # ==================== LEADERBOARD ====================

    async def upsert_leaderboard_entry(
        self,
        session: AsyncSession,
        wallet_address: str,
        total_pnl: float,
        total_trades: int,
        total_volume: float = 0.0,
        win_rate: Optional[float] = None,
        display_name: Optional[str] = None,
        is_public: bool = True,
    ) -> LeaderboardEntry:
        wallet = _normalize_wallet(wallet_address)
        result = await session.execute(
            select(LeaderboardEntry).where(LeaderboardEntry.wallet_address == wallet)
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            entry = LeaderboardEntry(id=_new_id(), wallet_address=wallet)
            session.add(entry)

        entry.display_name = display_name
        entry.total_pnl = total_pnl
        entry.total_trades = total_trades
        entry.total_volume = total_volume
        entry.win_rate = win_rate
        entry.is_public = is_public
        entry.updated_at = utcnow()
        await session.commit()
        logger.info("Leaderboard entry saved", wallet=wallet, total_pnl=total_pnl)
        return entry

    async def list_leaderboard(self, session: AsyncSession, limit: int = 100) -> list[dict]:
        """Public entries by total PnL, best first, ranked from 1"""
        result = await session.execute(
            select(LeaderboardEntry)
            .where(LeaderboardEntry.is_public.is_(True))
            .order_by(LeaderboardEntry.total_pnl.desc())
            .limit(limit)
        )
        return [
            leaderboard_to_dict(entry, rank=idx)
            for idx, entry in enumerate(result.scalars().all(), start=1)
        ]

    async def top_wallets(self, session: AsyncSession, limit: int = 10) -> list[str]:
        result = await session.execute(
            select(LeaderboardEntry.wallet_address)
            .order_by(LeaderboardEntry.total_pnl.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ==================== COMMENTS ====================

    async def add_comment(
        self,
        session: AsyncSession,
        user_id: str,
        wallet_address: str,
        trade_id: str,
        market_id: int,
        comment: str,
    ) -> TradeComment:
        text = comment.strip()
        if not text:
            raise ValueError("Comment cannot be empty")
        row = TradeComment(
            id=_new_id(),
            user_id=user_id,
            wallet_address=_normalize_wallet(wallet_address),
            trade_id=trade_id,
            market_id=market_id,
            comment=text,
            likes=0,
            created_at=utcnow(),
        )
        session.add(row)
        await session.commit()
        return row

    async def list_comments(
        self, session: AsyncSession, trade_id: str, market_id: int
    ) -> list[TradeComment]:
        result = await session.execute(
            select(TradeComment)
            .where(TradeComment.trade_id == trade_id, TradeComment.market_id == market_id)
            .order_by(TradeComment.created_at.desc())
        )
        return list(result.scalars().all())

    async def toggle_comment_like(
        self, session: AsyncSession, comment_id: str, user_id: str
    ) -> tuple[TradeComment, bool]:
        """Like or unlike; returns the comment and whether it is now liked."""
        comment = await session.get(TradeComment, comment_id)
        if comment is None:
            raise NotFoundError(f"Comment {comment_id} not found")

        result = await session.execute(
            select(CommentLike).where(
                CommentLike.comment_id == comment_id, CommentLike.user_id == user_id
            )
        )
        like = result.scalar_one_or_none()
        if like is None:
            session.add(CommentLike(id=_new_id(), comment_id=comment_id, user_id=user_id))
            comment.likes = (comment.likes or 0) + 1
            liked = True
        else:
            await session.delete(like)
            comment.likes = max(0, (comment.likes or 0) - 1)
            liked = False
        await session.commit()
        return comment, liked

    # ==================== COPY TRADING ====================

    async def publish_signal(
        self,
        session: AsyncSession,
        wallet_address: str,
        total_pnl: float,
        win_rate: Optional[float] = None,
        display_name: Optional[str] = None,
        description: Optional[str] = None,
        is_public: bool = True,
    ) -> CopyTradingSignal:
        signal = CopyTradingSignal(
            id=_new_id(),
            wallet_address=_normalize_wallet(wallet_address),
            display_name=display_name,
            description=description,
            total_pnl=total_pnl,
            win_rate=win_rate,
            total_followers=0,
            is_public=is_public,
        )
        session.add(signal)
        await session.commit()
        return signal

    async def list_signals(self, session: AsyncSession, limit: int = 20) -> list[CopyTradingSignal]:
        result = await session.execute(
            select(CopyTradingSignal)
            .where(CopyTradingSignal.is_public.is_(True))
            .order_by(CopyTradingSignal.total_pnl.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def toggle_follow(
        self, session: AsyncSession, signal_id: str, user_id: str
    ) -> tuple[CopyTradingSignal, bool]:
        """Follow or unfollow; returns the signal and whether it is now followed."""
        signal = await session.get(CopyTradingSignal, signal_id)
        if signal is None:
            raise NotFoundError(f"Signal {signal_id} not found")

        result = await session.execute(
            select(SignalFollower).where(
                SignalFollower.signal_id == signal_id, SignalFollower.user_id == user_id
            )
        )
        follower = result.scalar_one_or_none()
        if follower is None:
            session.add(SignalFollower(id=_new_id(), signal_id=signal_id, user_id=user_id))
            signal.total_followers = (signal.total_followers or 0) + 1
            following = True
        else:
            await session.delete(follower)
            signal.total_followers = max(0, (signal.total_followers or 0) - 1)
            following = False
        await session.commit()
        return signal, following

    # ==================== JOURNAL ====================

    async def save_note(
        self,
        session: AsyncSession,
        user_id: str,
        wallet_address: str,
        trade_id: str,
        market_id: int,
        note: str,
        tags: Optional[list[str]] = None,
    ) -> TradeNote:
        wallet = _normalize_wallet(wallet_address)
        clean_tags = []
        for tag in tags or []:
            tag = tag.strip()
            if tag and tag not in clean_tags:
                clean_tags.append(tag)

        result = await session.execute(
            select(TradeNote).where(
                TradeNote.user_id == user_id,
                TradeNote.wallet_address == wallet,
                TradeNote.trade_id == trade_id,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = TradeNote(
                id=_new_id(), user_id=user_id, wallet_address=wallet, trade_id=trade_id
            )
            session.add(row)
        row.market_id = market_id
        row.note = note
        row.tags = clean_tags
        row.updated_at = utcnow()
        await session.commit()
        return row

    async def list_notes(
        self, session: AsyncSession, user_id: str, wallet_address: str
    ) -> list[TradeNote]:
        result = await session.execute(
            select(TradeNote).where(
                TradeNote.user_id == user_id,
                TradeNote.wallet_address == _normalize_wallet(wallet_address),
            )
        )
        return list(result.scalars().all())

    async def delete_note(self, session: AsyncSession, note_id: str) -> None:
        row = await session.get(TradeNote, note_id)
        if row is None:
            raise NotFoundError(f"Note {note_id} not found")
        await session.delete(row)
        await session.commit()


social_service = SocialService()
