from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from models.database import get_db_session
from services.liquidations import HEATMAP_BUCKET, build_heatmap, list_events, record_to_dict
from services.social import (
    NotFoundError,
    comment_to_dict,
    note_to_dict,
    signal_to_dict,
    social_service,
)
from utils.validation import validate_eth_address

router = APIRouter()


class WalletModel(BaseModel):
    wallet_address: str

    @field_validator("wallet_address")
    @classmethod
    def validate_wallet(cls, v: str) -> str:
        return validate_eth_address(v)


class LeaderboardRequest(WalletModel):
    display_name: Optional[str] = Field(default=None, max_length=64)
    total_pnl: float
    total_trades: int = Field(..., ge=0)
    total_volume: float = Field(default=0.0, ge=0)
    win_rate: Optional[float] = Field(default=None, ge=0, le=100)
    is_public: bool = True


class CommentRequest(WalletModel):
    user_id: str
    trade_id: str
    market_id: int
    comment: str = Field(..., max_length=2000)


class UserRequest(BaseModel):
    user_id: str


class SignalRequest(WalletModel):
    display_name: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = Field(default=None, max_length=500)
    total_pnl: float
    win_rate: Optional[float] = Field(default=None, ge=0, le=100)
    is_public: bool = True


class NoteRequest(WalletModel):
    user_id: str
    trade_id: str
    market_id: int
    note: str = Field(default="", max_length=5000)
    tags: list[str] = Field(default_factory=list)


# ==================== LEADERBOARD ====================


@router.get("/social/leaderboard")
async def get_leaderboard(
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_db_session),
):
    return await social_service.list_leaderboard(session, limit=limit)


@router.post("/social/leaderboard")
async def submit_leaderboard_entry(
    request: LeaderboardRequest, session: AsyncSession = Depends(get_db_session)
):
    entry = await social_service.upsert_leaderboard_entry(
        session,
        wallet_address=request.wallet_address,
        total_pnl=request.total_pnl,
        total_trades=request.total_trades,
        total_volume=request.total_volume,
        win_rate=request.win_rate,
        display_name=request.display_name,
        is_public=request.is_public,
    )
    return {"status": "success", "id": entry.id}


# ==================== COMMENTS ====================


@router.get("/social/comments")
async def get_comments(
    trade_id: str,
    market_id: int,
    session: AsyncSession = Depends(get_db_session),
):
    comments = await social_service.list_comments(session, trade_id, market_id)
    return [comment_to_dict(c) for c in comments]


@router.post("/social/comments")
async def add_comment(request: CommentRequest, session: AsyncSession = Depends(get_db_session)):
    try:
        comment = await social_service.add_comment(
            session,
            user_id=request.user_id,
            wallet_address=request.wallet_address,
            trade_id=request.trade_id,
            market_id=request.market_id,
            comment=request.comment,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return comment_to_dict(comment)


@router.post("/social/comments/{comment_id}/like")
async def like_comment(
    comment_id: str, request: UserRequest, session: AsyncSession = Depends(get_db_session)
):
    try:
        comment, liked = await social_service.toggle_comment_like(
            session, comment_id, request.user_id
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"liked": liked, "comment": comment_to_dict(comment)}


# ==================== COPY TRADING ====================


@router.get("/social/signals")
async def get_signals(
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_db_session),
):
    return [signal_to_dict(s) for s in await social_service.list_signals(session, limit=limit)]


@router.post("/social/signals")
async def publish_signal(request: SignalRequest, session: AsyncSession = Depends(get_db_session)):
    signal = await social_service.publish_signal(
        session,
        wallet_address=request.wallet_address,
        total_pnl=request.total_pnl,
        win_rate=request.win_rate,
        display_name=request.display_name,
        description=request.description,
        is_public=request.is_public,
    )
    return signal_to_dict(signal)


@router.post("/social/signals/{signal_id}/follow")
async def follow_signal(
    signal_id: str, request: UserRequest, session: AsyncSession = Depends(get_db_session)
):
    try:
        signal, following = await social_service.toggle_follow(session, signal_id, request.user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"following": following, "signal": signal_to_dict(signal)}


# ==================== JOURNAL ====================


@router.get("/social/notes")
async def get_notes(
    user_id: str,
    wallet_address: str,
    session: AsyncSession = Depends(get_db_session),
):
    try:
        wallet = validate_eth_address(wallet_address)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [note_to_dict(n) for n in await social_service.list_notes(session, user_id, wallet)]


@router.put("/social/notes")
async def save_note(request: NoteRequest, session: AsyncSession = Depends(get_db_session)):
    note = await social_service.save_note(
        session,
        user_id=request.user_id,
        wallet_address=request.wallet_address,
        trade_id=request.trade_id,
        market_id=request.market_id,
        note=request.note,
        tags=request.tags,
    )
    return note_to_dict(note)


@router.delete("/social/notes/{note_id}")
async def delete_note(note_id: str, session: AsyncSession = Depends(get_db_session)):
    try:
        await social_service.delete_note(session, note_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "deleted"}


# ==================== LIQUIDATIONS ====================


@router.get("/liquidations")
async def get_liquidations(
    limit: int = Query(default=100, ge=1, le=1000),
    event_type: Optional[Literal["liquidation", "deleverage"]] = None,
    symbol: Optional[str] = None,
    wallet_address: Optional[str] = None,
    session: AsyncSession = Depends(get_db_session),
):
    records = await list_events(
        session,
        limit=limit,
        event_type=event_type,
        symbol=symbol,
        wallet_address=wallet_address,
    )
    return [record_to_dict(r) for r in records]


@router.get("/liquidations/heatmap")
async def get_liquidation_heatmap(
    limit: int = Query(default=1000, ge=1, le=10000),
    symbol: Optional[str] = None,
    session: AsyncSession = Depends(get_db_session),
):
    records = await list_events(session, limit=limit, symbol=symbol)
    return {"bucket_size": HEATMAP_BUCKET, "buckets": build_heatmap(records)}
