from typing import Literal, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from services.calculator import (
    calculate_average_open_price,
    calculate_liquidation_price,
    calculate_max_open_quantity,
    calculate_target_price,
    summarize_position,
)
from utils.validation import sanitize_for_json

router = APIRouter()

Side = Literal["long", "short"]


class PnLRequest(BaseModel):
    side: Side
    entry_price: float = Field(..., gt=0)
    exit_price: float = Field(..., ge=0)
    quantity: float = Field(..., gt=0)
    leverage: float = Field(..., gt=0, le=100)
    maintenance_margin_fraction: Optional[float] = Field(default=None, ge=0, lt=1)


class TargetPriceRequest(BaseModel):
    side: Side
    entry_price: float = Field(..., gt=0)
    quantity: float = Field(..., gt=0)
    leverage: float = Field(..., gt=0, le=100)
    roe_percent: float


class LiquidationRequest(BaseModel):
    side: Side
    entry_price: float = Field(..., gt=0)
    leverage: float = Field(..., gt=0, le=100)
    maintenance_margin_fraction: Optional[float] = Field(default=None, ge=0, lt=1)


class MaxOpenRequest(BaseModel):
    balance: float = Field(..., ge=0)
    leverage: float = Field(..., gt=0, le=100)
    price: float = Field(..., gt=0)


class OpenEntry(BaseModel):
    price: float = Field(..., gt=0)
    quantity: float = Field(..., gt=0)


class AveragePriceRequest(BaseModel):
    entries: list[OpenEntry] = Field(..., min_length=1)


@router.post("/calculator/pnl")
async def pnl(request: PnLRequest):
    return sanitize_for_json(
        summarize_position(
            request.side,
            request.entry_price,
            request.exit_price,
            request.quantity,
            request.leverage,
            request.maintenance_margin_fraction,
        )
    )


@router.post("/calculator/target-price")
async def target_price(request: TargetPriceRequest):
    price = calculate_target_price(
        request.side, request.entry_price, request.quantity, request.leverage, request.roe_percent
    )
    if price <= 0:
        raise HTTPException(status_code=400, detail="Target ROE is not reachable from this entry")
    return {"target_price": price}


@router.post("/calculator/liquidation-price")
async def liquidation_price(request: LiquidationRequest):
    return {
        "liquidation_price": calculate_liquidation_price(
            request.side,
            request.entry_price,
            request.leverage,
            request.maintenance_margin_fraction,
        )
    }


@router.post("/calculator/max-open")
async def max_open(request: MaxOpenRequest):
    return {
        "max_quantity": calculate_max_open_quantity(request.balance, request.leverage, request.price)
    }


@router.post("/calculator/average-price")
async def average_price(request: AveragePriceRequest):
    entries = [(e.price, e.quantity) for e in request.entries]
    return {
        "average_price": calculate_average_open_price(entries),
        "total_quantity": sum(q for _, q in entries),
    }
