from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from services.lighter_client import lighter_client
from services.markets import market_resolver
from services.preferences import preference_store

router = APIRouter()


class PriceHintsRequest(BaseModel):
    hints: dict[str, float] = Field(default_factory=dict, description="Symbol to reference price")


@router.get("/markets")
async def list_markets():
    """Known market id to symbol mapping"""
    await market_resolver.load_markets(lighter_client)
    favorites = set(await preference_store.get("favorites") or [])
    return {
        "loaded": market_resolver.loaded,
        "markets": [
            {"market_id": market_id, "symbol": symbol, "favorite": market_id in favorites}
            for market_id, symbol in sorted(market_resolver.known_mapping().items())
        ],
    }


@router.get("/markets/{market_id}")
async def get_market(market_id: int):
    details = await lighter_client.get_market_details(market_id)
    if details is None and not market_resolver.is_known(market_id):
        raise HTTPException(status_code=404, detail=f"Market {market_id} not found")
    return {
        "market_id": market_id,
        "symbol": market_resolver.resolve_symbol(market_id),
        "details": details,
    }


@router.post("/markets/{market_id}/favorite")
async def toggle_favorite_market(market_id: int):
    favorites = await preference_store.toggle_favorite(market_id)
    return {"market_id": market_id, "favorite": market_id in favorites, "favorites": favorites}


@router.put("/markets/price-hints")
async def set_price_hints(request: PriceHintsRequest):
    """Replace the reference prices used to name unlisted markets"""
    market_resolver.set_price_hints(request.hints)
    return {"status": "success", "count": len(request.hints)}
