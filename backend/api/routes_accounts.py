from fastapi import APIRouter, HTTPException, Path, Query
from fastapi.responses import Response

from services.account_tracker import AccountNotFoundError, AccountTracker, tracker_registry
from services.csv_export import EXPORT_KINDS, build_export
from services.lighter_client import lighter_client
from services.preferences import preference_store
from utils.logger import get_logger
from utils.validation import validate_eth_address

router = APIRouter()
logger = get_logger("routes_accounts")


def _address(address: str) -> str:
    try:
        return validate_eth_address(address)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _tracker(address: str) -> AccountTracker:
    tracker = tracker_registry.get(_address(address))
    if tracker is None:
        raise HTTPException(status_code=404, detail=f"Account {address} is not being tracked")
    return tracker


@router.get("/accounts/{address}")
async def lookup_account(address: str):
    """Resolve a wallet address to its Lighter account index"""
    wallet = _address(address)
    sub_accounts = await lighter_client.get_sub_accounts(wallet)
    if not sub_accounts:
        raise HTTPException(status_code=404, detail=f"No Lighter account for {wallet}")
    return {
        "wallet_address": wallet,
        "account_index": sub_accounts[0].index,
        "sub_accounts": [a.model_dump() for a in sub_accounts],
    }


@router.post("/accounts/{address}/track")
async def track_account(address: str):
    """Start streaming an account over the exchange WebSocket"""
    wallet = _address(address)
    try:
        tracker = await tracker_registry.track(
            wallet, lighter_client, alert_config=await preference_store.alert_config()
        )
    except AccountNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "wallet_address": tracker.state.wallet_address,
        "account_index": tracker.state.account_index,
        "connection": tracker.state.connection.value,
    }


@router.delete("/accounts/{address}/track")
async def untrack_account(address: str):
    if not await tracker_registry.untrack(_address(address)):
        raise HTTPException(status_code=404, detail=f"Account {address} is not being tracked")
    return {"status": "stopped"}


@router.post("/accounts/{address}/reconnect")
async def reconnect_account(address: str):
    """Drop the current socket and reconnect with a fresh backoff budget"""
    tracker = _tracker(address)
    await tracker.reconnect()
    return {"connection": tracker.state.connection.value}


@router.post("/accounts/{address}/markets/{market_id}/subscribe")
async def subscribe_market(
    address: str,
    market_id: int = Path(..., ge=0),
    order_book: bool = Query(False, description="Also stream the order book"),
):
    """Stream a market's public trades (and book) into the account snapshot"""
    tracker = _tracker(address)
    channels = await tracker.subscribe_market(market_id, order_book=order_book)
    return {
        "market_id": market_id,
        "symbol": tracker.resolver.resolve_symbol(market_id),
        "channels": channels,
    }


@router.get("/accounts/{address}/snapshot")
async def account_snapshot(address: str):
    return _tracker(address).snapshot()


@router.get("/accounts")
async def list_tracked_accounts():
    return {"wallets": tracker_registry.wallets()}


@router.get("/accounts/{address}/export/{kind}")
async def export_account(address: str, kind: str = Path(..., description="Export kind")):
    """Download positions, trades, stats or a summary as CSV"""
    if kind not in EXPORT_KINDS:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown export kind '{kind}'. Expected one of: {', '.join(EXPORT_KINDS)}",
        )
    tracker = _tracker(address)
    state = tracker.state
    filename, content = build_export(
        kind, state.wallet_address, state.positions, state.trades, state.stats
    )
    logger.info("CSV export", wallet=state.wallet_address, kind=kind)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
