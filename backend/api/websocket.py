from fastapi import WebSocket, WebSocketDisconnect
from typing import Callable, Dict, Set
import json

from services.account_tracker import AccountNotFoundError, AccountTracker, tracker_registry
from services.lighter_client import lighter_client
from services.preferences import preference_store
from utils.logger import get_logger
from utils.validation import validate_eth_address

logger = get_logger("websocket")


class ConnectionManager:
    """Manages WebSocket connections, grouped by wallet address"""

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self._watched: Dict[str, AccountTracker] = {}
        self._unsubscribers: Dict[str, Callable[[], None]] = {}

    async def connect(self, wallet: str, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.setdefault(wallet, set()).add(websocket)

    def disconnect(self, wallet: str, websocket: WebSocket):
        connections = self.active_connections.get(wallet)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            del self.active_connections[wallet]
            self._watched.pop(wallet, None)
            unsubscribe = self._unsubscribers.pop(wallet, None)
            if unsubscribe is not None:
                unsubscribe()

    def watch(self, wallet: str, tracker: AccountTracker):
        """Push every tracker update to the wallet's sockets"""
        if self._watched.get(wallet) is tracker:
            return
        stale = self._unsubscribers.pop(wallet, None)
        if stale is not None:
            stale()

        async def on_update(updated: AccountTracker):
            await self.broadcast(wallet, {"type": "snapshot", "data": updated.snapshot()})

        self._watched[wallet] = tracker
        self._unsubscribers[wallet] = tracker.add_listener(on_update)

    async def broadcast(self, wallet: str, message: dict):
        """Send message to all clients watching *wallet*"""
        connections = self.active_connections.get(wallet)
        if not connections:
            return

        message_json = json.dumps(message, default=str)
        disconnected = set()

        for connection in list(connections):
            try:
                await connection.send_text(message_json)
            except Exception:
                disconnected.add(connection)

        for connection in disconnected:
            self.disconnect(wallet, connection)

    async def send_personal(self, wallet: str, websocket: WebSocket, message: dict):
        """Send message to specific client"""
        try:
            await websocket.send_text(json.dumps(message, default=str))
        except Exception:
            self.disconnect(wallet, websocket)


# Global connection manager
manager = ConnectionManager()


async def handle_websocket(websocket: WebSocket, address: str):
    """Stream live snapshots of one account"""
    try:
        wallet = validate_eth_address(address).lower()
    except ValueError as e:
        await websocket.close(code=1008, reason=str(e))
        return

    try:
        tracker = await tracker_registry.track(
            wallet, lighter_client, alert_config=await preference_store.alert_config()
        )
    except AccountNotFoundError as e:
        await websocket.close(code=1008, reason=str(e))
        return

    await manager.connect(wallet, websocket)
    manager.watch(wallet, tracker)
    await manager.send_personal(wallet, websocket, {"type": "init", "data": tracker.snapshot()})

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await manager.send_personal(
                    wallet, websocket, {"type": "error", "data": "Invalid JSON"}
                )
                continue

            if not isinstance(message, dict):
                continue

            if message.get("type") == "ping":
                await manager.send_personal(wallet, websocket, {"type": "pong"})

            elif message.get("type") == "snapshot":
                await manager.send_personal(
                    wallet, websocket, {"type": "snapshot", "data": tracker.snapshot()}
                )

            elif message.get("type") == "reconnect":
                await tracker.reconnect()
                await manager.send_personal(
                    wallet,
                    websocket,
                    {"type": "reconnecting", "data": {"connection": tracker.state.connection.value}},
                )

            elif message.get("type") == "subscribe_market":
                try:
                    market_id = int(message.get("market_id"))
                except (TypeError, ValueError):
                    await manager.send_personal(
                        wallet, websocket, {"type": "error", "data": "market_id must be an integer"}
                    )
                    continue
                channels = await tracker.subscribe_market(
                    market_id, order_book=bool(message.get("order_book"))
                )
                await manager.send_personal(
                    wallet,
                    websocket,
                    {"type": "subscribed", "data": {"market_id": market_id, "channels": channels}},
                )

    except WebSocketDisconnect:
        manager.disconnect(wallet, websocket)
    except Exception as e:
        logger.error("WebSocket error", wallet=wallet, error=str(e))
        manager.disconnect(wallet, websocket)
