from fastapi import APIRouter

from api.routes_accounts import router as accounts_router
from api.routes_ai import router as ai_router
from api.routes_analyzer import router as analyzer_router
from api.routes_calculator import router as calculator_router
from api.routes_markets import router as markets_router
from api.routes_preferences import router as preferences_router
from api.routes_social import router as social_router
from api.websocket import handle_websocket

router = APIRouter()
router.include_router(accounts_router, tags=["Accounts"])
router.include_router(markets_router, tags=["Markets"])
router.include_router(analyzer_router, tags=["CSV Analyzer"])
router.include_router(calculator_router, tags=["Calculator"])
router.include_router(social_router, tags=["Social"])
router.include_router(ai_router, tags=["AI Insights"])
router.include_router(preferences_router, tags=["Preferences"])

__all__ = ["router", "handle_websocket"]
