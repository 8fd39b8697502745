from contextlib import asynccontextmanager
import traceback

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import text

from config import settings
from api import router, handle_websocket
from models.database import AsyncSessionLocal, init_database
from services.account_tracker import tracker_registry
from services.ai import get_gateway_client
from services.lighter_client import lighter_client
from services.markets import market_resolver
from utils.cache import cache_manager
from utils.logger import setup_logging, get_logger
from utils.utcnow import utc_iso

# Setup logging
setup_logging(
    level=settings.LOG_LEVEL, json_format=settings.LOG_JSON, log_file=settings.LOG_FILE
)
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting Lighter dashboard backend...")

    await init_database()
    logger.info("Database initialized")

    try:
        await market_resolver.load_markets(lighter_client)
    except Exception as e:
        logger.warning("Market listing unavailable at startup", error=str(e))

    yield

    logger.info("Shutting down...")
    await tracker_registry.stop_all()
    await lighter_client.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Lighter Dashboard",
    description="Live account tracking, trade analytics and insights for the Lighter exchange",
    version="1.0.0",
    lifespan=lifespan,
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        traceback=traceback.format_exc(),
    )
    return JSONResponse(
        status_code=500, content={"detail": "Internal server error", "error": str(exc)}
    )


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


# API routes
app.include_router(router, prefix="/api")


# WebSocket endpoint
@app.websocket("/ws/{address}")
async def websocket_endpoint(websocket: WebSocket, address: str):
    await handle_websocket(websocket, address)


# Health checks
@app.get("/health")
async def health_check():
    """Basic health check - for load balancers"""
    return {"status": "ok"}


@app.get("/health/live")
async def liveness_check():
    """Liveness probe - is the service running?"""
    return {"status": "alive", "timestamp": utc_iso()}


@app.get("/health/ready")
async def readiness_check():
    """Readiness probe - is the service ready to accept traffic?"""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        database_ok = True
    except Exception as e:
        logger.warning("Database readiness check failed", error=str(e))
        database_ok = False

    checks = {
        "database": database_ok,
        "markets_loaded": market_resolver.loaded,
    }
    return {
        "status": "ready" if database_ok else "not_ready",
        "checks": checks,
        "timestamp": utc_iso(),
    }


@app.get("/health/detailed")
async def detailed_health_check():
    """Detailed health check with all system stats"""
    trackers = {}
    for wallet in tracker_registry.wallets():
        tracker = tracker_registry.get(wallet)
        if tracker is None:
            continue
        trackers[wallet] = {
            "account_index": tracker.state.account_index,
            "connection": tracker.state.connection.value,
            "feed": tracker.feed.stats.to_dict(),
        }

    return {
        "status": "healthy",
        "timestamp": utc_iso(),
        "services": {
            "trackers": trackers,
            "markets": {
                "loaded": market_resolver.loaded,
                "known": len(market_resolver.known_mapping()),
            },
            "ai_gateway": {"configured": get_gateway_client().configured},
            "cache": cache_manager.stats(),
        },
    }


# Metrics endpoint (Prometheus format)
@app.get("/metrics")
async def metrics():
    """Prometheus-compatible metrics"""
    lines = [
        "# HELP lighter_tracked_accounts Accounts streamed over the exchange WebSocket",
        "# TYPE lighter_tracked_accounts gauge",
        f"lighter_tracked_accounts {len(tracker_registry.wallets())}",
        "# HELP lighter_known_markets Markets with a resolved symbol",
        "# TYPE lighter_known_markets gauge",
        f"lighter_known_markets {len(market_resolver.known_mapping())}",
    ]
    counters = ("messages_received", "parse_errors", "handler_errors", "reconnections")
    for name in counters:
        lines.append(f"# TYPE lighter_feed_{name} counter")
        for wallet in tracker_registry.wallets():
            tracker = tracker_registry.get(wallet)
            if tracker is None:
                continue
            value = getattr(tracker.feed.stats, name)
            lines.append(f'lighter_feed_{name}{{wallet="{wallet}"}} {value}')
    return PlainTextResponse("\n".join(lines) + "\n")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        # Single worker: trackers hold in-process socket state
        timeout_keep_alive=30,
    )
