import httpx
from typing import Optional

from config import settings
from models.lighter import SubAccount, to_int
from utils.cache import CacheManager, cache_manager, cached_fetch
from utils.logger import get_logger
from utils.retry import RetryableClient, RetryConfig
from utils.validation import validate_eth_address

logger = get_logger("lighter_client")


def normalize_symbol(symbol: str) -> str:
    """Exchange listings use bare tickers ("ETH"); the dashboard shows pairs."""
    symbol = (symbol or "").strip().upper()
    if not symbol:
        return symbol
    return symbol if "-" in symbol else f"{symbol}-USD"


class LighterClient:
    """Client for the Lighter public REST API"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        retry_config: Optional[RetryConfig] = None,
        cache: Optional[CacheManager] = None,
    ):
        self.base_url = (base_url or settings.LIGHTER_API_URL).rstrip("/")
        self._client = client
        self._retry_config = retry_config
        self._cache = cache or cache_manager

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=settings.LIGHTER_HTTP_TIMEOUT)
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_json(self, path: str, params: Optional[dict] = None):
        client = RetryableClient(await self._get_client(), self._retry_config)
        return await client.get_json(f"{self.base_url}{path}", params=params)

    # ==================== ACCOUNTS ====================

    async def get_sub_accounts(self, l1_address: str) -> list[SubAccount]:
        address = validate_eth_address(l1_address)

        async def fetch():
            try:
                data = await self._get_json(
                    "/api/v1/accountsByL1Address", params={"l1_address": address}
                )
            except httpx.HTTPStatusError as e:
                # Unknown addresses come back as 400/404 rather than an empty list.
                if e.response.status_code in (400, 404):
                    return []
                raise
            return [SubAccount.model_validate(a) for a in data.get("sub_accounts") or []]

        return await cached_fetch(
            f"accounts:{address.lower()}",
            fetch,
            ttl=settings.CACHE_TTL_SECONDS,
            cache=self._cache,
        )

    async def get_account_index(self, l1_address: str) -> Optional[int]:
        """Index of the first sub-account owned by *l1_address*, if any."""
        sub_accounts = await self.get_sub_accounts(l1_address)
        if not sub_accounts:
            logger.info("No Lighter account for address", address=l1_address)
            return None
        return sub_accounts[0].index

    # ==================== MARKETS ====================

    async def get_markets(self) -> list[tuple[int, str]]:
        """``(market_id, symbol)`` for every listed order book"""

        async def fetch():
            data = await self._get_json("/api/v1/orderBooks")
            markets = []
            for book in data.get("order_books") or []:
                symbol = normalize_symbol(book.get("symbol", ""))
                if not symbol or "market_id" not in book:
                    continue
                markets.append((to_int(book.get("market_id")), symbol))
            return markets

        return await cached_fetch(
            "markets:all", fetch, ttl=settings.CACHE_TTL_SECONDS, cache=self._cache
        )

    async def get_market_details(self, market_id: int) -> Optional[dict]:
        async def fetch():
            data = await self._get_json(
                "/api/v1/orderBookDetails", params={"market_id": market_id}
            )
            details = data.get("order_book_details") or []
            for entry in details:
                if to_int(entry.get("market_id"), -1) == market_id:
                    entry = dict(entry)
                    entry["symbol"] = normalize_symbol(entry.get("symbol", ""))
                    return entry
            return None

        return await cached_fetch(
            f"markets:{market_id}", fetch, ttl=settings.CACHE_TTL_SECONDS, cache=self._cache
        )


# Singleton instance
lighter_client = LighterClient()
