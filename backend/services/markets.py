"""Market id to symbol resolution.

The mapping starts from a small built-in table and is replaced by the
exchange listing the first time :meth:`MarketResolver.load_markets`
succeeds.  Ids the listing does not cover can still be named from a live
mark price by matching it against a table of reference prices.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable, Optional

from config import settings
from models.lighter import MarketStats, to_int
from utils.logger import get_logger

logger = get_logger("markets")

FALLBACK_MARKETS: dict[int, str] = {
    0: "ETH-USD",
    1: "BTC-USD",
    7: "XRP-USD",
    24: "HYPE-USD",
    25: "BNB-USD",
    29: "ENA-USD",
}

# Approximate reference prices used to name unlisted markets from a mark
# price.  Refresh with ``MarketResolver.set_price_hints``.
DEFAULT_PRICE_HINTS: dict[str, float] = {
    "ETH-USD": 3900.0,
    "BTC-USD": 112000.0,
    "SOL-USD": 195.0,
    "DOGE-USD": 0.22,
    "XRP-USD": 2.45,
    "HYPE-USD": 38.0,
    "BNB-USD": 1100.0,
    "ENA-USD": 0.45,
    "LINK-USD": 17.5,
    "AVAX-USD": 20.0,
    "SUI-USD": 2.6,
    "AAVE-USD": 225.0,
}

MappingListener = Callable[[dict[int, str]], None]


class MarketResolver:
    def __init__(
        self,
        fallback: Optional[dict[int, str]] = None,
        price_hints: Optional[dict[str, float]] = None,
        tolerance: Optional[float] = None,
    ):
        self._fallback: dict[int, str] = dict(fallback or FALLBACK_MARKETS)
        self._mapping: dict[int, str] = dict(self._fallback)
        self._price_hints: dict[str, float] = dict(price_hints or DEFAULT_PRICE_HINTS)
        self._tolerance = settings.MARKET_HINT_TOLERANCE if tolerance is None else tolerance
        self._loaded = False
        self._load_task: Optional[asyncio.Task] = None
        self._listeners: list[MappingListener] = []

    # -- listing ------------------------------------------------------------

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load_markets(self, client: Any) -> None:
        """Replace the mapping with the exchange listing, once per session.

        Concurrent callers await the same load.  A failed or empty listing
        leaves the current mapping untouched and a later call tries again.
        """
        if self._loaded:
            return
        if self._load_task is None or self._load_task.done():
            self._load_task = asyncio.ensure_future(self._load(client))
        await asyncio.shield(self._load_task)

    async def _load(self, client: Any) -> None:
        try:
            markets = await client.get_markets()
        except Exception as e:
            logger.warning("Failed to load markets, using fallback", error=str(e))
            return
        if not markets:
            return

        # Symbols named from price hints stay put unless the listing claims them.
        inferred = {
            market_id: symbol
            for market_id, symbol in self._mapping.items()
            if self._fallback.get(market_id) != symbol
        }
        listed = {int(market_id): symbol for market_id, symbol in markets}
        listed_symbols = set(listed.values())
        for market_id, symbol in inferred.items():
            if market_id not in listed and symbol not in listed_symbols:
                listed[market_id] = symbol

        self._mapping = listed
        self._loaded = True
        logger.info("Loaded markets from API", count=len(markets))
        self._notify()

    async def ensure_markets(self, market_ids: Iterable[int], client: Any) -> list[int]:
        """Look up details for ids the mapping does not know yet.

        Returns the ids that were newly resolved.
        """
        resolved: list[int] = []
        for market_id in {int(m) for m in market_ids}:
            if market_id in self._mapping:
                continue
            try:
                details = await client.get_market_details(market_id)
            except Exception as e:
                logger.debug("Market details lookup failed", market_id=market_id, error=str(e))
                continue
            symbol = (details or {}).get("symbol")
            if symbol and self._assign(market_id, symbol):
                resolved.append(market_id)
        if resolved:
            self._notify()
        return resolved

    # -- lookups ------------------------------------------------------------

    def resolve_symbol(self, market_id: int) -> str:
        return self._mapping.get(market_id) or f"MARKET-{market_id}"

    def is_known(self, market_id: int) -> bool:
        return market_id in self._mapping

    def known_mapping(self) -> dict[int, str]:
        return dict(self._mapping)

    def set_price_hints(self, hints: dict[str, float]) -> None:
        self._price_hints = {symbol: float(price) for symbol, price in hints.items() if price > 0}

    def resolve_with_price(self, market_id: int, mark_price: Optional[float]) -> str:
        """Name an unknown market from its mark price.

        Picks the unassigned hint with the smallest relative difference to
        *mark_price*, provided it is within the tolerance.  The choice sticks
        for the rest of the session.
        """
        if market_id in self._mapping:
            return self._mapping[market_id]
        if not mark_price or mark_price <= 0:
            return self.resolve_symbol(market_id)

        used = set(self._mapping.values())
        best_symbol: Optional[str] = None
        best_diff = float("inf")
        for symbol, ref_price in self._price_hints.items():
            if symbol in used or ref_price <= 0:
                continue
            diff = abs(mark_price - ref_price) / ref_price
            if diff <= self._tolerance and diff < best_diff:
                best_symbol, best_diff = symbol, diff

        if best_symbol is None:
            return self.resolve_symbol(market_id)

        self._assign(market_id, best_symbol)
        logger.info(
            "Inferred market symbol from price",
            market_id=market_id,
            symbol=best_symbol,
            mark_price=mark_price,
            diff=round(best_diff, 5),
        )
        self._notify()
        return best_symbol

    def _assign(self, market_id: int, symbol: str) -> bool:
        if symbol in self._mapping.values():
            return False
        self._mapping[market_id] = symbol
        return True

    # -- listeners ----------------------------------------------------------

    def subscribe(self, listener: MappingListener) -> Callable[[], None]:
        """Register *listener*; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.known_mapping()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Market mapping listener failed")


def _stats_entries(raw: Any) -> list[tuple[Optional[int], dict]]:
    if isinstance(raw, list):
        return [(None, item) for item in raw if isinstance(item, dict)]
    if not isinstance(raw, dict):
        return []
    if "market_id" in raw or "market_index" in raw:
        return [(None, raw)]
    entries = []
    for key, item in raw.items():
        if not isinstance(item, dict):
            continue
        try:
            entries.append((int(key), item))
        except (TypeError, ValueError):
            entries.append((None, item))
    return entries


def normalize_market_stats(
    raw: Any, resolver: Optional[MarketResolver] = None
) -> list[MarketStats]:
    """Build ``MarketStats`` from any of the shapes ``market_stats`` frames use.

    Accepts a whole frame (``market_stats`` or ``markets`` key), a single
    stats object, a dict keyed by market id, or a list.
    """
    if isinstance(raw, dict):
        for key in ("market_stats", "markets"):
            if key in raw:
                raw = raw[key]
                break

    resolver = resolver or market_resolver
    stats: list[MarketStats] = []
    for key_id, item in _stats_entries(raw):
        market_id = item.get("market_id", item.get("market_index", key_id))
        if market_id is None:
            continue
        data = {k: v for k, v in item.items() if k in MarketStats.model_fields}
        data.update(market_id=to_int(market_id), symbol=str(item.get("symbol") or ""))
        entry = MarketStats.model_validate(data)
        if not entry.symbol:
            entry.symbol = resolver.resolve_with_price(entry.market_id, entry.reference_price)
        stats.append(entry)
    return stats


def platform_volume(stats: Iterable[MarketStats]) -> dict:
    """Exchange-wide totals over the latest per-market stats.

    Weekly and monthly volume are projected from the 24h figure.
    """
    entries = list(stats)
    daily = sum(s.daily_quote_token_volume for s in entries)
    return {
        "total_24h": daily,
        "total_7d": daily * 7,
        "total_30d": daily * 30,
        "total_open_interest": sum(s.open_interest for s in entries),
        "total_markets": len(entries),
    }


# Singleton instance
market_resolver = MarketResolver()
