"""Row mappers that turn exchange trade-history CSV rows into ``CSVTrade``.

Each supported exchange has a known header list and a mapper.  A file is
recognized as an exchange's export when at least 70% of that exchange's
headers are present.  Files from anywhere else go through the generic
alias parser or a user-supplied column mapping.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from config import settings
from models.analysis import CSVTrade

RowMapper = Callable[[dict[str, str]], Optional[CSVTrade]]

_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")

_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y, %H:%M:%S",
    "%m/%d/%Y - %H:%M:%S",
    "%d/%m/%Y - %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%Y-%m-%d",
    "%m/%d/%Y",
)


# ==================== FIELD PARSING ====================


def parse_number(value: Optional[str]) -> float:
    """Leading numeric prefix of a cell; 0.0 when there is none.

    Thousands separators and currency signs are ignored ("$1,234.5" is
    1234.5, "12.5 USDC" is 12.5).
    """
    if value is None:
        return 0.0
    text = str(value).strip().replace(",", "").replace("$", "")
    match = _NUMBER_RE.match(text)
    if not match:
        return 0.0
    number = float(match.group(0))
    return number if math.isfinite(number) else 0.0


def _analysis_zone() -> ZoneInfo:
    return ZoneInfo(settings.ANALYSIS_TIMEZONE)


def _to_analysis_time(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(_analysis_zone()).replace(tzinfo=None)


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a timestamp cell into naive wall-clock time in the analysis zone.

    Accepts epoch seconds or milliseconds, ISO 8601 (with or without an
    offset) and the common US/European export formats.  Naive values are
    taken to already be in the analysis zone.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    if re.fullmatch(r"\d{9,14}(\.\d+)?", text):
        seconds = float(text)
        if seconds > 1e12:
            seconds /= 1000.0
        try:
            return _to_analysis_time(datetime.fromtimestamp(seconds, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return None

    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return _to_analysis_time(datetime.fromisoformat(iso_text))
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_side(value: Optional[str]) -> str:
    raw = (value or "").strip().lower()
    return "Long" if "long" in raw or "buy" in raw or raw == "b" else "Short"


def parse_role(value: Optional[str]) -> str:
    return "Maker" if "maker" in (value or "taker").lower() else "Taker"


def parse_order_type(value: Optional[str]) -> str:
    return "Limit" if "limit" in (value or "market").lower() else "Market"


def _first(row: dict[str, str], *keys: str) -> str:
    """First non-blank cell among *keys*; header case and padding are ignored."""
    folded: Optional[dict[str, str]] = None
    for key in keys:
        value = row.get(key)
        if value is None:
            if folded is None:
                folded = {str(k).strip().lower(): v for k, v in row.items() if k is not None}
            value = folded.get(key.strip().lower())
        if value is not None and str(value).strip() != "":
            return str(value)
    return ""


def _build_trade(
    date_str: str,
    market: str,
    pnl_str: str,
    side: str = "",
    size: str = "",
    price: str = "",
    fee: str = "",
    role: Optional[str] = None,
    order_type: Optional[str] = None,
) -> Optional[CSVTrade]:
    if not date_str or not market or not pnl_str:
        return None
    date = parse_date(date_str)
    if date is None:
        return None
    return CSVTrade(
        date=date,
        market=market.strip().upper(),
        side=parse_side(side),
        size=parse_number(size),
        price=parse_number(price),
        closed_pnl=parse_number(pnl_str),
        fee=abs(parse_number(fee)),
        role=parse_role(role) if role is not None else "Taker",
        type=parse_order_type(order_type) if order_type is not None else "Market",
    )


# ==================== EXCHANGE PROFILES ====================

LIGHTER_HEADERS = [
    "Market", "Side", "Date", "Trade Value", "Size", "Price",
    "Closed PnL", "Fee", "Role", "Type",
]
NADO_HEADERS = ["Time", "Market", "Direction", "Amount", "Price", "Fee", "Total", "Realized PnL"]
HYPERLIQUID_HEADERS = ["time", "coin", "dir", "px", "sz", "ntl", "fee", "closedPnl"]


def map_lighter_row(row: dict[str, str]) -> Optional[CSVTrade]:
    return _build_trade(
        date_str=_first(row, "Date"),
        market=_first(row, "Market"),
        pnl_str=_first(row, "Closed PnL"),
        side=_first(row, "Side"),
        size=_first(row, "Size"),
        price=_first(row, "Price"),
        fee=_first(row, "Fee"),
        role=_first(row, "Role") or "taker",
        order_type=_first(row, "Type") or "market",
    )


def map_nado_row(row: dict[str, str]) -> Optional[CSVTrade]:
    # Nado exports carry neither role nor order type.
    return _build_trade(
        date_str=_first(row, "Time"),
        market=_first(row, "Market"),
        pnl_str=_first(row, "Realized PnL"),
        side=_first(row, "Direction"),
        size=_first(row, "Amount"),
        price=_first(row, "Price"),
        fee=_first(row, "Fee"),
    )


def map_hyperliquid_row(row: dict[str, str]) -> Optional[CSVTrade]:
    return _build_trade(
        date_str=_first(row, "time"),
        market=_first(row, "coin"),
        pnl_str=_first(row, "closedPnl"),
        side=_first(row, "dir"),
        size=_first(row, "sz"),
        price=_first(row, "px"),
        fee=_first(row, "fee"),
    )


def parse_generic_row(row: dict[str, str]) -> Optional[CSVTrade]:
    """Parse a row using the usual column-name aliases."""
    return _build_trade(
        date_str=_first(row, "Date", "date", "Timestamp", "timestamp"),
        market=_first(row, "Market", "market", "Symbol", "symbol"),
        pnl_str=_first(row, "Closed PnL", "closed_pnl", "PnL", "pnl", "Realized PnL"),
        side=_first(row, "Side", "side"),
        size=_first(row, "Size", "size", "Quantity", "quantity"),
        price=_first(row, "Price", "price"),
        fee=_first(row, "Fee", "fee", "Fees", "fees") or "0",
        role=_first(row, "Role", "role") or "taker",
        order_type=_first(row, "Type", "type", "Order Type") or "market",
    )


@dataclass(frozen=True)
class ExchangeProfile:
    name: str
    headers: tuple[str, ...]
    mapper: RowMapper


EXCHANGE_PROFILES: tuple[ExchangeProfile, ...] = (
    ExchangeProfile("lighter", tuple(LIGHTER_HEADERS), map_lighter_row),
    ExchangeProfile("nado", tuple(NADO_HEADERS), map_nado_row),
    ExchangeProfile("hyperliquid", tuple(HYPERLIQUID_HEADERS), map_hyperliquid_row),
)


def headers_match(user_headers: list[str], known_headers: list[str] | tuple[str, ...]) -> bool:
    """At least ``ceil(0.7 * len(known))`` known headers present, ignoring case."""
    if not user_headers:
        return False
    normalized = {h.strip().lower() for h in user_headers if h is not None}
    matches = sum(1 for header in known_headers if header.strip().lower() in normalized)
    return matches >= math.ceil(len(known_headers) * 0.7)


@dataclass
class ExchangeDetectionResult:
    detected: bool
    exchange: str  # lighter | nado | hyperliquid | unknown
    mapper: Optional[RowMapper] = None


def detect_exchange(headers: list[str]) -> ExchangeDetectionResult:
    for profile in EXCHANGE_PROFILES:
        if headers_match(headers, profile.headers):
            return ExchangeDetectionResult(True, profile.name, profile.mapper)
    return ExchangeDetectionResult(False, "unknown", None)


# ==================== CUSTOM MAPPING ====================

STANDARD_FIELDS = [
    {"key": "date", "label": "Date", "required": True, "description": "Trade timestamp"},
    {"key": "market", "label": "Market/Symbol", "required": True, "description": "Trading pair or asset"},
    {"key": "side", "label": "Side/Direction", "required": True, "description": "Long/Short or Buy/Sell"},
    {"key": "size", "label": "Size/Amount", "required": False, "description": "Position size"},
    {"key": "price", "label": "Price", "required": False, "description": "Entry/Exit price"},
    {"key": "closedPnL", "label": "Closed PnL", "required": True, "description": "Realized profit/loss"},
    {"key": "fee", "label": "Fee", "required": False, "description": "Trading fees"},
    {"key": "role", "label": "Role", "required": False, "description": "Maker/Taker"},
    {"key": "type", "label": "Order Type", "required": False, "description": "Limit/Market"},
]
REQUIRED_FIELD_KEYS = [f["key"] for f in STANDARD_FIELDS if f["required"]]


def missing_required_fields(mapping: dict[str, str]) -> list[str]:
    return [key for key in REQUIRED_FIELD_KEYS if not (mapping.get(key) or "").strip()]


def map_custom_row(row: dict[str, str], mapping: dict[str, str]) -> Optional[CSVTrade]:
    """Parse a row through a standard-field to header mapping."""

    def cell(key: str) -> str:
        header = mapping.get(key)
        return _first(row, header) if header else ""

    return _build_trade(
        date_str=cell("date"),
        market=cell("market"),
        pnl_str=cell("closedPnL"),
        side=cell("side"),
        size=cell("size"),
        price=cell("price"),
        fee=cell("fee"),
        role=cell("role") or "taker",
        order_type=cell("type") or "market",
    )
