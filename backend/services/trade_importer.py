"""Import trade-history CSV files into ``CSVTrade`` records."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from typing import Optional, Union

from models.analysis import CSVTrade
from services.exchange_mappings import (
    RowMapper,
    detect_exchange,
    map_custom_row,
    missing_required_fields,
    parse_generic_row,
)
from utils.logger import get_logger

logger = get_logger("trade_importer")


class TradeImportError(ValueError):
    """The file could not be turned into any trades."""


@dataclass
class ImportResult:
    trades: list[CSVTrade] = field(default_factory=list)
    skipped: int = 0
    exchange: str = "unknown"
    headers: list[str] = field(default_factory=list)
    needs_mapping: bool = False
    sample_rows: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self, include_trades: bool = True) -> dict:
        data = {
            "exchange": self.exchange,
            "headers": self.headers,
            "skipped": self.skipped,
            "imported": len(self.trades),
            "needs_mapping": self.needs_mapping,
        }
        if self.needs_mapping:
            data["sample_rows"] = self.sample_rows
        if include_trades:
            data["trades"] = [t.to_dict() for t in self.trades]
        return data


def read_csv(content: Union[str, bytes]) -> tuple[list[str], list[dict[str, str]]]:
    """Headers and non-empty rows of a CSV document."""
    if isinstance(content, bytes):
        content = content.decode("utf-8-sig", errors="replace")
    elif content.startswith("\ufeff"):
        content = content[1:]

    reader = csv.DictReader(io.StringIO(content))
    headers = [h.strip() for h in (reader.fieldnames or []) if h is not None]
    rows: list[dict[str, str]] = []
    for raw in reader:
        row = {
            (key or "").strip(): (value or "").strip() if isinstance(value, str) else ""
            for key, value in raw.items()
            if key is not None
        }
        if any(row.values()):
            rows.append(row)
    return headers, rows


def _apply(rows: list[dict[str, str]], mapper: RowMapper) -> tuple[list[CSVTrade], int]:
    trades: list[CSVTrade] = []
    skipped = 0
    for row in rows:
        trade = mapper(row)
        if trade is None:
            skipped += 1
        else:
            trades.append(trade)
    return trades, skipped


def import_trades(
    content: Union[str, bytes],
    mapping: Optional[dict[str, str]] = None,
) -> ImportResult:
    """Parse a trade-history CSV.

    With *mapping*, rows are read through the user's column mapping.
    Otherwise the exchange is detected from the headers, falling back to
    the generic alias parser.  When neither yields a trade the result has
    ``needs_mapping`` set and no trades.
    """
    headers, rows = read_csv(content)
    if not headers:
        raise TradeImportError("CSV file has no header row")

    if mapping:
        missing = missing_required_fields(mapping)
        if missing:
            raise TradeImportError(f"Mapping is missing required fields: {', '.join(missing)}")
        unknown = [h for h in mapping.values() if h and h not in headers]
        if unknown:
            raise TradeImportError(f"Mapping refers to unknown columns: {', '.join(unknown)}")
        trades, skipped = _apply(rows, lambda row: map_custom_row(row, mapping))
        if not trades:
            raise TradeImportError("No valid trades found with the given column mapping")
        logger.info("Imported trades with custom mapping", trades=len(trades), skipped=skipped)
        return ImportResult(trades=trades, skipped=skipped, exchange="custom", headers=headers)

    detection = detect_exchange(headers)
    if detection.detected and detection.mapper is not None:
        trades, skipped = _apply(rows, detection.mapper)
        if not trades:
            raise TradeImportError("No valid trades found in CSV. Please check the file format.")
        logger.info(
            "Imported trades",
            exchange=detection.exchange,
            trades=len(trades),
            skipped=skipped,
        )
        return ImportResult(
            trades=trades, skipped=skipped, exchange=detection.exchange, headers=headers
        )

    trades, skipped = _apply(rows, parse_generic_row)
    if trades:
        logger.info("Imported trades with generic parser", trades=len(trades), skipped=skipped)
        return ImportResult(trades=trades, skipped=skipped, exchange="generic", headers=headers)

    logger.info("Unknown CSV format, column mapping required", headers=headers)
    return ImportResult(
        skipped=len(rows),
        exchange="unknown",
        headers=headers,
        needs_mapping=True,
        sample_rows=rows[:5],
    )
