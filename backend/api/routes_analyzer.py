import json
from dataclasses import asdict
from typing import Literal, Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field

from services.ai import LLMGatewayError, auto_map_headers
from services.exchange_mappings import STANDARD_FIELDS
from services.trade_analyzer import analyze_all_trades, calculate_period_pnl
from services.trade_importer import TradeImportError, import_trades
from utils.logger import get_logger
from utils.validation import sanitize_for_json

router = APIRouter()
logger = get_logger("routes_analyzer")

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class AutoMapRequest(BaseModel):
    headers: list[str] = Field(..., min_length=1)
    sample: Optional[dict[str, str]] = None


def _parse_mapping(raw: Optional[str]) -> Optional[dict[str, str]]:
    if not raw:
        return None
    try:
        mapping = json.loads(raw)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"mapping is not valid JSON: {e}")
    if not isinstance(mapping, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in mapping.items()
    ):
        raise HTTPException(status_code=400, detail="mapping must be an object of strings")
    return mapping


@router.get("/analyzer/fields")
async def standard_fields():
    """Fields a custom column mapping can target"""
    return {"fields": STANDARD_FIELDS}


@router.post("/analyzer/upload")
async def upload_trades(
    file: UploadFile = File(...),
    mapping: Optional[str] = Form(default=None, description="JSON field-to-header mapping"),
    period: Literal["daily", "weekly"] = Query(default="daily"),
):
    """Import a trade-history CSV and return the full analysis"""
    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="CSV file is too large")

    try:
        result = import_trades(content, mapping=_parse_mapping(mapping))
    except TradeImportError as e:
        raise HTTPException(status_code=400, detail=str(e))

    response = result.to_dict(include_trades=False)
    if result.needs_mapping:
        return response

    analysis = analyze_all_trades(result.trades).to_dict()
    if period == "weekly":
        analysis["period_pnl"] = sanitize_for_json(
            [asdict(p) for p in calculate_period_pnl(result.trades, "weekly")]
        )
    response["analysis"] = analysis
    logger.info(
        "CSV analyzed",
        filename=file.filename,
        exchange=result.exchange,
        trades=len(result.trades),
    )
    return response


@router.post("/analyzer/auto-map")
async def auto_map(request: AutoMapRequest):
    """Ask the AI gateway to map CSV headers onto the standard fields"""
    try:
        mapping = await auto_map_headers(request.headers, request.sample)
    except LLMGatewayError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"mapping": mapping}
