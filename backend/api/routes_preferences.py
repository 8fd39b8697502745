from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ValidationError

from services.account_tracker import tracker_registry
from services.alerts import AlertConfig
from services.preferences import ALERT_CONFIG, DEFAULTS, preference_store

router = APIRouter()


class PreferenceValue(BaseModel):
    value: Any = None


def _check_key(key: str) -> None:
    if key not in DEFAULTS:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown preference '{key}'. Expected one of: {', '.join(DEFAULTS)}",
        )


@router.get("/preferences")
async def get_all_preferences():
    return await preference_store.all()


@router.get("/preferences/{key}")
async def get_preference(key: str):
    _check_key(key)
    return {"key": key, "value": await preference_store.get(key)}


@router.put("/preferences/{key}")
async def set_preference(key: str, request: PreferenceValue):
    _check_key(key)
    try:
        value = await preference_store.set(key, request.value)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if key == ALERT_CONFIG:
        # Running trackers pick up new thresholds on their next update
        config = AlertConfig.model_validate(value)
        for wallet in tracker_registry.wallets():
            tracker = tracker_registry.get(wallet)
            if tracker is not None:
                tracker.alert_config = config
    return {"key": key, "value": value}


@router.delete("/preferences/{key}")
async def reset_preference(key: str):
    _check_key(key)
    await preference_store.delete(key)
    return {"key": key, "value": await preference_store.get(key)}
