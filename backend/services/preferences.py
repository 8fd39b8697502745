"""
JSON-file preference store.

Holds small per-installation settings: favorite markets, alert thresholds,
alert sound settings and the last changelog version the user has seen.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

from config import settings
from services.alerts import AlertConfig
from utils.logger import get_logger

logger = get_logger("preferences")

FAVORITES = "favorites"
ALERT_CONFIG = "alert_config"
SOUND_SETTINGS = "sound_settings"
CHANGELOG_SEEN = "changelog_seen"

DEFAULTS: dict[str, Any] = {
    FAVORITES: [],
    ALERT_CONFIG: AlertConfig().model_dump(),
    SOUND_SETTINGS: {"enabled": True, "volume": 0.5},
    CHANGELOG_SEEN: None,
}


class PreferenceStore:
    def __init__(self, path: Optional[Path] = None):
        self._path = Path(path or settings.PREFERENCES_PATH)
        self._lock = asyncio.Lock()
        self._data: Optional[dict[str, Any]] = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        data: dict[str, Any] = {}
        if self._path.exists():
            try:
                loaded = json.loads(self._path.read_text(encoding="utf-8"))
                if isinstance(loaded, dict):
                    data = loaded
            except (OSError, ValueError) as e:
                logger.warning("Unreadable preferences file, starting fresh", path=str(self._path), error=str(e))
        self._data = data
        return data

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self._path)

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._lock:
            data = self._load()
            if key in data:
                return data[key]
        if default is not None:
            return default
        return DEFAULTS.get(key)

    async def set(self, key: str, value: Any) -> Any:
        if key == ALERT_CONFIG:
            value = AlertConfig.model_validate(value).model_dump()
        async with self._lock:
            data = self._load()
            data[key] = value
            self._save()
        logger.debug("Preference saved", key=key)
        return value

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                self._save()

    async def all(self) -> dict[str, Any]:
        async with self._lock:
            merged = dict(DEFAULTS)
            merged.update(self._load())
            return merged

    async def alert_config(self) -> AlertConfig:
        return AlertConfig.model_validate(await self.get(ALERT_CONFIG))

    async def toggle_favorite(self, market_id: int) -> list[int]:
        favorites = list(await self.get(FAVORITES) or [])
        if market_id in favorites:
            favorites.remove(market_id)
        else:
            favorites.append(market_id)
        await self.set(FAVORITES, favorites)
        return favorites


preference_store = PreferenceStore()
