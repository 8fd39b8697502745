import json
import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from services.preferences import (
    ALERT_CONFIG,
    CHANGELOG_SEEN,
    FAVORITES,
    SOUND_SETTINGS,
    PreferenceStore,
)


@pytest.fixture
def store(tmp_path):
    return PreferenceStore(tmp_path / "prefs" / "preferences.json")


@pytest.mark.asyncio
async def test_defaults_without_file(store):
    assert await store.get(FAVORITES) == []
    assert await store.get(CHANGELOG_SEEN) is None
    assert (await store.get(SOUND_SETTINGS))["enabled"] is True
    assert (await store.alert_config()).low_margin_threshold == 0.2


@pytest.mark.asyncio
async def test_set_persists_to_disk(store):
    await store.set(CHANGELOG_SEEN, "1.4.0")

    on_disk = json.loads(store.path.read_text(encoding="utf-8"))
    assert on_disk == {CHANGELOG_SEEN: "1.4.0"}

    reopened = PreferenceStore(store.path)
    assert await reopened.get(CHANGELOG_SEEN) == "1.4.0"


@pytest.mark.asyncio
async def test_alert_config_is_validated_and_filled(store):
    saved = await store.set(ALERT_CONFIG, {"pnl_change_threshold": 250})

    assert saved["pnl_change_threshold"] == 250.0
    assert saved["notify_on_liquidation"] is True
    assert (await store.alert_config()).pnl_change_threshold == 250.0

    with pytest.raises(ValidationError):
        await store.set(ALERT_CONFIG, {"low_margin_threshold": -1})


@pytest.mark.asyncio
async def test_toggle_favorite(store):
    assert await store.toggle_favorite(3) == [3]
    assert await store.toggle_favorite(7) == [3, 7]
    assert await store.toggle_favorite(3) == [7]


@pytest.mark.asyncio
async def test_delete_restores_default(store):
    await store.set(FAVORITES, [1])
    await store.delete(FAVORITES)

    assert await store.get(FAVORITES) == []
    assert (await store.all())[FAVORITES] == []


@pytest.mark.asyncio
async def test_corrupt_file_starts_fresh(tmp_path):
    path = tmp_path / "preferences.json"
    path.write_text("{not json", encoding="utf-8")

    store = PreferenceStore(path)

    assert await store.get(FAVORITES) == []
    await store.set(FAVORITES, [2])
    assert json.loads(path.read_text(encoding="utf-8")) == {FAVORITES: [2]}
