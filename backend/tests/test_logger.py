import json
import logging
import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from utils.logger import JSONFormatter, TextFormatter


def _record(extra_data=None):
    record = logging.LogRecord("feed", logging.INFO, __file__, 10, "Feed connected", None, None)
    record.extra_data = extra_data
    return record


def test_json_formatter_carries_structured_fields():
    line = JSONFormatter().format(_record({"account_index": 42, "url": Path("/tmp")}))

    payload = json.loads(line)
    assert payload["message"] == "Feed connected"
    assert payload["logger"] == "feed"
    assert payload["timestamp"].endswith("Z")
    assert payload["data"] == {"account_index": 42, "url": "/tmp"}


def test_text_formatter_appends_key_values():
    line = TextFormatter().format(_record({"account_index": 42, "state": "connected"}))

    assert "[INFO] feed: Feed connected account_index=42 state=connected" in line


def test_text_formatter_without_fields():
    line = TextFormatter().format(_record())

    assert line.endswith("feed: Feed connected")
