import asyncio
import json
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from services import ws_feeds
from services.ws_feeds import ConnectionState, LighterFeed, ReconnectPolicy


class _FakeSocket:
    def __init__(self, frames):
        self.frames = list(frames)
        self.sent = []
        self.closed = False

    async def send(self, message):
        self.sent.append(json.loads(message))

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame


def _fake_connect(script):
    """``websockets.connect`` stand-in; each call takes the next script entry.

    An entry is either a list of frames (connect succeeds and the socket
    yields those frames, then closes) or an exception to raise.
    """
    calls = []

    @asynccontextmanager
    async def connect(url, **kwargs):
        calls.append(url)
        entry = script.pop(0) if script else OSError("connection refused")
        if isinstance(entry, BaseException):
            raise entry
        socket = _FakeSocket(entry)
        connect.sockets.append(socket)
        yield socket

    connect.calls = calls
    connect.sockets = []
    return connect


# ---------------------------------------------------------------------------
# ReconnectPolicy
# ---------------------------------------------------------------------------


def test_backoff_schedule_doubles_and_caps_at_thirty_seconds():
    policy = ReconnectPolicy(base_delay=1.0, max_delay=30.0, max_attempts=10)

    delays = [policy.next_delay() for _ in range(10)]

    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0, 30.0, 30.0, 30.0]
    assert policy.exhausted is True
    assert policy.next_delay() is None


def test_reset_restores_full_attempt_budget():
    policy = ReconnectPolicy(base_delay=1.0, max_delay=30.0, max_attempts=2)
    policy.next_delay()
    policy.next_delay()
    assert policy.next_delay() is None

    policy.reset()

    assert policy.attempts == 0
    assert policy.next_delay() == 1.0


def test_delay_for_is_pure():
    policy = ReconnectPolicy(base_delay=1.0, max_delay=30.0, max_attempts=10)
    assert policy.delay_for(3) == 8.0
    assert policy.attempts == 0


# ---------------------------------------------------------------------------
# Frame handling
# ---------------------------------------------------------------------------


def test_channels_cover_account_streams_then_market_stats():
    feed = LighterFeed(42, subscribe_market_stats=True)

    assert feed.channels[:7] == [
        "user_stats/42",
        "account_all_positions/42",
        "account_all/42",
        "account_all_trades/42",
        "account_all_orders/42",
        "account_tx/42",
        "notification/42",
    ]
    assert feed.channels[-1] == "market_stats/all"


@pytest.mark.asyncio
async def test_subscribe_market_adds_trade_channel_once():
    feed = LighterFeed(42, subscribe_market_stats=False)

    await feed.subscribe_market(3)
    await feed.subscribe_market(3)

    assert feed.channels[7:] == ["trade/3"]


@pytest.mark.asyncio
async def test_subscribe_order_book_follows_trade_channel():
    feed = LighterFeed(42, subscribe_market_stats=False)

    await feed.subscribe_market(3)
    await feed.subscribe_order_book(3)
    await feed.subscribe_order_book(3)

    assert feed.channels[7:] == ["trade/3", "order_book/3"]


def test_malformed_frames_are_counted_and_dropped():
    received = []
    feed = LighterFeed(1, on_message=received.append, subscribe_market_stats=False)

    feed._handle_raw("not json")
    feed._handle_raw("[1, 2, 3]")
    feed._handle_raw('{"type": "update/user_stats"}')

    assert received == [{"type": "update/user_stats"}]
    assert feed.stats.messages_received == 3
    assert feed.stats.parse_errors == 2
    assert feed.stats.messages_parsed == 1


def test_handler_errors_do_not_escape():
    def boom(message):
        raise RuntimeError("handler bug")

    feed = LighterFeed(1, on_message=boom, subscribe_market_stats=False)
    feed._handle_raw('{"type": "ping"}')

    assert feed.stats.handler_errors == 1


def test_status_callback_fires_only_on_transitions():
    states = []
    feed = LighterFeed(1, on_status_change=states.append, subscribe_market_stats=False)

    feed._set_state(ConnectionState.CONNECTING)
    feed._set_state(ConnectionState.CONNECTING)
    feed._set_state(ConnectionState.CONNECTED)

    assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]


# ---------------------------------------------------------------------------
# Connection loop
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(monkeypatch):
    connect = _fake_connect([])
    monkeypatch.setattr(ws_feeds.websockets, "connect", connect)
    states = []
    feed = LighterFeed(
        7,
        on_status_change=states.append,
        policy=ReconnectPolicy(base_delay=0.001, max_delay=0.004, max_attempts=3),
        subscribe_market_stats=False,
    )

    await feed.start()
    await asyncio.wait_for(feed._run_task, timeout=2)

    assert feed.state == ConnectionState.FAILED
    assert len(connect.calls) == 4  # first try plus three retries
    assert feed.stats.reconnections == 3
    assert states[0] == ConnectionState.CONNECTING
    assert ConnectionState.RECONNECTING in states
    assert states[-1] == ConnectionState.FAILED


@pytest.mark.asyncio
async def test_subscribes_on_open_and_dispatches_frames(monkeypatch):
    frames = [
        json.dumps({"type": "update/user_stats", "stats": {"collateral": "10"}}),
        "garbage",
        json.dumps({"type": "update/account_all_orders", "orders": {}}),
    ]
    connect = _fake_connect([frames])
    monkeypatch.setattr(ws_feeds.websockets, "connect", connect)
    received = []
    feed = LighterFeed(
        42,
        on_message=received.append,
        policy=ReconnectPolicy(base_delay=0.001, max_delay=0.001, max_attempts=1),
        subscribe_market_stats=False,
    )

    await feed.start()
    await asyncio.wait_for(feed._run_task, timeout=2)

    socket = connect.sockets[0]
    assert [m["channel"] for m in socket.sent] == feed.channels
    assert all(m["type"] == "subscribe" for m in socket.sent)
    assert [m["type"] for m in received] == ["update/user_stats", "update/account_all_orders"]
    assert feed.stats.parse_errors == 1
    # The successful open reset the budget, so one retry ran before giving up.
    assert len(connect.calls) == 2
    assert feed.state == ConnectionState.FAILED


@pytest.mark.asyncio
async def test_manual_reconnect_leaves_failed_state(monkeypatch):
    connect = _fake_connect([])
    monkeypatch.setattr(ws_feeds.websockets, "connect", connect)
    feed = LighterFeed(
        3,
        policy=ReconnectPolicy(base_delay=0.001, max_delay=0.001, max_attempts=1),
        subscribe_market_stats=False,
    )
    await feed.start()
    await asyncio.wait_for(feed._run_task, timeout=2)
    assert feed.state == ConnectionState.FAILED
    calls_before = len(connect.calls)

    await feed.reconnect()
    await asyncio.wait_for(feed._run_task, timeout=2)

    assert len(connect.calls) == calls_before + 2
    assert feed.state == ConnectionState.FAILED


@pytest.mark.asyncio
async def test_stop_during_backoff_closes_feed(monkeypatch):
    connect = _fake_connect([])
    monkeypatch.setattr(ws_feeds.websockets, "connect", connect)
    feed = LighterFeed(
        3,
        policy=ReconnectPolicy(base_delay=10.0, max_delay=10.0, max_attempts=5),
        subscribe_market_stats=False,
    )
    await feed.start()
    for _ in range(50):
        if feed.state == ConnectionState.RECONNECTING:
            break
        await asyncio.sleep(0.01)

    await asyncio.wait_for(feed.stop(), timeout=2)

    assert feed.state == ConnectionState.CLOSED
    assert len(connect.calls) == 1
