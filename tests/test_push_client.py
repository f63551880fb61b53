"""Tests for the push channel client."""

import asyncio
import json

import httpx
import pytest
from factories import make_board, make_entry, make_feed, make_horse

from feedboard.client import BoardState, ConnectionState, PushClient, UpdateSource, dispatch_event
from feedboard.client.push import EventStreamParser, reconnect_delay
from feedboard.schemas import (
    BoardSnapshot,
    DataEvent,
    FullEvent,
    HorsesEvent,
    StateEvent,
)

BASE_URL = "http://board.test"


def _snapshot(**kwargs) -> BoardSnapshot:
    data = {
        "board": make_board(),
        "horses": [make_horse("h_1"), make_horse("h_2")],
        "feeds": [make_feed("f_1")],
        "diet_entries": [make_entry("h_1", "f_1", am_amount=1)],
    }
    data.update(kwargs)
    return BoardSnapshot(**data)


def _frame(event) -> str:
    return f"data: {event.model_dump_json()}\n\n"


def _sse_response(body: str) -> httpx.Response:
    return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body.encode())


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def _push_client(handler, state: BoardState | None = None, **kwargs) -> tuple[PushClient, BoardState]:
    state = state or BoardState()
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PushClient(BASE_URL, state, http_client=http, **kwargs), state


class TestReconnectDelay:
    def test_doubles_per_attempt(self):
        assert [reconnect_delay(n, 1.0) for n in range(1, 6)] == [1, 2, 4, 8, 16]

    def test_fourth_attempt_is_eight_times_base(self):
        assert reconnect_delay(4, 0.5) == 4.0


class TestEventStreamParser:
    def test_joins_multi_line_data(self):
        parser = EventStreamParser()

        assert parser.feed("data: {\"a\":") is None
        assert parser.feed("data: 1}") is None
        assert parser.feed("") == '{"a":\n1}'

    def test_ignores_comments_and_other_fields(self):
        parser = EventStreamParser()

        for line in (": keepalive", "event: message", "id: 7"):
            assert parser.feed(line) is None
        assert parser.feed("") is None


class TestDispatchEvent:
    """Tests for applying validated events to the stores."""

    def test_full_event_replaces_everything(self):
        state = BoardState()
        state.horses.upsert(make_horse("h_9"), UpdateSource.API)

        assert dispatch_event(state, FullEvent(data=_snapshot())) is None

        assert sorted(state.horses.ids) == ["h_1", "h_2"]
        assert state.diet.get_entry("h_1", "f_1").am_amount == 1

    def test_state_event_sets_board_with_push_authority(self):
        state = BoardState()
        state.board.set(make_board(updated=100, zoom_level=1), UpdateSource.API)

        dispatch_event(state, StateEvent(data=make_board(updated=1, zoom_level=3)))

        assert state.board.zoom_level == 3

    def test_events_without_data_request_refetch(self):
        state = BoardState()

        assert dispatch_event(state, StateEvent()) == "board"
        assert dispatch_event(state, DataEvent()) == "all"
        assert dispatch_event(state, HorsesEvent()) == "horses"

    def test_granular_events_only_upsert(self):
        state = BoardState()
        state.apply_snapshot(_snapshot(), UpdateSource.PUSH)

        dispatch_event(state, HorsesEvent(data=[make_horse("h_1", updated=5, name="Renamed")]))

        assert sorted(state.horses.ids) == ["h_1", "h_2"]
        assert state.horses.get("h_1").name == "Renamed"


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_malformed_frames_are_dropped(self, caplog):
        client, state = _push_client(lambda request: httpx.Response(500))

        with caplog.at_level("WARNING", logger="feedboard.client.push"):
            assert await client.handle_message("{not json") is False
            assert await client.handle_message(json.dumps({"type": "nope", "data": None})) is False
            assert await client.handle_message(json.dumps({"type": "full", "data": {}})) is False

        assert state.board.board is None
        assert len(caplog.records) == 3

    @pytest.mark.asyncio
    async def test_valid_frame_is_applied(self):
        client, state = _push_client(lambda request: httpx.Response(500))

        assert await client.handle_message(FullEvent(data=_snapshot()).model_dump_json()) is True
        assert state.board.board.id == "b_1"


class TestPushClientConnection:
    """Tests for the connection lifecycle."""

    @pytest.mark.asyncio
    async def test_streams_events_into_stores(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return _sse_response(": keepalive\n\n" + _frame(FullEvent(data=_snapshot())) + ": keepalive\n\n")

        states = []
        client, state = _push_client(handler, max_reconnect_attempts=0, on_state_change=states.append)

        assert await client.connect("b_1") is True
        await _wait_for(lambda: client.state == ConnectionState.FAILED)

        assert requests[0].url == httpx.URL(f"{BASE_URL}/api/boards/b_1/events")
        assert requests[0].headers["accept"] == "text/event-stream"
        assert sorted(state.horses.ids) == ["h_1", "h_2"]
        assert client.keepalives_received == 2
        assert states == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.ERROR,
            ConnectionState.FAILED,
        ]

    @pytest.mark.asyncio
    async def test_keepalives_do_not_touch_stores(self):
        client, state = _push_client(
            lambda request: _sse_response(": keepalive\n\n" * 3), max_reconnect_attempts=0
        )
        state.apply_snapshot(_snapshot(), UpdateSource.PUSH)
        versions = (state.board.version, state.horses.version, state.feeds.version, state.diet.version)

        await client.connect("b_1")
        await _wait_for(lambda: client.state == ConnectionState.FAILED)

        assert client.keepalives_received == 3
        assert (state.board.version, state.horses.version, state.feeds.version, state.diet.version) == versions

    @pytest.mark.asyncio
    async def test_malformed_frame_does_not_close_stream(self):
        body = "data: garbage\n\n" + _frame(FullEvent(data=_snapshot()))
        client, state = _push_client(lambda request: _sse_response(body), max_reconnect_attempts=0)

        await client.connect("b_1")
        await _wait_for(lambda: client.state == ConnectionState.FAILED)

        assert state.board.board is not None

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_end_stream(self, caplog):
        body = _frame(HorsesEvent(data=[make_horse("h_1")])) + _frame(HorsesEvent(data=[make_horse("h_2")]))
        client, state = _push_client(lambda request: _sse_response(body), max_reconnect_attempts=0)
        failures = []

        def listener(changed) -> None:
            if not failures:
                failures.append(changed)
                raise RuntimeError("listener broke")

        state.subscribe(listener)

        assert await client.connect("b_1") is True
        await _wait_for(lambda: client.state == ConnectionState.FAILED)

        assert sorted(state.horses.ids) == ["h_1", "h_2"]
        assert len(failures) == 1
        assert "listener broke" in caplog.text

    @pytest.mark.asyncio
    async def test_refetch_hook_receives_board_and_resource(self):
        refetches = []

        async def on_refetch(board_id: str, resource: str) -> None:
            refetches.append((board_id, resource))

        body = _frame(DataEvent()) + _frame(HorsesEvent())
        client, _ = _push_client(
            lambda request: _sse_response(body), max_reconnect_attempts=0, on_refetch=on_refetch
        )

        await client.connect("b_1")
        await _wait_for(lambda: client.state == ConnectionState.FAILED)

        assert refetches == [("b_1", "all"), ("b_1", "horses")]

    @pytest.mark.asyncio
    async def test_backoff_doubles_and_stops_at_maximum(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503)

        client, _ = _push_client(handler, base_delay=0.01, max_reconnect_attempts=5)

        assert await client.connect("b_1") is False
        await _wait_for(lambda: client.state == ConnectionState.FAILED)

        assert client.reconnect_delays == pytest.approx([0.01, 0.02, 0.04, 0.08, 0.16])
        assert client.reconnect_delays[3] == pytest.approx(8 * 0.01)
        assert calls == 6

        await asyncio.sleep(0.1)
        assert calls == 6

    @pytest.mark.asyncio
    async def test_successful_reconnect_resets_attempts(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                return httpx.Response(502)
            return _sse_response(_frame(FullEvent(data=_snapshot())))

        client, state = _push_client(handler, base_delay=0.01, max_reconnect_attempts=1)

        assert await client.connect("b_1") is False
        # Second request succeeds, then the stream ends and one more attempt is allowed
        await _wait_for(lambda: calls >= 2 and state.board.board is not None)
        assert client.reconnect_attempts <= 1

        await client.disconnect()

    @pytest.mark.asyncio
    async def test_auth_failure_stops_reconnecting(self):
        calls = 0
        auth_failures = []

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(401)

        client, _ = _push_client(
            handler, base_delay=0.01, on_auth_failure=lambda: auth_failures.append(True)
        )

        assert await client.connect("b_1") is False
        await asyncio.sleep(0.05)

        assert client.state == ConnectionState.FAILED
        assert auth_failures == [True]
        assert calls == 1
        assert client.reconnect_delays == []

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_reconnect(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503)

        client, _ = _push_client(handler, base_delay=0.05)

        await client.connect("b_1")
        assert client.state == ConnectionState.RECONNECTING

        await client.disconnect()
        await client.disconnect()
        await asyncio.sleep(0.15)

        assert client.state == ConnectionState.DISCONNECTED
        assert client.board_id is None
        assert client.reconnect_attempts == 0
        assert calls == 1

    @pytest.mark.asyncio
    async def test_transport_error_counts_as_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = _push_client(handler, base_delay=0.01, max_reconnect_attempts=2)

        assert await client.connect("b_1") is False
        await _wait_for(lambda: client.state == ConnectionState.FAILED)

        assert client.reconnect_attempts == 2
