"""
Socket.IO shim tests: handlers registered on ``sio`` deliver router output via emit.
"""
import pytest

from tablesync import main
from tablesync.managers.session_manager import create_token
from tablesync.socket_manager import sio


@pytest.fixture
def emitted(monkeypatch):
    calls = []

    async def fake_emit(event, data=None, to=None, **kwargs):
        calls.append((event, data, to))

    monkeypatch.setattr(sio, "emit", fake_emit)
    return calls


def _handler(event):
    return sio.handlers["/"][event]


async def _open(*sids):
    for sid in sids:
        await _handler("connect")(sid, {}, None)


def test_every_router_event_is_registered():
    for event in main.event_router.events:
        assert event in sio.handlers["/"]
    assert "connect" in sio.handlers["/"]
    assert "disconnect" in sio.handlers["/"]


async def test_connect_with_token_records_identity():
    token = create_token("Bob", user_id="sock-user")
    await _handler("connect")("sock-1", {}, {"token": token})
    conn = main.connections.get("sock-1")
    assert conn.user_id == "sock-user"
    assert conn.display_name == "Bob"


async def test_connect_without_token_is_anonymous():
    await _handler("connect")("sock-2", {"QUERY_STRING": "EIO=4"}, None)
    assert main.connections.get("sock-2").user_id is None


async def test_join_and_roll_emit_to_each_recipient(emitted):
    await _open("sock-gm", "sock-p")
    await _handler("gm_join_room")("sock-gm", {"roomCode": "SOCKROOM", "gmName": "Dana"})
    await _handler("player_join_room")("sock-p", {"roomCode": "SOCKROOM", "playerName": "Alice"})
    emitted.clear()

    await _handler("player_roll")("sock-p", {"spec": {"dieFaces": 6, "quantity": 2}})
    assert sorted(to for event, _, to in emitted if event == "broadcast_roll") == ["sock-gm", "sock-p"]


async def test_event_without_payload(emitted):
    await _open("sock-gm2", "sock-p2")
    await _handler("gm_join_room")("sock-gm2", "SOCKROOM2")
    await _handler("player_join_room")("sock-p2", {"roomCode": "SOCKROOM2"})
    emitted.clear()

    await _handler("request_all_sync")("sock-gm2")
    assert emitted == [("request_sync", {}, "sock-p2")]


async def test_disconnect_updates_gm_roster(emitted):
    await _open("sock-gm3", "sock-p3")
    await _handler("gm_join_room")("sock-gm3", "SOCKROOM3")
    await _handler("player_join_room")("sock-p3", {"roomCode": "SOCKROOM3", "playerName": "Cy"})
    emitted.clear()

    await _handler("disconnect")("sock-p3")
    [(event, roster, to)] = emitted
    assert (event, to) == ("player_list_update", "sock-gm3")
    assert roster[0]["online"] is False


async def test_join_after_disconnect_leaves_no_session(emitted):
    await _open("sock-gm4", "sock-p4")
    await _handler("gm_join_room")("sock-gm4", "SOCKROOM4")
    await _handler("disconnect")("sock-p4")
    emitted.clear()

    await _handler("player_join_room")("sock-p4", {"roomCode": "SOCKROOM4", "playerName": "Ghost"})
    assert emitted == []
    assert main.registry.get_room("SOCKROOM4").players == {}
