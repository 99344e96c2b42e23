"""SignalingRelay 테스트 (가짜 채널 사용)."""

import json

import pytest
from starlette.websockets import WebSocketState

from echo_mesh.signaling import RoomRegistry, SignalingRelay
from echo_mesh.signaling.messages import OfferMessage

from conftest import FakeWebSocket


@pytest.fixture
def relay():
    return SignalingRelay()


async def connect(relay, room="demo1", name=None):
    ws = FakeWebSocket()
    session = relay.connect(ws)
    payload = {"type": "join", "roomId": room}
    if name is not None:
        payload["name"] = name
    await relay.handle(session, json.dumps(payload))
    return session, ws


async def test_first_member_gets_empty_peer_list(relay):
    alice, ws = await connect(relay, name="Alice")
    assert ws.sent == [{
        "type": "joined",
        "clientId": alice.client_id,
        "roomId": "demo1",
        "name": "Alice",
        "peers": [],
    }]


async def test_newcomer_gets_roster_and_members_get_peer_joined(relay):
    alice, alice_ws = await connect(relay, name="Alice")
    bob, bob_ws = await connect(relay, name="Bob")

    assert bob_ws.of_type("joined")[0]["peers"] == [{"id": alice.client_id, "name": "Alice"}]
    assert alice_ws.of_type("peer-joined") == [
        {"type": "peer-joined", "peer": {"id": bob.client_id, "name": "Bob"}}
    ]
    assert bob_ws.of_type("peer-joined") == []


async def test_blank_name_uses_default(relay):
    _, ws = await connect(relay, name="   ")
    assert ws.sent[0]["name"] == "Guest"


async def test_offer_and_answer_are_forwarded_with_sender(relay):
    alice, alice_ws = await connect(relay, name="Alice")
    bob, bob_ws = await connect(relay, name="Bob")

    await relay.handle(bob, json.dumps({"type": "offer", "to": alice.client_id, "sdp": {"type": "offer", "sdp": "X"}}))
    assert alice_ws.of_type("offer") == [{
        "type": "offer", "sdp": {"type": "offer", "sdp": "X"}, "from": bob.client_id, "name": "Bob",
    }]

    await relay.handle(alice, json.dumps({"type": "answer", "to": bob.client_id, "sdp": {"type": "answer", "sdp": "Y"}}))
    answer = bob_ws.of_type("answer")[0]
    assert answer["from"] == alice.client_id
    assert answer["sdp"] == {"type": "answer", "sdp": "Y"}
    assert "to" not in answer


async def test_candidates_keep_send_order(relay):
    alice, alice_ws = await connect(relay)
    bob, _ = await connect(relay)

    for port in (5001, 5002, 5003):
        await relay.handle(bob, json.dumps({
            "type": "ice-candidate", "to": alice.client_id, "candidate": {"candidate": f"c{port}"},
        }))

    forwarded = [m["candidate"]["candidate"] for m in alice_ws.of_type("ice-candidate")]
    assert forwarded == ["c5001", "c5002", "c5003"]


async def test_route_never_crosses_rooms(relay):
    alice, alice_ws = await connect(relay, room="room-a")
    mallory, _ = await connect(relay, room="room-b")

    delivered = await relay.route(mallory, relay_offer(alice.client_id))
    assert delivered is False
    assert alice_ws.of_type("offer") == []


async def test_unknown_or_closed_target_is_dropped(relay):
    alice, alice_ws = await connect(relay)
    bob, bob_ws = await connect(relay)

    assert await relay.route(bob, relay_offer("nobody")) is False

    alice_ws.client_state = WebSocketState.DISCONNECTED
    assert await relay.route(bob, relay_offer(alice.client_id)) is False
    assert alice_ws.of_type("offer") == []
    assert bob_ws.of_type("offer") == []


async def test_route_outside_room_is_dropped(relay):
    lonely = relay.connect(FakeWebSocket())
    assert await relay.route(lonely, relay_offer("x")) is False


async def test_chat_reaches_everyone_including_sender(relay):
    alice, alice_ws = await connect(relay, name="Alice")
    bob, bob_ws = await connect(relay, name="Bob")
    _, other_ws = await connect(relay, room="elsewhere")

    await relay.handle(alice, json.dumps({"type": "chat", "text": "  hello  "}))

    for ws in (alice_ws, bob_ws):
        chat = ws.of_type("chat")
        assert len(chat) == 1
        assert chat[0]["from"] == alice.client_id
        assert chat[0]["name"] == "Alice"
        assert chat[0]["text"] == "hello"
    assert alice_ws.of_type("chat")[0]["ts"] == bob_ws.of_type("chat")[0]["ts"]
    assert other_ws.of_type("chat") == []


async def test_empty_chat_is_dropped(relay):
    alice, alice_ws = await connect(relay)
    await relay.handle(alice, json.dumps({"type": "chat", "text": "   "}))
    assert alice_ws.of_type("chat") == []


async def test_malformed_message_keeps_channel(relay):
    alice, alice_ws = await connect(relay)
    await relay.handle(alice, "{oops")
    await relay.handle(alice, json.dumps({"type": "chat", "text": "still here"}))
    assert alice_ws.of_type("chat")[0]["text"] == "still here"
    assert alice_ws.close_code is None


async def test_deeply_nested_payload_is_dropped(relay):
    alice, alice_ws = await connect(relay, name="Alice")
    bob, bob_ws = await connect(relay, name="Bob")

    await relay.handle(alice, "[" * 100000 + "]" * 100000)

    assert relay.registry.get_member("demo1", alice.client_id) is alice
    assert bob_ws.of_type("peer-left") == []
    await relay.handle(alice, json.dumps({"type": "chat", "text": "after"}))
    assert bob_ws.of_type("chat")[0]["text"] == "after"


async def test_disconnect_notifies_and_deletes_empty_room(relay):
    alice, _ = await connect(relay, name="Alice")
    bob, bob_ws = await connect(relay, name="Bob")

    await relay.disconnect(alice)
    assert bob_ws.of_type("peer-left") == [{"type": "peer-left", "id": alice.client_id}]
    assert [s.client_id for s in relay.registry.get_room_peers("demo1")] == [bob.client_id]

    await relay.handle(bob, json.dumps({"type": "leave"}))
    assert "demo1" not in relay.registry.rooms

    _, carol_ws = await connect(relay, name="Carol")
    assert carol_ws.sent[0]["peers"] == []


async def test_rejoin_leaves_previous_room(relay):
    alice, _ = await connect(relay, room="room-a")
    bob, bob_ws = await connect(relay, room="room-a")

    await relay.handle(alice, json.dumps({"type": "join", "roomId": "room-b", "name": "Alice"}))

    assert bob_ws.of_type("peer-left") == [{"type": "peer-left", "id": alice.client_id}]
    assert alice.room_id == "room-b"
    assert relay.registry.get_member("room-a", alice.client_id) is None


async def test_room_full_rejects_join():
    relay = SignalingRelay(RoomRegistry(max_room_size=2))
    await connect(relay)
    await connect(relay)
    carol, carol_ws = await connect(relay)

    assert carol_ws.sent == [{"type": "room-full", "limit": 2}]
    assert carol.room_id is None
    assert relay.registry.get_room_count("demo1") == 2


async def test_close_all_closes_channels(relay):
    _, alice_ws = await connect(relay)
    await relay.close_all()
    assert alice_ws.close_code == 1001


def relay_offer(to):
    return OfferMessage(type="offer", to=to, sdp={"type": "offer", "sdp": "X"})
