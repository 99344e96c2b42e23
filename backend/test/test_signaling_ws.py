"""WebSocket 시그널링 엔드포인트 통합 테스트 (FastAPI TestClient)."""

import json

import pytest
from fastapi.testclient import TestClient

import app as server
from app import create_app
from echo_mesh.config import EchoSettings


@pytest.fixture
def client(tmp_path):
    with TestClient(create_app(EchoSettings(LOG_DIR=str(tmp_path)))) as client:
        yield client


def test_startup_configures_logging(tmp_path, monkeypatch):
    configured = []
    monkeypatch.setattr(server, "setup_logging", configured.append)
    settings = EchoSettings(LOG_DIR=str(tmp_path))

    with TestClient(create_app(settings)):
        assert configured == [settings]


def join(ws, room, name):
    ws.send_json({"type": "join", "roomId": room, "name": name})
    return ws.receive_json()


def test_two_clients_exchange_offer_answer_then_leave(client):
    with client.websocket_connect("/ws") as bob:
        with client.websocket_connect("/ws") as alice:
            # 1. Alice가 먼저 입장
            joined_a = join(alice, "demo1", "Alice")
            assert joined_a["type"] == "joined"
            assert joined_a["roomId"] == "demo1"
            assert joined_a["name"] == "Alice"
            assert joined_a["peers"] == []
            alice_id = joined_a["clientId"]

            # 2. Bob 입장
            joined_b = join(bob, "demo1", "Bob")
            bob_id = joined_b["clientId"]
            assert joined_b["peers"] == [{"id": alice_id, "name": "Alice"}]
            assert alice.receive_json() == {"type": "peer-joined", "peer": {"id": bob_id, "name": "Bob"}}

            # 3. offer / answer 중계
            bob.send_json({"type": "offer", "to": alice_id, "sdp": {"type": "offer", "sdp": "X"}})
            assert alice.receive_json() == {
                "type": "offer", "sdp": {"type": "offer", "sdp": "X"}, "from": bob_id, "name": "Bob",
            }
            alice.send_json({"type": "answer", "to": bob_id, "sdp": {"type": "answer", "sdp": "Y"}})
            assert bob.receive_json() == {
                "type": "answer", "sdp": {"type": "answer", "sdp": "Y"}, "from": alice_id, "name": "Alice",
            }

        # 4. Alice 채널 종료
        assert bob.receive_json() == {"type": "peer-left", "id": alice_id}
        rooms = client.get("/api/rooms").json()["rooms"]
        assert rooms == [{"room_id": "demo1", "peer_count": 1, "peers": [{"id": bob_id, "name": "Bob"}]}]

        # 5. Bob도 퇴장하면 룸 삭제, 다시 입장하면 빈 목록
        bob.send_json({"type": "leave"})
        rejoined = join(bob, "demo1", "Bob")
        assert rejoined["peers"] == []
        assert rejoined["clientId"] == bob_id


def test_malformed_frames_are_ignored(client):
    with client.websocket_connect("/ws") as alice:
        alice.send_text("definitely not json")
        alice.send_json({"type": "unknown"})
        alice.send_bytes(json.dumps({"type": "join", "roomId": "demo1", "name": "Alice"}).encode())
        joined = alice.receive_json()
        assert joined["type"] == "joined"

        alice.send_json({"type": "chat", "text": "hi"})
        chat = alice.receive_json()
        assert chat["type"] == "chat"
        assert chat["from"] == joined["clientId"]
        assert chat["text"] == "hi"


def test_rooms_are_isolated(client):
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        alice_id = join(alice, "room-a", "Alice")["clientId"]
        join(bob, "room-b", "Bob")

        bob.send_json({"type": "offer", "to": alice_id, "sdp": {"type": "offer", "sdp": "X"}})
        bob.send_json({"type": "chat", "text": "only room-b"})

        assert bob.receive_json()["text"] == "only room-b"
        alice.send_json({"type": "chat", "text": "only room-a"})
        assert alice.receive_json()["text"] == "only room-a"


def test_http_endpoints(client):
    assert client.get("/").json()["status"] == "ok"

    with client.websocket_connect("/ws") as alice:
        join(alice, "demo1", "Alice")
        health = client.get("/api/health").json()
        assert health == {"status": "ok", "rooms": 1, "clients": 1}

    servers = client.get("/api/ice-servers").json()
    assert {"urls": "stun:stun.l.google.com:19302"} in servers
