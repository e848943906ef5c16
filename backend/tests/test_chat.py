"""End-to-end tests for the /ws/chat WebSocket endpoint.

Every frame is ``{"event": ..., "data": ...}``. Clients authenticate with a
token from /login passed as the ``token`` query parameter; the server
answers with a ``connected`` event before anything else.
"""
import pytest
from starlette.websockets import WebSocketDisconnect

from app.chat.coordinator import SessionCoordinator, get_coordinator, set_coordinator
from app.chat.rate_limiter import RateLimiter
from app.chat.router import decode_frame


def login(client, username):
    response = client.post("/login", json={"username": username})
    assert response.status_code == 200
    return response.json()["token"]


def connect_as(client, username):
    return client.websocket_connect(f"/ws/chat?token={login(client, username)}")


def receive_connected(ws):
    """Helper to receive and validate the connected event."""
    frame = ws.receive_json()
    assert frame["event"] == "connected"
    assert "connectionId" in frame["data"]
    return frame["data"]


def receive_event(ws, name):
    frame = ws.receive_json()
    assert frame["event"] == name, frame
    return frame["data"]


def send(ws, event, data):
    ws.send_json({"event": event, "data": data})


def join(ws, room, username, password=None):
    data = {"room": room, "username": username}
    if password is not None:
        data["password"] = password
    send(ws, "join_room", data)


def test_connect_with_valid_token(api_client):
    with connect_as(api_client, "alice") as ws:
        connected = receive_connected(ws)
        assert connected["username"] == "alice"


@pytest.mark.parametrize("query", ["", "?token=", "?token=not-a-jwt"])
def test_connect_without_valid_token_is_closed(api_client, query):
    with api_client.websocket_connect(f"/ws/chat{query}") as ws:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
    assert exc_info.value.code == 1008
    assert len(get_coordinator().hub) == 0


def test_two_clients_same_room(api_client):
    with connect_as(api_client, "alice") as ws1, connect_as(api_client, "bob") as ws2:
        receive_connected(ws1)
        receive_connected(ws2)

        join(ws1, "lobby", "alice")
        assert [u["username"] for u in receive_event(ws1, "room_users")] == ["alice"]

        join(ws2, "lobby", "bob")
        users1 = receive_event(ws1, "room_users")
        users2 = receive_event(ws2, "room_users")
        assert users1 == users2
        assert [u["username"] for u in users1] == ["alice", "bob"]

        send(ws1, "send_message", {"room": "lobby", "text": "Hello from alice"})
        msg1 = receive_event(ws1, "receive_message")
        msg2 = receive_event(ws2, "receive_message")

        assert msg1 == msg2
        assert msg1["text"] == "Hello from alice"
        assert msg1["username"] == "alice"
        assert msg1["room"] == "lobby"
        assert msg1["seenBy"] == ["alice"]
        assert "id" in msg1
        assert "time" in msg1


def test_message_history_on_join(api_client):
    with connect_as(api_client, "alice") as ws1:
        receive_connected(ws1)
        join(ws1, "history-room", "alice")
        receive_event(ws1, "room_users")

        send(ws1, "send_message", {"room": "history-room", "text": "First message"})
        receive_event(ws1, "receive_message")
        send(ws1, "send_message", {"room": "history-room", "text": "<b>Second</b>"})
        receive_event(ws1, "receive_message")

        with connect_as(api_client, "bob") as ws2:
            receive_connected(ws2)
            join(ws2, "history-room", "bob")
            receive_event(ws2, "room_users")
            history = receive_event(ws2, "message_history")

            assert [m["text"] for m in history] == [
                "First message",
                "&lt;b&gt;Second&lt;/b&gt;",
            ]


def test_password_protected_room(api_client):
    with connect_as(api_client, "alice") as ws1, connect_as(api_client, "bob") as ws2:
        receive_connected(ws1)
        receive_connected(ws2)

        join(ws1, "vault", "alice", password="s3cret")
        receive_event(ws1, "room_users")

        join(ws2, "vault", "bob", password="guess")
        assert receive_event(ws2, "error") == "Incorrect room password"

        join(ws2, "vault", "bob", password="s3cret")
        assert [u["username"] for u in receive_event(ws2, "room_users")] == ["alice", "bob"]


def test_join_requires_room_and_username(api_client):
    with connect_as(api_client, "alice") as ws:
        receive_connected(ws)
        send(ws, "join_room", {"room": "lobby"})
        assert receive_event(ws, "error") == "Room and username are required"


def test_malformed_frame_reports_error(api_client):
    with connect_as(api_client, "alice") as ws:
        receive_connected(ws)
        ws.send_text("this is not json")
        assert receive_event(ws, "error") == "Invalid event format"

        ws.send_json({"data": {}})
        assert receive_event(ws, "error") == "Invalid event format"


def test_binary_frame_reports_error(api_client):
    with connect_as(api_client, "alice") as ws:
        receive_connected(ws)
        ws.send_bytes(b"\x00\x01")
        assert receive_event(ws, "error") == "Invalid event format"

        # The connection stays usable afterwards
        send(ws, "request_private_history", {"otherUsername": "bob"})
        assert receive_event(ws, "private_message_history") == {"otherUsername": "bob", "history": []}


def test_private_message_online_and_offline(api_client):
    with connect_as(api_client, "alice") as ws1, connect_as(api_client, "bob") as ws2:
        receive_connected(ws1)
        receive_connected(ws2)

        send(ws1, "send_private_message", {"toUsername": "bob", "text": "hi bob"})
        echo = receive_event(ws1, "receive_private_message")
        delivered = receive_event(ws2, "receive_private_message")
        assert echo == delivered
        assert echo["fromUsername"] == "alice"

        send(ws1, "send_private_message", {"toUsername": "carol", "text": "hi carol"})
        receive_event(ws1, "receive_private_message")
        assert receive_event(ws1, "private_message_error") == "carol is not currently online."

        send(ws2, "request_private_history", {"otherUsername": "alice"})
        history = receive_event(ws2, "private_message_history")
        assert history["otherUsername"] == "alice"
        assert [m["text"] for m in history["history"]] == ["hi bob"]


def test_typing_indicator_expires(api_client):
    with connect_as(api_client, "alice") as ws1, connect_as(api_client, "bob") as ws2:
        receive_connected(ws1)
        receive_connected(ws2)
        join(ws2, "lobby", "bob")
        receive_event(ws2, "room_users")

        send(ws1, "typing", {"room": "lobby"})
        assert receive_event(ws2, "typing_users") == ["alice"]
        # Blocks until the expiry fires
        assert receive_event(ws2, "typing_users") == []


def test_disconnect_updates_room_users(api_client):
    with connect_as(api_client, "alice") as ws1:
        receive_connected(ws1)
        join(ws1, "x", "alice")
        receive_event(ws1, "room_users")

        with connect_as(api_client, "bob") as ws2:
            receive_connected(ws2)
            join(ws2, "x", "bob")
            receive_event(ws2, "room_users")
            assert len(receive_event(ws1, "room_users")) == 2

        assert [u["username"] for u in receive_event(ws1, "room_users")] == ["alice"]
        assert get_coordinator().identities.resolve("bob") is None


def test_rate_limited_client_is_closed_without_reply(api_client, token_service):
    set_coordinator(SessionCoordinator(
        verifier=token_service,
        rate_limiter=RateLimiter(max_events=3, window_seconds=10),
    ))

    with connect_as(api_client, "flooder") as ws:
        receive_connected(ws)                 # handshake: event 1
        send(ws, "typing", {})                # event 2, silent
        send(ws, "typing", {})                # event 3, silent
        send(ws, "typing", {})                # event 4, refused
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()

    assert exc_info.value.code == 1008
    assert get_coordinator().rate_limiter.tracked_connections() == 0


class TestDecodeFrame:
    def test_valid_envelope(self):
        assert decode_frame('{"event": "typing", "data": {"room": "x"}}') == ("typing", {"room": "x"})

    def test_missing_data_is_none(self):
        assert decode_frame('{"event": "typing"}') == ("typing", None)

    @pytest.mark.parametrize("raw", ["", "[]", "not json", '{"event": 3}', '{"data": 1}'])
    def test_malformed(self, raw):
        assert decode_frame(raw) == (None, None)
