import io
import socket
import time

import pytest

from roomchat.client import ChatClient, ClientError, ClientState
from roomchat.protocol import (
    AuthRequest,
    AuthResponse,
    ChatMessage,
    CreateRoomResponse,
    ErrorMessage,
    JoinRoomResponse,
    LeaveRoomRequest,
    RegisterResponse,
    ResponseStatus,
    receive_message,
    send_message,
)


def _wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _closed_port():
    probe = socket.socket()
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    return port


@pytest.fixture
def connected():
    listener = socket.socket()
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    port = listener.getsockname()[1]
    output = io.StringIO()
    client = ChatClient(output)
    client.connect("127.0.0.1", port)
    peer, _ = listener.accept()
    peer.settimeout(3)
    yield client, peer, output
    client.disconnect()
    peer.close()
    listener.close()


@pytest.fixture
def paired():
    near, far = socket.socketpair()
    far.settimeout(3)
    output = io.StringIO()
    client = ChatClient(output)
    client.sock = near
    yield client, far, output
    client.disconnect()
    far.close()


def test_login_needs_connection():
    client = ChatClient(io.StringIO())
    assert client.state == ClientState.DISCONNECTED
    password = "password"
    with pytest.raises(ClientError):
        client.login("alice", password)


def test_connect_rejects_bad_port():
    with pytest.raises(ValueError):
        ChatClient(io.StringIO()).connect("127.0.0.1", 0)


def test_connect_refused_raises():
    client = ChatClient(io.StringIO())
    with pytest.raises(ClientError):
        client.connect("127.0.0.1", _closed_port())
    assert client.sock is None


def test_connect_sets_state(connected):
    client, _, _ = connected
    assert client.state == ClientState.CONNECTED
    assert client.running is True


def test_login_sends_auth_request(connected):
    client, peer, _ = connected
    password = "password"
    client.login("alice", password)
    assert receive_message(peer) == AuthRequest("alice", password)


def test_auth_success_reply_logs_in(connected):
    client, peer, output = connected
    send_message(peer, AuthResponse(ResponseStatus.SUCCESS))
    _wait_for(lambda: "Login successful" in output.getvalue())
    assert client.state == ClientState.AUTHENTICATED
    assert "Login successful" in output.getvalue()


def test_server_close_stops_client(connected):
    client, peer, output = connected
    peer.shutdown(socket.SHUT_RDWR)
    peer.close()
    assert _wait_for(lambda: not client.running)
    assert "Disconnected from server" in output.getvalue()


def test_create_room_needs_login(connected):
    client, _, _ = connected
    with pytest.raises(ClientError):
        client.create_room("Lobby")


def test_auth_failure_keeps_state():
    output = io.StringIO()
    client = ChatClient(output)
    client.state = ClientState.CONNECTED
    client.handle_message(AuthResponse(ResponseStatus.AUTH_FAILED))
    assert client.state == ClientState.CONNECTED
    assert "Login failed: Invalid username or password" in output.getvalue()


def test_create_room_response_enters_room():
    output = io.StringIO()
    client = ChatClient(output)
    client.state = ClientState.AUTHENTICATED
    client.handle_message(CreateRoomResponse(ResponseStatus.SUCCESS, "room-1"))
    assert client.state == ClientState.IN_ROOM
    assert client.current_room_id == "room-1"
    assert "Room ID: room-1" in output.getvalue()


def test_join_room_response_success():
    output = io.StringIO()
    client = ChatClient(output)
    client.state = ClientState.AUTHENTICATED
    client.handle_message(JoinRoomResponse(ResponseStatus.SUCCESS, "Lobby", "room-1"))
    assert (client.current_room_name, client.current_room_id) == ("Lobby", "room-1")
    assert "Joined room: Lobby" in output.getvalue()


def test_join_room_response_failure():
    output = io.StringIO()
    client = ChatClient(output)
    client.state = ClientState.AUTHENTICATED
    client.handle_message(JoinRoomResponse(ResponseStatus.ROOM_NOT_FOUND, "", "x"))
    assert client.state == ClientState.AUTHENTICATED
    assert "Failed to join room: Room not found" in output.getvalue()


@pytest.mark.parametrize(
    "status, text",
    [
        (ResponseStatus.SUCCESS, "Registration successful"),
        (ResponseStatus.USER_EXISTS, "Registration failed: Username already exists"),
        (ResponseStatus.INTERNAL_ERROR, "Registration failed: Internal error"),
    ],
)
def test_register_responses(status, text):
    output = io.StringIO()
    ChatClient(output).handle_message(RegisterResponse(status))
    assert text in output.getvalue()


@pytest.mark.parametrize(
    "state, shown",
    [(ClientState.IN_ROOM, True), (ClientState.AUTHENTICATED, False)],
)
def test_chat_message_shown_only_in_room(state, shown):
    output = io.StringIO()
    client = ChatClient(output)
    client.state = state
    client.handle_message(ChatMessage("room-1", "bob", "hi there"))
    assert ("[bob]: hi there" in output.getvalue()) is shown


def test_error_message_printed():
    output = io.StringIO()
    ChatClient(output).handle_message(
        ErrorMessage(ResponseStatus.ROOM_NOT_FOUND, "You are not in this room")
    )
    assert "Error: You are not in this room" in output.getvalue()


def test_leave_room_sends_request_and_resets(paired):
    client, far, _ = paired
    client.state = ClientState.IN_ROOM
    client.current_room_id = "room-1"
    client.current_room_name = "Lobby"
    client.leave_room()
    assert receive_message(far) == LeaveRoomRequest("room-1")
    assert client.state == ClientState.AUTHENTICATED
    assert client.current_room_id == ""


def test_leave_room_outside_room_raises(paired):
    client, _, _ = paired
    client.state = ClientState.AUTHENTICATED
    with pytest.raises(ClientError):
        client.leave_room()


def test_send_message_in_room(paired):
    client, far, _ = paired
    client.state = ClientState.IN_ROOM
    client.current_room_id = "room-1"
    client.send_message("hello")
    received = receive_message(far)
    assert isinstance(received, ChatMessage)
    assert (received.room_id, received.message) == ("room-1", "hello")


def test_disconnect_clears_session(paired):
    client, _, _ = paired
    client.state = ClientState.IN_ROOM
    client.current_room_id = "room-1"
    client.disconnect()
    assert client.state == ClientState.DISCONNECTED
    assert client.current_room_id == ""
    assert client.sock is None