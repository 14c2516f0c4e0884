import socket
import struct

import pytest

from roomchat.protocol import (
    HEADER_SIZE,
    MAX_MESSAGE_LEN,
    MAX_PASSWORD_LEN,
    MAX_ROOM_ID_LEN,
    MAX_USERNAME_LEN,
    AuthRequest,
    AuthResponse,
    ChatMessage,
    CreateRoomRequest,
    CreateRoomResponse,
    ErrorMessage,
    JoinRoomRequest,
    JoinRoomResponse,
    LeaveRoomRequest,
    MessageType,
    ProtocolError,
    RegisterRequest,
    RegisterResponse,
    ResponseStatus,
    decode_message,
    encode_message,
    receive_message,
    send_message,
)

ROOM_ID = "0a1b2c3d-0000-4000-8000-000000000000"
password = "password"

SAMPLES = [
    AuthRequest("alice", password),
    AuthResponse(ResponseStatus.SUCCESS),
    RegisterRequest("bob", password),
    RegisterResponse(ResponseStatus.USER_EXISTS),
    CreateRoomRequest("lobby"),
    CreateRoomResponse(ResponseStatus.SUCCESS, ROOM_ID),
    JoinRoomRequest(ROOM_ID),
    JoinRoomResponse(ResponseStatus.SUCCESS, "lobby", ROOM_ID),
    LeaveRoomRequest(ROOM_ID),
    ChatMessage(ROOM_ID, "alice", "hello there"),
    ErrorMessage(ResponseStatus.INTERNAL_ERROR, "Unknown message type"),
]


@pytest.fixture
def pair():
    left, right = socket.socketpair()
    with left, right:
        yield left, right


@pytest.mark.parametrize("message", SAMPLES, ids=lambda m: type(m).__name__)
def test_encode_decode_round_trip(message):
    assert decode_message(encode_message(message)) == message


@pytest.mark.parametrize("message", SAMPLES, ids=lambda m: type(m).__name__)
def test_encoded_length_matches_header(message):
    data = encode_message(message)
    type_code, length = struct.unpack("!BI", data[:HEADER_SIZE])
    assert type_code == message.message_type
    assert length == len(data) == type(message).size


@pytest.mark.parametrize("message", SAMPLES, ids=lambda m: type(m).__name__)
def test_pack_from_body_round_trip(message):
    body = message.pack()
    assert encode_message(message)[HEADER_SIZE:] == body
    assert type(message).from_body(body) == message


def test_pack_from_body_chat_message():
    msg = ChatMessage(ROOM_ID, "alice", "hello there")
    assert ChatMessage.from_body(msg.pack()) == msg


def test_auth_response_wire_bytes():
    assert encode_message(AuthResponse(ResponseStatus.SUCCESS)) == b"\x02\x00\x00\x00\x06\x00"


def test_auth_request_size_from_field_widths():
    data = encode_message(AuthRequest("alice", password))
    assert len(data) == HEADER_SIZE + MAX_USERNAME_LEN + MAX_PASSWORD_LEN


def test_chat_message_size_from_field_widths():
    data = encode_message(ChatMessage(ROOM_ID, "alice", "hi"))
    assert len(data) == HEADER_SIZE + MAX_ROOM_ID_LEN + MAX_USERNAME_LEN + MAX_MESSAGE_LEN


def test_text_fields_are_nul_padded():
    body = CreateRoomRequest("lobby").pack()
    assert body.startswith(b"lobby\0")
    assert body.rstrip(b"\0") == b"lobby"


def test_long_fields_are_truncated():
    msg = ChatMessage("r" * 100, "u" * 100, "m" * 5000)
    assert msg.room_id == "r" * (MAX_ROOM_ID_LEN - 1)
    assert msg.username == "u" * (MAX_USERNAME_LEN - 1)
    assert msg.message == "m" * (MAX_MESSAGE_LEN - 1)
    assert decode_message(encode_message(msg)) == msg


def test_multibyte_text_survives_truncation():
    msg = ChatMessage(ROOM_ID, "é" * 40, "hi")
    assert len(msg.username.encode("utf-8")) <= MAX_USERNAME_LEN - 1
    assert set(msg.username) == {"é"}
    assert decode_message(encode_message(msg)).username == msg.username


def test_status_becomes_enum():
    assert AuthResponse(3).status is ResponseStatus.ROOM_NOT_FOUND


def test_unknown_status_kept_as_int():
    assert RegisterResponse(42).status == 42


def test_status_out_of_range_rejected():
    with pytest.raises(ValueError):
        AuthResponse(300)


def test_from_body_pads_short_body():
    assert AuthResponse.from_body(b"") == AuthResponse(ResponseStatus.SUCCESS)


def test_decode_rejects_short_header():
    with pytest.raises(ProtocolError):
        decode_message(b"\x01\x00")


def test_decode_rejects_length_mismatch():
    data = encode_message(AuthResponse(ResponseStatus.SUCCESS))
    with pytest.raises(ProtocolError):
        decode_message(data[:-1])


def test_decode_rejects_length_below_header():
    with pytest.raises(ProtocolError):
        decode_message(struct.pack("!BI", MessageType.AUTH_RESPONSE, 2))


def test_decode_unknown_type():
    with pytest.raises(ProtocolError) as info:
        decode_message(struct.pack("!BI", 99, HEADER_SIZE))
    assert info.value.message_type == 99


def test_send_and_receive(pair):
    left, right = pair
    msg = ChatMessage(ROOM_ID, "alice", "hello there")
    send_message(left, msg)
    assert receive_message(right) == msg


def test_receive_several_in_order(pair):
    left, right = pair
    for message in SAMPLES:
        send_message(left, message)
    received = [receive_message(right) for _ in SAMPLES]
    assert received == SAMPLES


def test_receive_returns_none_on_close(pair):
    left, right = pair
    left.close()
    assert receive_message(right) is None


def test_receive_rejects_oversized_message(pair):
    left, right = pair
    send_message(left, ChatMessage(ROOM_ID, "alice", "hi"))
    with pytest.raises(ProtocolError):
        receive_message(right, HEADER_SIZE + 10)


def test_receive_rejects_truncated_body(pair):
    left, right = pair
    left.sendall(encode_message(AuthRequest("alice", password))[:20])
    left.close()
    with pytest.raises(ProtocolError):
        receive_message(right)


def test_receive_rejects_truncated_header(pair):
    left, right = pair
    left.sendall(b"\x01\x00")
    left.close()
    with pytest.raises(ProtocolError):
        receive_message(right)


def test_receive_unknown_type_keeps_stream_in_sync(pair):
    left, right = pair
    left.sendall(struct.pack("!BI", 99, HEADER_SIZE + 2) + b"xy")
    follow_up = AuthResponse(ResponseStatus.AUTH_FAILED)
    send_message(left, follow_up)
    with pytest.raises(ProtocolError) as info:
        receive_message(right)
    assert info.value.message_type == 99
    assert receive_message(right) == follow_up