"""Wire format of the chat protocol: framed, fixed-size binary messages.

Every message starts with a five byte header: one byte of message type and
the total message length as a big-endian 32-bit number. The body holds
fixed-width NUL-padded text fields and single byte status codes.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar, Optional

from .utils import truncate

MAX_USERNAME_LEN = 32
MAX_PASSWORD_LEN = 64
MAX_ROOM_NAME_LEN = 64
MAX_MESSAGE_LEN = 1024
MAX_ROOM_ID_LEN = 37

HEADER = struct.Struct("!BI")
HEADER_SIZE = HEADER.size
DEFAULT_BUFFER_SIZE = 2048

_BYTE = 0  # layout width marking a one byte unsigned field


class ProtocolError(Exception):
    """A message could not be framed or decoded.

    ``message_type`` is set when a whole message of an unknown type was read.
    """

    def __init__(self, text: str, message_type: Optional[int] = None) -> None:
        super().__init__(text)
        self.message_type = message_type


class MessageType(IntEnum):
    AUTH_REQUEST = 1
    AUTH_RESPONSE = 2
    REGISTER_REQUEST = 3
    REGISTER_RESPONSE = 4
    CREATE_ROOM = 5
    CREATE_ROOM_RESPONSE = 6
    JOIN_ROOM = 7
    JOIN_ROOM_RESPONSE = 8
    LEAVE_ROOM = 9
    CHAT_MESSAGE = 10
    ERROR = 255


class ResponseStatus(IntEnum):
    SUCCESS = 0
    AUTH_FAILED = 1
    USER_EXISTS = 2
    ROOM_NOT_FOUND = 3
    INTERNAL_ERROR = 255


_REGISTRY: dict[int, type["Message"]] = {}


def _as_code(value: int) -> int:
    value = int(value)
    if not 0 <= value <= 0xFF:
        raise ValueError(f"status code {value} does not fit in one byte")
    try:
        return ResponseStatus(value)
    except ValueError:
        return value


@dataclass
class Message:
    """Base class of protocol messages."""

    message_type: ClassVar[MessageType]
    layout: ClassVar[tuple[tuple[str, int], ...]] = ()
    size: ClassVar[int] = HEADER_SIZE

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        if "message_type" in cls.__dict__:
            cls.size = HEADER_SIZE + sum(width or 1 for _, width in cls.layout)
            _REGISTRY[int(cls.message_type)] = cls

    def __post_init__(self) -> None:
        for name, width in self.layout:
            value = getattr(self, name)
            if width == _BYTE:
                setattr(self, name, _as_code(value))
            else:
                setattr(self, name, truncate(value, width))

    def pack(self) -> bytes:
        """Return the message body, without its header."""
        body = bytearray()
        for name, width in self.layout:
            value = getattr(self, name)
            if width == _BYTE:
                body.append(_as_code(value))
            else:
                body += truncate(value, width).encode("utf-8").ljust(width, b"\0")
        return bytes(body)

    @classmethod
    def from_body(cls, body: bytes) -> "Message":
        """Build a message from its body; a short body is padded with NULs."""
        body = bytes(body).ljust(cls.size - HEADER_SIZE, b"\0")
        values = {}
        offset = 0
        for name, width in cls.layout:
            if width == _BYTE:
                values[name] = body[offset]
                offset += 1
            else:
                raw = body[offset : offset + width].split(b"\0", 1)[0]
                values[name] = raw.decode("utf-8", errors="replace")
                offset += width
        return cls(**values)


@dataclass
class AuthRequest(Message):
    username: str
    password: str

    message_type = MessageType.AUTH_REQUEST
    layout = (("username", MAX_USERNAME_LEN), ("password", MAX_PASSWORD_LEN))


@dataclass
class AuthResponse(Message):
    status: int

    message_type = MessageType.AUTH_RESPONSE
    layout = (("status", _BYTE),)


@dataclass
class RegisterRequest(Message):
    username: str
    password: str

    message_type = MessageType.REGISTER_REQUEST
    layout = (("username", MAX_USERNAME_LEN), ("password", MAX_PASSWORD_LEN))


@dataclass
class RegisterResponse(Message):
    status: int

    message_type = MessageType.REGISTER_RESPONSE
    layout = (("status", _BYTE),)


@dataclass
class CreateRoomRequest(Message):
    room_name: str

    message_type = MessageType.CREATE_ROOM
    layout = (("room_name", MAX_ROOM_NAME_LEN),)


@dataclass
class CreateRoomResponse(Message):
    status: int
    room_id: str

    message_type = MessageType.CREATE_ROOM_RESPONSE
    layout = (("status", _BYTE), ("room_id", MAX_ROOM_ID_LEN))


@dataclass
class JoinRoomRequest(Message):
    room_id: str

    message_type = MessageType.JOIN_ROOM
    layout = (("room_id", MAX_ROOM_ID_LEN),)


@dataclass
class JoinRoomResponse(Message):
    status: int
    room_name: str
    room_id: str

    message_type = MessageType.JOIN_ROOM_RESPONSE
    layout = (
        ("status", _BYTE),
        ("room_name", MAX_ROOM_NAME_LEN),
        ("room_id", MAX_ROOM_ID_LEN),
    )


@dataclass
class LeaveRoomRequest(Message):
    room_id: str

    message_type = MessageType.LEAVE_ROOM
    layout = (("room_id", MAX_ROOM_ID_LEN),)


@dataclass
class ChatMessage(Message):
    room_id: str
    username: str
    message: str

    message_type = MessageType.CHAT_MESSAGE
    layout = (
        ("room_id", MAX_ROOM_ID_LEN),
        ("username", MAX_USERNAME_LEN),
        ("message", MAX_MESSAGE_LEN),
    )


@dataclass
class ErrorMessage(Message):
    error_code: int
    error_message: str

    message_type = MessageType.ERROR
    layout = (("error_code", _BYTE), ("error_message", MAX_MESSAGE_LEN))


def _message_class(type_code: int) -> type[Message]:
    try:
        return _REGISTRY[type_code]
    except KeyError:
        raise ProtocolError(f"unknown message type {type_code}", type_code) from None


def encode_message(message: Message) -> bytes:
    """Return the full wire form of ``message``, header included."""
    return HEADER.pack(int(message.message_type), message.size) + message.pack()


def decode_message(data: bytes) -> Message:
    """Decode one complete framed message."""
    data = bytes(data)
    if len(data) < HEADER_SIZE:
        raise ProtocolError("incomplete message header")
    type_code, length = HEADER.unpack_from(data)
    if length < HEADER_SIZE:
        raise ProtocolError(f"invalid message length {length}")
    if len(data) != length:
        raise ProtocolError(f"message length {length} does not match {len(data)} bytes")
    return _message_class(type_code).from_body(data[HEADER_SIZE:])


def send_message(sock, message: Message) -> None:
    """Send ``message`` on a connected socket."""
    sock.sendall(encode_message(message))


def _recv_exact(sock, count: int) -> bytes:
    data = bytearray()
    while len(data) < count:
        chunk = sock.recv(count - len(data))
        if not chunk:
            break
        data += chunk
    return bytes(data)


def receive_message(sock, buffer_size: int = DEFAULT_BUFFER_SIZE) -> Optional[Message]:
    """Read one message from ``sock``.

    Returns None when the peer closed the connection before a new message.
    Raises ProtocolError for broken frames, messages longer than
    ``buffer_size`` and, after reading its body, unknown message types.
    """
    header = _recv_exact(sock, HEADER_SIZE)
    if not header:
        return None
    if len(header) < HEADER_SIZE:
        raise ProtocolError("connection closed inside message header")
    type_code, length = HEADER.unpack(header)
    if length > buffer_size:
        raise ProtocolError(f"message length {length} exceeds buffer size {buffer_size}")
    if length < HEADER_SIZE:
        raise ProtocolError(f"invalid message length {length}")
    body = _recv_exact(sock, length - HEADER_SIZE)
    if len(body) < length - HEADER_SIZE:
        raise ProtocolError("connection closed inside message body")
    return _message_class(type_code).from_body(body)