"""Chat client: connection state, requests to the server and reply handling."""

from __future__ import annotations

import socket
import sys
import threading
from enum import IntEnum
from typing import Optional, TextIO

from .protocol import (
    AuthRequest,
    AuthResponse,
    ChatMessage,
    CreateRoomRequest,
    CreateRoomResponse,
    ErrorMessage,
    JoinRoomRequest,
    JoinRoomResponse,
    LeaveRoomRequest,
    Message,
    ProtocolError,
    RegisterRequest,
    RegisterResponse,
    ResponseStatus,
    receive_message,
    send_message,
)


class ClientError(Exception):
    """A request could not be made in the client's state or could not be sent."""


class ClientState(IntEnum):
    DISCONNECTED = 0
    CONNECTED = 1
    AUTHENTICATED = 2
    IN_ROOM = 3


class Menu(IntEnum):
    NONE = 0
    LOGIN = 1
    REGISTER = 2
    CREATE_ROOM = 3
    JOIN_ROOM = 4
    LEAVE_ROOM = 5
    CHAT = 6
    QUIT = 7


class ChatClient:
    """One connection to a chat server, with a thread reading its replies."""

    def __init__(self, output: Optional[TextIO] = None) -> None:
        self.output = output if output is not None else sys.stdout
        self.sock: Optional[socket.socket] = None
        self.state = ClientState.DISCONNECTED
        self.username = ""
        self.current_room_id = ""
        self.current_room_name = ""
        self.running = False
        self._recv_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _say(self, text: str, end: str = "\n") -> None:
        print(text, end=end, file=self.output, flush=True)

    # -- connection ----------------------------------------------------

    def connect(self, hostname: str, port: int) -> None:
        """Connect to ``hostname:port`` and start reading replies."""
        if not hostname or port <= 0:
            self._say("Invalid parameters for connect")
            raise ValueError(f"invalid host {hostname!r} or port {port}")
        try:
            address = socket.gethostbyname(hostname)
        except OSError as exc:
            raise ClientError(f"cannot resolve host {hostname!r}") from exc
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.connect((address, port))
        except OSError as exc:
            sock.close()
            raise ClientError(f"cannot connect to {hostname}:{port}: {exc}") from exc

        self.sock = sock
        self.running = True
        thread = threading.Thread(target=self.receive_loop, daemon=True)
        try:
            thread.start()
        except RuntimeError as exc:
            sock.close()
            self.sock = None
            self.running = False
            raise ClientError("cannot start receive thread") from exc
        self._recv_thread = thread
        with self._lock:
            self.state = ClientState.CONNECTED

    def disconnect(self) -> None:
        """Close the connection, stop the reader and forget the session."""
        self.running = False
        sock, self.sock = self.sock, None
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()
        thread, self._recv_thread = self._recv_thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        with self._lock:
            self.state = ClientState.DISCONNECTED
            self.username = ""
            self.current_room_id = ""
            self.current_room_name = ""

    # -- requests ------------------------------------------------------

    def _require(self, state: ClientState, action: str) -> None:
        if self.state < state:
            raise ClientError(f"cannot {action} while {self.state.name.lower()}")

    def _send(self, message: Message, what: str) -> None:
        if self.sock is None:
            raise ClientError(f"Failed to send {what}: not connected")
        try:
            send_message(self.sock, message)
        except OSError as exc:
            raise ClientError(f"Failed to send {what}: {exc}") from exc

    def login(self, username: str, password: str) -> None:
        """Send a login request."""
        self._require(ClientState.CONNECTED, "log in")
        self._send(AuthRequest(username, password), "authentication request")

    def register(self, username: str, password: str) -> None:
        """Send a request to create an account."""
        self._require(ClientState.CONNECTED, "register")
        self._send(RegisterRequest(username, password), "register request")

    def create_room(self, room_name: str) -> None:
        """Ask the server to create a room."""
        self._require(ClientState.AUTHENTICATED, "create a room")
        self._send(CreateRoomRequest(room_name), "create room request")

    def join_room(self, room_id: str) -> None:
        """Ask the server to put this client in a room."""
        self._require(ClientState.AUTHENTICATED, "join a room")
        self._send(JoinRoomRequest(room_id), "join room request")

    def leave_room(self) -> None:
        """Leave the current room."""
        self._require(ClientState.IN_ROOM, "leave a room")
        self._send(LeaveRoomRequest(self.current_room_id), "leave room request")
        with self._lock:
            self.state = ClientState.AUTHENTICATED
            self.current_room_id = ""
            self.current_room_name = ""

    def send_message(self, message: str) -> None:
        """Send a chat line to the current room."""
        self._require(ClientState.IN_ROOM, "chat")
        self._send(
            ChatMessage(self.current_room_id, self.username, message), "chat message"
        )

    # -- replies -------------------------------------------------------

    def handle_message(self, message: Message) -> None:
        """Update the client from one server message and report it."""
        match message:
            case AuthResponse(status=status):
                if status == ResponseStatus.SUCCESS:
                    with self._lock:
                        self.state = ClientState.AUTHENTICATED
                    self._say("\nLogin successful")
                else:
                    self._say("\nLogin failed: Invalid username or password")
                self._say("Press Enter to continue...", end="")
            case RegisterResponse(status=status):
                if status == ResponseStatus.SUCCESS:
                    self._say("\nRegistration successful")
                elif status == ResponseStatus.USER_EXISTS:
                    self._say("\nRegistration failed: Username already exists")
                else:
                    self._say("\nRegistration failed: Internal error")
                self._say("Press Enter to continue...", end="")
            case CreateRoomResponse(status=status, room_id=room_id):
                if status == ResponseStatus.SUCCESS:
                    with self._lock:
                        self.state = ClientState.IN_ROOM
                        self.current_room_id = room_id
                    self._say("\nRoom created successfully")
                    self._say(f"Room ID: {room_id}")
                else:
                    self._say("\nFailed to create room")
                self._say("Press Enter to continue...", end="")
            case JoinRoomResponse(status=status, room_name=room_name, room_id=room_id):
                if status == ResponseStatus.SUCCESS:
                    with self._lock:
                        self.state = ClientState.IN_ROOM
                        self.current_room_name = room_name
                        self.current_room_id = room_id
                    self._say(f"\nJoined room: {room_name}")
                    self._say(f"Room ID: {room_id}")
                else:
                    self._say("\nFailed to join room: Room not found")
                self._say("Press Enter to continue...", end="")
            case ChatMessage(username=username, message=text):
                if self.state == ClientState.IN_ROOM:
                    self._say(f"\n[{username}]: {text}\n> ", end="")
            case ErrorMessage(error_message=text):
                self._say(f"\nError: {text}")
                self._say("Press Enter to continue...", end="")
            case _:
                pass

    def receive_loop(self) -> None:
        """Read and handle server messages until the connection ends."""
        while self.running:
            sock = self.sock
            if sock is None:
                break
            try:
                message = receive_message(sock)
            except ProtocolError as exc:
                if exc.message_type is not None:
                    continue
                message = None
            except OSError:
                message = None
            if message is None:
                if self.running:
                    self._say("\nDisconnected from server")
                    self.running = False
                break
            self.handle_message(message)