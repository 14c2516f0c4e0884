"""Multi-threaded chat server: accounts, rooms and message fan-out."""

from __future__ import annotations

import re
import signal
import socket
import threading
from dataclasses import dataclass
from typing import Any, Optional

from .database import Database, DatabaseError, UserExistsError
from .protocol import (
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
    Message,
    ProtocolError,
    RegisterRequest,
    RegisterResponse,
    ResponseStatus,
    receive_message,
    send_message,
)
from .utils import log_message, truncate

MAX_CLIENTS = 100
MAX_ROOMS = 50
SERVER_PORT = 8080
DEFAULT_DB_PATH = "../chat.db"
LISTEN_ADDRESS = "127.0.0.1"
LISTEN_BACKLOG = 10
SYSTEM_USER = "SYSTEM"

_ACCEPT_TIMEOUT = 0.5


@dataclass
class ClientSession:
    """State the server keeps for one connection slot."""

    sock: Any = None
    address: Any = None
    username: str = ""
    authenticated: bool = False
    current_room_id: str = ""
    connected: bool = False
    thread: Optional[threading.Thread] = None


class ChatServer:
    """Accepts clients on a TCP port and serves each one in its own thread."""

    def __init__(self, db_path: str) -> None:
        try:
            self.db = Database(db_path)
        except DatabaseError:
            log_message("Failed to initialize database")
            raise
        self.clients: list[ClientSession] = [ClientSession() for _ in range(MAX_CLIENTS)]
        self.running = False
        self._lock = threading.Lock()
        self._listener: Optional[socket.socket] = None

    # -- listening -----------------------------------------------------

    def bind(self, port: int) -> int:
        """Bind and listen on ``127.0.0.1:port``; return the bound port."""
        if port <= 0:
            raise ValueError(f"invalid port {port}")
        print(f"Debug: Starting server on port {port}")
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            print(f"Debug: Binding to {LISTEN_ADDRESS}:{port}")
            listener.bind((LISTEN_ADDRESS, port))
            listener.listen(LISTEN_BACKLOG)
        except OSError as exc:
            log_message(f"Failed to bind or listen on socket: {exc}")
            listener.close()
            raise
        listener.settimeout(_ACCEPT_TIMEOUT)
        self._listener = listener
        bound_port = listener.getsockname()[1]
        print(f"Debug: Server listening on {LISTEN_ADDRESS}:{bound_port}")
        log_message(f"Server started on port {bound_port}")
        return bound_port

    def serve_forever(self) -> None:
        """Accept connections until stop() is called."""
        self.running = True
        while self.running:
            listener = self._listener
            if listener is None:
                break
            try:
                conn, address = listener.accept()
            except socket.timeout:
                continue
            except OSError:
                if not self.running:
                    break
                log_message("Failed to accept connection")
                continue
            conn.settimeout(None)

            index = self.add_client(conn, address)
            if index is None:
                log_message("Failed to add client")
                conn.close()
                continue

            thread = threading.Thread(target=self.handle_client, args=(index,), daemon=True)
            self.clients[index].thread = thread
            try:
                thread.start()
            except RuntimeError:
                log_message("Failed to create thread for client")
                self.remove_client(index)
                continue
            host, client_port = address[0], address[1]
            log_message(f"New client connected: {host}:{client_port}")

    def start(self, port: int) -> None:
        """Bind to ``port`` and serve until stopped."""
        self.bind(port)
        self.serve_forever()

    def stop(self) -> None:
        """Stop accepting, drop every client and close the database."""
        log_message("Stopping server...")
        self.running = False
        if self._listener is not None:
            self._listener.close()
            self._listener = None

        with self._lock:
            active = [session for session in self.clients if session.connected]
            for session in active:
                session.connected = False
                try:
                    session.sock.shutdown(socket.SHUT_RDWR)
                except (OSError, AttributeError):
                    pass
                try:
                    session.sock.close()
                except (OSError, AttributeError):
                    pass

        current = threading.current_thread()
        for session in active:
            if session.thread is not None and session.thread is not current:
                session.thread.join()

        self.db.close()
        log_message("Server stopped")

    # -- client table --------------------------------------------------

    def _session(self, index: int) -> ClientSession:
        if not 0 <= index < MAX_CLIENTS:
            raise IndexError(f"client index {index} out of range")
        return self.clients[index]

    def add_client(self, sock, address) -> Optional[int]:
        """Put a new connection in the first free slot; None when full."""
        with self._lock:
            index = next(
                (i for i, session in enumerate(self.clients) if not session.connected),
                None,
            )
            if index is None:
                return None
            self.clients[index] = ClientSession(sock=sock, address=address, connected=True)
        return index

    def remove_client(self, index: int) -> None:
        """Close a client's socket and free its slot."""
        if not 0 <= index < MAX_CLIENTS:
            return
        with self._lock:
            session = self.clients[index]
            if session.sock is not None:
                try:
                    session.sock.close()
                except (OSError, AttributeError):
                    pass
            session.authenticated = False
            session.connected = False
        log_message(f"Client disconnected: {session.username}")

    def find_client_by_socket(self, sock) -> Optional[int]:
        """Return the slot of a connected client using ``sock``, or None."""
        with self._lock:
            return next(
                (
                    i
                    for i, session in enumerate(self.clients)
                    if session.connected and session.sock is sock
                ),
                None,
            )

    # -- accounts ------------------------------------------------------

    def authenticate(self, index: int, username: str, password: str) -> bool:
        """Log a client in; return True on success or if already logged in."""
        session = self._session(index)
        if session.authenticated:
            return True
        try:
            ok = self.db.authenticate_user(username, password)
        except DatabaseError:
            ok = False
        if ok:
            with self._lock:
                session.authenticated = True
                session.username = truncate(username, MAX_USERNAME_LEN)
            log_message(f"User authenticated: {username}")
        else:
            log_message(f"Authentication failed for user: {username}")
        return ok

    def register_user(self, index: int, username: str, password: str) -> int:
        """Register a new account and return its user id.

        Raises UserExistsError for a taken name, DatabaseError or ValueError
        when the account cannot be stored.
        """
        self._session(index)
        try:
            user_id = self.db.register_user(username, password)
        except UserExistsError:
            log_message(f"User already exists: {username}")
            raise
        except (DatabaseError, ValueError):
            log_message(f"Failed to register user: {username}")
            raise
        log_message(f"New user registered: {username}")
        return user_id

    # -- rooms ---------------------------------------------------------

    def create_room(self, index: int, room_name: str) -> str:
        """Create a room owned by the client, join it and return its id."""
        session = self._session(index)
        if not session.authenticated:
            raise PermissionError("client is not logged in")
        user_id = self.db.get_user_id(session.username)
        if user_id is None or user_id <= 0:
            raise DatabaseError(f"unknown user {session.username!r}")
        try:
            room_id = self.db.create_room(room_name, user_id)
        except (DatabaseError, ValueError):
            log_message(f"Failed to create room: {room_name}")
            raise
        log_message(
            f"New room created: {room_name} (ID: {room_id}) by user {session.username}"
        )
        try:
            self.join_room(index, room_id)
        except (KeyError, PermissionError):
            pass
        return room_id

    def join_room(self, index: int, room_id: str) -> str:
        """Put the client in a room and return the room's name.

        Raises PermissionError when not logged in and KeyError for an
        unknown room.
        """
        session = self._session(index)
        if not session.authenticated:
            raise PermissionError("client is not logged in")
        if not self.db.room_exists(room_id):
            raise KeyError(room_id)
        with self._lock:
            session.current_room_id = room_id
        room_name = self.db.get_room_name(room_id)
        if room_name is None:
            raise KeyError(room_id)
        log_message(f"User {session.username} joined room: {room_name} (ID: {room_id})")
        self.broadcast_message(
            room_id, SYSTEM_USER, f"User {session.username} has joined the room."
        )
        return room_name

    def leave_room(self, index: int) -> None:
        """Take the client out of its room, telling the room first."""
        session = self._session(index)
        room_id = session.current_room_id
        if not room_id:
            return
        room_name = self.db.get_room_name(room_id)
        if room_name is None:
            raise KeyError(room_id)
        self.broadcast_message(
            room_id, SYSTEM_USER, f"User {session.username} has left the room."
        )
        log_message(f"User {session.username} left room: {room_name} (ID: {room_id})")
        with self._lock:
            session.current_room_id = ""

    def broadcast_message(self, room_id: str, username: str, message: str) -> int:
        """Send a chat message to every logged-in client in the room.

        Returns the number of clients it was sent to.
        """
        chat = ChatMessage(room_id=room_id, username=username, message=message)
        sent = 0
        with self._lock:
            for session in self.clients:
                if (
                    session.connected
                    and session.authenticated
                    and session.current_room_id == chat.room_id
                ):
                    try:
                        send_message(session.sock, chat)
                    except OSError:
                        continue
                    sent += 1
        return sent

    # -- requests ------------------------------------------------------

    def handle_request(self, index: int, message: Message) -> Optional[Message]:
        """Act on one request and return the reply to send, if any."""
        session = self._session(index)

        if isinstance(message, AuthRequest):
            ok = self.authenticate(index, message.username, message.password)
            return AuthResponse(ResponseStatus.SUCCESS if ok else ResponseStatus.AUTH_FAILED)

        if isinstance(message, RegisterRequest):
            try:
                self.register_user(index, message.username, message.password)
            except UserExistsError:
                return RegisterResponse(ResponseStatus.USER_EXISTS)
            except (DatabaseError, ValueError):
                return RegisterResponse(ResponseStatus.INTERNAL_ERROR)
            return RegisterResponse(ResponseStatus.SUCCESS)

        if isinstance(message, CreateRoomRequest):
            if not session.authenticated:
                return ErrorMessage(
                    ResponseStatus.AUTH_FAILED, "You must be logged in to create a room"
                )
            try:
                room_id = self.create_room(index, message.room_name)
            except (DatabaseError, PermissionError, ValueError):
                return CreateRoomResponse(ResponseStatus.INTERNAL_ERROR, "")
            return CreateRoomResponse(ResponseStatus.SUCCESS, room_id)

        if isinstance(message, JoinRoomRequest):
            if not session.authenticated:
                return ErrorMessage(
                    ResponseStatus.AUTH_FAILED, "You must be logged in to join a room"
                )
            if session.current_room_id:
                try:
                    self.leave_room(index)
                except KeyError:
                    pass
            try:
                room_name = self.join_room(index, message.room_id)
            except (KeyError, PermissionError):
                return JoinRoomResponse(ResponseStatus.ROOM_NOT_FOUND, "", message.room_id)
            return JoinRoomResponse(ResponseStatus.SUCCESS, room_name, message.room_id)

        if isinstance(message, LeaveRoomRequest):
            if not session.authenticated:
                return ErrorMessage(
                    ResponseStatus.AUTH_FAILED, "You must be logged in to leave a room"
                )
            try:
                self.leave_room(index)
            except KeyError:
                pass
            return None

        if isinstance(message, ChatMessage):
            if not session.authenticated:
                return ErrorMessage(
                    ResponseStatus.AUTH_FAILED, "You must be logged in to send messages"
                )
            if session.current_room_id != message.room_id:
                return ErrorMessage(ResponseStatus.ROOM_NOT_FOUND, "You are not in this room")
            self.broadcast_message(message.room_id, session.username, message.message)
            return None

        return ErrorMessage(ResponseStatus.INTERNAL_ERROR, "Unknown message type")

    def handle_client(self, index: int) -> None:
        """Serve one client until it disconnects or the server stops."""
        session = self._session(index)
        sock = session.sock
        log_message(f"Handling client {index}")
        try:
            while self.running and session.connected:
                try:
                    message = receive_message(sock)
                except ProtocolError as exc:
                    if exc.message_type is None:
                        break
                    reply: Optional[Message] = ErrorMessage(
                        ResponseStatus.INTERNAL_ERROR, "Unknown message type"
                    )
                else:
                    if message is None:
                        break
                    reply = self.handle_request(index, message)
                if reply is not None:
                    send_message(sock, reply)
        except OSError:
            pass
        finally:
            self.remove_client(index)


def _atoi(text: str) -> int:
    match = re.match(r"\s*[+-]?\d+", text)
    return int(match.group()) if match else 0


def _print_usage(program: str, db_path: str) -> None:
    print(f"Usage: {program} [options]")
    print("Options:")
    print(f"  -d, --db PATH     Database path (default: {db_path})")
    print(f"  -p, --port PORT   Port to listen on (default: {SERVER_PORT})")
    print("  -h, --help        Show this help message")


def main(argv=None) -> int:
    """Run the chat server from the command line."""
    import sys

    program = sys.argv[0] if sys.argv else "roomchat-server"
    if argv is None:
        argv = sys.argv[1:]

    db_path = DEFAULT_DB_PATH
    port = SERVER_PORT
    args = iter(argv)
    for arg in args:
        if arg in ("-d", "--db"):
            value = next(args, None)
            if value is not None:
                db_path = value
        elif arg in ("-p", "--port"):
            value = next(args, None)
            if value is not None:
                port = _atoi(value)
                if port <= 0:
                    port = SERVER_PORT
        elif arg in ("-h", "--help"):
            _print_usage(program, db_path)
            return 0

    print(f"Debug: Using database path: {db_path}")
    try:
        server = ChatServer(db_path)
    except DatabaseError:
        log_message("Failed to initialize server")
        return 1

    def _on_terminate(signum, frame) -> None:
        # The accept loop notices the flag within one accept timeout.
        server.running = False

    previous = None
    if threading.current_thread() is threading.main_thread():
        previous = signal.signal(signal.SIGTERM, _on_terminate)
    try:
        server.start(port)
    except OSError:
        log_message("Failed to start server")
        return 1
    except KeyboardInterrupt:
        pass
    finally:
        server.stop()
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)
    return 0