"""SQLite storage for chat users and rooms."""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from typing import Optional

from .utils import generate_uuid, hash_password, log_message, truncate, verify_password

ROOM_ID_FIELD = 37
ROOM_NAME_FIELD = 64

_CREATE_USERS_TABLE = (
    "CREATE TABLE IF NOT EXISTS users ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT,"
    "username TEXT UNIQUE NOT NULL,"
    "password_hash TEXT NOT NULL);"
)

_CREATE_ROOMS_TABLE = (
    "CREATE TABLE IF NOT EXISTS rooms ("
    "id TEXT PRIMARY KEY,"
    "name TEXT NOT NULL,"
    "owner_id INTEGER NOT NULL,"
    "FOREIGN KEY(owner_id) REFERENCES users(id));"
)

_INSERT_USER = "INSERT INTO users (username, password_hash) VALUES (?, ?);"
_GET_USER_BY_USERNAME = "SELECT id, username, password_hash FROM users WHERE username = ?;"
_CREATE_ROOM = "INSERT INTO rooms (id, name, owner_id) VALUES (?, ?, ?);"
_GET_ROOM_BY_ID = "SELECT id, name, owner_id FROM rooms WHERE id = ?;"
_LIST_ROOMS = "SELECT id, name, owner_id FROM rooms;"


class DatabaseError(Exception):
    """The database could not be opened or a statement failed."""


class UserExistsError(DatabaseError):
    """A user with the requested name is already registered."""


@dataclass(frozen=True)
class Room:
    id: str
    name: str
    owner_id: int


class Database:
    """Users and rooms kept in one SQLite file; safe to share between threads."""

    def __init__(self, path: str) -> None:
        self.path = str(path)
        self._lock = threading.Lock()
        try:
            self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
                self.path, check_same_thread=False
            )
        except sqlite3.Error as exc:
            log_message(f"Cannot open database: {exc}")
            raise DatabaseError(f"cannot open database {self.path}: {exc}") from exc
        try:
            with self._conn:
                self._conn.execute(_CREATE_USERS_TABLE)
                self._conn.execute(_CREATE_ROOMS_TABLE)
        except sqlite3.Error as exc:
            log_message(f"SQL error: {exc}")
            self._conn.close()
            self._conn = None
            raise DatabaseError(f"cannot create tables: {exc}") from exc

    def close(self) -> None:
        """Close the connection; closing twice is harmless."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DatabaseError("database is closed")
        return self._conn

    def _fetch_one(self, sql: str, params: tuple) -> Optional[tuple]:
        with self._lock:
            conn = self._connection()
            try:
                return conn.execute(sql, params).fetchone()
            except sqlite3.Error as exc:
                log_message(f"Failed to run statement: {exc}")
                raise DatabaseError(str(exc)) from exc

    def register_user(self, username: str, password: str) -> int:
        """Add a user and return the new user id.

        Raises UserExistsError if the name is taken and ValueError for an
        empty password.
        """
        with self._lock:
            conn = self._connection()
            try:
                if conn.execute(_GET_USER_BY_USERNAME, (username,)).fetchone():
                    raise UserExistsError(f"user {username!r} already exists")
                password_hash = hash_password(password)
                with conn:
                    cursor = conn.execute(_INSERT_USER, (username, password_hash))
            except sqlite3.Error as exc:
                log_message(f"Failed to insert user: {exc}")
                raise DatabaseError(f"failed to insert user: {exc}") from exc
            return cursor.lastrowid

    def authenticate_user(self, username: str, password: str) -> bool:
        """Return True if the user exists and the password matches."""
        row = self._fetch_one(_GET_USER_BY_USERNAME, (username,))
        if row is None:
            return False
        return verify_password(password, row[2])

    def get_user_id(self, username: str) -> Optional[int]:
        """Return the id of ``username``, or None if there is no such user."""
        row = self._fetch_one(_GET_USER_BY_USERNAME, (username,))
        return None if row is None else int(row[0])

    def create_room(self, name: str, owner_id: int) -> str:
        """Create a room owned by ``owner_id`` and return its new id."""
        if owner_id <= 0:
            raise ValueError(f"invalid owner id {owner_id}")
        room_id = generate_uuid()
        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    conn.execute(_CREATE_ROOM, (room_id, name, owner_id))
            except sqlite3.Error as exc:
                log_message(f"Failed to create room: {exc}")
                raise DatabaseError(f"failed to create room: {exc}") from exc
        return room_id

    def room_exists(self, room_id: str) -> bool:
        """Return True if a room with ``room_id`` exists."""
        return self._fetch_one(_GET_ROOM_BY_ID, (room_id,)) is not None

    def get_room_name(self, room_id: str) -> Optional[str]:
        """Return the room's name, cut to the protocol field, or None."""
        row = self._fetch_one(_GET_ROOM_BY_ID, (room_id,))
        return None if row is None else truncate(row[1], ROOM_NAME_FIELD)

    def list_rooms(self) -> list[Room]:
        """Return every room in storage order."""
        with self._lock:
            conn = self._connection()
            try:
                rows = conn.execute(_LIST_ROOMS).fetchall()
            except sqlite3.Error as exc:
                log_message(f"Failed to list rooms: {exc}")
                raise DatabaseError(str(exc)) from exc
        return [
            Room(
                id=truncate(room_id, ROOM_ID_FIELD),
                name=truncate(name, ROOM_NAME_FIELD),
                owner_id=int(owner_id),
            )
            for room_id, name, owner_id in rows
        ]