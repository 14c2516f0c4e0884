# roomchat

A small multi-user chat system. A TCP server keeps user accounts and chat
rooms in an SQLite database. An interactive terminal client lets you log in,
create and join rooms, and chat. The package needs only the Python standard
library.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Running the server

```
roomchat-server
```

Options:

| Option            | Meaning                 | Default      |
|-------------------|-------------------------|--------------|
| `-d`, `--db PATH` | SQLite database file    | `../chat.db` |
| `-p`, `--port N`  | Port to listen on       | `8080`       |
| `-h`, `--help`    | Show usage and exit     |              |

A port that is not a positive number falls back to `8080`. The server
listens on `127.0.0.1` only and holds up to 100 clients at a time. Each
client is served in its own thread. The `users` and `rooms` tables are
created when the database is opened. Ctrl+C or SIGTERM stops the server,
disconnects every client and closes the database.

## Running the client

```
roomchat-client --host 127.0.0.1 --port 8080
```

Options:

| Option            | Meaning              | Default     |
|-------------------|----------------------|-------------|
| `-h`, `--host H`  | Server host name     | `127.0.0.1` |
| `-p`, `--port N`  | Server port          | `8080`      |
| `--help`          | Show usage and exit  |             |

The menu offers different choices depending on the client's state:

- connected: **1** Login, **2** Register, **7** Quit
- logged in: **3** Create room, **4** Join room, **7** Quit
- in a room: **5** Leave room, **6** Chat, **7** Quit

Registration asks for the password twice and refuses passwords that do not
match. When you create a room you are placed in it, and the client prints the
room's ID. Others join the room with option 4 and that ID.

In chat mode each non-empty line you type goes to the room, and `/quit`
returns to the menu. Messages in the room appear as they arrive, shown as
`[name]: text`. This includes your own messages, which the server sends
back to you, and the `SYSTEM` notices when someone joins or leaves.

At the end of input the client quits.

## Using the pieces from Python

### Wire format

The wire format is in `roomchat.protocol`. Each message is a fixed-size
record behind a 5-byte header: one type byte, then the total length as a
big-endian 32-bit number. Text fields that are too long are cut to fit.

```python
from roomchat.protocol import ChatMessage, encode_message, decode_message

data = encode_message(ChatMessage(room_id="lobby-id", username="alice", message="hi"))
assert decode_message(data).message == "hi"
```

`send_message(sock, message)` and `receive_message(sock)` send and read
framed messages on a socket. `receive_message` returns `None` when the peer
has closed the connection. Both `receive_message` and `decode_message` raise
`ProtocolError` for a broken frame.

### Storage

Accounts and rooms are stored by `roomchat.database.Database`:

```python
from roomchat.database import Database, UserExistsError

password = "password"
with Database("chat.db") as db:
    user_id = db.register_user("alice", password)
    assert db.authenticate_user("alice", password)
    room_id = db.create_room("general", user_id)
    print(db.get_room_name(room_id), [room.name for room in db.list_rooms()])
```

- Registering a name that is already taken raises `UserExistsError`.
- An empty password raises `ValueError`.
- Other storage failures raise `DatabaseError`.

### Server in process

You can run a server inside your own program with `roomchat.server.ChatServer`:

```python
import threading
from roomchat.server import ChatServer

server = ChatServer("chat.db")
server.bind(9000)
threading.Thread(target=server.serve_forever, daemon=True).start()
# ...
server.stop()
```

`ChatServer.handle_request(index, message)` applies one request to a client
slot and returns the reply, if there is one.

### Client without the menu

`roomchat.client.ChatClient` offers the client operations without the menu:
`connect`, `login`, `register`, `create_room`, `join_room`, `leave_room`,
`send_message` and `disconnect`.

- A request made in the wrong state, or one that cannot be sent, raises
  `ClientError`.
- Replies are read on a background thread. They update `state`,
  `current_room_id` and `current_room_name`, and are reported on the
  client's `output` stream.

The menu itself is `roomchat.ui.ClientUI`.

## What it does not do

- Clients have no way to list the rooms on a server. Room IDs must be passed
  around by other means, although `Database.list_rooms` can read them
  straight from the database file.
- Leaving a room gets no reply from the server.
- Traffic is plain, unencrypted TCP.
- The server only listens on the loopback address.
- Stored password hashes use a simple built-in scheme meant for
  experimentation. It does not protect real accounts.