"""Text menu front end of the chat client and its command line."""

from __future__ import annotations

import os
import re
import signal
import subprocess
import sys
import threading
from typing import Optional, TextIO

from .client import ChatClient, ClientError, ClientState, Menu

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
_RULE = "============================================="
_LOGIN_FIELDS = ("Username", "Password")
_REGISTER_FIELDS = ("Username", "Password", "Confirm Password")


def _atoi(text: str) -> int:
    match = re.match(r"\s*[+-]?\d+", text)
    return int(match.group()) if match else 0


class ClientUI:
    """Menu-driven terminal interface over a ChatClient."""

    def __init__(
        self,
        client: ChatClient,
        input_stream: Optional[TextIO] = None,
        output: Optional[TextIO] = None,
    ) -> None:
        self.client = client
        self.input = input_stream if input_stream is not None else sys.stdin
        self.output = output if output is not None else client.output

    def _say(self, text: str = "", end: str = "\n") -> None:
        print(text, end=end, file=self.output, flush=True)

    def _read(self, prompt: str = "") -> Optional[str]:
        """Read one line without its newline; None at end of input."""
        if prompt:
            self._say(prompt, end="")
        line = self.input.readline()
        if not line:
            return None
        return line[:-1] if line.endswith("\n") else line

    def _ask(self, labels) -> list[str]:
        """Prompt for each labelled field in turn; missing input reads as empty."""
        return [self._read(f"{label}: ") or "" for label in labels]

    def _pause(self) -> None:
        self._say("Press Enter to continue...", end="")
        self._read()

    def _clear_screen(self) -> None:
        isatty = getattr(self.output, "isatty", None)
        if not (isatty and isatty()):
            return
        command = ["cmd", "/c", "cls"] if os.name == "nt" else ["clear"]
        try:
            subprocess.run(command, check=False)
        except OSError:
            pass

    def display_menu(self) -> None:
        """Show the status line and the options for the current state."""
        client = self.client
        self._clear_screen()
        self._say(_RULE)
        self._say("              CHAT CLIENT                   ")
        self._say(_RULE)
        status = {
            ClientState.DISCONNECTED: "Disconnected",
            ClientState.CONNECTED: "Connected",
            ClientState.AUTHENTICATED: f"Logged in as {client.username}",
            ClientState.IN_ROOM: f"In room: {client.current_room_name}",
        }[client.state]
        self._say(f"Status: {status}")
        self._say()
        self._say("Menu Options:")
        if client.state == ClientState.CONNECTED:
            self._say("1. Login")
            self._say("2. Register")
            self._say("7. Quit")
        elif client.state == ClientState.AUTHENTICATED:
            self._say("3. Create room")
            self._say("4. Join room")
            self._say("7. Quit")
        elif client.state == ClientState.IN_ROOM:
            self._say("5. Leave room")
            self._say("6. Chat")
            self._say("7. Quit")
        self._say("\nEnter your choice: ", end="")

    def _login(self) -> None:
        username, password = self._ask(_LOGIN_FIELDS)
        try:
            self.client.login(username, password)
        except ClientError:
            self._say("Failed to send login request")
            self._pause()
        else:
            self._say("Logging in...")

    def _register(self) -> None:
        username, password, confirmation = self._ask(_REGISTER_FIELDS)
        if password != confirmation:
            self._say("Passwords do not match")
            self._pause()
            return
        try:
            self.client.register(username, password)
        except ClientError:
            self._say("Failed to send register request")
            self._pause()
        else:
            self._say("Registering...")

    def _create_room(self) -> None:
        room_name = self._read("Room Name: ") or ""
        try:
            self.client.create_room(room_name)
        except ClientError:
            self._say("Failed to send create room request")
            self._pause()
        else:
            self._say("Creating room...")

    def _join_room(self) -> None:
        room_id = self._read("Room ID: ") or ""
        try:
            self.client.join_room(room_id)
        except ClientError:
            self._say("Failed to send join room request")
            self._pause()
        else:
            self._say("Joining room...")

    def _leave_room(self) -> None:
        try:
            self.client.leave_room()
        except ClientError:
            self._say("Failed to leave room")
        else:
            self._say("Left room")

    def _chat(self) -> None:
        self._clear_screen()
        self._say(_RULE)
        self._say("              CHAT MODE                    ")
        self._say(_RULE)
        self._say(f"Room: {self.client.current_room_name}")
        self._say("Type your message and press Enter to send.")
        self._say("Type '/quit' to exit chat mode.")
        self._say(_RULE + "\n")
        while True:
            line = self._read("> ")
            if line is None or line == "/quit":
                break
            if line:
                try:
                    self.client.send_message(line)
                except ClientError:
                    self._say("Failed to send message")

    def handle_input(self) -> None:
        """Read a menu choice and carry it out; end of input quits."""
        client = self.client
        line = self._read()
        if line is None:
            client.running = False
            return
        state = client.state
        match _atoi(line):
            case Menu.LOGIN:
                if state == ClientState.CONNECTED:
                    self._login()
            case Menu.REGISTER:
                if state == ClientState.CONNECTED:
                    self._register()
            case Menu.CREATE_ROOM:
                if state == ClientState.AUTHENTICATED:
                    self._create_room()
            case Menu.JOIN_ROOM:
                if state == ClientState.AUTHENTICATED:
                    self._join_room()
            case Menu.LEAVE_ROOM:
                if state == ClientState.IN_ROOM:
                    self._leave_room()
            case Menu.CHAT:
                if state == ClientState.IN_ROOM:
                    self._chat()
            case Menu.QUIT:
                client.running = False
            case _:
                self._say("Invalid choice")
                self._pause()

    def run(self) -> None:
        """Show the menu and handle choices while the client runs."""
        while self.client.running:
            self.display_menu()
            self.handle_input()


def main(argv=None) -> int:
    """Run the interactive chat client from the command line."""
    program = sys.argv[0] if sys.argv else "roomchat-client"
    if argv is None:
        argv = sys.argv[1:]

    hostname = DEFAULT_HOST
    port = DEFAULT_PORT
    args = iter(argv)
    for arg in args:
        if arg in ("-h", "--host"):
            value = next(args, None)
            if value is not None:
                hostname = value
        elif arg in ("-p", "--port"):
            value = next(args, None)
            if value is not None:
                port = _atoi(value)
                if port <= 0:
                    port = DEFAULT_PORT
        elif arg == "--help":
            print(f"Usage: {program} [options]")
            print("Options:")
            print(f"  -h, --host HOST    Server hostname (default: {hostname})")
            print(f"  -p, --port PORT    Server port (default: {port})")
            print("  --help             Show this help message")
            return 0

    client = ChatClient()
    print(f"Connecting to {hostname}:{port}...")
    try:
        client.connect(hostname, port)
    except (ClientError, ValueError):
        print("Failed to connect to server")
        return 1
    print("Connected to server")

    def _on_terminate(signum, frame) -> None:
        # Stop the menu loop and break out of any blocking read.
        client.running = False
        raise KeyboardInterrupt

    previous = None
    if threading.current_thread() is threading.main_thread():
        previous = signal.signal(signal.SIGTERM, _on_terminate)
    try:
        client.running = True
        ClientUI(client).run()
    except KeyboardInterrupt:
        pass
    finally:
        client.disconnect()
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)
    return 0