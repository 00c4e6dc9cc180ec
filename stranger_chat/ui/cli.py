import html

from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.panel import Panel
from rich.text import Text
from rich.theme import Theme

from stranger_chat.core.config import get_settings
from stranger_chat.network.transport import TransportLayer
from stranger_chat.utils.validators import validate_display_name

custom_theme = Theme({
    "info": "dim cyan",
    "warning": "magenta",
    "danger": "bold red",
    "success": "bold green",
    "chat_peer": "green",
    "chat_self": "cyan",
    "typing": "dim white"
})

console = Console(theme=custom_theme)


class ChatCLI:
    def __init__(self, settings=None, transport=None, output=None):
        self.settings = settings or get_settings()
        self.transport = transport or TransportLayer(self.settings.server_uri)
        self.transport.on_event_callback = self.on_server_event
        self.transport.on_closed_callback = self.on_closed
        self.console = output or console
        self.session = None
        self.username = None
        self.room_id = None
        self.partner = None
        self.online = 0
        self.status = "Connecting"
        self.running = True

    def toolbar(self):
        return f" {self.status} | {self.online} online | /skip /report /cancel /quit"

    async def on_server_event(self, data):
        # Called from the transport's listen loop for every server event
        kind = data["type"]
        if kind == "online_count":
            self.online = data.get("count", 0)
        elif kind == "login_success":
            self.status = "Searching"
            self.console.print("[info]Looking for a stranger to chat with...[/info]")
        elif kind == "login_error":
            self.status = "Login failed"
            self.console.print(Text(f"Login failed: {data.get('message')}", style="danger"))
        elif kind == "matched":
            self.room_id = data.get("roomId")
            self.partner = data.get("partner")
            self.status = f"Chatting with {self.partner}"
            self.console.print(Panel(Text(f"You are now chatting with {self.partner}", style="success"), expand=False))
        elif kind == "message":
            # Content arrives HTML-escaped for browsers
            self.console.print(Text.assemble((f"{data.get('sender')}: ", "chat_peer"), html.unescape(str(data.get("content", "")))))
        elif kind == "typing":
            if data.get("isTyping"):
                self.console.print(Text(f"{data.get('username')} is typing...", style="typing"))
        elif kind == "partner_skipped":
            self._leave_room("Searching")
            self.console.print(Text(str(data.get("message")), style="warning"))
        elif kind == "partner_disconnected":
            self._leave_room("Searching")
            self.console.print(Text(str(data.get("message")), style="danger"))
        elif kind == "report_acknowledged":
            self.console.print(Text(str(data.get("message")), style="info"))
        elif kind == "error":
            self.console.print(Text(f"Error: {data.get('message')}", style="danger"))

    def on_closed(self):
        self.running = False
        self.status = "Disconnected"
        if self.session is not None and self.session.app.is_running:
            self.session.app.exit(exception=EOFError())

    def _leave_room(self, status):
        self.room_id = None
        self.partner = None
        self.status = status

    async def handle_input(self, text: str) -> bool:
        """Runs one line of user input. Returns False when the client should stop."""
        text = text.strip()
        if not text:
            return True

        command = text.lower()
        if command == "/quit":
            return False
        if command == "/skip":
            if self.room_id is None:
                self.console.print("[warning]You are not in a chat.[/warning]")
                return True
            await self.transport.send_event({"type": "skip", "username": self.username, "roomId": self.room_id})
            self._leave_room("Searching")
            await self.transport.login(self.username)
            return True
        if command == "/cancel":
            await self.transport.send_event({"type": "cancel_search"})
            self.status = "Idle (type /search to look again)"
            return True
        if command == "/search":
            await self.transport.login(self.username)
            return True
        if command == "/report":
            if self.partner is None:
                self.console.print("[warning]There is nobody to report.[/warning]")
                return True
            await self.transport.send_event({
                "type": "report",
                "reportedUser": self.partner,
                "reportingUser": self.username,
            })
            return True

        if self.room_id is None:
            self.console.print("[warning]Still waiting for a partner.[/warning]")
            return True
        self.console.print(Text.assemble(("You: ", "chat_self"), text))
        await self.transport.send_event({
            "type": "message",
            "content": text,
            "username": self.username,
            "roomId": self.room_id,
        })
        return True

    async def run(self):
        self.console.clear()
        self.console.print(Panel.fit("[bold white]STRANGER CHAT[/bold white]\n[dim]Anonymous 1:1 conversations.[/dim]", style="blue"))
        self.session = PromptSession(bottom_toolbar=self.toolbar)

        # 1. Pick a display name
        while True:
            raw = await self.session.prompt_async("Display name (3-20 chars): ")
            result = validate_display_name(raw, self.settings.name_min_length, self.settings.name_max_length)
            if result.ok:
                break
            self.console.print(Text(result.error, style="warning"))
        self.username = result.normalized

        # 2. Connect and join the queue
        if not await self.transport.connect():
            self.console.print(Text(f"Could not reach {self.settings.server_uri}", style="danger"))
            return
        await self.transport.login(self.username)

        # 3. Chat loop
        with patch_stdout():
            while self.running:
                try:
                    text = await self.session.prompt_async("> ")
                except (EOFError, KeyboardInterrupt):
                    break
                if not await self.handle_input(text):
                    break

        await self.transport.disconnect()
