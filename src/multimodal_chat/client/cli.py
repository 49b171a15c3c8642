"""Multimodal Chat CLI - Terminal client for the chat relay.

A rich TUI that streams replies from the relay over SSE, attaches images
and CSV data, and keeps conversations in a local SQLite database.
"""

from __future__ import annotations

import argparse
import asyncio
import csv
import io
import logging
import os
import signal
from pathlib import Path
from typing import Optional

import httpx
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.style import Style
from rich.table import Table
from rich.text import Text

from ..errors import ChatError, PersistenceError, ValidationError
from ..repository import ChatRepository
from .identity import CACHE_DIR, Identity, IdentityStore
from .models import Message, SessionContext
from .session import ChatSession

logger = logging.getLogger(__name__)

DEFAULT_SERVER = "http://localhost:8000"
DEFAULT_DB = CACHE_DIR / "chat.db"

# Styles
USER_STYLE = Style(color="bright_blue", bold=True)
ASSISTANT_STYLE = Style(color="bright_green")
ATTACHMENT_STYLE = Style(color="yellow")
ERROR_STYLE = Style(color="red", bold=True)
INFO_STYLE = Style(color="cyan")

CSV_PREVIEW_ROWS = 4


def csv_preview(csv_data: str, file_name: str, max_rows: int = CSV_PREVIEW_ROWS) -> Table:
    """Header plus the first few rows of an attached CSV, with a row count."""

    lines = [line for line in csv_data.splitlines() if line.strip()]
    rows = list(csv.reader(io.StringIO("\n".join(lines))))
    header, body = (rows[0], rows[1:]) if rows else ([], [])

    table = Table(
        title=f"{file_name} ({len(body)} rows)",
        title_style=ATTACHMENT_STYLE,
        title_justify="left",
    )
    for column in header:
        table.add_column(column.strip())
    for row in body[:max_rows]:
        table.add_row(*(cell.strip() for cell in row[: len(header)]))
    hidden = len(body) - max_rows
    if hidden > 0:
        table.caption = f"... and {hidden} more rows"
    return table


class ShellChat:
    """Terminal chat client for the multimodal chat relay."""

    def __init__(
        self,
        server_url: str,
        db_path: Path,
        *,
        identity_store: Optional[IdentityStore] = None,
        console: Optional[Console] = None,
    ):
        self.server_url = server_url.rstrip("/")
        self.repository = ChatRepository(db_path)
        self.identity_store = identity_store or IdentityStore()
        self.console = console or Console()
        self.session: Optional[ChatSession] = None
        self.running = True
        self._live: Optional[Live] = None
        self._pending_image: Optional[Path] = None
        self._pending_csv: Optional[Path] = None
        self._pending_csv_url: Optional[str] = None

    async def _check_health(self) -> bool:
        """Check if the relay is reachable."""
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{self.server_url}/health")
        except httpx.HTTPError as e:
            self.console.print(f"Cannot connect to relay: {e}", style=ERROR_STYLE)
            return False
        if resp.status_code != 200:
            self.console.print(
                f"Relay health check failed: {resp.status_code}", style=ERROR_STYLE
            )
            return False
        model = resp.json().get("model", "unknown")
        self.console.print(f"[dim]Connected to relay. Model: {model}[/dim]")
        return True

    def _ask_identity(self) -> Identity:
        identity = self.identity_store.load()
        if identity is not None:
            self.console.print(f"[dim]Welcome back, {identity.user_name}[/dim]")
            return identity
        while True:
            name = Prompt.ask("[bold]What's your name?[/bold]")
            try:
                return self.identity_store.create(name)
            except ValidationError as e:
                self.console.print(str(e), style=ERROR_STYLE)

    async def _open_session(self, identity: Identity) -> ChatSession:
        """Prepare storage and resume the newest conversation."""
        await self.repository.initialize()
        await self.repository.create_user(identity.user_name, user_id=identity.user_id)
        conversations = await self.repository.list_conversations(identity.user_id)
        if conversations:
            conversation = conversations[0]
        else:
            conversation = await self.repository.create_conversation(identity.user_id)

        session = ChatSession(
            SessionContext(identity.user_id, identity.user_name),
            base_url=self.server_url,
            store=self.repository,
            on_update=self._render,
        )
        records = await self.repository.get_messages(conversation["id"])
        session.switch_conversation(conversation["id"], records)
        if records:
            self.console.print(
                f"[dim]Resumed {conversation['title']} ({len(records)} messages)[/dim]"
            )
        return session

    def _render(self, messages: list[Message]) -> None:
        """Redraw the streaming reply on every transcript change."""
        if self._live is None or not messages:
            return
        latest = messages[-1]
        if latest.role != "assistant":
            return
        if latest.content:
            self._live.update(Markdown(latest.content))
        else:
            self._live.update(Text("Thinking...", style="dim"))

    def _print_message(self, message: Message) -> None:
        if message.role == "user":
            self.console.print(Text("You", style=USER_STYLE))
            if message.content:
                self.console.print(message.content)
            if message.image_ref:
                self.console.print("[image attached]", style=ATTACHMENT_STYLE, markup=False)
            if message.tabular_ref:
                self.console.print(
                    csv_preview(message.tabular_ref, message.tabular_name or "data.csv")
                )
            elif message.tabular_name:
                self.console.print(
                    f"[csv attached: {message.tabular_name}]",
                    style=ATTACHMENT_STYLE,
                    markup=False,
                )
        else:
            self.console.print(Text("Assistant", style=ASSISTANT_STYLE))
            self.console.print(Markdown(message.content or "_(no reply)_"))
        self.console.print()

    def _show_history(self) -> None:
        assert self.session is not None
        messages = self.session.messages
        if not messages:
            self.console.print("[dim]No messages yet[/dim]")
            return
        for message in messages:
            self._print_message(message)

    def _show_pending(self) -> None:
        pending = []
        if self._pending_image:
            pending.append(f"image {self._pending_image.name}")
        if self._pending_csv:
            pending.append(f"csv {self._pending_csv.name}")
        elif self._pending_csv_url:
            pending.append(f"csv {self._pending_csv_url}")
        if pending:
            self.console.print(
                f"Attached: {', '.join(pending)}", style=ATTACHMENT_STYLE
            )

    def _detach(self) -> None:
        self._pending_image = None
        self._pending_csv = None
        self._pending_csv_url = None

    async def _list_conversations(self) -> None:
        assert self.session is not None
        conversations = await self.repository.list_conversations(
            self.session.context.user_id or ""
        )
        if not conversations:
            self.console.print("[dim]No conversations[/dim]")
            return
        self.console.print("\n[bold]Conversations:[/bold]")
        active = self.session.context.conversation_id
        for i, conversation in enumerate(conversations):
            marker = " [active]" if conversation["id"] == active else ""
            self.console.print(
                f"  {i}. {conversation['title']}{marker}", markup=False
            )
        self.console.print()

    async def _new_conversation(self) -> None:
        assert self.session is not None
        conversation = await self.repository.create_conversation(
            self.session.context.user_id
        )
        self.session.switch_conversation(conversation["id"], [])
        self.console.print("Started a new conversation", style=INFO_STYLE)

    async def _switch_conversation(self, index_or_id: str) -> None:
        assert self.session is not None
        conversations = await self.repository.list_conversations(
            self.session.context.user_id or ""
        )
        try:
            index = int(index_or_id)
        except ValueError:
            index = next(
                (i for i, c in enumerate(conversations) if c["id"].startswith(index_or_id)),
                -1,
            )
        if not 0 <= index < len(conversations):
            self.console.print(
                f"Conversation '{index_or_id}' not found", style=ERROR_STYLE
            )
            return
        conversation = conversations[index]
        records = await self.repository.get_messages(conversation["id"])
        self.session.switch_conversation(conversation["id"], records)
        self.console.print(f"Switched to {conversation['title']}", style=INFO_STYLE)
        self._show_history()

    def _show_help(self) -> None:
        """Show available commands."""
        help_text = """
[bold]Commands:[/bold]
  /help              Show this help message
  /image <path>      Attach an image to the next message
  /csv <path>        Attach a CSV file to the next message
  /csvurl <url>      Attach CSV data downloaded from a URL
  /detach            Drop pending attachments
  /send              Send pending attachments without text
  /history           Show the current conversation
  /conversations     List your conversations
  /new               Start a new conversation
  /switch <n|id>     Switch to another conversation
  /logout            Forget your identity and exit
  /quit              Exit

[bold]Shortcuts:[/bold]
  Ctrl+C             Cancel current request
  Ctrl+D             Exit
"""
        self.console.print(
            Panel(help_text.strip(), title="Multimodal Chat Help", border_style="blue")
        )

    async def _handle_command(self, cmd: str) -> bool:
        """Handle slash commands. Returns True if handled."""
        parts = cmd.strip().split(maxsplit=1)
        if not parts:
            return False

        command = parts[0].lower()
        argument = parts[1].strip() if len(parts) > 1 else ""

        if command == "/help":
            self._show_help()
        elif command == "/quit":
            self.running = False
        elif command == "/logout":
            self.identity_store.clear()
            self.console.print("Logged out", style=INFO_STYLE)
            self.running = False
        elif command == "/image":
            if argument:
                self._pending_image = Path(argument).expanduser()
                self._show_pending()
            else:
                self.console.print("[dim]Usage: /image <path>[/dim]")
        elif command == "/csv":
            if argument:
                self._pending_csv = Path(argument).expanduser()
                self._pending_csv_url = None
                self._show_pending()
            else:
                self.console.print("[dim]Usage: /csv <path>[/dim]")
        elif command == "/csvurl":
            if argument:
                self._pending_csv_url = argument
                self._pending_csv = None
                self._show_pending()
            else:
                self.console.print("[dim]Usage: /csvurl <url>[/dim]")
        elif command == "/detach":
            self._detach()
            self.console.print("Attachments cleared", style=INFO_STYLE)
        elif command == "/send":
            await self._send("")
        elif command == "/history":
            self._show_history()
        elif command == "/conversations":
            await self._list_conversations()
        elif command == "/new":
            await self._new_conversation()
        elif command == "/switch":
            if argument:
                await self._switch_conversation(argument)
            else:
                self.console.print("[dim]Usage: /switch <n|id>[/dim]")
        else:
            return False
        return True

    async def _send(self, text: str) -> None:
        """Run one round, rendering the reply live."""
        assert self.session is not None
        session = self.session
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, session.cancel)
            handles_sigint = True
        except (NotImplementedError, RuntimeError):
            handles_sigint = False

        self.console.print(Text("Assistant", style=ASSISTANT_STYLE))
        try:
            with Live(console=self.console, refresh_per_second=10) as live:
                self._live = live
                await session.send(
                    text,
                    image_path=self._pending_image,
                    tabular_path=self._pending_csv,
                    tabular_url=self._pending_csv_url,
                )
            self._detach()
        except asyncio.CancelledError:
            self.console.print("\n[dim]Request cancelled[/dim]")
            task = asyncio.current_task()
            if task is not None:
                task.uncancel()
        except ValidationError as e:
            self.console.print(str(e), style=ERROR_STYLE)
        except ChatError as e:
            self.console.print(f"Error: {e}", style=ERROR_STYLE)
        finally:
            self._live = None
            if handles_sigint:
                loop.remove_signal_handler(signal.SIGINT)

    async def run(self) -> None:
        """Main chat loop."""
        identity = self._ask_identity()
        try:
            self.session = await self._open_session(identity)
        except PersistenceError as e:
            self.console.print(f"Cannot open chat history: {e}", style=ERROR_STYLE)
            return

        try:
            await self._check_health()

            self.console.print()
            self.console.print(
                "[bold]Multimodal Chat[/bold] - Type /help for commands, Ctrl+D to exit",
                style=INFO_STYLE,
            )
            self.console.print()

            while self.running:
                try:
                    user_input = Prompt.ask("[bold blue]You[/bold blue]")
                    if not user_input.strip():
                        continue

                    if user_input.startswith("/"):
                        handled = await self._handle_command(user_input)
                        if handled:
                            continue

                    self.console.print()
                    await self._send(user_input)
                    self.console.print()

                except EOFError:
                    # Ctrl+D
                    self.console.print("\n[dim]Goodbye![/dim]")
                    break
                except KeyboardInterrupt:
                    # Ctrl+C at the prompt
                    self.console.print()
                    continue
        finally:
            await self.session.aclose()
            await self.repository.close()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Multimodal Chat - Terminal client for the chat relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  multimodal-chat                           Connect to localhost:8000
  multimodal-chat --server http://pi:8000   Connect to remote relay

Environment Variables:
  MULTICHAT_SERVER    Default relay URL
  MULTICHAT_DB        Default history database path
""",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get("MULTICHAT_SERVER", DEFAULT_SERVER),
        help=f"Relay server URL (default: {DEFAULT_SERVER})",
    )
    parser.add_argument(
        "--db",
        default=os.environ.get("MULTICHAT_DB", str(DEFAULT_DB)),
        help="SQLite file holding local chat history",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING)

    chat = ShellChat(server_url=args.server, db_path=Path(args.db).expanduser())
    try:
        asyncio.run(chat.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
