"""
Interactive command line client for Luvio Chat.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .managers.session import ChatSession, SessionState
from .models.chat import Attachment, Role
from .models.modules import BRAIN_MODULES
from .storage.conversations import SQLiteConversationStore
from .storage.database import Database
from .utils.config import LuvioConfig, load_config
from .utils.errors import LuvioError
from .utils.logging import get_logger, setup_logging


logger = get_logger("luvio-chat.cli")

out = Console()

HELP_TEXT = """Commands:
  /attach PATH   attach a file or image to the next message
  /clear         start a new conversation
  /history       show the conversation so far
  /modules       list the available brain modules
  /quit          exit
Press Ctrl+C while a reply streams to stop it."""


class StreamPrinter:
    """Prints the growing assistant reply as new text arrives."""

    def __init__(self, console: Console):
        self.console = console
        self._message_id: Optional[str] = None
        self._printed = 0

    def on_messages(self, event: str, data: Dict[str, Any]) -> None:
        messages = data["messages"]
        if not messages or messages[-1].role is not Role.ASSISTANT:
            return
        message = messages[-1]
        if message.id != self._message_id:
            self._message_id = message.id
            self._printed = 0
        self.console.print(message.content[self._printed:], end="", highlight=False, markup=False)
        self._printed = len(message.content)

    def on_error(self, event: str, data: Dict[str, Any]) -> None:
        self.console.print(f"\n[bold red]{data['message']}[/bold red]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="luvio-chat", description="Luvio Chat - streaming chat client")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--config", type=str, action="append", help="Config file path (repeatable)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--endpoint", type=str, help="Completion endpoint URL")
    parser.add_argument("--module", type=str, help="Brain module id")
    parser.add_argument("--no-store", action="store_true", help="Do not persist conversations")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    chat = subparsers.add_parser("chat", help="Start an interactive chat (default)")
    chat.add_argument("--conversation", type=str, help="Resume a stored conversation")

    history = subparsers.add_parser("history", help="List stored conversations")
    history.add_argument("--limit", type=int, default=20, help="Maximum results")

    subparsers.add_parser("modules", help="List brain modules")

    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    client: Dict[str, Any] = {}
    if args.endpoint:
        client["endpoint"] = args.endpoint
    if args.module:
        client["module_id"] = args.module
    if client:
        overrides["client"] = client
    if args.no_store:
        overrides["storage"] = {"enabled": False}
    if args.debug:
        overrides["debug"] = True
        overrides["logging"] = {"level": "DEBUG"}
    return overrides


async def _open_store(config: LuvioConfig) -> Optional[SQLiteConversationStore]:
    if not config.storage.enabled:
        return None
    db = Database(config.storage.path)
    await db.connect()
    store = SQLiteConversationStore(db, user_id=config.client.user_id)
    await store.initialize()
    return store


def print_modules() -> None:
    table = Table(title="Brain modules")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Description")
    for module in BRAIN_MODULES:
        table.add_row(module.id, f"{module.name} ({module.name_hi})", module.category, module.description)
    out.print(table)


async def print_history(config: LuvioConfig, limit: int) -> None:
    store = await _open_store(config)
    if store is None:
        out.print("[yellow]Conversation storage is disabled[/yellow]")
        return
    try:
        conversations = await store.list_conversations(limit=limit)
    finally:
        await store.close()

    table = Table(title="Conversations")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Updated")
    for conversation in conversations:
        table.add_row(conversation["id"], conversation["title"], conversation["updated_at"])
    out.print(table)


async def run_chat(config: LuvioConfig, conversation_id: Optional[str] = None) -> None:
    """Read-eval loop around one chat session."""
    store = await _open_store(config)
    session = ChatSession.from_config(config, store=store)

    printer = StreamPrinter(out)
    session.register_event_handler("messages_changed", printer.on_messages)
    session.register_event_handler("error", printer.on_error)

    if conversation_id:
        await session.load_conversation(conversation_id)
        out.print(f"[dim]Resumed conversation {conversation_id} ({len(session.messages)} messages)[/dim]")

    out.print(f"[bold]Luvio Chat[/bold] v{__version__}  (/help for commands)")
    pending: List[Attachment] = []
    loop = asyncio.get_running_loop()

    try:
        while True:
            try:
                line = await loop.run_in_executor(None, out.input, "[bold cyan]you>[/bold cyan] ")
            except EOFError:
                break

            text = line.strip()
            if text in ("/quit", "/exit"):
                break
            if text == "/help":
                out.print(HELP_TEXT)
                continue
            if text == "/modules":
                print_modules()
                continue
            if text == "/clear":
                session.clear()
                pending.clear()
                out.print("[dim]New conversation[/dim]")
                continue
            if text == "/history":
                for message in session.messages:
                    out.print(f"[bold]{message.role.value}>[/bold] {message.content}", highlight=False)
                continue
            if text.startswith("/attach "):
                path = Path(text[len("/attach "):].strip()).expanduser()
                if not path.is_file():
                    out.print(f"[red]No such file: {path}[/red]")
                    continue
                pending.append(Attachment.from_path(path))
                out.print(f"[dim]Attached {path.name}[/dim]")
                continue

            task = session.send(text, pending)
            if task is None:
                continue
            pending = []

            out.print("[bold magenta]luvio>[/bold magenta] ", end="")
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                # Ctrl+C during a reply
                asyncio.current_task().uncancel()
                session.stop()
                await asyncio.gather(task, return_exceptions=True)
            out.print()
            if session.state is SessionState.ABORTED:
                out.print("[dim]Stopped[/dim]")
    finally:
        await session.dispose()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        out.print(f"Luvio Chat v{__version__}")
        return 0

    try:
        config = load_config(config_paths=args.config, extra_config=_overrides(args))
    except LuvioError as e:
        out.print(f"[red]{e.message}[/red]")
        return 2

    setup_logging(
        app_name=config.app_name,
        log_level=config.logging.level,
        log_dir=config.logging.directory,
        enable_json=config.logging.format == "json",
        enable_console=config.debug,
        enable_sentry=config.logging.enable_sentry,
        sentry_dsn=config.logging.sentry_dsn,
    )

    command = args.command or "chat"
    try:
        if command == "modules":
            print_modules()
        elif command == "history":
            asyncio.run(print_history(config, args.limit))
        else:
            asyncio.run(run_chat(config, getattr(args, "conversation", None)))
    except KeyboardInterrupt:
        logger.info("cli_interrupted")
    except LuvioError as e:
        logger.error("cli_error", error=e.message, code=e.code)
        out.print(f"[red]{e.message}[/red]")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
