"""Line-oriented chat front end used by ``python -m studychat``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import mimetypes
import shlex
import sys
from pathlib import Path
from typing import Callable, Optional

from .api.attachments import describe_size
from .errors import StudyChatError
from .main import ChatApplication
from .rooms import ChatRoom
from .schemas import ChatMessage, MessageType

logger = logging.getLogger(__name__)

HELP = """commands:
  /file PATH [caption]   upload a file and announce it
  /link URL [title]      share a link
  /download MESSAGE_ID   save a message's attachment
  /quit                  leave"""


def format_message(message: ChatMessage) -> str:
    when = message.timestamp.strftime("%H:%M") if message.timestamp else "--:--"
    who = message.sender.name if message.sender and message.sender.name else "?"
    text = message.content or ""
    if message.has_attachment:
        size = describe_size(message.file_size or 0)
        text = f"[{message.type.value} {message.file_name} {size} #{message.id}] {text}".rstrip()
    elif message.type is MessageType.LINK:
        text = f"[LINK] {text}"
    return f"{when} {who}: {text}"


async def handle_line(room: ChatRoom, line: str, echo: Callable[[str], None] = print) -> bool:
    """Run one input line against ``room``; returns False when the user quits."""
    line = line.strip()
    if not line:
        return True
    if not line.startswith("/"):
        await room.send_text(line)
        return True

    try:
        command, *args = shlex.split(line)
    except ValueError as exc:
        echo(f"! {exc}")
        return True

    try:
        if command == "/quit":
            return False
        if command == "/file" and args:
            path = Path(args[0]).expanduser()
            content_type, _ = mimetypes.guess_type(path.name)
            caption = " ".join(args[1:]) or None
            descriptor = await room.send_file(path.read_bytes(), path.name, content_type, caption)
            echo(f"uploaded {descriptor.file_name} as {descriptor.message_type.value}")
        elif command == "/link" and args:
            await room.share_link(args[0], " ".join(args[1:]) or None)
        elif command == "/download" and args and args[0].isdigit():
            message = room.log.find(int(args[0])) if room.log is not None else None
            if message is None or not message.file_url:
                echo(f"! no attachment with id {args[0]}")
            else:
                content = await room.download(message)
                echo(f"saved {message.file_name} ({describe_size(len(content))})")
        else:
            echo(HELP)
    except (StudyChatError, OSError) as exc:
        echo(f"! {exc}")
    return True


async def open_room(
    app: ChatApplication, group_id: int, sender_id: int, echo: Callable[[str], None] = print
) -> Optional[ChatRoom]:
    """Open ``group_id`` and print its log; live messages print only after that."""
    backlog_printed = False

    def show(message: ChatMessage) -> None:
        # Messages arriving during open() are already in the log.
        if backlog_printed:
            echo(format_message(message))

    room = app.room(sender_id, on_message=show, on_notice=lambda text: echo(f"! {text}"))
    if not await room.open(group_id):
        return None
    for message in room.log:
        echo(format_message(message))
    backlog_printed = True
    return room


async def run_console(app: ChatApplication, group_id: int, sender_id: int) -> int:
    room = await open_room(app, group_id, sender_id)
    if room is None:
        return 1
    print(HELP)

    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line or not await handle_line(room, line):
                break
    finally:
        await room.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="studychat", description="Study-group chat in the terminal")
    parser.add_argument("--group", type=int, required=True, help="group id to open")
    parser.add_argument("--sender", type=int, required=True, help="your user id")
    parser.add_argument("--token", help="bearer token; defaults to the stored one")
    parser.add_argument("--remember", action="store_true", help="store --token for later sessions")
    parser.add_argument("--log-level", default="WARNING")
    return parser


async def _main(args: argparse.Namespace) -> int:
    async with ChatApplication() as app:
        if args.token:
            app.tokens.save(args.token, remember=args.remember)
        return await run_console(app, args.group, args.sender)


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_main(args))
    except KeyboardInterrupt:
        return 130
    except StudyChatError as exc:
        logger.error("%s", exc)
        return 1
