"""A chat surface showing one group at a time over the shared realtime session."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional

from .api.attachments import AttachmentTransfer
from .api.history import MessageHistoryLoader
from .errors import DownloadError, StudyChatError
from .realtime import RealtimeSession
from .schemas import ChatMessage, ChatMessageRequest, FileDescriptor, MessageType
from .store import MessageLog

logger = logging.getLogger(__name__)

CONNECTION_ERROR = "connection error"
SEND_FAILED = "failed to send"
DOWNLOAD_FAILED = "failed to download"
HISTORY_FAILED = "failed to load messages"


class ChatRoom:
    """One UI surface (a page, a floating widget, the console).

    Several rooms can share a session; each keeps only its own group subscribed.
    """

    def __init__(
        self,
        session: RealtimeSession,
        history: MessageHistoryLoader,
        attachments: AttachmentTransfer,
        sender_id: int,
        *,
        connect_timeout: float = 10.0,
        on_message: Optional[Callable[[ChatMessage], Any]] = None,
        on_notice: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.session = session
        self.history = history
        self.attachments = attachments
        self.sender_id = sender_id
        self.connect_timeout = connect_timeout
        self.on_message = on_message
        self.on_notice = on_notice
        self.log: Optional[MessageLog] = None

    @property
    def group_id(self) -> Optional[int]:
        return self.log.group_id if self.log is not None else None

    async def open(self, group_id: int) -> bool:
        """Show ``group_id``: subscribe to its topic, then load its backlog."""
        previous = self.group_id
        if previous is not None and previous != group_id:
            await self.session.unsubscribe_from_group(previous)
        log = MessageLog(group_id)
        self.log = log

        if not await self._ensure_connected():
            return False
        if not await self._subscribe(log):
            self._notice(CONNECTION_ERROR)
            return False
        try:
            backlog = await self.history.fetch_history(group_id)
        except StudyChatError:
            # A room without its backlog is not open.
            if self.log is log:
                self.log = None
                await self.session.unsubscribe_from_group(group_id)
            self._notice(HISTORY_FAILED)
            raise
        log.load_history(backlog)
        return True

    async def close(self) -> None:
        self.session.remove_callbacks(self._on_connected, self._on_connection_error)
        if self.group_id is not None:
            await self.session.unsubscribe_from_group(self.group_id)
        self.log = None

    async def send_text(self, text: str) -> bool:
        content = text.strip()
        if not content or self.group_id is None:
            return False
        request = ChatMessageRequest(sender_id=self.sender_id, content=content, type=MessageType.TEXT)
        return await self._publish(request)

    async def send_file(
        self,
        file_bytes: bytes,
        file_name: str,
        content_type: Optional[str] = None,
        caption: Optional[str] = None,
    ) -> FileDescriptor:
        """Upload a file and announce it in the open group.

        Upload errors propagate; a failed announcement is reported as a notice
        since the file itself is already stored.
        """
        if self.group_id is None:
            raise RuntimeError("No group is open")
        descriptor = await self.attachments.upload(self.group_id, file_bytes, file_name, content_type, caption)
        await self._publish(descriptor.to_request(self.sender_id, caption))
        return descriptor

    async def share_link(self, url: str, title: Optional[str] = None) -> ChatMessage:
        if self.group_id is None:
            raise RuntimeError("No group is open")
        # The server broadcasts the saved link on the topic; it reaches the log from there.
        return await self.history.share_link(self.group_id, url, title)

    async def download(self, message: ChatMessage, dest_dir: Optional[Path] = None) -> bytes:
        if not message.file_url:
            raise ValueError(f"Message {message.id} has no attachment")
        try:
            return await self.attachments.download(message.file_url, message.file_name or f"file-{message.id}", dest_dir)
        except DownloadError:
            self._notice(DOWNLOAD_FAILED)
            raise

    async def _ensure_connected(self) -> bool:
        self.session.connect(on_connected=self._on_connected, on_error=self._on_connection_error)
        if await self.session.wait_connected(self.connect_timeout):
            return True
        self._notice(CONNECTION_ERROR)
        return False

    async def _subscribe(self, log: MessageLog) -> bool:
        def handle(message: ChatMessage) -> None:
            if log is self.log and log.append_live(message) and self.on_message:
                self.on_message(message)

        return await self.session.subscribe_to_group(log.group_id, handle)

    async def _on_connected(self) -> None:
        # Subscriptions do not survive a reconnect; restore the open group's.
        log = self.log
        if log is not None and log.history_loaded and not self.session.has_subscription(log.group_id):
            await self._subscribe(log)

    def _on_connection_error(self, exc: BaseException) -> None:
        self._notice(CONNECTION_ERROR)

    async def _publish(self, request: ChatMessageRequest) -> bool:
        sent = await self.session.send_message(self.group_id, request)
        if not sent:
            self._notice(SEND_FAILED)
        return sent

    def _notice(self, text: str) -> None:
        logger.info("Notice for group %s: %s", self.group_id, text)
        if self.on_notice:
            self.on_notice(text)
