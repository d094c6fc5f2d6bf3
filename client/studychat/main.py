"""Composition root: one realtime session and its REST collaborators."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from .api.attachments import AttachmentTransfer
from .api.client import ApiClient
from .api.history import MessageHistoryLoader
from .config import Settings, settings
from .credentials import TokenStore
from .realtime import Connector, RealtimeSession
from .rooms import ChatRoom


class ChatApplication:
    """Owns the single broker session every chat surface shares."""

    def __init__(
        self,
        config: Settings = settings,
        *,
        tokens: Optional[TokenStore] = None,
        connector: Optional[Connector] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = config
        self.tokens = tokens or TokenStore(config.token_file, config.token)
        self.api = ApiClient(
            config.api_base_url, self.tokens, timeout=config.http_timeout, transport=http_transport
        )
        self.session = RealtimeSession(
            config.broker_url,
            reconnect_delay=config.reconnect_delay,
            max_reconnect_attempts=config.max_reconnect_attempts,
            heartbeat_outgoing_ms=config.heartbeat_outgoing_ms,
            heartbeat_incoming_ms=config.heartbeat_incoming_ms,
            connect_timeout=config.connect_timeout,
            connect_headers=self.tokens.broker_headers if config.broker_auth else None,
            connector=connector,
        )
        self.history = MessageHistoryLoader(self.api, config.history_page_size)
        self.attachments = AttachmentTransfer(self.api, config.download_dir, config.max_upload_bytes)

    def room(self, sender_id: int, **kwargs: Any) -> ChatRoom:
        kwargs.setdefault("connect_timeout", self.settings.connect_timeout)
        return ChatRoom(self.session, self.history, self.attachments, sender_id, **kwargs)

    async def aclose(self) -> None:
        await self.session.disconnect()
        await self.api.aclose()

    async def __aenter__(self) -> "ChatApplication":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
