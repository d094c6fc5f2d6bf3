"""Message history and link sharing endpoints."""

from __future__ import annotations

from typing import List, Optional

from ..schemas import ChatMessage, HistoryResponse, ShareLinkRequest, ShareLinkResponse
from .client import ApiClient


class MessageHistoryLoader:
    def __init__(self, api: ApiClient, page_size: int = 50) -> None:
        self.api = api
        self.page_size = page_size

    async def fetch_history(
        self, group_id: int, page: int = 0, page_size: Optional[int] = None
    ) -> List[ChatMessage]:
        """One page of a group's messages, oldest first.

        The server pages newest-first, so page 0 is the most recent window.
        """
        data = await self.api.request_json(
            "GET",
            f"/chat/{group_id}/messages",
            params={"page": page, "size": page_size or self.page_size},
        )
        history = HistoryResponse.model_validate(data)
        return list(reversed(history.messages))

    async def share_link(self, group_id: int, url: str, title: Optional[str] = None) -> ChatMessage:
        body = ShareLinkRequest(url=url, title=title).model_dump(by_alias=True, exclude_none=True)
        data = await self.api.request_json("POST", f"/chat/{group_id}/share-link", json=body)
        return ShareLinkResponse.model_validate(data).chat_message
