"""Pydantic schemas for the study-group chat wire format.

The platform speaks camelCase JSON; fields are snake_case here and aliased on
the way in and out.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MessageType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    PDF = "PDF"
    DOCUMENT = "DOCUMENT"
    EXCEL = "EXCEL"
    POWERPOINT = "POWERPOINT"
    LINK = "LINK"


def classify_mime_type(mime_type: Optional[str]) -> MessageType:
    """Map an uploaded file's MIME type to the chat message type announcing it."""
    if not mime_type:
        return MessageType.TEXT
    lowered = mime_type.lower()
    if lowered.startswith("image/"):
        return MessageType.IMAGE
    if lowered == "application/pdf":
        return MessageType.PDF
    # OOXML types all contain "officedocument", so the specific families go first.
    if "excel" in lowered or "spreadsheet" in lowered:
        return MessageType.EXCEL
    if "powerpoint" in lowered or "presentation" in lowered:
        return MessageType.POWERPOINT
    if "word" in lowered or "document" in lowered:
        return MessageType.DOCUMENT
    return MessageType.TEXT


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GroupRef(WireModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str = ""


class SenderRef(WireModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str = ""
    email: str = ""
    avatar_url: Optional[str] = None


class ChatMessage(WireModel):
    """A message as persisted and broadcast by the server. Never mutated."""

    model_config = ConfigDict(frozen=True)

    id: int
    type: MessageType
    content: Optional[str] = None
    group: Optional[GroupRef] = None
    sender: Optional[SenderRef] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    timestamp: Optional[datetime] = None

    @property
    def has_attachment(self) -> bool:
        return bool(self.file_url) and self.type not in (MessageType.TEXT, MessageType.LINK)


class ChatMessageRequest(WireModel):
    """Outbound payload published to a group's send destination."""

    sender_id: int
    content: str = ""
    type: MessageType = MessageType.TEXT
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)


class FileDescriptor(WireModel):
    """Metadata returned by the upload endpoint."""

    file_url: str
    file_name: str
    file_type: Optional[str] = None
    file_size: int = Field(0, ge=0)
    caption: Optional[str] = None

    @property
    def message_type(self) -> MessageType:
        return classify_mime_type(self.file_type)

    def to_request(self, sender_id: int, caption: Optional[str] = None) -> ChatMessageRequest:
        text = caption if caption is not None else self.caption
        return ChatMessageRequest(
            sender_id=sender_id,
            content=text or self.file_name,
            type=self.message_type,
            file_url=self.file_url,
            file_name=self.file_name,
            file_type=self.file_type,
            file_size=self.file_size,
        )


class HistoryResponse(WireModel):
    message: Optional[str] = None
    messages: List[ChatMessage] = Field(default_factory=list)


class ShareLinkRequest(WireModel):
    url: str
    title: Optional[str] = None


class ShareLinkResponse(WireModel):
    message: Optional[str] = None
    chat_message: ChatMessage
