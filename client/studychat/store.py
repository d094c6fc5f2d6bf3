"""In-memory message log for one group: history backlog plus live arrivals."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Set

from .schemas import ChatMessage


@dataclass
class MessageLog:
    group_id: int
    messages: List[ChatMessage] = field(default_factory=list)
    history_loaded: bool = False
    _seen: Set[int] = field(default_factory=set, init=False, repr=False)

    def load_history(self, history: Iterable[ChatMessage]) -> None:
        """Put the backlog (oldest first) ahead of anything that arrived live meanwhile."""
        backlog = [message for message in history if self._belongs(message)]
        backlog_ids = {message.id for message in backlog}
        live = [message for message in self.messages if message.id not in backlog_ids]
        self.messages = backlog + live
        self._seen = backlog_ids | {message.id for message in live}
        self.history_loaded = True

    def append_live(self, message: ChatMessage) -> bool:
        if not self._belongs(message) or message.id in self._seen:
            return False
        self._seen.add(message.id)
        self.messages.append(message)
        return True

    def find(self, message_id: int) -> ChatMessage | None:
        return next((message for message in self.messages if message.id == message_id), None)

    def _belongs(self, message: ChatMessage) -> bool:
        return message.group is None or message.group.id == self.group_id

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(self.messages)

    def __len__(self) -> int:
        return len(self.messages)
