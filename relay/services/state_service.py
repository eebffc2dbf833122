"""In-memory per-chat conversation state."""

import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set

from relay.logging_config import get_logger
from relay.schemas.gateway import ChatMessage

logger = get_logger("state_service")

DEFAULT_HISTORY_LIMIT = 20
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(message: ChatMessage) -> datetime:
    value = message.date
    if not isinstance(value, datetime):
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class MessageCounter:
    count: int
    started_at: float


class ConversationStore:
    """Recent messages per chat id, capped at ``history_limit`` per chat.

    Messages are kept ordered by date and the oldest are evicted once the
    cap is exceeded, so a re-pulled page never displaces newer messages.
    Re-merging a known message id replaces its payload.
    """

    def __init__(
        self,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        *,
        max_messages_per_chat: int = 0,
        counter_window_seconds: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.history_limit = max(int(history_limit), 1)
        self.max_messages_per_chat = max_messages_per_chat
        self.counter_window_seconds = counter_window_seconds
        self._clock = clock
        self._chats: Dict[str, "OrderedDict[str, ChatMessage]"] = {}
        self._counters: Dict[str, MessageCounter] = {}
        self._bot_chats: Set[str] = set()

    def merge(self, chat_id: str, messages: Iterable[ChatMessage]) -> Dict[str, ChatMessage]:
        """Merge messages into the chat map and return a snapshot of it."""
        chat = self._chats.get(chat_id, {})
        merged = {**chat, **{message.id: message for message in messages}}
        ordered = sorted(merged.values(), key=_sort_key)
        for evicted in ordered[: -self.history_limit]:
            logger.debug(f"Evicted message {evicted.id} from chat {chat_id}")
        chat = OrderedDict((message.id, message) for message in ordered[-self.history_limit :])
        self._chats[chat_id] = chat
        return dict(chat)

    def add(self, chat_id: str, message: ChatMessage) -> None:
        self.merge(chat_id, [message])

    def get(self, chat_id: str) -> Dict[str, ChatMessage]:
        return dict(self._chats.get(chat_id, {}))

    def history(self, chat_id: str, *, limit: Optional[int] = None, exclude_id: Optional[str] = None) -> List[ChatMessage]:
        """Chat messages ordered by date, oldest first."""
        messages = [m for m in self._chats.get(chat_id, {}).values() if m.id != exclude_id]
        messages.sort(key=_sort_key)
        if limit:
            messages = messages[-limit:]
        return messages

    def clear(self, chat_id: str) -> None:
        self._chats.pop(chat_id, None)
        self._counters.pop(chat_id, None)
        self._bot_chats.discard(chat_id)

    def chat_ids(self) -> List[str]:
        return list(self._chats)

    # -------------------------------------------------------------------
    # Per-chat message quota
    # -------------------------------------------------------------------

    def has_quota(self, chat_id: str) -> bool:
        if not self.max_messages_per_chat:
            return True
        counter = self._current_counter(chat_id)
        return counter is None or counter.count < self.max_messages_per_chat

    def count_message(self, chat_id: str) -> int:
        counter = self._current_counter(chat_id)
        if counter is None:
            counter = MessageCounter(count=0, started_at=self._clock())
            self._counters[chat_id] = counter
        counter.count += 1
        return counter.count

    def _current_counter(self, chat_id: str) -> Optional[MessageCounter]:
        counter = self._counters.get(chat_id)
        if counter and self._clock() - counter.started_at >= self.counter_window_seconds:
            del self._counters[chat_id]
            return None
        return counter

    # -------------------------------------------------------------------
    # Bot chat marker
    # -------------------------------------------------------------------

    def is_bot_chat(self, chat_id: str) -> bool:
        return chat_id in self._bot_chats

    def mark_bot_chat(self, chat_id: str) -> bool:
        """Mark chat as bot-handled. Returns True only the first time."""
        if chat_id in self._bot_chats:
            return False
        self._bot_chats.add(chat_id)
        return True
