"""Conversation identity.

The chat platform only reveals a conversation's id (in the page URL) after
its first message has been sent, so the first redaction pass of a new chat
is stored under a pending id and moved over once the real one is known.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from urllib.parse import urlsplit

PENDING_KEY = "pending"

SUPPORTED_PLATFORM_DOMAINS = ("chatgpt.com", "chat.openai.com")

_CHAT_PATH = re.compile(r"/c/([a-f0-9-]+)", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class ConversationId:
    """Either pending (value None) or a known conversation id."""
    value: str | None = None

    @classmethod
    def known(cls, value: str) -> ConversationId:
        if not value or value == PENDING_KEY:
            raise ValueError(f"not a real conversation id: {value!r}")
        return cls(value)

    @classmethod
    def parse(cls, raw: str | None) -> ConversationId:
        """Storage-key form back to an id; empty or 'pending' mean pending."""
        if not raw or raw == PENDING_KEY:
            return PENDING
        return cls(raw)

    @property
    def is_pending(self) -> bool:
        return self.value is None

    @property
    def key(self) -> str:
        """Suffix used for storage keys."""
        return PENDING_KEY if self.value is None else self.value

    def __str__(self) -> str:
        return self.key


PENDING = ConversationId()


def parse_conversation_id(url: str) -> ConversationId:
    """Extract the conversation id from a chat URL, or PENDING."""
    m = _CHAT_PATH.search(url or "")
    return ConversationId(m.group(1)) if m else PENDING


def is_supported_platform_url(url: str) -> bool:
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return False
    return hostname in SUPPORTED_PLATFORM_DOMAINS


class ConversationTracker:
    """Holds the current conversation id and allows one Pending → Known move."""

    __slots__ = ("_current",)

    def __init__(self, initial: ConversationId = PENDING) -> None:
        self._current = initial

    @property
    def current(self) -> ConversationId:
        return self._current

    def observe(self, conversation: ConversationId) -> ConversationId | None:
        """Record a navigation.  Returns the new id on a Pending → Known move.

        Navigating to a fresh chat (no id in the URL yet) starts a new
        pending conversation.
        """
        was_pending = self._current.is_pending
        self._current = conversation
        return conversation if was_pending and not conversation.is_pending else None
