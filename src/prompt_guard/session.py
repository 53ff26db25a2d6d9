"""Protection session — ties the redactor, storage and conversation together.

This is the surface a chat integration talks to:

    session = ProtectionSession.create(config=RedactorConfig())

    # Before the prompt leaves the machine
    result = session.submit_prompt("Mail me at bob@x.com")
    send(result.text)                       # "Mail me at [EMAIL_1]"

    # After the page renders (text nodes of the message list)
    nodes = session.restore(["Reply to [EMAIL_1] sent"])

    # The page URL changed
    session.navigate("https://chatgpt.com/c/6650f7c2-aa10-4b1d")
"""

from __future__ import annotations
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from .conversation import (
    PENDING, ConversationId, ConversationTracker, is_supported_platform_url, parse_conversation_id,
)
from .debounce import DEFAULT_DELAY, RestoreDebouncer
from .redactor import Redactor, RedactorConfig
from .restorer import Fragment, restore, restore_html, restore_text, toggle_chip
from .storage import ConversationStore, MemoryStore
from .types import Chip, ExtensionStatus, Node, PIISpan

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SubmitResult:
    """What to put back into the prompt box."""
    text: str
    detected_pii: list[PIISpan] = field(default_factory=list)

    @property
    def protected_count(self) -> int:
        return len(self.detected_pii)

    @property
    def notification(self) -> str | None:
        if not self.detected_pii:
            return None
        return f"Protected {self.protected_count} personal data item(s)."


@dataclass
class ProtectionSession:
    """Per-tab state: which conversation we're in and where its data lives."""

    redactor: Redactor
    store: ConversationStore
    tracker: ConversationTracker = field(default_factory=ConversationTracker)
    debounce_delay: float = DEFAULT_DELAY
    # False while the page is not a chat platform we protect
    supported: bool = True

    @classmethod
    def create(
        cls,
        *,
        config: RedactorConfig | None = None,
        store: ConversationStore | None = None,
        conversation: ConversationId = PENDING,
        debounce_delay: float = DEFAULT_DELAY,
    ) -> ProtectionSession:
        """Factory: fresh session, in-memory storage unless one is given."""
        return cls(
            redactor=Redactor(config),
            store=store or MemoryStore(),
            tracker=ConversationTracker(conversation),
            debounce_delay=debounce_delay,
        )

    @property
    def conversation(self) -> ConversationId:
        return self.tracker.current

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def status(self) -> ExtensionStatus:
        if not self.supported:
            return ExtensionStatus.UNSUPPORTED
        return self.store.get_status()

    def set_status(self, status: ExtensionStatus | str) -> None:
        self.store.set_status(ExtensionStatus(status))

    # ------------------------------------------------------------------
    # Forward pass
    # ------------------------------------------------------------------

    def submit_prompt(self, text: str) -> SubmitResult:
        """Redact a prompt and persist the updated redaction map."""
        if self.status is not ExtensionStatus.ENABLED or not text or not text.strip():
            return SubmitResult(text=text)

        conversation = self.conversation
        result = self.redactor.redact(
            text,
            self.store.load_redaction_map(conversation),
            self.store.load_exclusions(conversation),
        )
        self.store.save_redaction_map(conversation, result.redaction_map)
        if result.detected_pii:
            logger.info("protected %d item(s) in %s", len(result.detected_pii), conversation)
        return SubmitResult(text=result.redacted_text, detected_pii=result.detected_pii)

    def redact_messages(self, messages: list[dict]) -> list[dict]:
        """Redact chat-format messages, persisting the map."""
        conversation = self.conversation
        out, redaction_map = self.redactor.redact_messages(
            messages,
            self.store.load_redaction_map(conversation),
            self.store.load_exclusions(conversation),
        )
        self.store.save_redaction_map(conversation, redaction_map)
        return out

    # ------------------------------------------------------------------
    # Inverse pass
    # ------------------------------------------------------------------

    def restore(self, fragments: Iterable[Fragment]) -> list[list[Node]]:
        conversation = self.conversation
        return restore(
            fragments,
            self.store.load_redaction_map(conversation),
            self.store.load_exclusions(conversation),
            matcher=self.redactor.matcher,
        )

    def restore_html(self, markup: str) -> str:
        conversation = self.conversation
        return restore_html(
            markup,
            self.store.load_redaction_map(conversation),
            self.store.load_exclusions(conversation),
            matcher=self.redactor.matcher,
        )

    def restore_text(self, text: str) -> str:
        return restore_text(text, self.store.load_redaction_map(self.conversation))

    def restore_debouncer(self, callback: Callable[[], Awaitable[None] | None]) -> RestoreDebouncer:
        """Debouncer for re-running restoration after bursts of page changes."""
        return RestoreDebouncer(callback, self.debounce_delay)

    def toggle_exclusion(self, chip: Chip) -> Chip:
        """Flip a chip's state and persist the exclusion list."""
        conversation = self.conversation
        updated, exclusions = toggle_chip(chip, self.store.load_exclusions(conversation))
        self.store.save_exclusions(conversation, exclusions)
        logger.debug("%s now %s", chip.placeholder, updated.status.value)
        return updated

    @property
    def exclusions(self) -> list[str]:
        return self.store.load_exclusions(self.conversation)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def navigate(self, url: str) -> bool:
        """Follow a page URL change.  Returns True if pending data was migrated.

        Pages outside the supported chat platforms report an unsupported
        status and are never redacted.
        """
        self.supported = is_supported_platform_url(url)
        if not self.supported:
            logger.debug("%s is not a supported platform", url)
            return False
        return self.enter(parse_conversation_id(url))

    def enter(self, conversation: ConversationId) -> bool:
        revealed = self.tracker.observe(conversation)
        if revealed is None:
            return False
        return self.store.migrate_conversation(PENDING, revealed)

    @property
    def stats(self) -> dict:
        redaction_map = self.store.load_redaction_map(self.conversation)
        return {
            "conversation_id": self.conversation.key,
            "map_size": len(redaction_map),
            "redactions": redaction_map.to_dict(),
            "excluded": self.exclusions,
        }
