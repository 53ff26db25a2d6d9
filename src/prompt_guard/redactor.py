"""Redactor — the forward pass.  Detect, filter exclusions, tokenise.

Usage:
    from prompt_guard import Redactor, RedactionMap

    redactor = Redactor()                 # reusable after init
    result = redactor.redact("Email me at john@acme.com", RedactionMap(), [])
    print(result.redacted_text)           # "Email me at [EMAIL_1]"

    print(result.redaction_map.rehydrate("Sure, I'll write to [EMAIL_1]."))
    # "Sure, I'll write to john@acme.com."
"""

from __future__ import annotations
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from .detector import Detector, LayeredDetector
from .exclusions import DEFAULT_MATCHER, ExclusionMatcher
from .types import PIISpan, PIIType, RedactionResult
from .vault import RedactionMap

logger = logging.getLogger(__name__)


@dataclass
class RedactorConfig:
    """Configuration for the Redactor."""
    use_presidio: bool = False        # enable Layer 2 (NER)
    language: str = "en"
    score_threshold: float = 0.35     # minimum confidence for Presidio
    presidio_entities: list[str] | None = None  # None = defaults
    custom_scanners: list[Callable[[str], list[PIISpan]]] = field(default_factory=list)
    # PII types to never redact (e.g. don't touch IP addresses)
    skip_types: set[PIIType] = field(default_factory=set)


class Redactor:
    """Turns raw text into redacted text plus an updated redaction map."""

    def __init__(
        self,
        config: RedactorConfig | None = None,
        *,
        detector: Detector | None = None,
        matcher: ExclusionMatcher | None = None,
    ) -> None:
        self.config = config or RedactorConfig()
        self.detector = detector or LayeredDetector(
            use_presidio=self.config.use_presidio,
            language=self.config.language,
            score_threshold=self.config.score_threshold,
            presidio_entities=self.config.presidio_entities,
            custom_scanners=self.config.custom_scanners,
            skip_types=self.config.skip_types,
        )
        self.matcher = matcher or DEFAULT_MATCHER

    def redact(
        self,
        text: str,
        redaction_map: RedactionMap | None = None,
        excluded: Iterable[str] = (),
    ) -> RedactionResult:
        """Redact PII from text against an existing map and exclusion list.

        The input map is never modified; the result carries the new one.
        """
        current = redaction_map if redaction_map is not None else RedactionMap()
        excluded = list(excluded)
        if not text:
            return RedactionResult(redacted_text=text, redaction_map=current)

        detected: list[PIISpan] = []
        parts: list[str] = []
        cursor = 0
        skipped = 0

        # Spans arrive ascending and non-overlapping: rebuild left to right
        for span in self.detector.detect(text):
            if span.index < cursor:
                continue
            if self.matcher.is_excluded(span.value, excluded):
                skipped += 1
                continue
            token, current = current.assign(span.type, span.value)
            detected.append(span)
            parts.append(text[cursor:span.index])
            parts.append(token)
            cursor = span.end
        parts.append(text[cursor:])

        logger.debug("redacted %d span(s), %d excluded", len(detected), skipped)
        return RedactionResult(
            redacted_text="".join(parts),
            redaction_map=current,
            detected_pii=detected,
        )

    def redact_messages(
        self,
        messages: list[dict],
        redaction_map: RedactionMap | None = None,
        excluded: Iterable[str] = (),
        *,
        content_key: str = "content",
        roles: tuple[str, ...] = ("user",),
    ) -> tuple[list[dict], RedactionMap]:
        """Redact PII from a list of chat-format messages.

        Only messages whose role is in ``roles`` are touched.  Returns new
        message dicts (originals are not mutated) and the final map.
        """
        current = redaction_map if redaction_map is not None else RedactionMap()
        excluded = list(excluded)
        out: list[dict] = []
        for msg in messages:
            content = msg.get(content_key)
            if msg.get("role") in roles and isinstance(content, str) and content:
                result = self.redact(content, current, excluded)
                current = result.redaction_map
                out.append({**msg, content_key: result.redacted_text})
            else:
                out.append(msg)
        return out, current
