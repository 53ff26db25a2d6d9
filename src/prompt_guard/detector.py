"""Detector — turns raw text into typed, non-overlapping PII spans.

Layer 1: Fast regex patterns (emails, phones, SSNs, IPs, secrets, ...)
Layer 2: Presidio NER (names, orgs, locations), optional
Layer 3: Custom scanners (user-provided callables)
"""

from __future__ import annotations
import logging
from collections.abc import Callable, Iterable
from typing import Protocol

from .patterns import resolve_overlaps, scan_regex
from .types import PIISpan, PIIType

logger = logging.getLogger(__name__)

Scanner = Callable[[str], list[PIISpan]]


class Detector(Protocol):
    def detect(self, text: str) -> list[PIISpan]: ...


class RegexDetector:
    """Regex layer only.  No model download, fully deterministic."""

    def detect(self, text: str) -> list[PIISpan]:
        return scan_regex(text)


class LayeredDetector:
    """Runs every enabled layer and merges the results."""

    def __init__(
        self,
        *,
        use_presidio: bool = False,
        language: str = "en",
        score_threshold: float = 0.35,
        presidio_entities: list[str] | None = None,
        custom_scanners: Iterable[Scanner] = (),
        skip_types: Iterable[PIIType] = (),
    ) -> None:
        self.use_presidio = use_presidio
        self.language = language
        self.score_threshold = score_threshold
        self.presidio_entities = presidio_entities
        self.custom_scanners = list(custom_scanners)
        self.skip_types = set(skip_types)

    def detect(self, text: str) -> list[PIISpan]:
        if not isinstance(text, str) or not text:
            return []

        # --- Layer 1: Regex (fast, deterministic) ---
        spans = scan_regex(text)

        # --- Layer 2: Presidio NER (if enabled) ---
        if self.use_presidio:
            from .presidio_layer import scan_presidio
            spans.extend(scan_presidio(
                text,
                language=self.language,
                entities=self.presidio_entities,
                score_threshold=self.score_threshold,
                exclude_spans=[(s.index, s.end) for s in spans],
            ))

        # --- Layer 3: Custom scanners ---
        for scanner in self.custom_scanners:
            try:
                found = [s for s in scanner(text) if _is_well_formed(s, text)]
            except Exception as e:  # third-party callables must not break submission
                logger.warning("custom scanner %r failed: %s", scanner, e)
                continue
            spans.extend(found)

        spans = [s for s in spans if s.type not in self.skip_types]
        spans = resolve_overlaps(spans)
        logger.debug("detected %d span(s)", len(spans))
        return spans


def _is_well_formed(span: PIISpan, text: str) -> bool:
    """A span must point at its own value inside text."""
    return (
        isinstance(span, PIISpan)
        and isinstance(span.type, PIIType)
        and bool(span.value)
        and 0 <= span.index
        and text[span.index:span.end] == span.value
    )
