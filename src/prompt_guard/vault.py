"""Redaction map — per-conversation bidirectional mapping between tokens and PII.

Design goals:
  - Deterministic: the same (type, original) pair always maps to the same token
  - Value semantics: every insertion returns a new map, the old one is untouched
  - Self-describing numbering: the next suffix for a type is derived from the
    entries already in the map, never from a side counter
  - Rehydration-safe: tokens follow a fixed grammar that is parsed back out of
    rendered text, so the format below must stay stable
"""

from __future__ import annotations
import logging
import re
from collections.abc import Iterator, Mapping
from typing import Any

from .types import PIIType, Redaction

logger = logging.getLogger(__name__)


# Token format is [TYPE_N], e.g. [EMAIL_1], [CREDIT_CARD_12]
_TOKEN_FMT = "[{type}_{idx}]"
TOKEN_PATTERN = re.compile(r"\[([A-Z_]+)_([0-9]+)\]")


def format_token(pii_type: PIIType, idx: int) -> str:
    return _TOKEN_FMT.format(type=pii_type.value, idx=idx)


def parse_token(token: str) -> tuple[str, int] | None:
    """Split a well-formed token into (type name, suffix)."""
    m = TOKEN_PATTERN.fullmatch(token)
    if m is None:
        return None
    return m.group(1), int(m.group(2))


class RedactionMap(Mapping[str, Redaction]):
    """Immutable token → Redaction mapping for one conversation."""

    __slots__ = ("_entries", "_index")

    def __init__(self, entries: Mapping[str, Redaction] | None = None) -> None:
        self._entries: dict[str, Redaction] = dict(entries or {})
        # (type, original) → token, first-seen wins
        self._index: dict[tuple[PIIType, str], str] = {}
        for token, entry in self._entries.items():
            self._index.setdefault((entry.type, entry.original), token)

    # ------------------------------------------------------------------
    # Mapping protocol
    # ------------------------------------------------------------------

    def __getitem__(self, token: str) -> Redaction:
        return self._entries[token]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RedactionMap):
            return self._entries == other._entries
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"RedactionMap({len(self._entries)} entries)"

    # ------------------------------------------------------------------
    # Core API
    # ------------------------------------------------------------------

    def lookup_token(self, token: str) -> str | None:
        """Look up the original value for a token."""
        entry = self._entries.get(token)
        return entry.original if entry else None

    def lookup_pii(self, pii_type: PIIType, original: str) -> str | None:
        """Look up the token already assigned to a PII value."""
        return self._index.get((pii_type, original))

    def next_index(self, pii_type: PIIType) -> int:
        """Next unused suffix for pii_type, counting only entries in this map."""
        highest = 0
        for token, entry in self._entries.items():
            if entry.type is not pii_type:
                continue
            parsed = parse_token(token)
            if parsed is not None:
                highest = max(highest, parsed[1])
        idx = highest + 1
        while format_token(pii_type, idx) in self._entries:
            idx += 1
        return idx

    def assign(self, pii_type: PIIType, original: str) -> tuple[str, RedactionMap]:
        """Return the existing token or a new map containing a fresh one."""
        existing = self.lookup_pii(pii_type, original)
        if existing is not None:
            return existing, self

        token = format_token(pii_type, self.next_index(pii_type))
        entries = dict(self._entries)
        entries[token] = Redaction(type=pii_type, original=original)
        logger.debug("allocated %s", token)
        return token, RedactionMap(entries)

    def merge(self, other: Mapping[str, Redaction]) -> RedactionMap:
        """Combine with another map.  Tokens already present here win."""
        entries = dict(self._entries)
        for token, entry in other.items():
            entries.setdefault(token, entry)
        return RedactionMap(entries)

    def rehydrate(self, text: str) -> str:
        """Replace every known token in text with its original PII value."""
        def _sub(m: re.Match[str]) -> str:
            original = self.lookup_token(m.group())
            return m.group() if original is None else original
        return TOKEN_PATTERN.sub(_sub, text)

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {
            token: {"type": entry.type.value, "original": entry.original}
            for token, entry in self._entries.items()
        }

    @classmethod
    def from_dict(cls, data: Any) -> RedactionMap:
        """Build a map from its JSON shape.  Malformed entries are dropped."""
        if not isinstance(data, dict):
            if data is not None:
                logger.warning("ignoring redaction map of type %s", type(data).__name__)
            return cls()
        entries: dict[str, Redaction] = {}
        dropped = 0
        for token, raw in data.items():
            pii_type = PIIType.parse(raw.get("type", "")) if isinstance(raw, dict) else None
            original = raw.get("original") if isinstance(raw, dict) else None
            if (
                not isinstance(token, str)
                or parse_token(token) is None
                or pii_type is None
                or not isinstance(original, str)
            ):
                dropped += 1
                continue
            entries[token] = Redaction(type=pii_type, original=original)
        if dropped:
            logger.warning("dropped %d malformed redaction entries", dropped)
        return cls(entries)


def assign_or_reuse_token(
    redaction_map: RedactionMap,
    pii_type: PIIType,
    original: str,
) -> tuple[str, RedactionMap]:
    """Functional form of RedactionMap.assign."""
    return redaction_map.assign(pii_type, original)
