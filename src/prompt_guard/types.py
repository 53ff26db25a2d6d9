"""Core types."""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .vault import RedactionMap


class PIIType(str, Enum):
    """Closed set of PII categories.  Values appear verbatim in tokens."""
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    CREDIT_CARD = "CREDIT_CARD"
    SSN = "SSN"
    IP_ADDRESS = "IP_ADDRESS"
    ADDRESS = "ADDRESS"
    NAME = "NAME"
    LOCATION = "LOCATION"
    ORGANIZATION = "ORGANIZATION"
    SECRET = "SECRET"

    @classmethod
    def parse(cls, value: str) -> PIIType | None:
        try:
            return cls(value.strip().upper())
        except (ValueError, AttributeError):
            return None


class PIIStatus(str, Enum):
    PROTECTED = "protected"
    EXCLUDED = "excluded"


class ExtensionStatus(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True, slots=True)
class PIISpan:
    """A single detected PII occurrence."""
    type: PIIType
    value: str             # exact substring of the source text
    index: int             # offset of value in the source text

    @property
    def end(self) -> int:
        return self.index + len(self.value)


@dataclass(frozen=True, slots=True)
class Redaction:
    """What a placeholder token stands for."""
    type: PIIType
    original: str


@dataclass(slots=True)
class RedactionResult:
    """Result of one forward redaction pass."""
    redacted_text: str
    redaction_map: RedactionMap
    detected_pii: list[PIISpan] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Literal:
    """Restoration output: text passed through untouched."""
    text: str


@dataclass(frozen=True, slots=True)
class Chip:
    """Restoration output: a placeholder resolved to its original value."""
    placeholder: str
    original_value: str
    pii_type: PIIType
    is_excluded: bool = False

    @property
    def status(self) -> PIIStatus:
        return PIIStatus.EXCLUDED if self.is_excluded else PIIStatus.PROTECTED

    def with_excluded(self, excluded: bool) -> Chip:
        return replace(self, is_excluded=excluded)


Node = Literal | Chip
