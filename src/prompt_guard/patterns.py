"""Layer 1 — fast regex patterns for structured PII.

These run BEFORE Presidio and are near-zero cost.  They catch the
deterministic stuff: emails, phones, IPs, credit cards, SSNs, secrets
and street addresses.
"""

from __future__ import annotations
import logging
import re

from .types import PIISpan, PIIType
from .vault import TOKEN_PATTERN

logger = logging.getLogger(__name__)

# Each pattern: (pii_type, compiled_regex).  Order matters only as a
# tie-breaker when two patterns match the exact same span.
_PATTERNS: list[tuple[PIIType, re.Pattern]] = [
    # Secrets: URLs carrying credentials, key=value assignments, bearer tokens
    (PIIType.SECRET, re.compile(
        r"https?://[^\s\[\]]+[?&](?:api_key|token|secret|password|key)=[^\s&\[\]]+"
    )),
    (PIIType.SECRET, re.compile(
        r"(?:api[_\-]?key|secret|token|password|bearer)\s*[:=]?\s*['\"]?[a-zA-Z0-9\-_\.]{20,}['\"]?",
        re.IGNORECASE,
    )),
    (PIIType.SECRET, re.compile(
        r"\b(?:sk|pk|rk)[_\-](?:live|test|proj)?[_\-]?[a-zA-Z0-9]{20,}\b"
        r"|\bAKIA[0-9A-Z]{16}\b"
        r"|\bgh[pousr]_[A-Za-z0-9]{36,}\b"
    )),

    # Email
    (PIIType.EMAIL, re.compile(
        r"\b[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}\b"
    )),

    # Credit card: Visa, MC, Amex, Discover (with optional separators)
    (PIIType.CREDIT_CARD, re.compile(
        r"\b(?:4\d{3}|5[1-5]\d{2}|3[47]\d{2}|6(?:011|5\d{2}))"
        r"[\s\-.]?\d{4}[\s\-.]?\d{4}[\s\-.]?\d{1,4}\b"
    )),

    # SSN (US)
    (PIIType.SSN, re.compile(
        r"\b(?!000|666|9\d\d)\d{3}[\s\-](?!00)\d{2}[\s\-](?!0000)\d{4}\b"
    )),

    # IPv4
    (PIIType.IP_ADDRESS, re.compile(
        r"\b(?:(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\.){3}"
        r"(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\b"
    )),

    # Phone: international and domestic formats
    (PIIType.PHONE, re.compile(
        r"(?<![\d_\[])"
        r"(?:\+?\d{1,3}[\s\-.]?)?"
        r"(?:\(?\d{2,4}\)?[\s\-.]?)"
        r"\d{3,4}[\s\-.]?\d{3,4}"
        r"(?![\d\]])"
    )),

    # Street address: "221B Baker Street", "1600 Pennsylvania Ave NW"
    (PIIType.ADDRESS, re.compile(
        r"\b\d{1,5}[A-Za-z]?\s+(?:[A-Z][a-z]+\s+){1,3}"
        r"(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln|Drive|Dr|"
        r"Court|Ct|Way|Place|Pl|Terrace|Parkway|Pkwy)\b\.?"
        r"(?:\s+(?:NW|NE|SW|SE|N|S|E|W)\b)?"
    )),
]


def luhn_valid(number: str) -> bool:
    """Luhn checksum over the digits of number."""
    digits = [int(c) for c in number if c.isdigit()]
    if len(digits) < 12:
        return False
    total = 0
    for i, d in enumerate(reversed(digits)):
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0


_VALIDATORS = {
    PIIType.CREDIT_CARD: luhn_valid,
}


def scan_regex(text: str) -> list[PIISpan]:
    """Run all regex patterns against text.  Returns non-overlapping spans."""
    if not text:
        return []
    # Never match inside our own placeholders
    protected = [(m.start(), m.end()) for m in TOKEN_PATTERN.finditer(text)]

    spans: list[PIISpan] = []
    for pii_type, pattern in _PATTERNS:
        validate = _VALIDATORS.get(pii_type)
        try:
            for m in pattern.finditer(text):
                if any(m.start() < e and m.end() > s for s, e in protected):
                    continue
                if validate is not None and not validate(m.group()):
                    continue
                spans.append(PIISpan(type=pii_type, value=m.group(), index=m.start()))
        except (re.error, RecursionError) as e:
            logger.warning("%s pattern failed, skipping: %s", pii_type.value, e)
    return resolve_overlaps(spans)


def resolve_overlaps(spans: list[PIISpan]) -> list[PIISpan]:
    """Keep the earliest-starting, then longest, span of every overlapping group."""
    if not spans:
        return spans
    ranked = sorted(spans, key=lambda s: (s.index, -len(s.value)))
    taken: list[PIISpan] = []
    last_end = -1
    for span in ranked:
        if span.index >= last_end:
            taken.append(span)
            last_end = span.end
    return taken
