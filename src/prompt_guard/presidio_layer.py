"""Layer 2 — Presidio NER-based detection for unstructured PII.

Catches names, organizations and locations that regex can't reliably
detect.  Uses spaCy under the hood.  Everything here is optional: when
presidio-analyzer or the spaCy model is missing, or analysis fails, the
layer contributes nothing and redaction carries on with regex results.
"""

from __future__ import annotations
import logging
from typing import TYPE_CHECKING

from .types import PIISpan, PIIType
from .vault import TOKEN_PATTERN

if TYPE_CHECKING:
    from presidio_analyzer import AnalyzerEngine

logger = logging.getLogger(__name__)

# Lazy singleton, spaCy is loaded on first use
_engine: AnalyzerEngine | None = None
_engine_lang: str = ""
_unavailable: bool = False


def _get_engine(language: str = "en") -> AnalyzerEngine | None:
    """Lazy-init the Presidio analyzer engine.  None when it can't be built."""
    global _engine, _engine_lang, _unavailable
    if _unavailable:
        return None
    if _engine is None or _engine_lang != language:
        try:
            from presidio_analyzer import AnalyzerEngine
            from presidio_analyzer.nlp_engine import NlpEngineProvider

            provider = NlpEngineProvider(nlp_configuration={
                "nlp_engine_name": "spacy",
                "models": [{"lang_code": language, "model_name": f"{language}_core_web_sm"}],
            })
            nlp_engine = provider.create_engine()
            _engine = AnalyzerEngine(nlp_engine=nlp_engine, supported_languages=[language])
            _engine_lang = language
        except (ImportError, OSError, ValueError) as e:
            logger.warning("presidio unavailable, NER layer disabled: %s", e)
            _unavailable = True
            return None
    return _engine


# Presidio entity name → our closed category
ENTITY_MAP: dict[str, PIIType] = {
    "PERSON": PIIType.NAME,
    "LOCATION": PIIType.LOCATION,
    "GPE": PIIType.LOCATION,
    "ORGANIZATION": PIIType.ORGANIZATION,
    "ORG": PIIType.ORGANIZATION,
    "NORP": PIIType.ORGANIZATION,
}

DEFAULT_ENTITIES = ["PERSON", "LOCATION", "ORGANIZATION"]


def scan_presidio(
    text: str,
    *,
    language: str = "en",
    entities: list[str] | None = None,
    score_threshold: float = 0.35,
    exclude_spans: list[tuple[int, int]] | None = None,
) -> list[PIISpan]:
    """Run Presidio analysis on text.

    Args:
        text: Input text to scan.
        language: ISO language code.
        entities: Presidio entity types to detect (None = DEFAULT_ENTITIES).
        score_threshold: Minimum confidence score.
        exclude_spans: Spans already matched by the regex layer — skip overlaps.
    """
    if not text or not text.strip():
        return []
    engine = _get_engine(language)
    if engine is None:
        return []
    try:
        results = engine.analyze(
            text=text,
            language=language,
            entities=entities or DEFAULT_ENTITIES,
            score_threshold=score_threshold,
        )
    except Exception as e:  # analyzer internals are not ours to trust
        logger.warning("presidio analysis failed, skipping NER layer: %s", e)
        return []

    exclude = list(exclude_spans or [])
    exclude.extend((m.start(), m.end()) for m in TOKEN_PATTERN.finditer(text))

    spans: list[PIISpan] = []
    for r in results:
        pii_type = ENTITY_MAP.get(r.entity_type)
        if pii_type is None:
            continue
        # Skip if overlapping with a regex match or placeholder (those win)
        if any(r.start < e and r.end > s for s, e in exclude):
            continue
        spans.append(PIISpan(type=pii_type, value=text[r.start:r.end], index=r.start))

    return sorted(spans, key=lambda s: s.index)


def reset_engine() -> None:
    """Drop the cached engine (and any cached failure)."""
    global _engine, _engine_lang, _unavailable
    _engine = None
    _engine_lang = ""
    _unavailable = False
