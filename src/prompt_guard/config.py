"""YAML/dict config loader for prompt-guard.

Supports loading from a YAML file or a plain dict (for embedding in a
larger application config).

Example YAML:

    prompt_guard:
      enabled: true
      use_presidio: false
      language: en
      score_threshold: 0.35
      entities:
        - PERSON
        - ORGANIZATION
        - LOCATION
      skip_types:
        - IP_ADDRESS
      restore_debounce_ms: 300
      log_level: INFO
      storage:
        backend: sqlite          # "memory" or "sqlite"
        path: ~/.prompt-guard/storage.db
"""

from __future__ import annotations
import logging
from pathlib import Path
from typing import Any

from .conversation import PENDING, ConversationId
from .redactor import RedactorConfig
from .session import ProtectionSession, SubmitResult
from .storage import ConversationStore, MemoryStore, SqliteStore
from .types import Chip, Literal, PIIType

_BACKENDS = ("memory", "sqlite")


class ConfigError(ValueError):
    """Raised for a configuration that can't be acted on."""


class _PassthroughSession:
    """Stand-in session when protection is disabled."""
    conversation = PENDING

    def submit_prompt(self, text: str) -> SubmitResult:
        return SubmitResult(text=text)
    def redact_messages(self, messages: list[dict]) -> list[dict]:
        return messages
    def restore(self, fragments: list) -> list:
        return [
            [f] if isinstance(f, (Literal, Chip)) else ([Literal(f)] if f else [])
            for f in fragments
        ]
    def restore_html(self, markup: str) -> str:
        return markup
    def restore_text(self, text: str) -> str:
        return text
    def navigate(self, url: str) -> bool:
        return False
    @property
    def stats(self) -> dict:
        return {"conversation_id": PENDING.key, "map_size": 0, "redactions": {}, "excluded": []}


def parse_skip_types(raw: Any) -> set[PIIType]:
    if isinstance(raw, str):
        raw = [v for v in raw.split(",") if v.strip()]
    out: set[PIIType] = set()
    for value in raw or []:
        pii_type = PIIType.parse(str(value))
        if pii_type is None:
            raise ConfigError(f"unknown PII type in skip_types: {value!r}")
        out.add(pii_type)
    return out


def load_config(data: dict[str, Any]) -> dict[str, Any]:
    """Normalize a config dict (from YAML or inline)."""
    if data is None:
        data = {}
    # Support nested under "prompt_guard" key or flat
    if isinstance(data, dict) and "prompt_guard" in data:
        data = data["prompt_guard"] or {}
    if not isinstance(data, dict):
        raise ConfigError(f"config must be a mapping, got {type(data).__name__}")

    storage = data.get("storage") or {}
    if not isinstance(storage, dict):
        raise ConfigError(f"storage must be a mapping, got {type(storage).__name__}")
    backend = storage.get("backend", "memory")
    if backend not in _BACKENDS:
        raise ConfigError(f"unknown storage backend {backend!r}, expected one of {_BACKENDS}")

    try:
        threshold = float(data.get("score_threshold", 0.35))
        debounce_ms = int(data.get("restore_debounce_ms", 300))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid numeric setting: {e}") from e
    if not 0.0 <= threshold <= 1.0:
        raise ConfigError(f"score_threshold must be within [0, 1], got {threshold}")
    if debounce_ms < 0:
        raise ConfigError(f"restore_debounce_ms must not be negative, got {debounce_ms}")

    log_level = str(data.get("log_level", "WARNING")).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"unknown log_level {log_level!r}")

    return {
        "enabled": bool(data.get("enabled", True)),
        "use_presidio": bool(data.get("use_presidio", False)),
        "language": data.get("language", "en"),
        "score_threshold": threshold,
        "entities": data.get("entities"),
        "skip_types": parse_skip_types(data.get("skip_types", [])),
        "restore_debounce_ms": debounce_ms,
        "log_level": log_level,
        "storage_backend": backend,
        "storage_path": storage.get("path", "storage.db"),
    }


def load_from_yaml(path: str | Path) -> dict[str, Any]:
    """Load config from a YAML file."""
    import yaml  # optional dependency
    with open(path) as f:
        try:
            return load_config(yaml.safe_load(f))
        except yaml.YAMLError as e:
            raise ConfigError(f"cannot parse {path}: {e}") from e


def redactor_config(cfg: dict[str, Any]) -> RedactorConfig:
    return RedactorConfig(
        use_presidio=cfg["use_presidio"],
        language=cfg["language"],
        score_threshold=cfg["score_threshold"],
        presidio_entities=cfg.get("entities"),
        skip_types=cfg["skip_types"],
    )


def create_store(cfg: dict[str, Any]) -> ConversationStore:
    if cfg["storage_backend"] == "sqlite":
        return SqliteStore(cfg["storage_path"])
    return MemoryStore()


def create_session(
    config: dict[str, Any],
    conversation: ConversationId = PENDING,
) -> ProtectionSession | _PassthroughSession:
    """Create a fully configured session from a config dict."""
    cfg = load_config(config) if "storage_backend" not in config else config

    if not cfg["enabled"]:
        # Return a pass-through session (no redaction)
        return _PassthroughSession()

    return ProtectionSession.create(
        config=redactor_config(cfg),
        store=create_store(cfg),
        conversation=conversation,
        debounce_delay=cfg["restore_debounce_ms"] / 1000,
    )
