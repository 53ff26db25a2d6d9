"""Conversation storage — where redaction maps and exclusion lists live.

Values are kept as JSON under string keys, one key per conversation and
kind of data:

    chat_<id>          redaction map   {"[EMAIL_1]": {"type": ..., "original": ...}}
    excludedPII_<id>   exclusion list  ["alice", ...]
    status             protection status ("enabled" | "disabled" | "unsupported")

Two backends share that layout: MemoryStore (per-process, for tests and
the pass-through mode) and SqliteStore (survives restarts).

Usage:
    store = SqliteStore("~/.prompt-guard/storage.db")
    redaction_map = store.load_redaction_map(conversation)
    store.save_redaction_map(conversation, result.redaction_map)
"""

from __future__ import annotations
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from .conversation import PENDING_KEY, ConversationId
from .exclusions import normalize
from .types import ExtensionStatus
from .vault import RedactionMap

logger = logging.getLogger(__name__)

_MAP_PREFIX = "chat_"
_EXCLUDED_PREFIX = "excludedPII_"
_STATUS_KEY = "status"


def _map_key(conversation: ConversationId) -> str:
    return f"{_MAP_PREFIX}{conversation.key}"


def _excluded_key(conversation: ConversationId) -> str:
    return f"{_EXCLUDED_PREFIX}{conversation.key}"


class ConversationStore(ABC):
    """Key/value storage plus the per-conversation operations built on it."""

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def _get(self, key: str) -> str | None: ...

    @abstractmethod
    def _set(self, key: str, value: str) -> None: ...

    @abstractmethod
    def _delete(self, keys: Iterable[str]) -> None: ...

    @abstractmethod
    def _keys(self) -> list[str]: ...

    def close(self) -> None:
        pass

    def _load_json(self, key: str) -> Any:
        raw = self._get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("corrupt value under %s, treating as empty", key)
            return None

    def _save_json(self, key: str, value: Any) -> None:
        self._set(key, json.dumps(value, ensure_ascii=False))

    # ------------------------------------------------------------------
    # Redaction maps and exclusion lists
    # ------------------------------------------------------------------

    def load_redaction_map(self, conversation: ConversationId) -> RedactionMap:
        return RedactionMap.from_dict(self._load_json(_map_key(conversation)))

    def save_redaction_map(self, conversation: ConversationId, redaction_map: RedactionMap) -> None:
        self._save_json(_map_key(conversation), redaction_map.to_dict())

    def load_exclusions(self, conversation: ConversationId) -> list[str]:
        data = self._load_json(_excluded_key(conversation))
        if data is None:
            return []
        if not isinstance(data, list):
            logger.warning("exclusion list for %s is not a list, treating as empty", conversation)
            return []
        return [normalize(v) for v in data if isinstance(v, str)]

    def save_exclusions(self, conversation: ConversationId, exclusions: Iterable[str]) -> None:
        self._save_json(_excluded_key(conversation), [normalize(v) for v in exclusions])

    def has_data(self, conversation: ConversationId) -> bool:
        return bool(self.load_redaction_map(conversation) or self.load_exclusions(conversation))

    def migrate_conversation(self, source: ConversationId, target: ConversationId) -> bool:
        """Move source's map and exclusions to target, then drop source.

        Nothing happens when source is empty or target already has data of
        its own.  Returns True when data was moved.
        """
        if source == target:
            return False
        redaction_map = self.load_redaction_map(source)
        exclusions = self.load_exclusions(source)
        if not redaction_map and not exclusions:
            return False
        if self.has_data(target):
            logger.info("not migrating %s into %s: target already has data", source, target)
            return False

        self.save_redaction_map(target, redaction_map)
        self.save_exclusions(target, exclusions)
        self.delete_conversation(source)
        logger.info(
            "migrated %d redaction(s), %d exclusion(s) from %s to %s",
            len(redaction_map), len(exclusions), source, target,
        )
        return True

    def delete_conversation(self, conversation: ConversationId) -> None:
        self._delete([_map_key(conversation), _excluded_key(conversation)])

    def list_conversations(self) -> list[ConversationId]:
        """Every conversation with stored data, pending included."""
        seen: dict[str, ConversationId] = {}
        for key in self._keys():
            for prefix in (_MAP_PREFIX, _EXCLUDED_PREFIX):
                if key.startswith(prefix):
                    suffix = key[len(prefix):]
                    seen.setdefault(suffix, ConversationId.parse(suffix))
        return sorted(seen.values(), key=lambda c: (c.key != PENDING_KEY, c.key))

    # ------------------------------------------------------------------
    # Protection status
    # ------------------------------------------------------------------

    def get_status(self) -> ExtensionStatus:
        raw = self._load_json(_STATUS_KEY)
        try:
            return ExtensionStatus(raw) if raw else ExtensionStatus.ENABLED
        except ValueError:
            logger.warning("unknown status %r, defaulting to enabled", raw)
            return ExtensionStatus.ENABLED

    def set_status(self, status: ExtensionStatus) -> None:
        self._save_json(_STATUS_KEY, ExtensionStatus(status).value)


class MemoryStore(ConversationStore):
    """In-process store.  Gone when the process exits."""

    __slots__ = ("_data",)

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def _get(self, key: str) -> str | None:
        return self._data.get(key)

    def _set(self, key: str, value: str) -> None:
        self._data[key] = value

    def _delete(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    def _keys(self) -> list[str]:
        return list(self._data)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS storage (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at REAL NOT NULL DEFAULT (julianday('now'))
);
"""


class SqliteStore(ConversationStore):
    """Persistent store backed by SQLite."""

    __slots__ = ("_db", "path")

    def __init__(self, db_path: str | Path = "storage.db") -> None:
        self.path = Path(db_path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(str(self.path), check_same_thread=False)
        self._db.executescript(_SCHEMA)

    def _get(self, key: str) -> str | None:
        row = self._db.execute("SELECT value FROM storage WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def _set(self, key: str, value: str) -> None:
        self._db.execute(
            "INSERT OR REPLACE INTO storage (key, value, updated_at) VALUES (?, ?, julianday('now'))",
            (key, value),
        )
        self._db.commit()

    def _delete(self, keys: Iterable[str]) -> None:
        self._db.executemany("DELETE FROM storage WHERE key = ?", [(k,) for k in keys])
        self._db.commit()

    def _keys(self) -> list[str]:
        return [r[0] for r in self._db.execute("SELECT key FROM storage").fetchall()]

    def close(self) -> None:
        self._db.close()
