"""Tests for storage, conversation ids, sessions, debouncing and config."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import asyncio

import pytest

from prompt_guard import (
    PENDING, ConversationId, MemoryStore, ProtectionSession, RedactionMap, SqliteStore,
    PIIType, RestoreDebouncer, create_session, load_config, parse_conversation_id,
)
from prompt_guard.config import ConfigError, load_from_yaml
from prompt_guard.conversation import ConversationTracker, is_supported_platform_url
from prompt_guard.redactor import RedactorConfig
from prompt_guard.types import Chip, ExtensionStatus

CHAT = ConversationId.known("6650f7c2-aa10-4b1d")
OTHER = ConversationId.known("deadbeef")


def _one_entry_map(value: str = "a@b.com") -> RedactionMap:
    _, m = RedactionMap().assign(PIIType.EMAIL, value)
    return m


# ── Conversation ids ─────────────────────────────────────────────────

def test_parse_conversation_id():
    assert parse_conversation_id("https://chatgpt.com/c/6650f7c2-aa10-4b1d") == CHAT
    assert parse_conversation_id("https://chatgpt.com/c/6650F7C2?model=x").value == "6650F7C2"
    assert parse_conversation_id("https://chatgpt.com/") is PENDING
    assert parse_conversation_id("") is PENDING


def test_conversation_id_states():
    assert PENDING.is_pending
    assert PENDING.key == "pending"
    assert not CHAT.is_pending
    assert ConversationId.parse("pending") == PENDING
    assert ConversationId.parse(None) == PENDING
    with pytest.raises(ValueError):
        ConversationId.known("pending")


def test_supported_platforms():
    assert is_supported_platform_url("https://chatgpt.com/c/abc")
    assert is_supported_platform_url("https://chat.openai.com/")
    assert not is_supported_platform_url("https://evil-chatgpt.com/")
    assert not is_supported_platform_url("not a url")


def test_tracker_single_transition():
    tracker = ConversationTracker()
    assert tracker.observe(PENDING) is None
    assert tracker.observe(CHAT) == CHAT
    assert tracker.observe(CHAT) is None
    assert tracker.observe(OTHER) is None
    assert tracker.current == OTHER


# ── Storage ──────────────────────────────────────────────────────────

@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        s = MemoryStore()
    else:
        s = SqliteStore(tmp_path / "nested" / "storage.db")
    yield s
    s.close()


def test_store_empty_on_first_access(store):
    assert store.load_redaction_map(CHAT) == RedactionMap()
    assert store.load_exclusions(CHAT) == []
    assert store.get_status() is ExtensionStatus.ENABLED


def test_store_round_trip(store):
    m = _one_entry_map()
    store.save_redaction_map(CHAT, m)
    store.save_exclusions(CHAT, ["  Alice "])
    assert store.load_redaction_map(CHAT) == m
    assert store.load_exclusions(CHAT) == ["alice"]
    assert store.load_redaction_map(OTHER) == RedactionMap()


def test_store_corrupt_data_is_empty(store):
    store._set("chat_pending", "{not json")
    store._set("excludedPII_pending", '{"a": 1}')
    store._set("status", '"sideways"')
    assert store.load_redaction_map(PENDING) == RedactionMap()
    assert store.load_exclusions(PENDING) == []
    assert store.get_status() is ExtensionStatus.ENABLED


def test_store_status(store):
    store.set_status(ExtensionStatus.DISABLED)
    assert store.get_status() is ExtensionStatus.DISABLED


def test_migrate_pending(store):
    store.save_redaction_map(PENDING, _one_entry_map())
    store.save_exclusions(PENDING, ["bob"])
    assert store.migrate_conversation(PENDING, CHAT)
    assert store.load_redaction_map(CHAT) == _one_entry_map()
    assert store.load_exclusions(CHAT) == ["bob"]
    assert store.load_redaction_map(PENDING) == RedactionMap()
    assert store.load_exclusions(PENDING) == []


def test_migrate_never_overwrites(store):
    existing = _one_entry_map("keep@me.com")
    store.save_redaction_map(CHAT, existing)
    store.save_redaction_map(PENDING, _one_entry_map("new@one.com"))
    assert not store.migrate_conversation(PENDING, CHAT)
    assert store.load_redaction_map(CHAT) == existing
    # source left in place when nothing moved
    assert store.load_redaction_map(PENDING) == _one_entry_map("new@one.com")


def test_migrate_empty_source_is_noop(store):
    assert not store.migrate_conversation(PENDING, CHAT)
    assert store.list_conversations() == []


def test_list_and_delete_conversations(store):
    store.save_redaction_map(CHAT, _one_entry_map())
    store.save_exclusions(PENDING, ["x"])
    assert store.list_conversations() == [PENDING, CHAT]
    store.delete_conversation(CHAT)
    assert store.list_conversations() == [PENDING]


def test_sqlite_store_persists(tmp_path):
    path = tmp_path / "storage.db"
    s = SqliteStore(path)
    s.save_redaction_map(CHAT, _one_entry_map())
    s.close()
    s = SqliteStore(path)
    assert s.load_redaction_map(CHAT) == _one_entry_map()
    s.close()


# ── Session ──────────────────────────────────────────────────────────

def _session(**kw) -> ProtectionSession:
    return ProtectionSession.create(config=RedactorConfig(use_presidio=False), **kw)


def test_submit_prompt_persists_map():
    session = _session()
    result = session.submit_prompt("Mail me at bob@x.com")
    assert result.text == "Mail me at [EMAIL_1]"
    assert result.protected_count == 1
    assert result.notification == "Protected 1 personal data item(s)."
    assert session.store.load_redaction_map(PENDING).lookup_token("[EMAIL_1]") == "bob@x.com"


def test_submit_prompt_merges_across_passes():
    session = _session()
    session.submit_prompt("bob@x.com")
    second = session.submit_prompt("ann@x.com and bob@x.com")
    assert second.text == "[EMAIL_2] and [EMAIL_1]"
    assert len(session.store.load_redaction_map(PENDING)) == 2


def test_submit_prompt_skipped_when_disabled_or_blank():
    session = _session()
    assert session.submit_prompt("   ").text == "   "
    session.set_status("disabled")
    result = session.submit_prompt("bob@x.com")
    assert result.text == "bob@x.com"
    assert result.notification is None
    assert len(session.store.load_redaction_map(PENDING)) == 0


def test_session_restore_and_toggle():
    session = _session(conversation=CHAT)
    session.submit_prompt("I'm alice@x.com")
    (nodes,) = session.restore(["Hi [EMAIL_1]!"])
    chip = nodes[1]
    assert isinstance(chip, Chip) and not chip.is_excluded

    toggled = session.toggle_exclusion(chip)
    assert toggled.is_excluded
    assert session.exclusions == ["alice@x.com"]
    assert session.restore(["[EMAIL_1]"])[0][0].is_excluded
    assert 'data-status="excluded"' in session.restore_html("<p>[EMAIL_1]</p>")

    # excluded values are no longer redacted
    assert session.submit_prompt("alice@x.com again").text == "alice@x.com again"
    assert session.restore_text("[EMAIL_1]") == "alice@x.com"


def test_session_navigate_migrates_once():
    session = _session()
    session.submit_prompt("bob@x.com")
    assert session.navigate("https://chatgpt.com/c/6650f7c2-aa10-4b1d")
    assert session.conversation == CHAT
    assert session.store.load_redaction_map(CHAT).lookup_token("[EMAIL_1]") == "bob@x.com"
    assert session.store.load_redaction_map(PENDING) == RedactionMap()
    assert not session.navigate("https://chatgpt.com/c/6650f7c2-aa10-4b1d")


def test_session_navigate_keeps_established_map():
    store = MemoryStore()
    store.save_redaction_map(CHAT, _one_entry_map("keep@me.com"))
    session = _session(store=store)
    session.submit_prompt("new@one.com")
    assert not session.navigate("https://chatgpt.com/c/6650f7c2-aa10-4b1d")
    assert store.load_redaction_map(CHAT) == _one_entry_map("keep@me.com")


def test_session_unsupported_platform():
    session = _session()
    assert not session.navigate("https://example.com/c/6650f7c2")
    assert session.status is ExtensionStatus.UNSUPPORTED
    assert session.conversation is PENDING
    assert session.submit_prompt("bob@x.com").text == "bob@x.com"

    session.navigate("https://chat.openai.com/")
    assert session.status is ExtensionStatus.ENABLED
    assert session.submit_prompt("bob@x.com").text == "[EMAIL_1]"


def test_redact_messages_persists():
    session = _session(conversation=CHAT)
    out = session.redact_messages([{"role": "user", "content": "I'm bob@x.com"}])
    assert out[0]["content"] == "I'm [EMAIL_1]"
    assert session.stats["map_size"] == 1


# ── Debounce ─────────────────────────────────────────────────────────

def test_debouncer_coalesces_bursts():
    calls = []

    async def scenario():
        d = RestoreDebouncer(lambda: calls.append("run"), delay=0.02)
        for _ in range(5):
            d.trigger()
            await asyncio.sleep(0.001)
        assert d.pending
        await asyncio.sleep(0.06)
        assert not d.pending
        d.trigger()
        await asyncio.sleep(0.06)
        return d.runs

    assert asyncio.run(scenario()) == 2
    assert calls == ["run", "run"]


def test_debouncer_cancels_superseded_async_pass():
    finished = []

    async def scenario():
        async def slow_restore():
            await asyncio.sleep(0.05)
            finished.append(True)

        d = RestoreDebouncer(slow_restore, delay=0.01)
        d.trigger()
        await asyncio.sleep(0.02)     # first pass is now running
        d.trigger()                   # supersedes it
        await asyncio.sleep(0.1)

    asyncio.run(scenario())
    assert finished == [True]


def test_config_debounce_delay_reaches_session():
    session = create_session({"restore_debounce_ms": 50})
    assert session.debounce_delay == 0.05

    async def scenario():
        d = session.restore_debouncer(lambda: None)
        d.trigger()
        pending = d.pending
        d.cancel()
        return d.delay, pending

    assert asyncio.run(scenario()) == (0.05, True)


# ── Config ───────────────────────────────────────────────────────────

def test_load_config_defaults_and_nesting():
    cfg = load_config({"prompt_guard": {"skip_types": ["ip_address"], "storage": {"backend": "sqlite"}}})
    assert cfg["enabled"] is True
    assert cfg["use_presidio"] is False
    assert cfg["skip_types"] == {PIIType.IP_ADDRESS}
    assert cfg["storage_backend"] == "sqlite"
    assert cfg["restore_debounce_ms"] == 300


@pytest.mark.parametrize("bad", [
    {"storage": {"backend": "redis"}},
    {"skip_types": ["PASSPORT"]},
    {"score_threshold": 3},
    {"restore_debounce_ms": "soon"},
    {"log_level": "LOUD"},
    {"storage": "sqlite"},
    {"prompt_guard": "on"},
])
def test_load_config_rejects_invalid(bad):
    with pytest.raises(ConfigError):
        load_config(bad)


def test_load_from_yaml(tmp_path):
    path = tmp_path / "prompt_guard.yaml"
    path.write_text(
        "prompt_guard:\n"
        "  skip_types: [EMAIL]\n"
        "  storage:\n"
        f"    backend: sqlite\n"
        f"    path: {tmp_path / 'store.db'}\n"
    )
    cfg = load_from_yaml(path)
    session = create_session(cfg)
    assert isinstance(session.store, SqliteStore)
    assert session.submit_prompt("bob@x.com").text == "bob@x.com"
    session.store.close()


def test_disabled_config_is_passthrough():
    session = create_session({"enabled": False})
    assert session.submit_prompt("bob@x.com").text == "bob@x.com"
    assert session.restore_html("<p>[EMAIL_1]</p>") == "<p>[EMAIL_1]</p>"
    assert not session.navigate("https://chatgpt.com/c/abc")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
