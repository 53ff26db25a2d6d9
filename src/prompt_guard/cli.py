"""CLI interface for prompt-guard.

Usage:
    # Redact a prompt (stdin: text, stdout: JSON with redacted text + detections)
    echo 'I am john@x.com' | \
        python -m prompt_guard.cli --conversation-id 6650f7c2 redact-text

    # Redact chat messages (stdin: JSON array of messages, stdout: redacted JSON)
    echo '[{"role":"user","content":"I am john@x.com"}]' | \
        python -m prompt_guard.cli --conversation-id 6650f7c2 redact

    # Restore tokens in rendered text or markup
    echo 'Hello [EMAIL_1]' | python -m prompt_guard.cli --conversation-id 6650f7c2 restore
    echo '<p>Hello [EMAIL_1]</p>' | python -m prompt_guard.cli --conversation-id 6650f7c2 restore-html

    # Exclusions
    python -m prompt_guard.cli --conversation-id 6650f7c2 exclude "john@x.com"

    # Move the pending conversation's data once the real id is known
    python -m prompt_guard.cli migrate --to 6650f7c2

All state is persisted in SQLite so it survives across calls.
"""

from __future__ import annotations
import argparse
import json
import logging
import os
import sys
from pathlib import Path

from .config import ConfigError, parse_skip_types, load_from_yaml, redactor_config
from .conversation import PENDING, ConversationId, parse_conversation_id
from .exclusions import add_exclusion, remove_exclusion
from .redactor import Redactor, RedactorConfig
from .restorer import restore_html, restore_text
from .storage import SqliteStore

logger = logging.getLogger(__name__)

DEFAULT_DB = os.environ.get(
    "PROMPT_GUARD_DB",
    str(Path.home() / ".prompt-guard" / "storage.db"),
)


def _build_redactor(args: argparse.Namespace) -> Redactor:
    if args.settings is not None:
        return Redactor(redactor_config(args.settings))
    config = RedactorConfig(
        use_presidio=not args.no_presidio,
        language=args.language,
        score_threshold=args.threshold,
    )
    if args.skip_types:
        config.skip_types = parse_skip_types(args.skip_types)
    return Redactor(config)


def _conversation(args: argparse.Namespace) -> ConversationId:
    if args.url:
        return parse_conversation_id(args.url)
    return ConversationId.parse(args.conversation_id)


def cmd_redact(args: argparse.Namespace, store: SqliteStore) -> None:
    """Redact PII from chat-format messages on stdin."""
    conversation = _conversation(args)
    redactor = _build_redactor(args)

    messages = json.loads(sys.stdin.read())
    redacted, redaction_map = redactor.redact_messages(
        messages,
        store.load_redaction_map(conversation),
        store.load_exclusions(conversation),
    )
    store.save_redaction_map(conversation, redaction_map)

    json.dump(redacted, sys.stdout, ensure_ascii=False)
    sys.stdout.write("\n")


def cmd_redact_text(args: argparse.Namespace, store: SqliteStore) -> None:
    """Redact PII from plain text on stdin."""
    conversation = _conversation(args)
    redactor = _build_redactor(args)

    result = redactor.redact(
        sys.stdin.read(),
        store.load_redaction_map(conversation),
        store.load_exclusions(conversation),
    )
    store.save_redaction_map(conversation, result.redaction_map)

    # Output both redacted text and detection metadata
    output = {
        "text": result.redacted_text,
        "detected": [
            {"type": s.type.value, "value": s.value, "index": s.index}
            for s in result.detected_pii
        ],
        "map_size": len(result.redaction_map),
    }
    json.dump(output, sys.stdout, ensure_ascii=False)
    sys.stdout.write("\n")


def cmd_restore(args: argparse.Namespace, store: SqliteStore) -> None:
    """Restore tokens in text from stdin."""
    sys.stdout.write(restore_text(sys.stdin.read(), store.load_redaction_map(_conversation(args))))


def cmd_restore_html(args: argparse.Namespace, store: SqliteStore) -> None:
    """Restore tokens in markup from stdin as chip elements."""
    conversation = _conversation(args)
    sys.stdout.write(restore_html(
        sys.stdin.read(),
        store.load_redaction_map(conversation),
        store.load_exclusions(conversation),
    ))


def cmd_dump(args: argparse.Namespace, store: SqliteStore) -> None:
    """Dump the redaction map as JSON."""
    redaction_map = store.load_redaction_map(_conversation(args))
    json.dump(redaction_map.to_dict(), sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")


def cmd_excluded(args: argparse.Namespace, store: SqliteStore) -> None:
    """Print the exclusion list as JSON."""
    json.dump(store.load_exclusions(_conversation(args)), sys.stdout, ensure_ascii=False)
    sys.stdout.write("\n")


def cmd_exclude(args: argparse.Namespace, store: SqliteStore) -> None:
    conversation = _conversation(args)
    store.save_exclusions(conversation, add_exclusion(store.load_exclusions(conversation), args.value))
    sys.stderr.write(f'"{args.value}" excluded from protection.\n')


def cmd_include(args: argparse.Namespace, store: SqliteStore) -> None:
    conversation = _conversation(args)
    store.save_exclusions(conversation, remove_exclusion(store.load_exclusions(conversation), args.value))
    sys.stderr.write(f'"{args.value}" included in protection.\n')


def cmd_conversations(args: argparse.Namespace, store: SqliteStore) -> None:
    """List all conversations with stored data."""
    json.dump([c.key for c in store.list_conversations()], sys.stdout)
    sys.stdout.write("\n")


def cmd_migrate(args: argparse.Namespace, store: SqliteStore) -> None:
    source = ConversationId.parse(args.source)
    target = ConversationId.parse(args.target)
    if target.is_pending:
        raise SystemExit("migrate: --to must name a real conversation id")
    moved = store.migrate_conversation(source, target)
    sys.stderr.write(f"{'Migrated' if moved else 'Nothing migrated from'} {source} -> {target}\n")


def cmd_clear(args: argparse.Namespace, store: SqliteStore) -> None:
    """Clear a conversation's redactions and exclusions."""
    conversation = _conversation(args)
    store.delete_conversation(conversation)
    sys.stderr.write(f"Cleared conversation {conversation}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prompt-guard",
        description="Reversible PII redaction for chat prompts",
    )
    parser.add_argument("--db", default=DEFAULT_DB, help="SQLite storage path")
    parser.add_argument("--config", default="", help="YAML config file (overrides detector flags)")
    parser.add_argument("--conversation-id", default=PENDING.key, help="Conversation ID")
    parser.add_argument("--url", default="", help="Chat URL to derive the conversation ID from")
    parser.add_argument(
        "--no-presidio", action="store_true",
        default=bool(os.environ.get("PROMPT_GUARD_NO_PRESIDIO")),
        help="Regex-only mode (default from PROMPT_GUARD_NO_PRESIDIO)",
    )
    parser.add_argument("--language", default="en", help="Language code")
    parser.add_argument("--threshold", type=float, default=0.35, help="Score threshold")
    parser.add_argument("--skip-types", default="", help="Comma-separated PII types to skip")
    parser.add_argument("--log-level", default=None, help="Logging level (default WARNING or the config's log_level)")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("redact", help="Redact chat messages (JSON stdin)")
    sub.add_parser("redact-text", help="Redact plain text (stdin)")
    sub.add_parser("restore", help="Restore tokens in text (stdin)")
    sub.add_parser("restore-html", help="Restore tokens in markup (stdin)")
    sub.add_parser("dump", help="Dump the redaction map")
    sub.add_parser("excluded", help="Show the exclusion list")
    p = sub.add_parser("exclude", help="Stop protecting a value")
    p.add_argument("value")
    p = sub.add_parser("include", help="Protect a previously excluded value")
    p.add_argument("value")
    sub.add_parser("conversations", help="List conversations")
    p = sub.add_parser("migrate", help="Move pending data to a real conversation")
    p.add_argument("--from", dest="source", default=PENDING.key)
    p.add_argument("--to", dest="target", required=True)
    sub.add_parser("clear", help="Clear a conversation's data")
    return parser


COMMANDS = {
    "redact": cmd_redact,
    "redact-text": cmd_redact_text,
    "restore": cmd_restore,
    "restore-html": cmd_restore_html,
    "dump": cmd_dump,
    "excluded": cmd_excluded,
    "exclude": cmd_exclude,
    "include": cmd_include,
    "conversations": cmd_conversations,
    "migrate": cmd_migrate,
    "clear": cmd_clear,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        args.settings = load_from_yaml(args.config) if args.config else None
    except ConfigError as e:
        sys.stderr.write(f"prompt-guard: {e}\n")
        return 2
    log_level = args.log_level or (args.settings or {}).get("log_level", "WARNING")
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    store = SqliteStore(args.db)
    logger.debug("running %s against %s", args.command, args.db)
    try:
        COMMANDS[args.command](args, store)
    except ConfigError as e:
        sys.stderr.write(f"prompt-guard: {e}\n")
        return 2
    except json.JSONDecodeError as e:
        sys.stderr.write(f"prompt-guard: invalid JSON on stdin: {e}\n")
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
