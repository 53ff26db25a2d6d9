"""HTTP sidecar server for prompt-guard.

Runs as a lightweight HTTP server on localhost.  A browser integration
talks to it instead of keeping redaction state in the page.

Endpoints:
    GET  /health          — Health check
    GET  /conversations   — List conversations with stored data
    GET  /status          — Protection status
    POST /status          — Set protection status        {"status": "disabled"}
    POST /redact          — Redact chat messages         {"messages": [...]}
    POST /redact-text     — Redact a prompt              {"text": "..."}
    POST /restore         — Restore text fragments       {"fragments": ["...", ...]}
    POST /restore-html    — Restore markup               {"html": "..."}
    POST /redactions      — Get (or set, with "redactions") the redaction map
    POST /excluded        — Get (or set, with "excluded") the exclusion list
    POST /toggle          — Flip a chip's exclusion      {"placeholder": "[NAME_1]"}
    POST /navigate        — Report a page URL change     {"url": "..."}
    POST /clear           — Clear a conversation's data

All endpoints expect/return JSON.
Body format: {"conversation_id": "...", ...}; a missing id means pending.
"""

from __future__ import annotations
import json
import logging
import os
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any

from .conversation import ConversationId, ConversationTracker
from .redactor import Redactor, RedactorConfig
from .session import ProtectionSession
from .storage import ConversationStore, SqliteStore
from .types import Chip, ExtensionStatus, Node
from .vault import RedactionMap

logger = logging.getLogger(__name__)

DEFAULT_PORT = int(os.environ.get("PROMPT_GUARD_PORT", "18792"))
DEFAULT_DB = os.environ.get(
    "PROMPT_GUARD_DB",
    str(Path.home() / ".prompt-guard" / "storage.db"),
)

# Shared state
_redactor: Redactor | None = None
_store: ConversationStore | None = None
_db_path: str = DEFAULT_DB


class BadRequest(Exception):
    pass


def _get_redactor() -> Redactor:
    global _redactor
    if _redactor is None:
        use_presidio = os.environ.get("PROMPT_GUARD_NO_PRESIDIO", "") == ""
        _redactor = Redactor(RedactorConfig(
            use_presidio=use_presidio,
            score_threshold=float(os.environ.get("PROMPT_GUARD_THRESHOLD", "0.35")),
        ))
    return _redactor


def _get_store() -> ConversationStore:
    global _store
    if _store is None:
        _store = SqliteStore(_db_path)
    return _store


def _session(conversation: ConversationId) -> ProtectionSession:
    return ProtectionSession(
        redactor=_get_redactor(),
        store=_get_store(),
        tracker=ConversationTracker(conversation),
    )


def _node_json(node: Node) -> dict[str, Any]:
    if isinstance(node, Chip):
        return {
            "kind": "chip",
            "placeholder": node.placeholder,
            "original_value": node.original_value,
            "pii_type": node.pii_type.value,
            "is_excluded": node.is_excluded,
            "status": node.status.value,
        }
    return {"kind": "literal", "text": node.text}


def _require_str(body: dict[str, Any], key: str) -> str:
    value = body.get(key, "")
    if not isinstance(value, str):
        raise BadRequest(f"'{key}' must be a string")
    return value


class PromptGuardHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the prompt-guard sidecar."""

    def _read_json(self) -> dict[str, Any]:
        try:
            length = int(self.headers.get("Content-Length", 0))
            if length < 0:
                raise ValueError(f"negative Content-Length {length}")
            body = self.rfile.read(length).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise BadRequest(f"unreadable request body: {e}") from e
        try:
            data = json.loads(body) if body else {}
        except ValueError as e:
            raise BadRequest(f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise BadRequest("body must be a JSON object")
        return data

    def _respond(self, status: int, data: Any) -> None:
        body = json.dumps(data, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self) -> None:
        if self.path == "/health":
            self._respond(200, {"status": "ok"})
        elif self.path == "/conversations":
            store = _get_store()
            self._respond(200, {"conversations": [c.key for c in store.list_conversations()]})
        elif self.path == "/status":
            self._respond(200, {"status": _get_store().get_status().value})
        else:
            self._respond(404, {"error": "not found"})

    def do_POST(self) -> None:
        try:
            body = self._read_json()
            conversation = ConversationId.parse(body.get("conversation_id"))
            session = _session(conversation)
            self._dispatch(session, body)
        except BadRequest as e:
            self._respond(400, {"error": str(e)})
        except Exception as e:
            logger.exception("request to %s failed", self.path)
            self._respond(500, {"error": str(e)})

    def _dispatch(self, session: ProtectionSession, body: dict[str, Any]) -> None:
        store = session.store
        conversation = session.conversation

        if self.path == "/status":
            try:
                session.set_status(ExtensionStatus(body.get("status")))
            except ValueError:
                raise BadRequest(f"unknown status {body.get('status')!r}") from None
            self._respond(200, {"status": session.status.value})

        elif self.path == "/redact":
            messages = body.get("messages", [])
            if not isinstance(messages, list):
                raise BadRequest("'messages' must be a list")
            self._respond(200, {"messages": session.redact_messages(messages)})

        elif self.path == "/redact-text":
            result = session.submit_prompt(_require_str(body, "text"))
            self._respond(200, {
                "text": result.text,
                "detected": [
                    {"type": s.type.value, "value": s.value, "index": s.index}
                    for s in result.detected_pii
                ],
                "notification": result.notification,
            })

        elif self.path == "/restore":
            fragments = body.get("fragments", [])
            if not isinstance(fragments, list) or not all(isinstance(f, str) for f in fragments):
                raise BadRequest("'fragments' must be a list of strings")
            restored = session.restore(fragments)
            self._respond(200, {"fragments": [[_node_json(n) for n in nodes] for nodes in restored]})

        elif self.path == "/restore-html":
            self._respond(200, {"html": session.restore_html(_require_str(body, "html"))})

        elif self.path == "/redactions":
            if "redactions" in body:
                store.save_redaction_map(conversation, RedactionMap.from_dict(body["redactions"]))
            self._respond(200, {"redactions": store.load_redaction_map(conversation).to_dict()})

        elif self.path == "/excluded":
            if "excluded" in body:
                excluded = body["excluded"]
                if not isinstance(excluded, list):
                    raise BadRequest("'excluded' must be a list")
                store.save_exclusions(conversation, [v for v in excluded if isinstance(v, str)])
            self._respond(200, {"excluded": store.load_exclusions(conversation)})

        elif self.path == "/toggle":
            placeholder = _require_str(body, "placeholder")
            restored = session.restore([placeholder])[0]
            if len(restored) != 1 or not isinstance(restored[0], Chip):
                self._respond(404, {"error": f"unknown placeholder {placeholder!r}"})
                return
            chip = session.toggle_exclusion(restored[0])
            self._respond(200, _node_json(chip))

        elif self.path == "/navigate":
            url = _require_str(body, "url")
            migrated = session.navigate(url)
            self._respond(200, {
                "conversation_id": session.conversation.key,
                "migrated": migrated,
                "status": session.status.value,
            })

        elif self.path == "/clear":
            store.delete_conversation(conversation)
            self._respond(200, {"status": "cleared", "conversation_id": conversation.key})

        else:
            self._respond(404, {"error": "not found"})


def make_server(port: int = DEFAULT_PORT, db_path: str = DEFAULT_DB) -> HTTPServer:
    global _db_path, _store
    _db_path = db_path
    _store = None
    return HTTPServer(("127.0.0.1", port), PromptGuardHandler)


def serve(port: int = DEFAULT_PORT, db_path: str = DEFAULT_DB) -> None:
    """Start the prompt-guard HTTP sidecar."""
    server = make_server(port, db_path)
    logger.info("prompt-guard sidecar listening on http://127.0.0.1:%d", server.server_port)
    logger.info("storage db: %s", db_path)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("shutting down")
    finally:
        server.server_close()


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="prompt-guard HTTP sidecar")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--db", default=DEFAULT_DB)
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    serve(port=args.port, db_path=args.db)
