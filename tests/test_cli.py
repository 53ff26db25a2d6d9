"""Tests for the CLI and the HTTP sidecar."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import http.client
import io
import json
import threading
import urllib.error
import urllib.request

import pytest

from prompt_guard import cli, server


def _run(monkeypatch, capsys, db, *argv, stdin=""):
    monkeypatch.setattr(sys, "stdin", io.StringIO(stdin))
    code = cli.main(["--db", str(db), "--no-presidio", *argv])
    out, err = capsys.readouterr()
    return code, out, err


# ── CLI ──────────────────────────────────────────────────────────────

def test_cli_redact_text_and_restore(monkeypatch, capsys, tmp_path):
    db = tmp_path / "storage.db"
    code, out, _ = _run(monkeypatch, capsys, db, "--conversation-id", "abc123",
                        "redact-text", stdin="Mail bob@x.com")
    assert code == 0
    data = json.loads(out)
    assert data["text"] == "Mail [EMAIL_1]"
    assert data["detected"] == [{"type": "EMAIL", "value": "bob@x.com", "index": 5}]

    code, out, _ = _run(monkeypatch, capsys, db, "--conversation-id", "abc123",
                        "restore", stdin="Reply to [EMAIL_1] sent")
    assert out == "Reply to bob@x.com sent"

    code, out, _ = _run(monkeypatch, capsys, db, "--conversation-id", "abc123", "dump")
    assert json.loads(out) == {"[EMAIL_1]": {"type": "EMAIL", "original": "bob@x.com"}}


def test_cli_redact_messages(monkeypatch, capsys, tmp_path):
    messages = [
        {"role": "system", "content": "Be nice."},
        {"role": "user", "content": "SSN 123-45-6789"},
    ]
    code, out, _ = _run(monkeypatch, capsys, tmp_path / "s.db", "redact", stdin=json.dumps(messages))
    assert code == 0
    assert json.loads(out) == [
        {"role": "system", "content": "Be nice."},
        {"role": "user", "content": "SSN [SSN_1]"},
    ]


def test_cli_invalid_json(monkeypatch, capsys, tmp_path):
    code, _, err = _run(monkeypatch, capsys, tmp_path / "s.db", "redact", stdin="{nope")
    assert code == 1
    assert "invalid JSON" in err


def test_cli_exclusions(monkeypatch, capsys, tmp_path):
    db = tmp_path / "s.db"
    _run(monkeypatch, capsys, db, "exclude", "  Bob@X.com")
    _, out, _ = _run(monkeypatch, capsys, db, "excluded")
    assert json.loads(out) == ["bob@x.com"]

    _, out, _ = _run(monkeypatch, capsys, db, "redact-text", stdin="bob@x.com")
    assert json.loads(out)["text"] == "bob@x.com"

    _run(monkeypatch, capsys, db, "include", "bob@x.com")
    _, out, _ = _run(monkeypatch, capsys, db, "excluded")
    assert json.loads(out) == []


def test_cli_migrate_and_conversations(monkeypatch, capsys, tmp_path):
    db = tmp_path / "s.db"
    _run(monkeypatch, capsys, db, "redact-text", stdin="bob@x.com")
    _, out, _ = _run(monkeypatch, capsys, db, "conversations")
    assert json.loads(out) == ["pending"]

    code, _, err = _run(monkeypatch, capsys, db, "migrate", "--to", "abc123")
    assert code == 0
    assert "Migrated" in err
    _, out, _ = _run(monkeypatch, capsys, db, "conversations")
    assert json.loads(out) == ["abc123"]

    _, out, _ = _run(monkeypatch, capsys, db, "--url", "https://chatgpt.com/c/abc123",
                     "restore-html", stdin="<p>[EMAIL_1]</p>")
    assert "pg-placeholder-chip" in out and "bob@x.com" in out

    _run(monkeypatch, capsys, db, "--conversation-id", "abc123", "clear")
    _, out, _ = _run(monkeypatch, capsys, db, "conversations")
    assert json.loads(out) == []


def test_cli_bad_skip_type(monkeypatch, capsys, tmp_path):
    code, _, err = _run(monkeypatch, capsys, tmp_path / "s.db", "--skip-types", "PASSPORT",
                        "redact-text", stdin="x")
    assert code == 2
    assert "PASSPORT" in err


def test_cli_presidio_default_from_environment(monkeypatch):
    monkeypatch.setenv("PROMPT_GUARD_NO_PRESIDIO", "1")
    assert cli.build_parser().parse_args(["dump"]).no_presidio is True
    monkeypatch.delenv("PROMPT_GUARD_NO_PRESIDIO")
    assert cli.build_parser().parse_args(["dump"]).no_presidio is False


def test_cli_config_log_level_and_settings(monkeypatch, capsys, tmp_path):
    config = tmp_path / "guard.yaml"
    config.write_text("prompt_guard:\n  log_level: debug\n  skip_types: [EMAIL]\n")
    levels = []
    monkeypatch.setattr(cli.logging, "basicConfig", lambda **kw: levels.append(kw["level"]))

    code, out, _ = _run(monkeypatch, capsys, tmp_path / "s.db", "--config", str(config),
                        "redact-text", stdin="Mail bob@x.com")
    assert code == 0
    assert levels == ["DEBUG"]
    assert json.loads(out)["text"] == "Mail bob@x.com"

    _run(monkeypatch, capsys, tmp_path / "s.db", "--config", str(config), "--log-level", "error", "dump")
    assert levels[-1] == "ERROR"


def test_cli_invalid_config_file(monkeypatch, capsys, tmp_path):
    config = tmp_path / "guard.yaml"
    config.write_text("storage: sqlite\n")
    code, _, err = _run(monkeypatch, capsys, tmp_path / "s.db", "--config", str(config), "dump")
    assert code == 2
    assert "storage must be a mapping" in err


# ── HTTP sidecar ─────────────────────────────────────────────────────

@pytest.fixture
def sidecar(tmp_path, monkeypatch):
    monkeypatch.setenv("PROMPT_GUARD_NO_PRESIDIO", "1")
    monkeypatch.setattr(server, "_redactor", None)
    httpd = server.make_server(port=0, db_path=str(tmp_path / "sidecar.db"))
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    base = f"http://127.0.0.1:{httpd.server_port}"

    def call(path, body=None):
        data = None if body is None else json.dumps(body).encode("utf-8")
        req = urllib.request.Request(base + path, data=data, method="GET" if body is None else "POST")
        try:
            with urllib.request.urlopen(req) as resp:
                return resp.status, json.loads(resp.read())
        except urllib.error.HTTPError as e:
            return e.code, json.loads(e.read())

    call.port = httpd.server_port
    yield call
    httpd.shutdown()
    httpd.server_close()
    monkeypatch.setattr(server, "_redactor", None)
    monkeypatch.setattr(server, "_store", None)


def test_sidecar_health(sidecar):
    assert sidecar("/health") == (200, {"status": "ok"})
    assert sidecar("/status") == (200, {"status": "enabled"})
    assert sidecar("/missing")[0] == 404


def test_sidecar_redact_restore_toggle(sidecar):
    status, data = sidecar("/redact-text", {"text": "I'm alice@x.com"})
    assert status == 200
    assert data["text"] == "I'm [EMAIL_1]"
    assert data["notification"] == "Protected 1 personal data item(s)."

    status, data = sidecar("/restore", {"fragments": ["Hi [EMAIL_1]", "[NOT_A_TOKEN]"]})
    assert status == 200
    first, second = data["fragments"]
    assert first[1]["kind"] == "chip"
    assert first[1]["original_value"] == "alice@x.com"
    assert second == [{"kind": "literal", "text": "[NOT_A_TOKEN]"}]

    status, data = sidecar("/toggle", {"placeholder": "[EMAIL_1]"})
    assert status == 200 and data["status"] == "excluded"
    assert sidecar("/excluded", {})[1] == {"excluded": ["alice@x.com"]}
    assert sidecar("/toggle", {"placeholder": "[EMAIL_9]"})[0] == 404


def test_sidecar_navigate_migrates(sidecar):
    sidecar("/redact-text", {"text": "bob@x.com"})
    status, data = sidecar("/navigate", {"url": "https://chatgpt.com/c/abc123"})
    assert (status, data) == (200, {"conversation_id": "abc123", "migrated": True, "status": "enabled"})
    _, data = sidecar("/redactions", {"conversation_id": "abc123"})
    assert data["redactions"] == {"[EMAIL_1]": {"type": "EMAIL", "original": "bob@x.com"}}
    assert sidecar("/conversations") == (200, {"conversations": ["abc123"]})


def test_sidecar_status_and_bad_requests(sidecar):
    assert sidecar("/status", {"status": "disabled"}) == (200, {"status": "disabled"})
    assert sidecar("/redact-text", {"text": "bob@x.com"})[1]["text"] == "bob@x.com"
    assert sidecar("/status", {"status": "sideways"})[0] == 400
    assert sidecar("/redact-text", {"text": 5})[0] == 400
    assert sidecar("/restore", {"fragments": "nope"})[0] == 400


def _raw_post(port, path, body, headers):
    conn = http.client.HTTPConnection("127.0.0.1", port)
    try:
        conn.putrequest("POST", path)
        for name, value in headers.items():
            conn.putheader(name, value)
        conn.endheaders(body or None)
        resp = conn.getresponse()
        return resp.status, json.loads(resp.read())
    finally:
        conn.close()


@pytest.mark.parametrize("body, headers", [
    (b"", {"Content-Length": "lots"}),
    (b"", {"Content-Length": "-4"}),
    (b"\xff\xfe\x00", {"Content-Length": "3"}),
])
def test_sidecar_unreadable_body_is_bad_request(sidecar, body, headers):
    status, data = _raw_post(sidecar.port, "/redact-text", body, headers)
    assert status == 400
    assert "unreadable request body" in data["error"]


def test_sidecar_navigate_unsupported_platform(sidecar):
    status, data = sidecar("/navigate", {"url": "https://example.com/c/abc123"})
    assert (status, data) == (200, {"conversation_id": "pending", "migrated": False, "status": "unsupported"})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
