"""
Tests for ghostmentions/cli.py and ghostmentions/config.py.

Run: python3 test_cli.py
From: repository root
"""

import io
import json
import sys
import tempfile
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

sys.path.insert(0, '.')

from pydantic import ValidationError

from ghostmentions.cli import main
from ghostmentions.config import MentionConfig, load_config
from ghostmentions.editor.session import MentionSession
from ghostmentions.models import PersistMode, PickerMode


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _write(directory, name, content):
    path = Path(directory) / name
    path.write_text(content, encoding="utf-8")
    return str(path)


def _run(argv):
    """Runs the CLI and returns (exit_code, stdout)."""
    out = io.StringIO()
    err = io.StringIO()
    code = 0
    with redirect_stdout(out), redirect_stderr(err):
        try:
            main(argv)
        except SystemExit as e:
            code = e.code
    return code, out.getvalue()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def test_parse_outputs_text_and_tokens():
    with tempfile.TemporaryDirectory() as tmp:
        src = _write(tmp, "msg.md", "Ask @[Alice](agent:1) now")
        code, out = _run(["parse", src])
        assert code == 0
        data = json.loads(out)
        assert data["text"] == "Ask @Alice now"
        assert data["tokens"] == [
            {"id": "1", "label": "Alice", "type": "agent", "trigger": "@", "start": 4, "end": 10}
        ]
    print("PASS: cli parse")


def test_parse_uses_configured_triggers():
    with tempfile.TemporaryDirectory() as tmp:
        src = _write(tmp, "msg.md", "ping ![ops](team:7) @[Bob](agent:b)")
        cfg = _write(tmp, "config.json", json.dumps({"triggers": "!"}))
        code, out = _run(["parse", src, "--config", cfg])
        assert code == 0
        data = json.loads(out)
        assert data["text"] == "ping !ops @[Bob](agent:b)"
        assert [t["label"] for t in data["tokens"]] == ["ops"]
    print("PASS: cli parse with config")


def test_serialize_round_trips_parse_output():
    with tempfile.TemporaryDirectory() as tmp:
        src = _write(tmp, "msg.md", "Ask @[Alice](agent:1) now")
        parsed_path = str(Path(tmp) / "parsed.json")
        code, _ = _run(["parse", src, "-o", parsed_path])
        assert code == 0

        parsed = json.loads(Path(parsed_path).read_text(encoding="utf-8"))
        text_path = _write(tmp, "msg.txt", parsed["text"])
        code, out = _run(["serialize", text_path, parsed_path])
        assert code == 0
        assert out == "Ask @[Alice](agent:1) now\n"
    print("PASS: cli serialize")


def test_serialize_strict_rejects_reserved_characters():
    with tempfile.TemporaryDirectory() as tmp:
        text_path = _write(tmp, "msg.txt", "@a]b")
        tokens = [{"id": "1", "label": "a]b", "type": "agent", "trigger": "@", "start": 0, "end": 4}]
        tokens_path = _write(tmp, "tokens.json", json.dumps(tokens))
        code, _ = _run(["serialize", text_path, tokens_path, "--strict"])
        assert code == 1
        code, out = _run(["serialize", text_path, tokens_path])
        assert code == 0
        assert out == "@[a]b](agent:1)\n"
    print("PASS: cli strict serialize")


def test_strip_removes_mentions():
    with tempfile.TemporaryDirectory() as tmp:
        src = _write(tmp, "msg.md", "Hi @[Bob](agent:b) there")
        code, out = _run(["strip", src])
        assert code == 0
        assert out == "Hi  there\n"
    print("PASS: cli strip")


def test_reconcile_drops_and_shifts():
    with tempfile.TemporaryDirectory() as tmp:
        old = _write(tmp, "old.txt", "Hi @Bob and @Eve")
        new = _write(tmp, "new.txt", "Hi @Bb and @Eve")
        tokens = [
            {"id": "b", "label": "Bob", "type": "agent", "trigger": "@", "start": 3, "end": 7},
            {"id": "e", "label": "Eve", "type": "agent", "trigger": "@", "start": 12, "end": 16},
        ]
        tokens_path = _write(tmp, "tokens.json", json.dumps(tokens))
        code, out = _run(["reconcile", old, new, tokens_path])
        assert code == 0
        data = json.loads(out)
        assert [(t["label"], t["start"], t["end"]) for t in data] == [("Eve", 11, 15)]
    print("PASS: cli reconcile")


def test_bad_inputs_exit_with_error():
    with tempfile.TemporaryDirectory() as tmp:
        code, _ = _run(["parse", str(Path(tmp) / "missing.md")])
        assert code == 1

        text_path = _write(tmp, "msg.txt", "@Bob")
        bad_json = _write(tmp, "tokens.json", "{not json")
        code, _ = _run(["serialize", text_path, bad_json])
        assert code == 1

        inverted = _write(tmp, "inverted.json", json.dumps([
            {"id": "b", "label": "Bob", "type": "agent", "trigger": "@", "start": 4, "end": 0}
        ]))
        code, _ = _run(["serialize", text_path, inverted])
        assert code == 1
    print("PASS: cli bad inputs")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

def test_config_defaults():
    config = MentionConfig()
    assert config.debounce_ms == 120
    assert config.debounce_seconds == 0.12
    assert config.persist_on_send == PersistMode.KEEP
    assert config.picker_mode == PickerMode.POPUP
    assert config.triggers == "@#/"
    assert config.send_on_enter is True
    print("PASS: config defaults")


def test_load_config_from_file_and_env():
    with tempfile.TemporaryDirectory() as tmp:
        path = _write(tmp, "config.json", json.dumps({"debounce_ms": 50, "persist_on_send": "clear", "triggers": "@!"}))
        config = load_config(path)
        assert config.debounce_ms == 50
        assert config.persist_on_send == PersistMode.CLEAR
        assert config.triggers == "@!"

        empty = _write(tmp, "empty.json", "")
        assert load_config(empty) == MentionConfig()

    config = MentionConfig.from_env({"GHOST_MENTIONS_DEBOUNCE_MS": "200", "GHOST_MENTIONS_PERSIST": "PREFIX"})
    assert config.debounce_ms == 200
    assert config.persist_on_send == PersistMode.PREFIX
    assert MentionConfig.from_env({}) == MentionConfig()
    print("PASS: load config")


def test_invalid_config_rejected():
    for bad in ({"triggers": "@["}, {"triggers": ""}, {"debounce_ms": -1}, {"persist_on_send": "later"}):
        try:
            MentionConfig.model_validate(bad)
            assert False, f"expected ValidationError for {bad}"
        except ValidationError:
            pass
    print("PASS: invalid config")


def test_session_persist_mode_precedence():
    config = MentionConfig(persist_on_send="clear")
    assert MentionSession({}, config=config).persist_on_send == PersistMode.CLEAR
    assert MentionSession({}, config=config, persist_on_send="prefix").persist_on_send == PersistMode.PREFIX
    print("PASS: persist precedence")


if __name__ == "__main__":
    tests = [
        test_parse_outputs_text_and_tokens,
        test_parse_uses_configured_triggers,
        test_serialize_round_trips_parse_output,
        test_serialize_strict_rejects_reserved_characters,
        test_strip_removes_mentions,
        test_reconcile_drops_and_shifts,
        test_bad_inputs_exit_with_error,
        test_config_defaults,
        test_load_config_from_file_and_env,
        test_invalid_config_rejected,
        test_session_persist_mode_precedence,
    ]

    passed = 0
    failed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"FAIL: {test.__name__}: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print(f"\n{'='*60}")
    print(f"Results: {passed} passed, {failed} failed out of {len(tests)} tests")
    if failed == 0:
        print("ALL TESTS PASSED")
    else:
        print("SOME TESTS FAILED")
