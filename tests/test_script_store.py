"""Tests for ScriptStore."""
import pytest

from mockserver.engine import script_parser
from mockserver.engine.script_parser import ScriptMessage
from mockserver.exceptions import ScriptNotFoundError, ScriptParseError
from mockserver.models import Direction
from mockserver.scripts.store import ScriptStore


def test_pathname_and_read(store, mocks_dir):
    assert store.pathname("trivial_pop3") == (mocks_dir / "trivial_pop3.mock").resolve()
    assert store.read("trivial_pop3").startswith("S:+OK POP3 server ready")


def test_load_parses_named_script(store):
    entries = store.load("trivial_pop3")
    assert entries[1] == ScriptMessage(Direction.CLIENT, b"QUIT\r\n")


def test_missing_script(store):
    assert not store.exists("no_such_script")
    with pytest.raises(ScriptNotFoundError) as exc_info:
        store.read("no_such_script")
    assert exc_info.value.name == "no_such_script"


@pytest.mark.parametrize("name", ["", "../secrets", "sub/dir", "..\\up", ".hidden"])
def test_names_cannot_escape_directory(store, name):
    with pytest.raises(ScriptNotFoundError):
        store.pathname(name)


def test_list_scripts(store):
    assert store.list_scripts() == ["mixed_formats", "trivial_pop3"]


def test_list_missing_directory(tmp_path):
    assert ScriptStore(tmp_path / "absent").list_scripts() == []


def test_save_and_delete(tmp_path):
    store = ScriptStore(tmp_path / "scripts", suffix=".txt")

    path = store.save("greeting", "S:HELLO\n")

    assert path == (tmp_path / "scripts" / "greeting.txt").resolve()
    assert store.list_scripts() == ["greeting"]
    assert store.read("greeting") == "S:HELLO\n"

    store.delete("greeting")
    assert not store.exists("greeting")
    with pytest.raises(ScriptNotFoundError):
        store.delete("greeting")


def test_save_rejects_bad_script(tmp_path):
    store = ScriptStore(tmp_path)

    with pytest.raises(ScriptParseError) as exc_info:
        store.save("broken", "S:ok\nC>xyz\nQ:no\n")

    assert [(e.kind.value, e.line) for e in exc_info.value.errors] == [
        ("bad_hexadecimal", 2),
        ("bad_leader", 3),
    ]
    assert not store.exists("broken")


def test_save_preserves_line_endings(tmp_path):
    store = ScriptStore(tmp_path)
    store.save("crlf", "S:one\r\nS:two\r\n")
    assert (tmp_path / "crlf.mock").read_bytes() == b"S:one\r\nS:two\r\n"


def test_undecodable_script(tmp_path):
    store = ScriptStore(tmp_path)
    (tmp_path / "latin1.mock").write_bytes(b"S:ok\nS:ol\xe9\nC:bye\n")

    with pytest.raises(ScriptParseError) as exc_info:
        store.read("latin1")
    assert exc_info.value.line == 2

    entries = store.load("latin1")
    assert [e.line for e in script_parser.errors(entries)] == [2]
    assert len(script_parser.messages(entries)) == 2
