"""Tests for client command rendering."""

import pytest

from imapcore.protocol.commands import Atom, Command, mailbox_argument, sequence_set


def test_strings_are_quoted_and_escaped():
    chunks, literals = Command("LOGIN", ("alice", 'pa"ss\\word')).render()
    assert chunks == (b'LOGIN "alice" "pa\\"ss\\\\word"',)
    assert literals == ()


def test_non_ascii_values_become_literals():
    chunks, literals = Command("LOGIN", ("alice", "pässword")).render()
    assert chunks == (b'LOGIN "alice" {9}', b"")
    assert literals == ("pässword".encode("utf-8"),)


def test_lists_and_atoms_render_verbatim():
    command = Command("STORE", (Atom("1:3"), Atom("+FLAGS.SILENT"), [Atom("\\Deleted"), Atom("\\Seen")]))
    assert command.render() == ((b"STORE 1:3 +FLAGS.SILENT (\\Deleted \\Seen)",), ())


def test_describe_redacts_sensitive_commands():
    command = Command("LOGIN", ("alice", "secret"), sensitive=True)
    assert "secret" not in command.describe()
    assert "alice" not in command.describe()


def test_describe_summarises_literals():
    command = Command("APPEND", (mailbox_argument("INBOX"), b"Subject: hi\r\n\r\nbody"))
    assert command.describe() == 'APPEND "INBOX" {19}<19 bytes>'


def test_mailbox_argument_uses_modified_utf7():
    assert mailbox_argument("Entwürfe") == "Entw&APw-rfe"


def test_sequence_set_variants():
    assert sequence_set(3) == "3"
    assert sequence_set([2, 5, 9]) == "2,5,9"
    assert sequence_set("1:*") == "1:*"
    with pytest.raises(ValueError):
        sequence_set(0)


def test_from_text_learns_selected_mailbox():
    command = Command.from_text('select "Entw&APw-rfe"')
    assert command.name == "SELECT"
    assert command.mailbox == "Entwürfe"
    assert command.render() == ((b'SELECT "Entw&APw-rfe"',), ())


def test_from_text_handles_uid_prefix_and_login():
    assert Command.from_text("uid fetch 1:* (FLAGS)").verb == "UID FETCH"
    assert Command.from_text("LOGIN alice secret").sensitive


def test_from_text_rejects_select_without_mailbox():
    with pytest.raises(ValueError):
        Command.from_text("SELECT")
