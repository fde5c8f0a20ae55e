"""Pytest fixtures for unit tests driving the client against a scripted server.

What:
  Make ``tests/unit`` importable (for :mod:`fakes`) and expose fixtures that
  build a :class:`ScriptedTransport` and sessions on top of it.

Why:
  Almost every protocol test starts from "greeting read, maybe logged in,
  maybe a mailbox selected". Sharing that setup keeps the tests focused on the
  exchange under scrutiny.

Interfaces:
  ``transport``, ``session``, ``authenticated``, ``selected`` fixtures.
"""

import sys
from pathlib import Path

import pytest

UNIT_DIR = Path(__file__).resolve().parent
if str(UNIT_DIR) not in sys.path:
    sys.path.insert(0, str(UNIT_DIR))

from fakes import ScriptedTransport

from imapcore.session import ImapSession

SELECT_INBOX_REPLY = (
    "* 17 EXISTS\r\n"
    "* 2 RECENT\r\n"
    "* OK [UNSEEN 8] Message 8 is first unseen\r\n"
    "* OK [UIDVALIDITY 3857529045] UIDs valid\r\n"
    "* OK [UIDNEXT 4392] Predicted next UID\r\n"
    "* FLAGS (\\Answered \\Flagged \\Deleted \\Seen \\Draft)\r\n"
    "* OK [PERMANENTFLAGS (\\Deleted \\Seen \\*)] Limited\r\n"
    "{tag} OK [READ-WRITE] SELECT completed\r\n"
)


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def session(transport: ScriptedTransport) -> ImapSession:
    """Session that has consumed the greeting (NOT_AUTHENTICATED)."""

    return ImapSession.open(transport)


@pytest.fixture
def authenticated(session: ImapSession, transport: ScriptedTransport) -> ImapSession:
    transport.expect("LOGIN", "{tag} OK LOGIN completed\r\n")
    session.login("alice", "secret")
    return session


@pytest.fixture
def selected(authenticated: ImapSession, transport: ScriptedTransport) -> ImapSession:
    transport.expect('SELECT "INBOX"', SELECT_INBOX_REPLY)
    authenticated.select_mailbox("INBOX")
    return authenticated
