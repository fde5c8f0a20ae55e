"""End-to-end session over a real loopback socket.

What:
  Start a tiny threaded IMAP responder on ``127.0.0.1`` and drive it through
  :func:`imapcore.session.connect` with plain TCP.

Why:
  Unit tests replace the transport with a script. This suite proves that
  :class:`~imapcore.transport.SocketTransport`, the codec and the pipeline
  agree on buffering, literals and connection teardown when real sockets are
  involved.

How:
  The responder reads one command line at a time, answers from a table keyed
  by verb and records what it received. Literal-bearing commands get a ``+``
  continuation before the literal bytes are consumed.

Invariants & Safety:
  - Only the loopback interface is used; no external network access.
"""

import socket
import threading

import pytest

from imapcore.config.schema import ClientConfig
from imapcore.errors import ConnectionLost, TransportError
from imapcore.models import ConnectionState
from imapcore.session import connect

REPLIES = {
    "LOGIN": "{tag} OK LOGIN completed\r\n",
    "SELECT": (
        "* 3 EXISTS\r\n* 0 RECENT\r\n* OK [UIDVALIDITY 7] ok\r\n* OK [UIDNEXT 10] ok\r\n"
        "{tag} OK [READ-WRITE] SELECT completed\r\n"
    ),
    "FETCH": "* 2 FETCH (UID 8 BODY[1] {13}\r\nHello,\r\nWorld)\r\n{tag} OK FETCH completed\r\n",
    "NOOP": "* 4 EXISTS\r\n{tag} OK NOOP completed\r\n",
    "LOGOUT": "* BYE see you\r\n{tag} OK LOGOUT completed\r\n",
}


class LoopbackServer(threading.Thread):
    """Single-connection IMAP responder."""

    def __init__(self, hangup_after=None):
        super().__init__(daemon=True)
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.bind(("127.0.0.1", 0))
        self.listener.listen(1)
        self.port = self.listener.getsockname()[1]
        self.hangup_after = hangup_after
        self.received = []

    def run(self):
        conn, _ = self.listener.accept()
        with conn, conn.makefile("rb") as reader:
            conn.sendall(b"* OK [CAPABILITY IMAP4rev1 UNSELECT] loopback ready\r\n")
            while True:
                line = reader.readline()
                if not line:
                    break
                if line.rstrip(b"\r\n").endswith(b"}"):
                    size = int(line[line.rindex(b"{") + 1 : line.rindex(b"}")])
                    conn.sendall(b"+ go ahead\r\n")
                    line += reader.read(size) + reader.readline()
                tag, _, text = line.decode("utf-8").partition(" ")
                verb = text.split(" ", 1)[0].strip().upper()
                self.received.append(verb)
                if verb == self.hangup_after:
                    break
                conn.sendall(REPLIES[verb].replace("{tag}", tag).encode("utf-8"))
                if verb == "LOGOUT":
                    break
        self.listener.close()


@pytest.fixture
def plain_config():
    return ClientConfig.model_validate({"connection": {"use_tls": False, "timeout": 5}})


def test_full_session_over_loopback(plain_config):
    server = LoopbackServer()
    server.start()
    session = connect("127.0.0.1", server.port, config=plain_config)
    with session:
        assert session.has_capability("UNSELECT")
        session.login("alice", "pa\"ss")
        mailbox = session.select_mailbox("INBOX")
        assert mailbox.exists == 3
        assert mailbox.uid_next == 10
        assert session.fetch_body_part(2, "1") == b"Hello,\r\nWorld"
        assert session.keep_alive() is True
        assert session.mailbox.exists == 4
    server.join(timeout=5)
    assert session.state is ConnectionState.DISCONNECTED
    assert server.received == ["LOGIN", "SELECT", "FETCH", "NOOP", "LOGOUT"]


def test_literal_password_is_sent_after_continuation(plain_config):
    server = LoopbackServer()
    server.start()
    with connect("127.0.0.1", server.port, config=plain_config) as session:
        session.login("alice", "pässword")
        assert session.state is ConnectionState.AUTHENTICATED
    server.join(timeout=5)
    assert server.received == ["LOGIN", "LOGOUT"]


def test_server_hangup_raises_connection_lost(plain_config):
    server = LoopbackServer(hangup_after="SELECT")
    server.start()
    session = connect("127.0.0.1", server.port, config=plain_config)
    session.login("alice", "secret")
    with pytest.raises(ConnectionLost):
        session.select_mailbox("INBOX")
    assert session.state is ConnectionState.DISCONNECTED
    server.join(timeout=5)


def test_refused_connection_is_a_transport_error(plain_config):
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    port = listener.getsockname()[1]
    listener.close()
    with pytest.raises(TransportError):
        connect("127.0.0.1", port, config=plain_config)
