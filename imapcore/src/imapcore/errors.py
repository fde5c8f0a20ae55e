"""Exception taxonomy for the imapcore protocol client.

What:
  Define the error types surfaced by the codec, parser, and command pipeline so
  callers can tell a server rejection apart from a broken connection or an
  unparseable response.

Why:
  IMAP failures come from three very different layers (socket, grammar, and
  server policy). Collapsing them into ``RuntimeError`` would force callers to
  inspect message strings to decide whether to retry, reconnect, or give up.

How:
  Root every protocol failure at :class:`ImapError`. Transport-level failures
  derive from :class:`TransportError`; :class:`ConnectionLost` specialises it
  for unexpected closure. :class:`CommandFailure` carries the tagged completion
  details and :class:`SequencingError` flags caller misuse of the
  single-outstanding-command discipline.

Interfaces:
  ``ImapError``, ``TransportError``, ``ConnectionLost``, ``ProtocolError``,
  ``CommandFailure``, ``MessageNotFound``, ``SequencingError``,
  ``InvalidStateError``.

Invariants & Safety:
  - ``TransportError`` and ``ConnectionLost`` always mean the connection has
    been forced to ``DISCONNECTED``.
  - ``CommandFailure`` never implies the connection is unusable.
"""
from __future__ import annotations

from typing import Optional


class ImapError(Exception):
    """Base class for every error raised by the protocol client."""


class TransportError(ImapError):
    """I/O failure below the protocol layer (socket, TLS, literal framing)."""


class ConnectionLost(TransportError):
    """The transport closed while data was still expected."""


class ProtocolError(ImapError):
    """Malformed or unparseable server data.

    What:
      Raised by the tokenizer and response parser when server output does not
      follow the IMAP4rev1 grammar.

    Why:
      Keeping the offending line around makes bug reports against odd servers
      actionable without enabling wire-level debug logging.

    Attributes:
      line: Raw bytes of the response that failed to parse, when known.
    """

    def __init__(self, message: str, line: Optional[bytes] = None) -> None:
        super().__init__(message)
        self.line = line


class CommandFailure(ImapError):
    """A tagged ``NO`` or ``BAD`` completion.

    What:
      Represents a normal protocol outcome where the server refused a command
      (for instance a rejected login or a missing mailbox).

    How:
      Produced by :meth:`imapcore.models.CompletionResult.raise_for_status`;
      the pipeline itself returns the result instead of raising.

    Attributes:
      tag: Command tag the completion answered.
      status: ``"NO"`` or ``"BAD"``.
      text: Human-readable text sent by the server.
      code: Optional response code (``TRYCREATE``, ``ALERT`` ...).
    """

    def __init__(self, tag: str, status: str, text: str, code: Optional[str] = None) -> None:
        super().__init__(f"{status} {text}".strip())
        self.tag = tag
        self.status = status
        self.text = text
        self.code = code


class MessageNotFound(ImapError, LookupError):
    """The server completed a FETCH without returning data for the message."""


class SequencingError(ImapError):
    """The caller issued a command while another one is still outstanding."""


class InvalidStateError(SequencingError):
    """The command verb is not allowed in the current connection state."""


__all__ = [
    "ImapError",
    "TransportError",
    "ConnectionLost",
    "ProtocolError",
    "CommandFailure",
    "MessageNotFound",
    "SequencingError",
    "InvalidStateError",
]
