"""
Module: imapcore.__init__

What:
  Public surface of the imapcore IMAP4rev1 client core: the session facade,
  the connection state machine, the data model and the error taxonomy.

Why:
  Applications should be able to write ``from imapcore import connect`` and
  catch ``imapcore.CommandFailure`` without learning the internal layout of
  the ``protocol`` subpackage.

How:
  Re-export the stable names and enumerate them in ``__all__``.

Interfaces:
  - connect / ImapSession: blocking session API.
  - ImapConnection: single-connection protocol state machine.
  - Models: ConnectionState, MailboxState, MessageEnvelope, Envelope,
    Address, BodyPart, Multipart, CompletionResult, FlagsOperation.
  - Errors: ImapError and its subclasses.
"""

from .errors import (
    CommandFailure,
    ConnectionLost,
    ImapError,
    InvalidStateError,
    MessageNotFound,
    ProtocolError,
    SequencingError,
    TransportError,
)
from .models import (
    Address,
    BodyPart,
    CompletionResult,
    ConnectionState,
    Envelope,
    FlagsOperation,
    MailboxState,
    MessageEnvelope,
    Multipart,
)
from .protocol.pipeline import ImapConnection
from .session import ImapSession, connect

__version__ = "0.1.0"

__all__ = [
    "connect",
    "ImapSession",
    "ImapConnection",
    "Address",
    "BodyPart",
    "CompletionResult",
    "ConnectionState",
    "Envelope",
    "FlagsOperation",
    "MailboxState",
    "MessageEnvelope",
    "Multipart",
    "ImapError",
    "TransportError",
    "ConnectionLost",
    "ProtocolError",
    "CommandFailure",
    "MessageNotFound",
    "SequencingError",
    "InvalidStateError",
]
