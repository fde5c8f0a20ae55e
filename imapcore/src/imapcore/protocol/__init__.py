"""Wire-level IMAP machinery: framing, parsing, command building and the state machine.

Interfaces:
  ``LineCodec`` / ``RawResponse`` (codec), ``parse_response`` and the typed
  response records (parser), ``Command`` (commands), ``ImapConnection``
  (pipeline).
"""

from .codec import LineCodec, RawResponse
from .commands import Atom, Command, mailbox_argument, sequence_set
from .parser import (
    ContinuationRequest,
    TaggedResponse,
    UntaggedResponse,
    parse_body_structure,
    parse_envelope,
    parse_list,
    parse_response,
)
from .pipeline import VALID_STATES, ImapConnection, PendingCommand

__all__ = [
    "LineCodec",
    "RawResponse",
    "Atom",
    "Command",
    "mailbox_argument",
    "sequence_set",
    "ContinuationRequest",
    "TaggedResponse",
    "UntaggedResponse",
    "parse_body_structure",
    "parse_envelope",
    "parse_list",
    "parse_response",
    "VALID_STATES",
    "ImapConnection",
    "PendingCommand",
]
