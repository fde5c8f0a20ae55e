"""Blocking IMAP session facade.

What:
  Expose the caller-facing operations (connect, login, mailbox selection,
  fetches, flag updates, expunge, status, logout, liveness) on top of
  :class:`~imapcore.protocol.pipeline.ImapConnection`, plus a few convenience
  helpers for common mailbox chores.

Why:
  The pipeline speaks in commands and completion results. Most callers want
  typed answers (a :class:`~imapcore.models.MailboxState`, a body part's
  bytes) and an exception when the server says no. Keeping that translation
  here leaves the state machine free of per-command knowledge.

How:
  Every operation builds a :class:`~imapcore.protocol.commands.Command`, runs
  it through :meth:`ImapConnection.execute`, turns ``NO``/``BAD`` into
  :class:`~imapcore.errors.CommandFailure` via
  :meth:`CompletionResult.raise_for_status`, and extracts the relevant
  untagged responses from the result.

Interfaces:
  :func:`connect`, :class:`ImapSession`.

Invariants & Safety:
  - Nothing reconnects implicitly. :meth:`ImapSession.keep_alive` reports
    liveness and :meth:`ImapSession.reconnect` must be called explicitly.
  - Flag updates and deletions act only on the identifiers passed in.
  - The password is only kept in memory for :meth:`ImapSession.reconnect`
    and never logged.
"""
from __future__ import annotations

import re
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from .config.loader import get_client_config
from .config.schema import IMAP_PORT, IMAPS_PORT, ClientConfig
from .errors import ConnectionLost, InvalidStateError, MessageNotFound, ProtocolError
from .models import (
    OTHER_BODY_TYPE,
    OTHER_ENCODING,
    BodyStructure,
    CompletionResult,
    ConnectionState,
    FlagsOperation,
    MailboxState,
    MessageEnvelope,
)
from .protocol.commands import Atom, Command, mailbox_argument, sequence_set
from .protocol.parser import merge_fetch
from .protocol.pipeline import ImapConnection
from .transport import SocketTransport, Transport
from .utils.logging import get_logger


ENVELOPE_ITEMS = "(UID FLAGS ENVELOPE RFC822.SIZE INTERNALDATE)"
DETAIL_ITEMS = "(UID FLAGS ENVELOPE RFC822.SIZE INTERNALDATE BODYSTRUCTURE)"
STRUCTURE_ITEMS = "(UID BODYSTRUCTURE)"
STATUS_ITEMS = ("MESSAGES", "RECENT", "UNSEEN", "UIDNEXT", "UIDVALIDITY")

_PART_PATH_RE = re.compile(r"\A(?:HEADER|TEXT|\d+(?:\.\d+)*(?:\.(?:HEADER|TEXT|MIME))?)?\Z", re.IGNORECASE)
_FLAG_RE = re.compile(r"\A\\?[^\s()\[\]{}\"\\%*]+\Z")

Opener = Callable[[], Transport]
MessageSet = Union[int, str, Iterable[int]]


def _addresses(values: Iterable[Any]) -> str:
    return ", ".join(str(address) for address in values)


class ImapSession:
    """Context manager wrapping one IMAP connection.

    What:
      Owns an :class:`ImapConnection` and exposes the blocking session API.

    Why:
      Gives applications a small object to pass around, with ``with`` support
      so the server session is logged out even when the caller bails early.

    How:
      Build with :func:`connect` (real socket) or :meth:`open` (any
      :class:`~imapcore.transport.Transport`, e.g. a scripted fake in tests).
      An optional ``opener`` callable lets :meth:`reconnect` build a fresh
      transport.
    """

    def __init__(
        self,
        connection: ImapConnection,
        *,
        config: Optional[ClientConfig] = None,
        opener: Optional[Opener] = None,
    ) -> None:
        self._connection = connection
        self._config = config or ClientConfig()
        self._opener = opener
        self._credentials: Optional[Tuple[str, str]] = None
        self._log = get_logger("imapcore.session")

    @classmethod
    def open(
        cls,
        transport: Transport,
        *,
        config: Optional[ClientConfig] = None,
        opener: Optional[Opener] = None,
    ) -> "ImapSession":
        """Read the greeting on ``transport`` and return a ready session."""

        settings = config or ClientConfig()
        connection = cls._open_connection(transport, settings)
        return cls(connection, config=settings, opener=opener)

    @staticmethod
    def _open_connection(transport: Transport, config: ClientConfig) -> ImapConnection:
        protocol = config.protocol
        return ImapConnection.open(
            transport,
            tag_prefix=protocol.tag_prefix,
            max_line=protocol.max_line_bytes,
            max_literal=protocol.max_literal_bytes,
        )

    def __enter__(self) -> "ImapSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        """Log out on a clean exit; just drop the transport after an error."""

        if exc_type is None:
            self.logout()
        else:
            self._connection.close()

    @property
    def connection(self) -> ImapConnection:
        return self._connection

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def mailbox(self) -> Optional[MailboxState]:
        """Snapshot of the selected mailbox (``None`` when nothing is selected)."""

        return self._connection.mailbox

    @property
    def last_error(self) -> Optional[Exception]:
        return self._connection.last_error

    def execute(self, command: Union[Command, str]) -> CompletionResult:
        """Run a raw command; ``NO``/``BAD`` come back in the result."""

        return self._connection.execute(command)

    def _run(self, command: Command) -> CompletionResult:
        return self._connection.execute(command).raise_for_status()

    def capabilities(self) -> FrozenSet[str]:
        """Return the server capabilities, asking with CAPABILITY if unknown."""

        if not self._connection.capabilities:
            self._run(Command("CAPABILITY"))
        return self._connection.capabilities

    def has_capability(self, name: str) -> bool:
        return name.upper() in self.capabilities()

    def login(self, user: str, password: str) -> CompletionResult:
        """Authenticate with LOGIN.

        Raises:
          CommandFailure: If the server rejects the credentials.
        """

        result = self._run(Command("LOGIN", (user, password), sensitive=True))
        self._credentials = (user, password)
        self._log.info("logged in", user=user, state=self.state.value)
        return result

    def select_mailbox(self, name: str, *, readonly: bool = False) -> MailboxState:
        """SELECT (or EXAMINE when ``readonly``) ``name`` and return its snapshot.

        A rejected selection leaves the session authenticated with no mailbox
        and raises :class:`~imapcore.errors.CommandFailure`.
        """

        verb = "EXAMINE" if readonly else "SELECT"
        self._run(Command(verb, (mailbox_argument(name),), mailbox=name))
        mailbox = self._connection.mailbox
        if mailbox is None:
            raise InvalidStateError(f"{verb} completed without a selected mailbox")
        self._log.info("mailbox selected", mailbox=name, exists=mailbox.exists, read_only=mailbox.read_only)
        return mailbox

    def examine(self, name: str) -> MailboxState:
        return self.select_mailbox(name, readonly=True)

    def close_mailbox(self) -> None:
        """CLOSE the selected mailbox, expunging ``\\Deleted`` messages."""

        self._run(Command("CLOSE"))

    def unselect(self) -> None:
        """Leave the selected mailbox without expunging (RFC 3691)."""

        self._run(Command("UNSELECT"))

    def _fetch(self, messages: MessageSet, items: str, *, uid: bool) -> Tuple[MessageEnvelope, ...]:
        verb = "UID FETCH" if uid else "FETCH"
        result = self._run(Command(verb, (sequence_set(messages), Atom(items))))
        return tuple(response.data for response in result.untagged("FETCH"))

    def _fetch_one(self, number: int, items: str, *, uid: bool) -> MessageEnvelope:
        """FETCH one message, merging every untagged FETCH record it produced."""

        messages = self._fetch(number, items, uid=uid)
        if uid:
            sequence_numbers = {message.seq for message in messages if message.uid == number}
        else:
            sequence_numbers = {number}
        merged: Optional[MessageEnvelope] = None
        for message in messages:
            if message.seq not in sequence_numbers:
                continue
            merged = message if merged is None else merge_fetch(merged, message)
        if merged is None:
            raise MessageNotFound(f"no FETCH data for {'UID' if uid else 'message'} {number}")
        return merged

    def fetch_envelope(self, seq: int, *, uid: bool = False) -> MessageEnvelope:
        """Fetch flags, envelope, size and internal date of one message."""

        return self._fetch_one(seq, ENVELOPE_ITEMS, uid=uid)

    def fetch_structure(self, seq: int, *, uid: bool = False) -> BodyStructure:
        """Fetch and parse the BODYSTRUCTURE of one message."""

        message = self._fetch_one(seq, STRUCTURE_ITEMS, uid=uid)
        if message.body_structure is None:
            raise ProtocolError(f"FETCH for message {seq} carried no BODYSTRUCTURE")
        return message.body_structure

    def fetch_body_part(
        self,
        seq: int,
        part_path: str,
        *,
        uid: bool = False,
        peek: Optional[bool] = None,
    ) -> bytes:
        """Return the raw bytes of section ``part_path`` (``"1"``, ``"1.2"``, ``"TEXT"``).

        ``peek`` defaults to the configured value; with ``BODY.PEEK`` the
        server does not set ``\\Seen``. The bytes are returned exactly as
        sent, still transfer-encoded.
        """

        if not _PART_PATH_RE.match(part_path):
            raise ValueError(f"invalid body part path {part_path!r}")
        if peek is None:
            peek = self._config.protocol.peek
        section = part_path.upper()
        item = f"BODY{'.PEEK' if peek else ''}[{section}]"
        message = self._fetch_one(seq, f"(UID {item})", uid=uid)
        key = f"BODY[{section}]"
        if key not in message.sections:
            raise ProtocolError(f"FETCH for message {seq} did not include {key}")
        return message.sections[key]

    def store(
        self,
        seq: MessageSet,
        flags_op: FlagsOperation,
        *,
        uid: bool = False,
    ) -> Dict[int, FrozenSet[str]]:
        """Apply ``flags_op`` to the given messages.

        Returns:
          New flag sets keyed by sequence number (or UID when ``uid``). Empty
          for ``.SILENT`` operations.
        """

        for flag in flags_op.flags:
            if not _FLAG_RE.match(flag):
                raise ValueError(f"invalid flag {flag!r}")
        verb = "UID STORE" if uid else "STORE"
        flags = [Atom(flag) for flag in flags_op.flags]
        result = self._run(Command(verb, (sequence_set(seq), Atom(flags_op.item), flags)))
        updated: Dict[int, FrozenSet[str]] = {}
        for response in result.untagged("FETCH"):
            message = response.data
            key = message.uid if uid and message.uid is not None else message.seq
            updated[key] = message.flags
        return updated

    def expunge(self) -> List[int]:
        """EXPUNGE the selected mailbox; return the expunged sequence numbers in order."""

        result = self._run(Command("EXPUNGE"))
        return [response.number for response in result.untagged("EXPUNGE")]

    def status_of(self, name: str) -> MailboxState:
        """Query STATUS of ``name`` without changing the selection."""

        result = self._run(
            Command("STATUS", (mailbox_argument(name), [Atom(item) for item in STATUS_ITEMS]), mailbox=name)
        )
        responses = result.untagged("STATUS")
        if not responses:
            raise ProtocolError(f"STATUS for {name!r} returned no data")
        attributes: Dict[str, int] = {}
        for response in responses:
            mailbox, values = response.data
            if mailbox == name:
                attributes = values
                break
        else:
            attributes = responses[0].data[1]
        return MailboxState(
            name=name,
            exists=attributes.get("MESSAGES", 0),
            recent=attributes.get("RECENT", 0),
            unseen=attributes.get("UNSEEN"),
            uid_validity=attributes.get("UIDVALIDITY"),
            uid_next=attributes.get("UIDNEXT"),
        )

    def list_mailboxes(self, reference: str = "", pattern: str = "*") -> List[Tuple[FrozenSet[str], Optional[str], str]]:
        """LIST mailboxes as ``(flags, delimiter, name)`` tuples with decoded names."""

        result = self._run(Command("LIST", (mailbox_argument(reference), mailbox_argument(pattern))))
        return [response.data for response in result.untagged("LIST")]

    def logout(self) -> None:
        """Send LOGOUT and release the transport.

        A server that hangs up right after its ``BYE`` still counts as a
        completed logout.
        """

        if self.state is ConnectionState.DISCONNECTED:
            return
        try:
            self._connection.execute(Command("LOGOUT"))
        except ConnectionLost as exc:
            self._log.info("connection closed during logout", error=str(exc))
        self._credentials = None

    def keep_alive(self) -> bool:
        """Report liveness via NOOP without reconnecting (see :meth:`reconnect`)."""

        return self._connection.keep_alive()

    def reconnect(self) -> Optional[MailboxState]:
        """Open a fresh connection, log in again and restore the selection.

        Returns:
          The re-selected mailbox snapshot, or ``None`` if nothing was selected.

        Raises:
          InvalidStateError: If the session was built without an opener.
        """

        if self._opener is None:
            raise InvalidStateError("session has no transport opener to reconnect with")
        previous = self._connection.mailbox
        self._connection.close()
        self._connection = self._open_connection(self._opener(), self._config)
        self._log.info("reconnected", session=self._connection.session_id)
        if self._credentials is not None and self.state is ConnectionState.NOT_AUTHENTICATED:
            self.login(*self._credentials)
        if previous is None:
            return None
        return self.select_mailbox(previous.name, readonly=previous.read_only)

    def _require_mailbox(self) -> MailboxState:
        mailbox = self._connection.mailbox
        if mailbox is None:
            raise InvalidStateError("no mailbox selected")
        return mailbox

    def message_details(self, seq: int) -> Dict[str, Any]:
        """Summarise one message: addresses, subject, flags and its text body.

        The body is part ``1.2`` when the message has one (the second
        alternative of a leading ``multipart/alternative``), falling back to
        part ``1`` when that part is missing or empty.
        """

        message = self._fetch_one(seq, DETAIL_ITEMS, uid=False)
        body = b""
        structure = message.body_structure
        if structure is not None and structure.find("1.2") is not None:
            body = self.fetch_body_part(seq, "1.2")
        if not body:
            body = self.fetch_body_part(seq, "1")
        envelope = message.envelope
        return {
            "seq": message.seq,
            "uid": message.uid,
            "to": _addresses(envelope.to) if envelope else "",
            "from": _addresses(envelope.from_) if envelope else "",
            "cc": _addresses(envelope.cc) if envelope else "",
            "bcc": _addresses(envelope.bcc) if envelope else "",
            "reply_to": _addresses(envelope.reply_to) if envelope else "",
            "sender": _addresses(envelope.sender) if envelope else "",
            "date": envelope.date if envelope else None,
            "subject": envelope.subject if envelope else None,
            "message_id": envelope.message_id if envelope else None,
            "deleted": message.deleted,
            "answered": message.answered,
            "draft": message.draft,
            "seen": message.seen,
            "size": message.size,
            "body": body,
        }

    def message_subjects(self) -> Dict[int, str]:
        """Map every sequence number in the selected mailbox to its subject."""

        mailbox = self._require_mailbox()
        if mailbox.exists == 0:
            return {}
        subjects: Dict[int, str] = {}
        for message in self._fetch(f"1:{mailbox.exists}", "(ENVELOPE)", uid=False):
            envelope = message.envelope
            subjects[message.seq] = (envelope.subject if envelope else None) or ""
        return subjects

    def mailbox_summary(self) -> Dict[str, Any]:
        """Unread, recent and total counts of the selected mailbox."""

        mailbox = self._require_mailbox()
        status = self.status_of(mailbox.name)
        return {
            "mailbox": mailbox.name,
            "unread": status.unseen or 0,
            "recent": status.recent,
            "total": status.exists,
        }

    def delete_message(self, seq: int, *, uid: bool = False, expunge: bool = False) -> Dict[int, FrozenSet[str]]:
        """Flag message ``seq`` as ``\\Deleted`` and optionally EXPUNGE right away."""

        updated = self.store(seq, FlagsOperation.add("\\Deleted"), uid=uid)
        if expunge:
            self.expunge()
        return updated

    def body_type(self, seq: int, numeric: bool = False) -> Union[int, str]:
        """Primary MIME type of a message as a name (``"Text"``) or classic code (``0``)."""

        structure = self.fetch_structure(seq)
        if numeric:
            return structure.type_code
        if structure.type_code == OTHER_BODY_TYPE:
            return "Other"
        return structure.type.capitalize()

    def encoding_type(self, seq: int, numeric: bool = False) -> Union[int, str]:
        """Transfer encoding of a message as a name (``"BASE64"``) or classic code (``3``)."""

        structure = self.fetch_structure(seq)
        if numeric:
            return structure.encoding_code
        if structure.encoding_code == OTHER_ENCODING:
            return "OTHER"
        return (structure.encoding or "").upper()


def connect(
    host: Optional[str] = None,
    port: Optional[int] = None,
    use_tls: Optional[bool] = None,
    *,
    timeout: Optional[float] = None,
    config: Optional[ClientConfig] = None,
) -> ImapSession:
    """Open a socket to ``host`` and return a session past the greeting.

    Arguments left as ``None`` fall back to the ``connection`` section of the
    loaded :class:`~imapcore.config.schema.ClientConfig`.

    Raises:
      ValueError: If no host is given or configured.
      TransportError, ConnectionLost: If the server cannot be reached or
        refuses the connection.
    """

    settings = config or get_client_config()
    connection = settings.connection
    target_host = host or connection.host
    if not target_host:
        raise ValueError("no IMAP host given or configured")
    tls = connection.use_tls if use_tls is None else use_tls
    if port is not None:
        target_port = port
    elif tls == connection.use_tls:
        target_port = connection.resolved_port()
    else:
        target_port = IMAPS_PORT if tls else IMAP_PORT
    target_timeout = connection.timeout if timeout is None else timeout

    def opener() -> Transport:
        return SocketTransport(target_host, target_port, use_tls=tls, timeout=target_timeout)

    return ImapSession.open(opener(), config=settings, opener=opener)
