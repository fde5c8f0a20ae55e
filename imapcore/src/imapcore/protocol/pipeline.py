"""Command pipeline and connection state machine.

What:
  Own one IMAP connection: track its protocol state, issue one command at a
  time, correlate the tagged completion, and apply every untagged response to
  the capability set and the selected mailbox snapshot as it arrives.

Why:
  The state machine is where IMAP clients usually go wrong: a stale mailbox
  view after a failed SELECT, untagged EXISTS applied to the wrong mailbox, or
  a silently retried command after the socket died. Centralising those rules
  behind :meth:`ImapConnection.execute` keeps the session facade thin.

How:
  :meth:`ImapConnection.execute` validates the verb against
  :data:`VALID_STATES`, allocates a tag, writes the command (waiting for ``+``
  before each literal), and loops over :meth:`LineCodec.read_response` until
  the matching tagged line arrives. SELECT/EXAMINE build a candidate
  :class:`~imapcore.models.MailboxState` that replaces the current one only on
  ``OK``. Transport failures force ``DISCONNECTED`` and propagate.

Interfaces:
  :data:`VALID_STATES`, :class:`PendingCommand`, :class:`ImapConnection`.

Invariants & Safety:
  - At most one command is outstanding per connection; a second caller gets
    :class:`~imapcore.errors.SequencingError`.
  - Mailbox snapshots are only updated from untagged responses read while the
    mailbox is selected (or being selected).
  - The core never reconnects on its own.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import Any, FrozenSet, List, Optional, Union

from ..errors import (
    ConnectionLost,
    InvalidStateError,
    ProtocolError,
    SequencingError,
    TransportError,
)
from ..models import CompletionResult, ConnectionState, MailboxState
from ..transport import Transport
from ..utils.ids import TagAllocator, new_session_id
from ..utils.logging import get_logger
from .codec import DEFAULT_MAX_LINE, DEFAULT_MAX_LITERAL, LineCodec
from .commands import Command
from .parser import (
    ContinuationRequest,
    Response,
    TaggedResponse,
    UntaggedResponse,
    parse_response,
)


_NOT_AUTH = ConnectionState.NOT_AUTHENTICATED
_AUTH = ConnectionState.AUTHENTICATED
_SELECTED = ConnectionState.SELECTED
_LOGOUT = ConnectionState.LOGOUT

_ANY = frozenset({_NOT_AUTH, _AUTH, _SELECTED})
_AUTHENTICATED = frozenset({_AUTH, _SELECTED})
_SELECTED_ONLY = frozenset({_SELECTED})

VALID_STATES = {
    "CAPABILITY": _ANY,
    "NOOP": _ANY,
    "ID": _ANY,
    "LOGOUT": _ANY | {_LOGOUT},
    "STARTTLS": frozenset({_NOT_AUTH}),
    "AUTHENTICATE": frozenset({_NOT_AUTH}),
    "LOGIN": frozenset({_NOT_AUTH}),
    "SELECT": _AUTHENTICATED,
    "EXAMINE": _AUTHENTICATED,
    "CREATE": _AUTHENTICATED,
    "DELETE": _AUTHENTICATED,
    "RENAME": _AUTHENTICATED,
    "SUBSCRIBE": _AUTHENTICATED,
    "UNSUBSCRIBE": _AUTHENTICATED,
    "LIST": _AUTHENTICATED,
    "LSUB": _AUTHENTICATED,
    "STATUS": _AUTHENTICATED,
    "APPEND": _AUTHENTICATED,
    "NAMESPACE": _AUTHENTICATED,
    "ENABLE": _AUTHENTICATED,
    "CHECK": _SELECTED_ONLY,
    "CLOSE": _SELECTED_ONLY,
    "UNSELECT": _SELECTED_ONLY,
    "EXPUNGE": _SELECTED_ONLY,
    "SEARCH": _SELECTED_ONLY,
    "FETCH": _SELECTED_ONLY,
    "STORE": _SELECTED_ONLY,
    "COPY": _SELECTED_ONLY,
    "MOVE": _SELECTED_ONLY,
    "UID": _SELECTED_ONLY,
    "IDLE": _SELECTED_ONLY,
}

_MAILBOX_KINDS = frozenset({"EXISTS", "RECENT", "EXPUNGE", "FLAGS"})


@dataclass
class PendingCommand:
    """A command that has been written and awaits its tagged completion."""

    tag: str
    text: str
    untagged: List[Any] = field(default_factory=list)
    error: Optional[Exception] = None
    _result: Optional[CompletionResult] = None

    @property
    def result(self) -> Optional[CompletionResult]:
        return self._result

    def fulfil(self, result: CompletionResult) -> None:
        if self._result is not None:
            raise SequencingError(f"command {self.tag} completed twice")
        self._result = result


class ImapConnection:
    """Single-connection IMAP protocol state machine.

    What:
      Holds the transport handle (through :class:`LineCodec`), the protocol
      :class:`~imapcore.models.ConnectionState`, the capability set, the last
      error, and the selected :class:`~imapcore.models.MailboxState`.

    Why:
      Callers should be able to reason about one object per connection; all
      mutation happens inside :meth:`execute`, so snapshots handed out through
      :attr:`mailbox` stay consistent.

    How:
      Construct with a connected transport and call :meth:`read_greeting`, or
      use :meth:`open` which does both.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        tag_prefix: str = "A",
        max_line: int = DEFAULT_MAX_LINE,
        max_literal: int = DEFAULT_MAX_LITERAL,
    ) -> None:
        self._transport = transport
        self._codec = LineCodec(transport, max_line=max_line, max_literal=max_literal)
        self._tags = TagAllocator(tag_prefix)
        self._state = ConnectionState.DISCONNECTED
        self._capabilities: FrozenSet[str] = frozenset()
        self._mailbox: Optional[MailboxState] = None
        self._candidate: Optional[MailboxState] = None
        self._pending: Optional[PendingCommand] = None
        self._lock = threading.Lock()
        self.last_error: Optional[Exception] = None
        self.degraded = False
        self.greeting: Optional[str] = None
        self.session_id = new_session_id()
        self._log = get_logger("imapcore.pipeline")

    @classmethod
    def open(cls, transport: Transport, **kwargs: Any) -> "ImapConnection":
        """Create a connection over ``transport`` and consume the greeting."""

        connection = cls(transport, **kwargs)
        connection.read_greeting()
        return connection

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def capabilities(self) -> FrozenSet[str]:
        return self._capabilities

    @property
    def mailbox(self) -> Optional[MailboxState]:
        """Snapshot of the selected mailbox, ``None`` outside ``SELECTED``."""

        return self._mailbox

    @property
    def busy(self) -> bool:
        return self._pending is not None

    def read_greeting(self) -> None:
        """Consume the server greeting and enter the initial protocol state.

        ``* OK`` leads to ``NOT_AUTHENTICATED``, ``* PREAUTH`` to
        ``AUTHENTICATED``.

        Raises:
          ConnectionLost: On ``* BYE`` or if the transport closes first.
          ProtocolError: If the greeting is not a status response.
        """

        try:
            raw = self._codec.read_response()
        except TransportError as exc:
            self._fail(exc)
            raise
        try:
            response = parse_response(raw)
        except ProtocolError as exc:
            self._fail(exc)
            raise
        if not isinstance(response, UntaggedResponse) or response.kind not in ("OK", "PREAUTH", "BYE"):
            error = ProtocolError("unexpected server greeting", raw.first_line)
            self._fail(error)
            raise error
        if response.kind == "BYE":
            lost = ConnectionLost(f"server refused connection: {response.text}")
            self._fail(lost)
            raise lost
        self._state = _AUTH if response.kind == "PREAUTH" else _NOT_AUTH
        self.greeting = response.text
        self._apply(response)
        self._log.info("connected", session=self.session_id, state=self._state.value)

    def execute(self, command: Union[Command, str]) -> CompletionResult:
        """Run one command to completion.

        What:
          Allocates a tag, writes ``command``, reads until its tagged
          completion while applying untagged data, then applies the verb's
          state transition when the server answered ``OK``.

        Args:
          command: A :class:`Command` or raw command text such as ``"NOOP"``.

        Returns:
          The :class:`CompletionResult`; ``NO``/``BAD`` are returned, not raised.

        Raises:
          SequencingError: Another command is outstanding.
          InvalidStateError: The verb is not valid in the current state.
          ProtocolError: The server sent unparseable data for this command.
          TransportError, ConnectionLost: The connection broke; it is now
            ``DISCONNECTED``.
        """

        if isinstance(command, str):
            command = Command.from_text(command)
        if not self._lock.acquire(blocking=False):
            raise SequencingError("another command is outstanding on this connection")
        try:
            if self._pending is not None:
                raise SequencingError(f"command {self._pending.tag} is still outstanding")
            self._check_state(command)
            return self._run(command)
        finally:
            self._pending = None
            self._candidate = None
            self._lock.release()

    def keep_alive(self) -> bool:
        """Probe liveness with NOOP.

        Returns ``False`` without any I/O when the connection is not open and
        ``False`` when the server answers NO/BAD. Transport failures propagate
        as :class:`~imapcore.errors.ConnectionLost`; reconnecting is up to the
        caller.
        """

        if self._state in (ConnectionState.DISCONNECTED, _LOGOUT):
            return False
        return self.execute(Command("NOOP")).ok

    def close(self) -> None:
        """Drop the transport without LOGOUT."""

        self._mailbox = None
        if self._state is not ConnectionState.DISCONNECTED:
            self._state = ConnectionState.DISCONNECTED
            self._close_transport()

    def _check_state(self, command: Command) -> None:
        if command.name in ("SELECT", "EXAMINE") and command.mailbox is None:
            raise ValueError(f"{command.name} requires a mailbox")
        if self._state is ConnectionState.DISCONNECTED:
            raise InvalidStateError("connection is not open")
        allowed = VALID_STATES.get(command.name)
        if allowed is None:
            allowed = _ANY
        if self._state not in allowed:
            raise InvalidStateError(f"{command.name} is not allowed in state {self._state.value}")

    def _run(self, command: Command) -> CompletionResult:
        tag = self._tags.next()
        pending = PendingCommand(tag=tag, text=command.describe())
        self._pending = pending
        if command.name in ("SELECT", "EXAMINE"):
            self._candidate = MailboxState(name=command.mailbox or "", read_only=command.name == "EXAMINE")
        chunks, literals = command.render()
        self._log.info("command issued", tag=tag, command=pending.text)
        try:
            self._codec.write_command(tag, chunks[0])
            for literal, chunk in zip(literals, chunks[1:]):
                rejection = self._await_continuation(pending)
                if rejection is not None:
                    return self._complete(command, pending, rejection)
                self._codec.write_continuation(literal, chunk)
            return self._complete(command, pending, self._await_completion(pending))
        except TransportError as exc:
            pending.error = exc
            self._fail(exc)
            raise

    def _next_response(self, pending: PendingCommand) -> Optional[Response]:
        raw = self._codec.read_response()
        try:
            return parse_response(raw)
        except ProtocolError as exc:
            self.degraded = True
            self.last_error = exc
            if pending.error is None:
                pending.error = exc
            self._log.warning("unparseable response", tag=pending.tag, error=str(exc))
            if raw.first_line.startswith(pending.tag.encode("ascii") + b" "):
                return TaggedResponse(tag=pending.tag, status="BAD", text=str(exc))
            return None

    def _dispatch(self, pending: PendingCommand, response: Response) -> Optional[TaggedResponse]:
        """Handle one non-continuation response; return it if it completes ``pending``."""

        if isinstance(response, UntaggedResponse):
            self._apply(response)
            pending.untagged.append(response)
            return None
        if isinstance(response, TaggedResponse):
            if response.tag == pending.tag:
                return response
            error = ProtocolError(f"unexpected tagged response {response.tag} while waiting for {pending.tag}")
            self.degraded = True
            if pending.error is None:
                pending.error = error
            self._log.warning("unexpected tag", tag=response.tag, expected=pending.tag)
        return None

    def _await_continuation(self, pending: PendingCommand) -> Optional[TaggedResponse]:
        while True:
            response = self._next_response(pending)
            if response is None:
                continue
            if isinstance(response, ContinuationRequest):
                return None
            completion = self._dispatch(pending, response)
            if completion is not None:
                return completion

    def _await_completion(self, pending: PendingCommand) -> TaggedResponse:
        while True:
            response = self._next_response(pending)
            if response is None:
                continue
            if isinstance(response, ContinuationRequest):
                self._log.warning("ignoring continuation request", tag=pending.tag, text=response.text)
                continue
            completion = self._dispatch(pending, response)
            if completion is not None:
                return completion

    def _complete(self, command: Command, pending: PendingCommand, tagged: TaggedResponse) -> CompletionResult:
        if tagged.code == "CAPABILITY" and tagged.code_data:
            self._capabilities = tagged.code_data
        if self._candidate is not None and tagged.code is not None:
            self._candidate = self._apply_code(self._candidate, tagged.code, tagged.code_data)
        result = CompletionResult(
            tag=tagged.tag,
            status=tagged.status,
            text=tagged.text,
            code=tagged.code,
            code_data=tagged.code_data,
            responses=tuple(pending.untagged),
        )
        pending.fulfil(result)
        self._transition(command, result)
        self._log.info("command completed", tag=tagged.tag, status=tagged.status, state=self._state.value)
        if pending.error is not None:
            raise pending.error
        return result

    def _transition(self, command: Command, result: CompletionResult) -> None:
        name = command.name
        if name == "LOGOUT":
            self._state = _LOGOUT
            self._mailbox = None
            self._close_transport()
            self._state = ConnectionState.DISCONNECTED
            return
        if not result.ok:
            if name in ("SELECT", "EXAMINE"):
                self._mailbox = None
                if self._state is _SELECTED:
                    self._state = _AUTH
            return
        if name in ("LOGIN", "AUTHENTICATE"):
            self._state = _AUTH
        elif name in ("SELECT", "EXAMINE"):
            self._mailbox = self._candidate
            self._state = _SELECTED
        elif name in ("CLOSE", "UNSELECT"):
            self._mailbox = None
            self._state = _AUTH

    def _apply(self, response: UntaggedResponse) -> None:
        """Fold one untagged response into connection and mailbox state."""

        kind = response.kind
        if kind == "CAPABILITY":
            self._capabilities = response.data
        elif response.code == "CAPABILITY" and response.code_data:
            self._capabilities = response.code_data
        if kind == "BYE":
            self._log.warning("server closing connection", text=response.text)
            self._state = _LOGOUT
            return

        if self._candidate is not None:
            self._candidate = self._update(self._candidate, response)
        elif self._state is _SELECTED and self._mailbox is not None:
            self._mailbox = self._update(self._mailbox, response)
        elif kind in _MAILBOX_KINDS:
            self._log.debug("mailbox update without selection", kind=kind)

    def _update(self, mailbox: MailboxState, response: UntaggedResponse) -> MailboxState:
        kind = response.kind
        if kind == "EXISTS":
            return replace(mailbox, exists=response.number)
        if kind == "RECENT":
            return replace(mailbox, recent=response.number)
        if kind == "EXPUNGE":
            return replace(mailbox, exists=max(0, mailbox.exists - 1))
        if kind == "FLAGS":
            return replace(mailbox, flags=response.data)
        if response.code is not None:
            return self._apply_code(mailbox, response.code, response.code_data)
        return mailbox

    @staticmethod
    def _apply_code(mailbox: MailboxState, code: str, data: Any) -> MailboxState:
        if code == "UIDVALIDITY":
            return replace(mailbox, uid_validity=data)
        if code == "UIDNEXT":
            return replace(mailbox, uid_next=data)
        if code == "UNSEEN":
            return replace(mailbox, first_unseen=data)
        if code == "PERMANENTFLAGS":
            return replace(mailbox, permanent_flags=data or frozenset())
        if code == "READ-ONLY":
            return replace(mailbox, read_only=True)
        if code == "READ-WRITE":
            return replace(mailbox, read_only=False)
        return mailbox

    def _fail(self, error: Exception) -> None:
        self.last_error = error
        self._mailbox = None
        self._state = ConnectionState.DISCONNECTED
        self._log.error("connection failed", session=self.session_id, error=str(error))
        self._close_transport()

    def _close_transport(self) -> None:
        try:
            self._transport.close()
        except (OSError, TransportError) as exc:
            self._log.warning("error while closing transport", error=str(exc))
