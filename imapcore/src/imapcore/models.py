"""Immutable data model shared by the parser, pipeline, and session facade.

What:
  Define connection states, mailbox snapshots, envelopes, addresses, the
  recursive body-structure tree, command completion results, and flag
  operations.

Why:
  Callers receive snapshots that may be handed to other threads. Frozen
  dataclasses make it impossible for a consumer to mutate the state machine's
  view of the selected mailbox behind its back.

How:
  Every record is a ``@dataclass(frozen=True)``. Mailbox updates produce new
  instances through :func:`dataclasses.replace`. The body structure is a
  tagged variant: :class:`BodyPart` leaves and :class:`Multipart` branches
  sharing a small traversal API.

Interfaces:
  ``ConnectionState``, ``Address``, ``Envelope``, ``BodyPart``,
  ``Multipart``, ``BodyStructure``, ``MessageEnvelope``, ``MailboxState``,
  ``CompletionResult``, ``FlagsOperation``.

Invariants & Safety:
  - Flag collections are ``frozenset`` and section maps are read-only
    ``MappingProxyType`` views.
  - Part paths follow RFC 3501 section numbering (``1``, ``1.2``, ``2.1.3``).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, FrozenSet, Iterator, Mapping, Optional, Tuple, Union

from .errors import CommandFailure


BODY_TYPE_CODES = {
    "TEXT": 0,
    "MULTIPART": 1,
    "MESSAGE": 2,
    "APPLICATION": 3,
    "AUDIO": 4,
    "IMAGE": 5,
    "VIDEO": 6,
}
OTHER_BODY_TYPE = 7

ENCODING_CODES = {
    "7BIT": 0,
    "8BIT": 1,
    "BINARY": 2,
    "BASE64": 3,
    "QUOTED-PRINTABLE": 4,
}
OTHER_ENCODING = 5


class ConnectionState(str, Enum):
    """Protocol states from RFC 3501 section 3 plus ``DISCONNECTED``."""

    DISCONNECTED = "DISCONNECTED"
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    AUTHENTICATED = "AUTHENTICATED"
    SELECTED = "SELECTED"
    LOGOUT = "LOGOUT"


@dataclass(frozen=True)
class Address:
    """One entry of an envelope address list.

    ``group`` is set for members of an RFC 822 group (``undisclosed: a@b;``).
    """

    name: Optional[str]
    route: Optional[str]
    mailbox: Optional[str]
    host: Optional[str]
    group: Optional[str] = None

    @property
    def email(self) -> str:
        if self.host:
            return f"{self.mailbox or ''}@{self.host}"
        return self.mailbox or ""

    def __str__(self) -> str:
        if self.name:
            return f"{self.name} <{self.email}>"
        return self.email


@dataclass(frozen=True)
class Envelope:
    """Parsed ``ENVELOPE`` fetch item (RFC 3501 section 7.4.2)."""

    date: Optional[str] = None
    subject: Optional[str] = None
    from_: Tuple[Address, ...] = ()
    sender: Tuple[Address, ...] = ()
    reply_to: Tuple[Address, ...] = ()
    to: Tuple[Address, ...] = ()
    cc: Tuple[Address, ...] = ()
    bcc: Tuple[Address, ...] = ()
    in_reply_to: Optional[str] = None
    message_id: Optional[str] = None

    @property
    def sent_at(self) -> Optional[datetime]:
        """``date`` parsed as a datetime, or ``None`` when absent or invalid."""

        if not self.date:
            return None
        try:
            return parsedate_to_datetime(self.date)
        except (TypeError, ValueError, IndexError):
            return None


@dataclass(frozen=True)
class BodyPart:
    """Leaf of the body-structure tree (a single MIME part).

    For ``MESSAGE/RFC822`` parts, ``envelope`` and ``body`` describe the
    encapsulated message.
    """

    type: str
    subtype: str
    params: Mapping[str, str] = field(default_factory=dict)
    id: Optional[str] = None
    description: Optional[str] = None
    encoding: Optional[str] = None
    size: int = 0
    lines: Optional[int] = None
    md5: Optional[str] = None
    disposition: Optional[Tuple[str, Mapping[str, str]]] = None
    language: Optional[Tuple[str, ...]] = None
    location: Optional[str] = None
    envelope: Optional[Envelope] = None
    body: Optional["BodyStructure"] = None

    is_multipart = False

    @property
    def mime_type(self) -> str:
        return f"{self.type}/{self.subtype}".lower()

    @property
    def type_code(self) -> int:
        return BODY_TYPE_CODES.get(self.type.upper(), OTHER_BODY_TYPE)

    @property
    def encoding_code(self) -> int:
        return ENCODING_CODES.get((self.encoding or "").upper(), OTHER_ENCODING)

    def walk(self, path: str = "") -> Iterator[Tuple[str, "BodyStructure"]]:
        yield (path or "1", self)

    def leaves(self) -> Iterator["BodyPart"]:
        yield self

    def find(self, path: str) -> Optional["BodyStructure"]:
        """Return the node at ``path`` relative to this part."""

        if path in ("", "1"):
            return self
        if self.body is None:
            return None
        return self.body.find(path)


@dataclass(frozen=True)
class Multipart:
    """Branch of the body-structure tree (``MULTIPART/*``)."""

    subtype: str
    children: Tuple["BodyStructure", ...]
    params: Mapping[str, str] = field(default_factory=dict)
    disposition: Optional[Tuple[str, Mapping[str, str]]] = None
    language: Optional[Tuple[str, ...]] = None
    location: Optional[str] = None

    is_multipart = True
    type = "MULTIPART"
    encoding = None

    @property
    def mime_type(self) -> str:
        return f"multipart/{self.subtype}".lower()

    @property
    def type_code(self) -> int:
        return BODY_TYPE_CODES["MULTIPART"]

    @property
    def encoding_code(self) -> int:
        return OTHER_ENCODING

    def walk(self, path: str = "") -> Iterator[Tuple[str, "BodyStructure"]]:
        """Yield ``(part_path, node)`` pairs depth-first, this node first."""

        yield (path, self)
        for index, child in enumerate(self.children, start=1):
            child_path = f"{path}.{index}" if path else str(index)
            yield from child.walk(child_path)

    def leaves(self) -> Iterator[BodyPart]:
        for child in self.children:
            yield from child.leaves()

    def find(self, path: str) -> Optional["BodyStructure"]:
        if not path:
            return self
        head, _, rest = path.partition(".")
        if not head.isdigit():
            return None
        index = int(head)
        if index < 1 or index > len(self.children):
            return None
        child = self.children[index - 1]
        if not rest:
            return child
        if isinstance(child, Multipart):
            return child.find(rest)
        if child.body is None:
            return None
        return child.body.find(rest)


BodyStructure = Union[BodyPart, Multipart]


@dataclass(frozen=True)
class MessageEnvelope:
    """Snapshot of one message as returned by a ``FETCH`` response."""

    seq: int
    uid: Optional[int] = None
    flags: FrozenSet[str] = frozenset()
    envelope: Optional[Envelope] = None
    body_structure: Optional[BodyStructure] = None
    size: Optional[int] = None
    internal_date: Optional[str] = None
    sections: Mapping[str, bytes] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def deleted(self) -> bool:
        return "\\Deleted" in self.flags

    @property
    def answered(self) -> bool:
        return "\\Answered" in self.flags

    @property
    def draft(self) -> bool:
        return "\\Draft" in self.flags

    @property
    def seen(self) -> bool:
        return "\\Seen" in self.flags


@dataclass(frozen=True)
class MailboxState:
    """Read-only snapshot of a mailbox's metadata.

    ``first_unseen`` is the sequence number from a ``SELECT`` ``[UNSEEN n]``
    code, while ``unseen`` is the count reported by ``STATUS``.
    """

    name: str
    exists: int = 0
    recent: int = 0
    unseen: Optional[int] = None
    first_unseen: Optional[int] = None
    uid_validity: Optional[int] = None
    uid_next: Optional[int] = None
    flags: FrozenSet[str] = frozenset()
    permanent_flags: FrozenSet[str] = frozenset()
    read_only: bool = False

    @property
    def message_count(self) -> int:
        return self.exists


@dataclass(frozen=True)
class CompletionResult:
    """Outcome of :meth:`imapcore.protocol.pipeline.ImapConnection.execute`."""

    tag: str
    status: str
    text: str
    code: Optional[str] = None
    code_data: Any = None
    responses: Tuple[Any, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status == "OK"

    def raise_for_status(self) -> "CompletionResult":
        """Return ``self`` on ``OK``; raise :class:`CommandFailure` otherwise."""

        if not self.ok:
            raise CommandFailure(self.tag, self.status, self.text, self.code)
        return self

    def untagged(self, kind: str) -> Tuple[Any, ...]:
        """Return the collected untagged responses of ``kind`` in arrival order."""

        return tuple(r for r in self.responses if getattr(r, "kind", None) == kind)


@dataclass(frozen=True)
class FlagsOperation:
    """A ``STORE`` data item: add, remove, or replace a set of flags."""

    mode: str
    flags: Tuple[str, ...]
    silent: bool = False

    def __post_init__(self) -> None:
        if self.mode not in ("+", "-", ""):
            raise ValueError(f"unsupported flags mode {self.mode!r}")

    @classmethod
    def add(cls, *flags: str, silent: bool = False) -> "FlagsOperation":
        return cls("+", tuple(flags), silent)

    @classmethod
    def remove(cls, *flags: str, silent: bool = False) -> "FlagsOperation":
        return cls("-", tuple(flags), silent)

    @classmethod
    def replace(cls, *flags: str, silent: bool = False) -> "FlagsOperation":
        return cls("", tuple(flags), silent)

    @property
    def item(self) -> str:
        return f"{self.mode}FLAGS{'.SILENT' if self.silent else ''}"
