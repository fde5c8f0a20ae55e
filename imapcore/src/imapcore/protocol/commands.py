"""Client command construction.

What:
  Build the wire form of client commands: quote strings, switch to
  synchronizing literals when a value cannot be quoted, encode mailbox names
  in modified UTF-7, and render parenthesized argument lists.

Why:
  Hand-formatted command strings are how passwords containing ``"`` end up
  breaking LOGIN. Building commands from typed arguments keeps quoting rules in
  one place and lets the pipeline know where it has to wait for a ``+``
  continuation.

How:
  :class:`Command` stores a verb plus arguments. :meth:`Command.render` walks
  the arguments and splits the output into line chunks at every literal; the
  pipeline writes chunk ``0`` with the tag, then alternates continuation waits
  with ``literal + next chunk`` writes.

Interfaces:
  :class:`Atom`, :class:`Command`, :func:`mailbox_argument`,
  :func:`sequence_set`.

Invariants & Safety:
  - Strings containing CR, LF, NUL or non-ASCII characters are always sent as
    literals, never quoted.
  - Commands flagged ``sensitive`` never expose their arguments through
    :meth:`Command.describe`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple, Union

from imapclient import imap_utf7

from ..errors import ProtocolError
from .parser import decode_mailbox_name, parse_values


MAX_QUOTED_LENGTH = 1000


class Atom(str):
    """Argument sent verbatim (sequence sets, fetch items, flag names)."""


def mailbox_argument(name: str) -> str:
    """Encode ``name`` in modified UTF-7 so it can be quoted safely."""

    return imap_utf7.encode(name).decode("ascii")


def sequence_set(messages: Union[int, str, Iterable[int]]) -> Atom:
    """Render ``messages`` as an IMAP sequence set (``3``, ``1:*``, ``2,5,9``)."""

    if isinstance(messages, int):
        if messages < 1:
            raise ValueError(f"message numbers start at 1, got {messages}")
        return Atom(str(messages))
    if isinstance(messages, str):
        return Atom(messages)
    numbers = [int(number) for number in messages]
    if not numbers or min(numbers) < 1:
        raise ValueError("sequence set needs at least one positive message number")
    return Atom(",".join(str(number) for number in numbers))


def _needs_literal(text: str) -> bool:
    if len(text) > MAX_QUOTED_LENGTH:
        return True
    return any(ord(char) > 0x7E or char in "\r\n\x00" for char in text)


def _quote(text: str) -> bytes:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'.encode("ascii")


@dataclass(frozen=True)
class _Literal:
    data: bytes


def _encode(argument: Any) -> List[Union[bytes, _Literal]]:
    if isinstance(argument, Atom):
        return [argument.encode("ascii")]
    if isinstance(argument, bool):
        raise TypeError("booleans are not IMAP arguments")
    if isinstance(argument, int):
        return [str(argument).encode("ascii")]
    if isinstance(argument, bytes):
        return [_Literal(argument)]
    if isinstance(argument, str):
        if _needs_literal(argument):
            return [_Literal(argument.encode("utf-8"))]
        return [_quote(argument)]
    if isinstance(argument, (list, tuple)):
        pieces: List[Union[bytes, _Literal]] = [b"("]
        for index, item in enumerate(argument):
            if index:
                pieces.append(b" ")
            pieces.extend(_encode(item))
        pieces.append(b")")
        return pieces
    raise TypeError(f"unsupported IMAP argument type {type(argument).__name__}")


@dataclass(frozen=True)
class Command:
    """A client command before tagging.

    Attributes:
      verb: Command verb, possibly two words for ``UID FETCH`` style commands.
      arguments: Typed arguments (``Atom``, ``str``, ``int``, ``bytes``, lists).
      mailbox: Target mailbox for SELECT/EXAMINE/STATUS, used by the state
        machine to name the new :class:`~imapcore.models.MailboxState`.
      sensitive: Hide arguments from logs (LOGIN, AUTHENTICATE).
    """

    verb: str
    arguments: Tuple[Any, ...] = ()
    mailbox: Optional[str] = None
    sensitive: bool = False

    @property
    def name(self) -> str:
        """First word of the verb, upper-cased (``UID`` for ``UID FETCH``)."""

        return self.verb.split()[0].upper()

    def render(self) -> Tuple[Tuple[bytes, ...], Tuple[bytes, ...]]:
        """Return ``(chunks, literals)`` with ``len(chunks) == len(literals) + 1``.

        Every chunk but the last ends with the ``{n}`` marker announcing the
        literal at the same index.
        """

        chunks: List[bytes] = []
        literals: List[bytes] = []
        current = bytearray(self.verb.encode("ascii"))
        for argument in self.arguments:
            current += b" "
            for piece in _encode(argument):
                if isinstance(piece, _Literal):
                    current += b"{%d}" % len(piece.data)
                    chunks.append(bytes(current))
                    literals.append(piece.data)
                    current = bytearray()
                else:
                    current += piece
        chunks.append(bytes(current))
        return tuple(chunks), tuple(literals)

    def describe(self) -> str:
        """Log-safe rendering of the command."""

        if self.sensitive:
            return f"{self.verb} [redacted]"
        chunks, literals = self.render()
        parts = []
        for chunk, literal in zip(chunks, literals):
            parts.append(chunk.decode("ascii", errors="replace"))
            parts.append(f"<{len(literal)} bytes>")
        parts.append(chunks[-1].decode("ascii", errors="replace"))
        return "".join(parts)

    @classmethod
    def from_text(cls, text: str) -> "Command":
        """Wrap a raw command line such as ``'SELECT "INBOX"'``.

        The arguments are sent verbatim. For SELECT, EXAMINE and STATUS the
        first argument is parsed to learn the target mailbox.

        Raises:
          ValueError: If the text is empty, contains CR/LF, or a mailbox
            argument cannot be parsed.
        """

        stripped = text.strip()
        if not stripped:
            raise ValueError("empty command")
        if "\r" in stripped or "\n" in stripped:
            raise ValueError("command text must not contain CR or LF")
        words = stripped.split(" ", 1)
        verb = words[0].upper()
        rest = words[1] if len(words) > 1 else ""
        if verb == "UID" and rest:
            sub, _, rest = rest.partition(" ")
            verb = f"UID {sub.upper()}"
        mailbox = None
        if verb in ("SELECT", "EXAMINE", "STATUS"):
            try:
                values = parse_values(rest)
            except ProtocolError as exc:
                raise ValueError(f"cannot parse mailbox in {text!r}: {exc}") from exc
            if not values:
                raise ValueError(f"{verb} requires a mailbox name")
            try:
                mailbox = decode_mailbox_name(values[0])
            except ProtocolError as exc:
                raise ValueError(f"invalid mailbox in {text!r}") from exc
        arguments = (Atom(rest),) if rest else ()
        return cls(verb=verb, arguments=arguments, mailbox=mailbox, sensitive=verb in ("LOGIN", "AUTHENTICATE"))
