"""IMAP4rev1 response parser.

What:
  Classify server responses as tagged completions, untagged data, or
  continuation requests, and turn the parenthesized-list grammar (RFC 3501
  sections 7 and 9) into typed records: envelopes, address lists, body
  structures, FETCH snapshots, STATUS maps, LIST entries.

Why:
  The grammar nests arbitrarily (multipart body structures, encapsulated
  messages) and quoted strings or literals may contain parentheses. A string
  splitter cannot get that right; a token cursor plus recursive descent can,
  and it can refuse unbalanced input instead of returning half a tree.

How:
  :func:`tokenize` scans every line segment of a
  :class:`~imapcore.protocol.codec.RawResponse`, substituting literal payloads
  for their ``{n}`` markers. :func:`parse_values` walks the tokens with a
  cursor, building Python lists for parenthesized groups, ``int`` for numbers,
  ``str`` for atoms, ``bytes`` for quoted strings and literals, and ``None``
  for ``NIL``. :func:`parse_response` dispatches on the first tokens.

Interfaces:
  ``TaggedResponse``, ``UntaggedResponse``, ``ContinuationRequest``,
  :func:`tokenize`, :func:`parse_values`, :func:`parse_list`,
  :func:`parse_response`, :func:`parse_fetch`, :func:`merge_fetch`, :func:`parse_envelope`,
  :func:`parse_address_list`, :func:`parse_body_structure`,
  :func:`decode_mailbox_name`.

Invariants & Safety:
  - Any grammar violation raises :class:`~imapcore.errors.ProtocolError`; no
    partially-built structure is ever returned.
  - Free-form response text (after ``OK``/``NO``/``BAD``) is never tokenized,
    so stray parentheses in human-readable text cannot break parsing.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

from imapclient import imap_utf7

from ..errors import ProtocolError
from ..models import Address, BodyPart, BodyStructure, Envelope, MessageEnvelope, Multipart
from ..utils.mime import decode_header_value
from .codec import RawResponse


STATUS_CONDITIONS = frozenset({"OK", "NO", "BAD", "BYE", "PREAUTH"})
TAGGED_STATUSES = frozenset({"OK", "NO", "BAD"})
MESSAGE_KEYWORDS = frozenset({"EXISTS", "RECENT", "EXPUNGE", "FETCH"})
NUMERIC_CODES = frozenset({"UIDVALIDITY", "UIDNEXT", "UNSEEN", "HIGHESTMODSEQ"})

_LITERAL_MARKER_RE = re.compile(rb"\{(\d+)\}\Z")
_TAG_RE = re.compile(rb"\A[A-Za-z0-9._-]+\Z")
_ATOM_BREAK = frozenset(b' ()"')

Value = Union[None, int, str, bytes, List[Any]]


class Token(NamedTuple):
    kind: str
    value: Any


@dataclass(frozen=True)
class TaggedResponse:
    """``<tag> OK|NO|BAD [code] text``."""

    tag: str
    status: str
    text: str
    code: Optional[str] = None
    code_data: Any = None


@dataclass(frozen=True)
class UntaggedResponse:
    """``* ...`` server data.

    ``kind`` is the keyword (``EXISTS``, ``FETCH``, ``FLAGS``, ``STATUS``,
    ``CAPABILITY``, ``LIST``, ``SEARCH``, ``OK``, ``BYE`` ...). ``number`` is set
    for message-data responses; ``data`` holds the parsed payload.
    """

    kind: str
    number: Optional[int] = None
    data: Any = None
    text: str = ""
    code: Optional[str] = None
    code_data: Any = None


@dataclass(frozen=True)
class ContinuationRequest:
    """``+ text``: the server is ready for literal data."""

    text: str


Response = Union[TaggedResponse, UntaggedResponse, ContinuationRequest]


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _scan(segment: bytes, tokens: List[Token], has_literal: bool) -> None:
    """Append the tokens of one line segment to ``tokens``."""

    index = 0
    length = len(segment)
    while index < length:
        char = segment[index]
        if char == 0x20:
            index += 1
        elif char == 0x28:
            tokens.append(Token("(", None))
            index += 1
        elif char == 0x29:
            tokens.append(Token(")", None))
            index += 1
        elif char == 0x22:
            buffer = bytearray()
            index += 1
            while True:
                if index >= length:
                    raise ProtocolError("unterminated quoted string", segment)
                char = segment[index]
                if char == 0x5C:
                    if index + 1 >= length:
                        raise ProtocolError("dangling escape in quoted string", segment)
                    buffer.append(segment[index + 1])
                    index += 2
                elif char == 0x22:
                    index += 1
                    break
                else:
                    buffer.append(char)
                    index += 1
            tokens.append(Token("STRING", bytes(buffer)))
        elif char == 0x7B:
            if not has_literal or _LITERAL_MARKER_RE.match(segment[index:]) is None:
                raise ProtocolError("unexpected literal marker", segment)
            tokens.append(Token("LITERAL", None))
            index = length
        else:
            start = index
            depth = 0
            while index < length:
                char = segment[index]
                if char == 0x5B:
                    depth += 1
                elif char == 0x5D:
                    depth -= 1
                    if depth < 0:
                        raise ProtocolError("unbalanced ']' in atom", segment)
                elif depth == 0 and char in _ATOM_BREAK:
                    break
                index += 1
            if depth:
                raise ProtocolError("unterminated section specifier", segment)
            if index < length and segment[index] == 0x3C and segment[index - 1] == 0x5D:
                end = segment.find(b">", index)
                if end == -1:
                    raise ProtocolError("unterminated partial specifier", segment)
                index = end + 1
            atom = segment[start:index].decode("ascii", errors="replace")
            if atom.upper() == "NIL":
                tokens.append(Token("NIL", None))
            elif atom.isdigit():
                tokens.append(Token("NUMBER", int(atom)))
            else:
                tokens.append(Token("ATOM", atom))


def tokenize(raw: Union[RawResponse, bytes, str]) -> List[Token]:
    """Split a response into tokens, inlining literal payloads.

    Raises:
      ProtocolError: On unterminated strings, sections, or stray markers.
    """

    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    if isinstance(raw, bytes):
        raw = RawResponse((raw,))
    tokens: List[Token] = []
    for position, segment in enumerate(raw.segments):
        has_literal = position < len(raw.literals)
        _scan(segment, tokens, has_literal)
        if has_literal:
            if not tokens or tokens[-1].kind != "LITERAL":
                raise ProtocolError("literal marker missing", segment)
            tokens[-1] = Token("LITERAL", raw.literals[position])
    return tokens


class _Cursor:
    def __init__(self, tokens: Sequence[Token]) -> None:
        self._tokens = tokens
        self._pos = 0

    def peek(self) -> Optional[Token]:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos]
        return None

    def next(self) -> Token:
        token = self.peek()
        if token is None:
            raise ProtocolError("unexpected end of response")
        self._pos += 1
        return token

    def at_end(self) -> bool:
        return self._pos >= len(self._tokens)


def _parse_value(cursor: _Cursor) -> Value:
    token = cursor.next()
    if token.kind == "(":
        items: List[Any] = []
        while True:
            upcoming = cursor.peek()
            if upcoming is None:
                raise ProtocolError("unbalanced parentheses: missing ')'")
            if upcoming.kind == ")":
                cursor.next()
                return items
            items.append(_parse_value(cursor))
    if token.kind == ")":
        raise ProtocolError("unbalanced parentheses: unexpected ')'")
    return token.value


def parse_values(raw: Union[RawResponse, bytes, str]) -> List[Value]:
    """Parse every top-level value of ``raw``.

    Lists become Python lists, numbers ``int``, atoms ``str``, quoted strings
    and literals ``bytes`` and ``NIL`` ``None``.
    """

    cursor = _Cursor(tokenize(raw))
    values: List[Value] = []
    while not cursor.at_end():
        values.append(_parse_value(cursor))
    return values


def parse_list(raw: Union[RawResponse, bytes, str]) -> List[Value]:
    """Parse exactly one parenthesized list.

    Raises:
      ProtocolError: If the input is not a single balanced list.
    """

    values = parse_values(raw)
    if len(values) != 1 or not isinstance(values[0], list):
        raise ProtocolError("expected exactly one parenthesized list")
    return values[0]


def _text(value: Value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return _decode(value)
    if isinstance(value, (str, int)):
        return str(value)
    raise ProtocolError(f"expected string, got list {value!r}")


def _number(value: Value, what: str) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, str)) and value.strip().isdigit():
        return int(value)
    raise ProtocolError(f"expected number for {what}, got {value!r}")


def _as_list(value: Value, what: str) -> List[Any]:
    if not isinstance(value, list):
        raise ProtocolError(f"expected list for {what}, got {value!r}")
    return value


def decode_mailbox_name(value: Value) -> str:
    """Decode a mailbox name sent in modified UTF-7 (RFC 3501 section 5.1.3)."""

    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        value = value.encode("utf-8")
    if not isinstance(value, bytes):
        raise ProtocolError(f"expected mailbox name, got {value!r}")
    return imap_utf7.decode(value)


def parse_address_list(value: Value) -> Tuple[Address, ...]:
    """Parse an envelope address list, flattening RFC 822 groups.

    ``NIL`` yields an empty tuple. Group start markers (host ``NIL``, mailbox
    set) tag the following members with the group name; the end marker (both
    ``NIL``) clears it.
    """

    if value is None:
        return ()
    entries = _as_list(value, "address list")
    addresses = []
    group: Optional[str] = None
    for entry in entries:
        fields = _as_list(entry, "address")
        if len(fields) != 4:
            raise ProtocolError(f"address must have 4 fields, got {len(fields)}")
        name, route, mailbox, host = fields
        if host is None:
            group = _text(mailbox)
            continue
        addresses.append(
            Address(
                name=decode_header_value(_text(name)),
                route=_text(route),
                mailbox=_text(mailbox),
                host=_text(host),
                group=group,
            )
        )
    return tuple(addresses)


def parse_envelope(value: Value) -> Envelope:
    """Parse the ten-field ``ENVELOPE`` structure."""

    fields = _as_list(value, "envelope")
    if len(fields) != 10:
        raise ProtocolError(f"envelope must have 10 fields, got {len(fields)}")
    return Envelope(
        date=_text(fields[0]),
        subject=decode_header_value(_text(fields[1])),
        from_=parse_address_list(fields[2]),
        sender=parse_address_list(fields[3]),
        reply_to=parse_address_list(fields[4]),
        to=parse_address_list(fields[5]),
        cc=parse_address_list(fields[6]),
        bcc=parse_address_list(fields[7]),
        in_reply_to=_text(fields[8]),
        message_id=_text(fields[9]),
    )


def _params(value: Value) -> Mapping[str, str]:
    if value is None:
        return MappingProxyType({})
    items = _as_list(value, "body parameters")
    if len(items) % 2:
        raise ProtocolError("body parameter list must contain name/value pairs")
    params: Dict[str, str] = {}
    for key, item in zip(items[::2], items[1::2]):
        params[(_text(key) or "").upper()] = _text(item) or ""
    return MappingProxyType(params)


def _disposition(value: Value) -> Optional[Tuple[str, Mapping[str, str]]]:
    if value is None:
        return None
    items = _as_list(value, "body disposition")
    if not items:
        raise ProtocolError("empty body disposition")
    return (_text(items[0]) or "", _params(items[1] if len(items) > 1 else None))


def _language(value: Value) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, list):
        return tuple(_text(item) or "" for item in value)
    return (_text(value) or "",)


def _extension(values: Sequence[Any], index: int) -> Value:
    return values[index] if len(values) > index else None


def parse_body_structure(value: Value) -> BodyStructure:
    """Build the body-structure tree from a ``BODY``/``BODYSTRUCTURE`` list.

    What:
      Returns a :class:`~imapcore.models.Multipart` when the list starts with
      nested lists, otherwise a :class:`~imapcore.models.BodyPart`. Encapsulated
      ``MESSAGE/RFC822`` parts carry their own envelope and nested tree.

    Raises:
      ProtocolError: On missing mandatory fields or malformed extension data.
    """

    fields = _as_list(value, "body structure")
    if not fields:
        raise ProtocolError("empty body structure")
    if isinstance(fields[0], list):
        children = []
        index = 0
        while index < len(fields) and isinstance(fields[index], list):
            children.append(parse_body_structure(fields[index]))
            index += 1
        if index >= len(fields):
            raise ProtocolError("multipart body is missing its subtype")
        extension = fields[index + 1:]
        return Multipart(
            subtype=_text(fields[index]) or "",
            children=tuple(children),
            params=_params(_extension(extension, 0)),
            disposition=_disposition(_extension(extension, 1)),
            language=_language(_extension(extension, 2)),
            location=_text(_extension(extension, 3)),
        )

    if len(fields) < 7:
        raise ProtocolError(f"body part needs at least 7 fields, got {len(fields)}")
    body_type = _text(fields[0]) or ""
    subtype = _text(fields[1]) or ""
    rest = fields[7:]
    lines: Optional[int] = None
    envelope: Optional[Envelope] = None
    body: Optional[BodyStructure] = None
    if body_type.upper() == "MESSAGE" and subtype.upper() == "RFC822" and len(rest) >= 3:
        envelope = parse_envelope(rest[0])
        body = parse_body_structure(rest[1])
        lines = _number(rest[2], "body lines")
        rest = rest[3:]
    elif body_type.upper() == "TEXT" and rest:
        lines = _number(rest[0], "body lines")
        rest = rest[1:]
    return BodyPart(
        type=body_type,
        subtype=subtype,
        params=_params(fields[2]),
        id=_text(fields[3]),
        description=_text(fields[4]),
        encoding=_text(fields[5]),
        size=_number(fields[6], "body size"),
        lines=lines,
        md5=_text(_extension(rest, 0)),
        disposition=_disposition(_extension(rest, 1)),
        language=_language(_extension(rest, 2)),
        location=_text(_extension(rest, 3)),
        envelope=envelope,
        body=body,
    )


def parse_fetch(number: int, value: Value) -> MessageEnvelope:
    """Convert a FETCH attribute list into a :class:`MessageEnvelope`.

    Section data (``BODY[...]``, ``RFC822*``, ``BINARY[...]``) lands in
    ``sections`` keyed by the upper-cased item name; ``NIL`` sections become
    empty bytes.
    """

    items = _as_list(value, "FETCH attributes")
    if len(items) % 2:
        raise ProtocolError("FETCH attributes must be name/value pairs")
    uid: Optional[int] = None
    flags: frozenset = frozenset()
    envelope: Optional[Envelope] = None
    structure: Optional[BodyStructure] = None
    size: Optional[int] = None
    internal_date: Optional[str] = None
    sections: Dict[str, bytes] = {}
    for key, item in zip(items[::2], items[1::2]):
        if not isinstance(key, str):
            raise ProtocolError(f"invalid FETCH item name {key!r}")
        name = key.upper()
        if name == "UID":
            uid = _number(item, "UID")
        elif name == "FLAGS":
            flags = frozenset(_text(flag) or "" for flag in _as_list(item, "FLAGS"))
        elif name == "ENVELOPE":
            envelope = parse_envelope(item)
        elif name in ("BODYSTRUCTURE", "BODY"):
            structure = parse_body_structure(item)
        elif name == "RFC822.SIZE":
            size = _number(item, "RFC822.SIZE")
        elif name == "INTERNALDATE":
            internal_date = _text(item)
        elif isinstance(item, (bytes, str)) or item is None:
            data = item.encode("utf-8") if isinstance(item, str) else item
            sections[name] = data or b""
    return MessageEnvelope(
        seq=number,
        uid=uid,
        flags=flags,
        envelope=envelope,
        body_structure=structure,
        size=size,
        internal_date=internal_date,
        sections=MappingProxyType(sections),
    )


def merge_fetch(first: MessageEnvelope, second: MessageEnvelope) -> MessageEnvelope:
    """Combine two FETCH records for the same message, ``second`` winning.

    Servers may split one message's data over several untagged FETCH
    responses (an unsolicited ``FLAGS`` update next to the requested items).
    Attributes absent from ``second`` keep their value from ``first``; an
    empty ``FLAGS`` list cannot be told apart from a missing one, so a
    non-empty flag set is never replaced by an empty one.
    """

    if first.seq != second.seq:
        raise ValueError(f"cannot merge FETCH data of messages {first.seq} and {second.seq}")
    sections = dict(first.sections)
    sections.update(second.sections)
    return MessageEnvelope(
        seq=first.seq,
        uid=second.uid if second.uid is not None else first.uid,
        flags=second.flags or first.flags,
        envelope=second.envelope if second.envelope is not None else first.envelope,
        body_structure=second.body_structure if second.body_structure is not None else first.body_structure,
        size=second.size if second.size is not None else first.size,
        internal_date=second.internal_date or first.internal_date,
        sections=MappingProxyType(sections),
    )


def _parse_code(code_body: bytes) -> Tuple[str, Any]:
    name, _, args = code_body.partition(b" ")
    code = _decode(name).upper()
    if not args.strip():
        return code, None
    if code in NUMERIC_CODES:
        return code, _number(args.decode("ascii", errors="replace"), code)
    if code == "CAPABILITY":
        return code, frozenset(part.upper() for part in _decode(args).split())
    if code == "PERMANENTFLAGS":
        return code, frozenset(_text(flag) or "" for flag in parse_list(args))
    return code, _decode(args)


def parse_resp_text(data: bytes) -> Tuple[Optional[str], Any, str]:
    """Split ``[code args] text`` into ``(code, code_data, text)``."""

    data = data.lstrip(b" ")
    if not data.startswith(b"["):
        return None, None, _decode(data).strip()
    end = data.find(b"]")
    if end == -1:
        raise ProtocolError("unterminated response code", data)
    code, code_data = _parse_code(data[1:end])
    return code, code_data, _decode(data[end + 1:]).strip()


def _parse_untagged(rest: bytes, raw: RawResponse) -> UntaggedResponse:
    head, _, remainder = rest.partition(b" ")
    if head.isdigit():
        number = int(head)
        keyword_bytes, _, _ = remainder.partition(b" ")
        keyword = _decode(keyword_bytes).upper()
        if keyword not in MESSAGE_KEYWORDS:
            raise ProtocolError(f"unknown message data keyword {keyword!r}", raw.first_line)
        if keyword != "FETCH":
            return UntaggedResponse(kind=keyword, number=number)
        values = parse_values(raw)
        if len(values) != 4:
            raise ProtocolError("FETCH response must carry exactly one attribute list", raw.first_line)
        return UntaggedResponse(kind="FETCH", number=number, data=parse_fetch(number, values[3]))

    keyword = _decode(head).upper()
    if keyword in STATUS_CONDITIONS:
        code, code_data, text = parse_resp_text(remainder)
        return UntaggedResponse(kind=keyword, text=text, code=code, code_data=code_data)
    if keyword == "CAPABILITY":
        return UntaggedResponse(
            kind=keyword, data=frozenset(part.upper() for part in _decode(remainder).split())
        )

    values = parse_values(raw)[2:]
    if keyword == "FLAGS":
        if len(values) != 1:
            raise ProtocolError("FLAGS response must carry one list", raw.first_line)
        return UntaggedResponse(
            kind=keyword, data=frozenset(_text(flag) or "" for flag in _as_list(values[0], "FLAGS"))
        )
    if keyword == "STATUS":
        if len(values) != 2:
            raise ProtocolError("STATUS response must carry a mailbox and a list", raw.first_line)
        items = _as_list(values[1], "STATUS attributes")
        if len(items) % 2:
            raise ProtocolError("STATUS attributes must be name/value pairs", raw.first_line)
        attributes = {
            (_text(key) or "").upper(): _number(item, "STATUS value")
            for key, item in zip(items[::2], items[1::2])
        }
        return UntaggedResponse(kind=keyword, data=(decode_mailbox_name(values[0]), attributes))
    if keyword in ("LIST", "LSUB"):
        if len(values) != 3:
            raise ProtocolError(f"{keyword} response must carry 3 fields", raw.first_line)
        flags = frozenset(_text(flag) or "" for flag in _as_list(values[0], f"{keyword} flags"))
        return UntaggedResponse(
            kind=keyword, data=(flags, _text(values[1]), decode_mailbox_name(values[2]))
        )
    if keyword == "SEARCH":
        return UntaggedResponse(kind=keyword, data=tuple(_number(v, "SEARCH result") for v in values))
    return UntaggedResponse(kind=keyword, data=values, text=_decode(remainder))


def parse_response(raw: Union[RawResponse, bytes]) -> Response:
    """Classify and parse one server response.

    What:
      Returns a :class:`ContinuationRequest` for ``+`` lines, an
      :class:`UntaggedResponse` for ``*`` lines and a :class:`TaggedResponse`
      otherwise.

    Raises:
      ProtocolError: If the response does not match the IMAP4rev1 grammar.
    """

    if isinstance(raw, bytes):
        raw = RawResponse((raw,))
    first = raw.first_line
    if first.startswith(b"+"):
        return ContinuationRequest(text=_decode(first[1:]).strip())
    tag, separator, rest = first.partition(b" ")
    if not separator or not rest:
        raise ProtocolError("response has no content after its tag", first)
    if tag == b"*":
        return _parse_untagged(rest, raw)
    if _TAG_RE.match(tag) is None:
        raise ProtocolError(f"invalid tag {tag!r}", first)
    status_bytes, _, resp_text = rest.partition(b" ")
    status = _decode(status_bytes).upper()
    if status not in TAGGED_STATUSES:
        raise ProtocolError(f"invalid tagged status {status!r}", first)
    code, code_data, text = parse_resp_text(resp_text)
    return TaggedResponse(
        tag=tag.decode("ascii"), status=status, text=text, code=code, code_data=code_data
    )
