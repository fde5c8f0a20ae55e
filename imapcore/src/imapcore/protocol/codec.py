"""Framing of the IMAP byte stream into lines and literals.

What:
  Turn the transport's byte stream into CRLF-terminated protocol lines and
  ``{n}``-announced literal blocks, and write tagged command lines back.

Why:
  Everything above this layer (tokenizer, pipeline) wants whole logical
  responses. Literals can embed CRLF and parentheses, so the only safe place
  to reassemble a response is where the byte counts are known.

How:
  :meth:`LineCodec.read_response` reads one line, and while that line ends
  with ``{n}`` it reads exactly ``n`` literal bytes plus the next line
  continuation. The result is a :class:`RawResponse` holding the line
  segments and literals in order.

Interfaces:
  :class:`RawResponse`, :class:`LineCodec`.

Invariants & Safety:
  - Nothing is ever truncated: short reads raise
    :class:`~imapcore.errors.ConnectionLost` and oversized lines or literals
    raise :class:`~imapcore.errors.TransportError`.
  - Only a numeric ``{n}`` marker announces a literal. Other brace text at
    the end of a line (``* OK ready {imap.example.org}``) is plain resp-text.
  - A command is handed to the transport as a single ``write`` call.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Tuple, Union

from ..errors import ConnectionLost, TransportError
from ..transport import Transport
from ..utils.logging import get_logger


CRLF = b"\r\n"
DEFAULT_MAX_LINE = 64 * 1024
DEFAULT_MAX_LITERAL = 64 * 1024 * 1024

_LITERAL_RE = re.compile(rb"\{(-?\d+)\}\Z")

LOGGER = get_logger("imapcore.codec")


@dataclass(frozen=True)
class RawResponse:
    """One logical server response.

    ``segments`` holds the line pieces (CRLF stripped) and ``literals`` the
    literal payloads; ``segments[i]`` ends with the ``{n}`` marker announcing
    ``literals[i]``, so ``len(segments) == len(literals) + 1``.
    """

    segments: Tuple[bytes, ...]
    literals: Tuple[bytes, ...] = ()

    @property
    def first_line(self) -> bytes:
        return self.segments[0]

    def __bytes__(self) -> bytes:
        parts = []
        for segment, literal in zip(self.segments, self.literals):
            parts.append(segment + CRLF + literal)
        parts.append(self.segments[-1])
        return b"".join(parts)


def _as_bytes(text: Union[str, bytes]) -> bytes:
    if isinstance(text, str):
        return text.encode("utf-8")
    return text


class LineCodec:
    """Line/literal framing over a :class:`~imapcore.transport.Transport`."""

    def __init__(
        self,
        transport: Transport,
        *,
        max_line: int = DEFAULT_MAX_LINE,
        max_literal: int = DEFAULT_MAX_LITERAL,
    ) -> None:
        self._transport = transport
        self._max_line = max_line
        self._max_literal = max_literal

    @property
    def transport(self) -> Transport:
        return self._transport

    def read_line(self) -> bytes:
        """Return the next line without its CRLF terminator.

        Raises:
          ConnectionLost: If the peer closed before a full line arrived.
          TransportError: If the line exceeds the configured maximum.
        """

        data = self._transport.readline(self._max_line + 2)
        if not data:
            raise ConnectionLost("connection closed by server")
        if not data.endswith(b"\n"):
            if len(data) >= self._max_line + 2:
                raise TransportError(f"line exceeds {self._max_line} bytes")
            raise ConnectionLost("connection closed in the middle of a line")
        if data.endswith(CRLF):
            return data[:-2]
        return data[:-1]

    def read_literal(self, size: int) -> bytes:
        """Read exactly ``size`` bytes of literal data.

        Raises:
          TransportError: If ``size`` is negative or above the literal limit.
          ConnectionLost: If the stream ends before ``size`` bytes arrived.
        """

        if size < 0 or size > self._max_literal:
            raise TransportError(f"refusing literal of {size} bytes")
        data = self._transport.read(size) if size else b""
        if len(data) != size:
            raise ConnectionLost(f"connection closed after {len(data)} of {size} literal bytes")
        return data

    def read_response(self) -> RawResponse:
        """Read one line plus any literals (and continuations) it announces."""

        segments = []
        literals = []
        line = self.read_line()
        while True:
            segments.append(line)
            match = _LITERAL_RE.search(line)
            if match is None:
                break
            literal = self.read_literal(int(match.group(1)))
            literals.append(literal)
            LOGGER.debug("literal received", size=len(literal))
            line = self.read_line()
        response = RawResponse(tuple(segments), tuple(literals))
        if LOGGER.enabled("DEBUG"):
            LOGGER.debug("S", line=segments[0][:200].decode("utf-8", errors="replace"))
        return response

    def write_command(self, tag: str, text: Union[str, bytes]) -> None:
        """Write ``tag SP text CRLF`` as a single transport write.

        Raises:
          ValueError: If ``text`` contains CR or LF.
        """

        payload = _as_bytes(text)
        if b"\r" in payload or b"\n" in payload:
            raise ValueError("command text must not contain CR or LF")
        self._transport.write(tag.encode("ascii") + b" " + payload + CRLF)

    def write_continuation(self, literal: bytes, rest: Union[str, bytes] = b"") -> None:
        """Send literal bytes followed by the remainder of the command line."""

        tail = _as_bytes(rest)
        if b"\r" in tail or b"\n" in tail:
            raise ValueError("command text must not contain CR or LF")
        self._transport.write(literal + tail + CRLF)
