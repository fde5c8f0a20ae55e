"""MIME helpers for header words, transfer encodings, and address lists.

What:
  Decode RFC 2047 encoded words found in envelope fields, undo
  ``Content-Transfer-Encoding`` on fetched body parts, and convert RFC 822
  address strings to and from :class:`~imapcore.models.Address` values.

Why:
  The server hands envelope strings and body sections over verbatim. Callers
  almost always need readable subjects and decoded parts, and doing it in one
  place keeps charset fallbacks consistent.

How:
  Lean on the standard ``email`` package (:func:`email.header.decode_header`,
  :func:`email.utils.getaddresses`) the same way the rest of the ecosystem
  does, with ``errors="replace"`` decoding so malformed charsets never raise.

Interfaces:
  :func:`decode_header_value`, :func:`decode_transfer_encoding`,
  :func:`parse_addresses`, :func:`format_address`.

Invariants & Safety:
  - Decoding never raises on bad charsets; undecodable bytes are replaced.
  - Unknown transfer encodings return the payload untouched.
"""
from __future__ import annotations

import base64
import binascii
import quopri
from email.header import decode_header, make_header
from email.utils import formataddr, getaddresses
from typing import Optional, Tuple, Union

from ..models import Address


def _to_text(value: Union[bytes, str]) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def decode_header_value(value: Optional[Union[bytes, str]]) -> Optional[str]:
    """Decode an envelope string that may contain RFC 2047 encoded words.

    Args:
      value: Raw envelope field as delivered by the parser, or ``None`` for NIL.

    Returns:
      The decoded text, or ``None`` when the field is absent.
    """

    if value is None:
        return None
    text = _to_text(value)
    if "=?" not in text:
        return text
    try:
        return str(make_header(decode_header(text)))
    except (LookupError, UnicodeDecodeError, ValueError):
        return text


def decode_transfer_encoding(data: bytes, encoding: Optional[str]) -> bytes:
    """Undo a body part's ``Content-Transfer-Encoding``.

    What:
      Converts ``BASE64`` and ``QUOTED-PRINTABLE`` payloads back to raw bytes;
      identity encodings (``7BIT``, ``8BIT``, ``BINARY``) and unknown values
      are returned untouched.

    Args:
      data: Section bytes returned by ``FETCH BODY[...]``.
      encoding: Encoding from the part's body structure (case-insensitive).

    Returns:
      Decoded payload bytes.

    Raises:
      ValueError: If a base64 payload is corrupt.
    """

    name = (encoding or "").upper()
    if name == "BASE64":
        try:
            return base64.b64decode(b"".join(data.split()), validate=False)
        except binascii.Error as exc:
            raise ValueError(f"invalid base64 payload: {exc}") from exc
    if name == "QUOTED-PRINTABLE":
        return quopri.decodestring(data)
    return data


def parse_addresses(text: str, default_host: str = "") -> Tuple[Address, ...]:
    """Split an RFC 822 address list string into :class:`Address` entries.

    Entries without an ``@`` get ``default_host`` as their host, mirroring how
    classic c-client helpers treated unqualified local parts.
    """

    result = []
    for name, email_address in getaddresses([text]):
        if not email_address:
            continue
        mailbox, _, host = email_address.partition("@")
        result.append(
            Address(
                name=decode_header_value(name) or None,
                route=None,
                mailbox=mailbox,
                host=host or default_host or None,
            )
        )
    return tuple(result)


def format_address(mailbox: str, host: str, name: Optional[str] = None) -> str:
    """Render a single RFC 822 address (``"Name" <mailbox@host>``)."""

    return formataddr((name or "", f"{mailbox}@{host}" if host else mailbox))
