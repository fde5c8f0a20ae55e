"""Generate command tags and session identifiers.

What:
  Provide the per-connection :class:`TagAllocator` used to correlate IMAP
  commands with their tagged completions, plus a helper for session IDs used
  in log correlation.

Why:
  A tag that is reused while its command is outstanding would make the
  pipeline resolve the wrong command. Keeping the allocator tiny and isolated
  makes that guarantee easy to audit.

How:
  Combine an alphanumeric prefix with a zero-padded monotonically increasing
  counter. Session IDs combine an ISO8601 timestamp with a random suffix.

Interfaces:
  :class:`TagAllocator`, :func:`new_session_id`.

Invariants & Safety:
  - Tags are strictly increasing and never reused for the lifetime of an
    allocator; a new connection gets a new allocator.
  - Tags only contain ``[A-Za-z0-9]`` so they never clash with IMAP
    ``tag`` grammar exclusions (``+``, ``*``, ``(``...).
"""
from __future__ import annotations

import secrets
from datetime import datetime, timezone


class TagAllocator:
    """Strictly increasing tag source (``A0001``, ``A0002`` ...)."""

    def __init__(self, prefix: str = "A", width: int = 4) -> None:
        if not prefix or not prefix.isalnum() or not prefix.isascii():
            raise ValueError(f"tag prefix must be alphanumeric, got {prefix!r}")
        self._prefix = prefix
        self._width = width
        self._counter = 0

    @property
    def issued(self) -> int:
        """Number of tags handed out so far."""

        return self._counter

    def next(self) -> str:
        """Return the next unused tag.

        The counter simply grows past ``width`` digits once exhausted, which
        keeps ordering by counter value without ever wrapping around.
        """

        self._counter += 1
        return f"{self._prefix}{self._counter:0{self._width}d}"


def new_session_id() -> str:
    """Return a unique identifier for a connection, e.g. ``...+00:00#1a2b3c``."""

    timestamp = datetime.now(timezone.utc).isoformat()
    suffix = secrets.token_hex(3)
    return f"{timestamp}#{suffix}"
