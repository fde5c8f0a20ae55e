"""imapcore logging helpers with deterministic JSON emission and redaction.

What:
  Offer a tiny facade over Python streams so every protocol component can emit
  JSON log lines with consistent fields and automatic removal of credentials
  and message content.

Why:
  Protocol traces are the first thing anyone asks for when a server misbehaves,
  yet IMAP sessions carry passwords (``LOGIN``) and message bodies (literals).
  A structured layout keeps traces greppable while the redaction step keeps
  them shareable.

How:
  Provide a :class:`JsonLogger` dataclass bound to a target stream, a component
  name, and a minimum severity. ``extra`` dictionaries are scrubbed via a
  recursive redaction helper before being serialised with ``json.dump``.
  :func:`set_log_level` changes the module-wide threshold that every logger
  without an explicit ``level`` follows.

Interfaces:
  :class:`JsonLogger`, :func:`get_logger`, :func:`set_log_level`.

Invariants & Safety:
  - Every payload includes an ISO8601 timestamp, severity, and component.
  - Keys named ``password``, ``literal``, ``body`` or ``subject`` are replaced
    with ``[redacted]`` even inside nested dictionaries.
  - Streams are flushed after every write. Without an explicit stream the
    current ``sys.stderr`` is looked up on each write.
"""
from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({"password", "literal", "body", "subject"})
LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}

_default_level = "INFO"


@dataclass
class JsonLogger:
    """Structured JSON logger with automatic redaction.

    What:
      Emits single-line JSON entries that include timestamps, severity, a
      component tag, and optional supplemental fields.

    Why:
      Centralising structured logging avoids duplicating the redaction logic
      across codec, pipeline, and session code, and gives tests a uniform
      schema to assert on.

    How:
      Stores the destination stream, component label, and threshold, then
      exposes :meth:`debug`, :meth:`info`, :meth:`warning` and :meth:`error`
      wrappers around :meth:`log`.
    """

    stream: Any = None
    component: str = "imapcore"
    level: Optional[str] = None

    def enabled(self, level: str) -> bool:
        """Return whether ``level`` passes the threshold (module default when unset)."""

        threshold = self.level or _default_level
        return LEVELS.get(level.upper(), 0) >= LEVELS.get(threshold.upper(), 0)

    def log(self, level: str, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        """Emit a structured JSON log entry.

        What:
          Serialises ``message`` and ``extra`` metadata using the log schema
          (``ts``, ``lvl``, ``msg``, ``component``).

        How:
          Drops entries below the threshold, builds the core payload, merges a
          redacted copy of ``extra``, writes one JSON line, and flushes.

        Args:
          level: Severity name (``"DEBUG"``, ``"INFO"``, ``"WARN"``, ``"ERROR"``).
          message: Core log message.
          extra: Optional context dictionary that will be redacted recursively.
        """

        if not self.enabled(level):
            return
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "lvl": level.upper(),
            "msg": message,
            "component": self.component,
        }
        if extra:
            payload.update(self._redact(extra))
        stream = self.stream if self.stream is not None else sys.stderr
        json.dump(payload, stream, separators=(",", ":"), default=str)
        stream.write("\n")
        stream.flush()

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log a wire-level trace entry (suppressed unless level is DEBUG)."""

        self.log("DEBUG", message, extra=kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log an informational message with structured context."""

        self.log("INFO", message, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log a warning, typically a degraded but recoverable condition."""

        self.log("WARN", message, extra=kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log an error entry such as a lost connection."""

        self.log("ERROR", message, extra=kwargs)

    @staticmethod
    def _redact(data: Dict[str, Any]) -> Dict[str, Any]:
        """Remove sensitive keys from a payload recursively.

        What:
          Produces a copy of ``data`` where :data:`SENSITIVE_KEYS` are replaced
          with the ``[redacted]`` sentinel.

        Args:
          data: Arbitrary metadata to sanitise.

        Returns:
          A copy of ``data`` with sensitive values masked.
        """

        result: Dict[str, Any] = {}
        for key, value in data.items():
            if key in SENSITIVE_KEYS:
                result[key] = REDACTED
            elif isinstance(value, dict):
                result[key] = JsonLogger._redact(value)
            else:
                result[key] = value
        return result


def set_log_level(level: str) -> None:
    """Set the default threshold for loggers built by :func:`get_logger`.

    Raises:
      ValueError: If ``level`` is not one of :data:`LEVELS`.
    """

    global _default_level

    normalized = level.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in LEVELS:
        raise ValueError(f"unknown log level {level!r}")
    _default_level = normalized


def get_logger(component: str, *, stream: Any = None) -> JsonLogger:
    """Construct a :class:`JsonLogger` for the requested component.

    What:
      Returns a ready-to-use :class:`JsonLogger` bound to ``component``; it follows
      the module-wide threshold set by :func:`set_log_level`.

    Args:
      component: Logical subsystem name to include in log payloads.
      stream: Optional destination; defaults to ``sys.stderr`` resolved at write
        time.

    Returns:
      Configured :class:`JsonLogger` instance.
    """

    return JsonLogger(stream=stream, component=component)
