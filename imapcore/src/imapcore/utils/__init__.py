"""Expose the shared utility surface for imapcore.

What:
  Re-export logging, identifier, and MIME helpers so callers can write
  ``from imapcore.utils import get_logger`` without knowing file names.

Interfaces:
  ``get_logger``, ``set_log_level``, ``TagAllocator``, ``new_session_id``,
  ``decode_header_value``, ``decode_transfer_encoding``, ``parse_addresses``
  and ``format_address``.
"""

from .ids import TagAllocator, new_session_id
from .logging import get_logger, set_log_level
from .mime import decode_header_value, decode_transfer_encoding, format_address, parse_addresses

__all__ = [
    "get_logger",
    "set_log_level",
    "TagAllocator",
    "new_session_id",
    "decode_header_value",
    "decode_transfer_encoding",
    "format_address",
    "parse_addresses",
]
