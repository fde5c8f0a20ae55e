"""Tests for the logging, tag and MIME helpers under ``imapcore.utils``."""

import io
import json

import pytest

from imapcore.models import Address
from imapcore.protocol.commands import Command
from imapcore.utils import (
    TagAllocator,
    decode_header_value,
    decode_transfer_encoding,
    get_logger,
    new_session_id,
    parse_addresses,
    set_log_level,
)
from imapcore.utils.mime import format_address


def _entries(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_logger_emits_json_and_redacts_nested_keys():
    stream = io.StringIO()
    logger = get_logger("pipeline", stream=stream)
    logger.info("command_sent", tag="A0001", password="hunter2", extra={"body": b"secret", "size": 3})
    (entry,) = _entries(stream)
    assert entry["lvl"] == "INFO"
    assert entry["msg"] == "command_sent"
    assert entry["component"] == "pipeline"
    assert entry["tag"] == "A0001"
    assert entry["password"] == "[redacted]"
    assert entry["extra"] == {"body": "[redacted]", "size": 3}
    assert "ts" in entry


def test_threshold_follows_module_level():
    stream = io.StringIO()
    logger = get_logger("codec", stream=stream)
    logger.debug("hidden")
    set_log_level("debug")
    logger.debug("shown")
    set_log_level("WARNING")
    logger.info("hidden again")
    logger.warning("kept")
    assert [entry["msg"] for entry in _entries(stream)] == ["shown", "kept"]
    assert _entries(stream)[-1]["lvl"] == "WARN"


def test_unknown_log_level_is_rejected():
    with pytest.raises(ValueError):
        set_log_level("LOUD")


def test_sensitive_commands_are_not_described():
    login = Command("LOGIN", ("alice", "hunter2"), sensitive=True)
    assert "hunter2" not in login.describe()
    assert login.describe() == "LOGIN [redacted]"


def test_tags_increase_and_keep_prefix():
    allocator = TagAllocator("C", width=3)
    tags = [allocator.next() for _ in range(3)]
    assert tags == ["C001", "C002", "C003"]
    assert allocator.issued == 3


@pytest.mark.parametrize("prefix", ["", "A-", "*", "ä"])
def test_tag_prefix_must_be_ascii_alphanumeric(prefix):
    with pytest.raises(ValueError):
        TagAllocator(prefix)


def test_session_ids_are_unique():
    assert new_session_id() != new_session_id()


def test_decode_header_value_handles_encoded_words_and_nil():
    assert decode_header_value(None) is None
    assert decode_header_value(b"plain subject") == "plain subject"
    assert decode_header_value("=?utf-8?q?Caf=C3=A9?=") == "Café"


def test_decode_transfer_encoding():
    assert decode_transfer_encoding(b"aGVs\r\nbG8=\r\n", "base64") == b"hello"
    assert decode_transfer_encoding(b"caf=C3=A9=\r\n!", "QUOTED-PRINTABLE") == "café!".encode("utf-8")
    assert decode_transfer_encoding(b"as is", "7BIT") == b"as is"
    assert decode_transfer_encoding(b"as is", None) == b"as is"
    with pytest.raises(ValueError):
        decode_transfer_encoding(b"abc", "BASE64")


def test_parse_addresses_applies_default_host():
    addresses = parse_addresses('"Alice Smith" <alice@example.com>, bob', default_host="example.org")
    assert addresses == (
        Address(name="Alice Smith", route=None, mailbox="alice", host="example.com"),
        Address(name=None, route=None, mailbox="bob", host="example.org"),
    )


def test_format_address():
    assert format_address("alice", "example.com", "Alice") == "Alice <alice@example.com>"
    assert format_address("postmaster", "") == "postmaster"
