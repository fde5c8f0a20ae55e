"""
Module: tests/unit/test_config_loader.py

What:
    Validate configuration discovery, parsing, caching and error signalling.

Why:
    Connection defaults and protocol limits flow from this file into every
    session. A silently ignored typo (``max_line_byte``) or a password smuggled
    into YAML must fail loudly instead of producing a half-configured client.

How:
    Write YAML/JSON payloads into the per-test temporary directory, point the
    loader at them explicitly or via ``IMAPCORE_CONFIG_PATH``, and assert on the
    resulting models and raised exceptions.

Invariants & Safety Rules:
    - The autouse fixture resets the cache and runs each test from an empty
      working directory.
"""

import json

import pytest

from imapcore.config import (
    ClientConfig,
    ClientConfigError,
    ConfigLoadError,
    get_client_config,
    load_client_config,
    reset_client_config,
)

YAML_CONFIG = """
version: 1
connection:
  host: imap.example.org
  port: 10993
  timeout: 12.5
  username: alice
  mailbox: Archive
protocol:
  tag_prefix: C
  max_line_bytes: 8192
logging:
  level: DEBUG
"""


def test_load_from_explicit_path(tmp_path):
    """
    What:
        Load a complete YAML document from an explicit path.

    Why:
        The CLI ``--config`` flag relies on this path taking precedence over
        every discovered location.
    """

    path = tmp_path / "custom.yaml"
    path.write_text(YAML_CONFIG)
    config = load_client_config(path)
    assert config.connection.host == "imap.example.org"
    assert config.connection.resolved_port() == 10993
    assert config.connection.timeout == 12.5
    assert config.protocol.tag_prefix == "C"
    assert config.protocol.max_line_bytes == 8192
    assert config.protocol.max_literal_bytes == 64 * 1024 * 1024
    assert config.logging.level == "DEBUG"


def test_environment_variable_is_honoured(tmp_path, monkeypatch):
    path = tmp_path / "env.yaml"
    path.write_text("connection:\n  host: env.example.org\n")
    monkeypatch.setenv("IMAPCORE_CONFIG_PATH", str(path))
    assert get_client_config().connection.host == "env.example.org"


def test_json_documents_are_accepted(tmp_path):
    """
    What:
        JSON is a subset of YAML, so ``imapcore.yaml`` may hold JSON.
    """

    path = tmp_path / "imapcore.yaml"
    path.write_text(json.dumps({"connection": {"host": "json.example.org", "use_tls": False}}))
    config = load_client_config()
    assert config.connection.host == "json.example.org"
    assert config.connection.resolved_port() == 143


def test_defaults_when_nothing_is_found():
    config = load_client_config()
    assert config == ClientConfig()
    assert config.connection.resolved_port() == 993
    assert config.protocol.peek is True


def test_results_are_cached_until_reset(tmp_path):
    path = tmp_path / "imapcore.yaml"
    path.write_text("connection:\n  host: first.example.org\n")
    assert get_client_config().connection.host == "first.example.org"
    path.write_text("connection:\n  host: second.example.org\n")
    assert get_client_config().connection.host == "first.example.org"
    reset_client_config()
    assert get_client_config().connection.host == "second.example.org"
    path.write_text("connection:\n  host: third.example.org\n")
    assert load_client_config(reload=True).connection.host == "third.example.org"


def test_missing_explicit_path_raises(tmp_path):
    with pytest.raises(ClientConfigError):
        load_client_config(tmp_path / "absent.yaml")


@pytest.mark.parametrize(
    "payload",
    [
        "connection:\n  password: hunter2\n",
        "protocol:\n  tag_prefix: 'A-'\n",
        "connection:\n  port: 70000\n",
        "version: 2\n",
        "- just\n- a list\n",
        "connection: [unbalanced\n",
    ],
)
def test_invalid_documents_raise_config_load_error(tmp_path, payload):
    """
    What:
        Unknown keys, out-of-range values, wrong versions, non-mappings and
        broken YAML all surface as :class:`ConfigLoadError`.
    """

    path = tmp_path / "bad.yaml"
    path.write_text(payload)
    with pytest.raises(ConfigLoadError) as excinfo:
        load_client_config(path)
    assert str(path) in str(excinfo.value)
