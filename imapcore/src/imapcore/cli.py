"""imapcore command-line interface.

What:
  Provide a Typer-based ``imapcore`` command for poking at a server by hand:
  ``ping``, ``status``, ``envelope``, ``structure``, ``body`` and
  ``mailboxes``. Every command prints one JSON document on stdout.

Why:
  When a server misbehaves the fastest diagnosis is to run the exact client
  code path against it and look at the parsed result. Shipping that as a CLI
  keeps ad-hoc scripts from re-implementing connection setup.

How:
  The application callback loads :class:`~imapcore.config.schema.ClientConfig`
  and merges the global options over it. Each command opens a session with
  :func:`imapcore.session.connect` inside :func:`_session`, which logs in,
  guarantees logout, and maps the error taxonomy onto exit codes.

Interfaces:
  ``app`` (Typer application), ``main``.

Invariants & Safety:
  - Exit codes: ``0`` success, ``1`` configuration or usage problem, ``2``
    server rejected a command, ``3`` transport failure, ``4`` protocol error.
  - Mailboxes are opened with EXAMINE and bodies fetched with ``BODY.PEEK``,
    so the CLI never changes message flags.
  - The password comes from ``IMAPCORE_PASSWORD`` or an interactive prompt,
    never from a command-line argument.
"""
from __future__ import annotations

import contextlib
import dataclasses
import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional

import typer

from .config.loader import ConfigLoadError, load_client_config
from .config.schema import ClientConfig
from .errors import CommandFailure, MessageNotFound, ProtocolError, SequencingError, TransportError
from .models import BodyPart, Multipart
from .session import ImapSession, connect
from .utils.logging import set_log_level
from .utils.mime import decode_transfer_encoding


app = typer.Typer(help="Inspect an IMAP4rev1 server with the imapcore client")

LOGGER = logging.getLogger("imapcore.cli")

PASSWORD_ENV = "IMAPCORE_PASSWORD"


@dataclass
class _Options:
    """Global options resolved once per invocation."""

    config: ClientConfig
    host: Optional[str]
    port: Optional[int]
    use_tls: Optional[bool]
    user: Optional[str]


def _jsonable(value: Any) -> Any:
    """Convert model dataclasses into plain JSON types."""

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        payload = {
            item.name.rstrip("_"): _jsonable(getattr(value, item.name))
            for item in dataclasses.fields(value)
        }
        if isinstance(value, (BodyPart, Multipart)):
            payload["mime_type"] = value.mime_type
        return payload
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(_jsonable(item) for item in value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _emit(payload: Any) -> None:
    typer.echo(json.dumps(_jsonable(payload), indent=2, sort_keys=True))


def _password() -> str:
    password = os.environ.get(PASSWORD_ENV)
    if password is None:
        password = typer.prompt("IMAP password", hide_input=True)
    return password


@contextlib.contextmanager
def _session(options: _Options, *, login: bool = True) -> Iterator[ImapSession]:
    """Open, authenticate and finally log out a session, mapping errors to exit codes."""

    user = options.user or options.config.connection.username
    if login and not user:
        LOGGER.error("no user given: pass --user or set connection.username")
        raise typer.Exit(code=1)
    try:
        session = connect(
            options.host,
            options.port,
            options.use_tls,
            config=options.config,
        )
        with session:
            if login:
                session.login(user, _password())
            yield session
    except (CommandFailure, MessageNotFound) as exc:
        LOGGER.error("command_failed: %s", exc)
        raise typer.Exit(code=2) from exc
    except TransportError as exc:
        LOGGER.error("transport_failed: %s", exc)
        raise typer.Exit(code=3) from exc
    except (ProtocolError, SequencingError) as exc:
        LOGGER.error("protocol_failed: %s", exc)
        raise typer.Exit(code=4) from exc
    except ValueError as exc:
        LOGGER.error("invalid_request: %s", exc)
        raise typer.Exit(code=1) from exc


@app.callback()
def main_callback(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to imapcore.yaml"),
    host: Optional[str] = typer.Option(None, help="IMAP server host"),
    port: Optional[int] = typer.Option(None, help="IMAP server port"),
    tls: Optional[bool] = typer.Option(None, "--tls/--no-tls", help="Use implicit TLS"),
    user: Optional[str] = typer.Option(None, help="Login user name"),
    log_level: Optional[str] = typer.Option(None, help="JSON log threshold (DEBUG, INFO, WARN, ERROR)"),
) -> None:
    """Load configuration and remember the global connection options."""

    try:
        config = load_client_config(config_path)
    except ConfigLoadError as exc:
        LOGGER.error("config_load_failed: %s", exc)
        raise typer.Exit(code=1) from exc
    try:
        set_log_level(log_level or config.logging.level)
    except ValueError as exc:
        LOGGER.error("invalid_log_level: %s", exc)
        raise typer.Exit(code=1) from exc
    ctx.obj = _Options(config=config, host=host, port=port, use_tls=tls, user=user)


@app.command("ping")
def ping(ctx: typer.Context) -> None:
    """Connect, read the greeting and capabilities, and probe with NOOP."""

    options: _Options = ctx.obj
    with _session(options, login=False) as session:
        payload = {
            "greeting": session.connection.greeting,
            "capabilities": session.capabilities(),
            "alive": session.keep_alive(),
            "state": session.state,
        }
    _emit(payload)


@app.command("status")
def status(
    ctx: typer.Context,
    mailbox: str = typer.Argument("INBOX", help="Mailbox to query"),
) -> None:
    """Print STATUS counters of a mailbox without selecting it."""

    options: _Options = ctx.obj
    with _session(options) as session:
        state = session.status_of(mailbox)
    _emit(state)


@app.command("envelope")
def envelope(
    ctx: typer.Context,
    seq: int = typer.Argument(..., help="Message sequence number (or UID with --uid)"),
    mailbox: Optional[str] = typer.Option(None, help="Mailbox to examine"),
    uid: bool = typer.Option(False, "--uid", help="Treat SEQ as a UID"),
) -> None:
    """Print flags and envelope of one message."""

    options: _Options = ctx.obj
    with _session(options) as session:
        session.examine(mailbox or options.config.connection.mailbox)
        message = session.fetch_envelope(seq, uid=uid)
    _emit(message)


@app.command("structure")
def structure(
    ctx: typer.Context,
    seq: int = typer.Argument(..., help="Message sequence number (or UID with --uid)"),
    mailbox: Optional[str] = typer.Option(None, help="Mailbox to examine"),
    uid: bool = typer.Option(False, "--uid", help="Treat SEQ as a UID"),
) -> None:
    """Print the MIME part tree of one message with part paths."""

    options: _Options = ctx.obj
    with _session(options) as session:
        session.examine(mailbox or options.config.connection.mailbox)
        tree = session.fetch_structure(seq, uid=uid)
    parts = [
        {"path": path, "mime_type": node.mime_type, "encoding": node.encoding}
        for path, node in tree.walk()
        if path
    ]
    _emit({"structure": tree, "parts": parts})


@app.command("body")
def body(
    ctx: typer.Context,
    seq: int = typer.Argument(..., help="Message sequence number (or UID with --uid)"),
    part: str = typer.Argument("1", help="Body part path such as 1 or 1.2"),
    mailbox: Optional[str] = typer.Option(None, help="Mailbox to examine"),
    uid: bool = typer.Option(False, "--uid", help="Treat SEQ as a UID"),
    decode: bool = typer.Option(False, "--decode", help="Undo the part's transfer encoding"),
) -> None:
    """Print one body part (raw, or transfer-decoded with --decode)."""

    options: _Options = ctx.obj
    encoding = None
    with _session(options) as session:
        session.examine(mailbox or options.config.connection.mailbox)
        data = session.fetch_body_part(seq, part, uid=uid, peek=True)
        if decode:
            node = session.fetch_structure(seq, uid=uid).find(part)
            encoding = getattr(node, "encoding", None)
            try:
                data = decode_transfer_encoding(data, encoding)
            except ValueError as exc:
                LOGGER.error("decode_failed part=%s encoding=%s: %s", part, encoding, exc)
                raise typer.Exit(code=4) from exc
    _emit({"seq": seq, "part": part, "encoding": encoding, "size": len(data), "data": data})


@app.command("mailboxes")
def mailboxes(
    ctx: typer.Context,
    pattern: str = typer.Argument("*", help="LIST pattern"),
    reference: str = typer.Option("", help="LIST reference name"),
) -> None:
    """List mailboxes matching a pattern."""

    options: _Options = ctx.obj
    with _session(options) as session:
        listing = session.list_mailboxes(reference, pattern)
    _emit([{"name": name, "delimiter": delimiter, "flags": flags} for flags, delimiter, name in listing])


def main() -> None:
    """Execute the Typer application entry point."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
