"""Blocking TCP/TLS byte stream used underneath the line codec.

What:
  Provide :class:`SocketTransport`, the minimal bidirectional byte stream the
  codec needs: read a line, read exactly ``n`` bytes, write, close.

Why:
  The protocol core must stay testable without sockets, so it only depends on
  the small :class:`Transport` interface. Tests substitute a scripted fake; the
  real adapter lives here.

How:
  Open a socket with :func:`socket.create_connection`, optionally wrap it with
  a default :class:`ssl.SSLContext`, and read through a buffered ``makefile``.
  Timeouts and EOF surface as :class:`~imapcore.errors.ConnectionLost`; other
  socket failures as :class:`~imapcore.errors.TransportError`.

Interfaces:
  :class:`Transport`, :class:`SocketTransport`.

Invariants & Safety:
  - A read timeout is reported as a closed transport, never as an empty read.
  - ``close`` is idempotent.
"""
from __future__ import annotations

import socket
import ssl
from typing import Optional

from .errors import ConnectionLost, TransportError


class Transport:
    """Interface expected by :class:`~imapcore.protocol.codec.LineCodec`."""

    def readline(self, limit: int) -> bytes:
        """Return bytes up to and including ``\\n`` (at most ``limit``); ``b""`` on EOF."""

        raise NotImplementedError

    def read(self, size: int) -> bytes:
        """Return up to ``size`` bytes; fewer only when the peer closed."""

        raise NotImplementedError

    def write(self, data: bytes) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class SocketTransport(Transport):
    """Transport over a TCP socket, optionally TLS-wrapped."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        use_tls: bool = True,
        timeout: Optional[float] = 30.0,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> None:
        self.host = host
        self.port = port
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
            if use_tls:
                context = ssl_context or ssl.create_default_context()
                sock = context.wrap_socket(sock, server_hostname=host)
        except socket.timeout as exc:
            raise ConnectionLost(f"timed out connecting to {host}:{port}") from exc
        except (OSError, ssl.SSLError) as exc:
            raise TransportError(f"unable to connect to {host}:{port}: {exc}") from exc
        self._sock: Optional[socket.socket] = sock
        self._file = sock.makefile("rb")

    def readline(self, limit: int) -> bytes:
        try:
            return self._file.readline(limit)
        except socket.timeout as exc:
            raise ConnectionLost("read timed out") from exc
        except (OSError, ValueError) as exc:
            raise TransportError(f"read failed: {exc}") from exc

    def read(self, size: int) -> bytes:
        chunks = []
        remaining = size
        try:
            while remaining > 0:
                chunk = self._file.read(remaining)
                if not chunk:
                    break
                chunks.append(chunk)
                remaining -= len(chunk)
        except socket.timeout as exc:
            raise ConnectionLost("read timed out") from exc
        except (OSError, ValueError) as exc:
            raise TransportError(f"read failed: {exc}") from exc
        return b"".join(chunks)

    def write(self, data: bytes) -> None:
        if self._sock is None:
            raise ConnectionLost("transport is closed")
        try:
            self._sock.sendall(data)
        except socket.timeout as exc:
            raise ConnectionLost("write timed out") from exc
        except OSError as exc:
            raise TransportError(f"write failed: {exc}") from exc

    def close(self) -> None:
        if self._sock is None:
            return
        try:
            self._file.close()
            self._sock.close()
        finally:
            self._sock = None
