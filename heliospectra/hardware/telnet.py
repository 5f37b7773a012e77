"""Per-action TCP connection to the fixture's telnet line shell."""
from __future__ import annotations

import logging
import socket
import time
from typing import Callable, Optional

from ..errors import ProtocolError, TransportError
from ..protocols.shell import GREETING_TERMINATOR, PROMPT, check_ok

logger = logging.getLogger(__name__)

SocketFactory = Callable[[tuple[str, int], float], socket.socket]


class ShellConnection:
    """One conversation with the shell: dial, wait for the prompt, issue commands, hang up.

    The fixture tolerates a single control conversation at a time, so connections
    are never pooled or kept between actions.
    """

    def __init__(
        self,
        host: str,
        port: int = 23,
        timeout_s: float = 30.0,
        settle_s: float = 0.1,
        socket_factory: Optional[SocketFactory] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._host = host
        self._port = port
        self._timeout_s = timeout_s
        self._settle_s = settle_s
        self._socket_factory = socket_factory or socket.create_connection
        self._sleep = sleep
        self._sock: Optional[socket.socket] = None
        self._buffer = b""

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def open(self) -> None:
        if self._sock is not None:
            return
        try:
            self._sock = self._socket_factory((self._host, self._port), self._timeout_s)
            self._sock.settimeout(self._timeout_s)
        except OSError as exc:
            self._sock = None
            raise TransportError(f"could not dial {self._host}:{self._port}: {exc}") from exc
        try:
            if self._settle_s > 0:
                self._sleep(self._settle_s)
            self._read_until(GREETING_TERMINATOR)
        except BaseException:
            self.close()
            raise

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            finally:
                self._sock = None
                self._buffer = b""

    def command(self, line: bytes) -> str:
        """Send one command line and return the raw response body up to the prompt."""

        if self._sock is None:
            self.open()
        assert self._sock is not None
        try:
            self._sock.sendall(line)
        except OSError as exc:
            raise TransportError(f"write to {self._host}:{self._port} failed: {exc}") from exc
        body = self._read_until(PROMPT)
        logger.debug("%s -> %r", line.strip().decode("ascii", "replace"), body)
        return body

    def checked_command(self, line: bytes) -> str:
        name = line.split(b" ", 1)[0].strip().decode("ascii", "replace")
        return check_ok(name, self.command(line))

    def _read_until(self, terminator: bytes) -> str:
        assert self._sock is not None
        while terminator not in self._buffer:
            try:
                chunk = self._sock.recv(1024)
            except OSError as exc:
                raise TransportError(f"read from {self._host}:{self._port} failed: {exc}") from exc
            if not chunk:
                raise ProtocolError(f"connection to {self._host}:{self._port} closed before prompt")
            self._buffer += chunk
        index = self._buffer.index(terminator) + len(terminator)
        body, self._buffer = self._buffer[:index], self._buffer[index:]
        return body[: -len(terminator)].decode("ascii", "replace")

    def __enter__(self) -> "ShellConnection":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
