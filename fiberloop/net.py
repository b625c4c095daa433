"""TCP helpers for fibers: socket setup, full writes and line-oriented reads."""

from __future__ import annotations

import socket
from typing import Any

from . import aio

LISTEN_BACKLOG = 16
CLIENT_HOST = "127.0.0.1"


def prepare_listen_sock(port: int) -> int:
    """Open a TCP socket listening on all interfaces at ``port``; return its descriptor."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        if hasattr(socket, "SO_REUSEPORT"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.bind(("", port))
        sock.listen(LISTEN_BACKLOG)
    except OSError:
        sock.close()
        raise
    return sock.detach()


def prepare_client_sock(port: int) -> int:
    """Connect to ``port`` on the loopback address; return the connected descriptor."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.connect((CLIENT_HOST, port))
    except OSError:
        sock.close()
        raise
    return sock.detach()


def write_all(fd: Any, data: bytes) -> None:
    """Write every byte of ``data`` to ``fd`` from within a fiber."""
    view = memoryview(data).cast("B")
    while len(view):
        written = aio.write(fd, view)
        if written <= 0:
            raise RuntimeError("write made no progress")
        view = view[written:]


class LineReader:
    """Reads newline-terminated lines from a descriptor from within a fiber."""

    BUFFER_SIZE = 1024

    def __init__(self, fd: Any) -> None:
        self.fd = fd
        self._buf = bytearray()

    def get_line(self) -> bytes:
        """Return the next line without its newline.

        At end of input the unterminated rest is returned, then ``b""``.
        Raises RuntimeError when a line does not fit in the buffer.
        """
        eof = False
        while True:
            if len(self._buf) >= self.BUFFER_SIZE:
                raise RuntimeError("line too long")
            end = self._buf.find(b"\n")
            if end >= 0:
                line = bytes(self._buf[:end])
                del self._buf[: end + 1]
                return line
            if eof:
                line = bytes(self._buf)
                self._buf.clear()
                return line
            chunk = aio.read(self.fd, self.BUFFER_SIZE - len(self._buf))
            if not chunk:
                eof = True
                continue
            self._buf += chunk