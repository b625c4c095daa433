"""A fiber scheduler that parks fibers on file descriptors and wakes them with epoll."""

from __future__ import annotations

import contextlib
import errno
import os
import select
import socket
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .fibers import Context, Inspector
from .scheduler import FiberScheduler

MAX_EVENTS = 64


@dataclass
class ReadData:
    """Request to read up to ``size`` bytes from ``fd``."""

    fd: int
    size: int


@dataclass
class WriteData:
    """Request to write ``data`` to ``fd``."""

    fd: int
    data: bytes


@dataclass
class AcceptData:
    """Request to accept one connection on the listening socket ``fd``."""

    fd: int


@dataclass
class _Node:
    context: Context
    fd: int
    data: Any
    callback: Callable[["_Node"], None]


@dataclass
class _Events:
    in_: Optional[_Node] = None
    out: Optional[_Node] = None

    @property
    def idle(self) -> bool:
        return self.in_ is None and self.out is None

    @property
    def mask(self) -> int:
        mask = 0
        if self.in_ is not None:
            mask |= select.EPOLLIN
        if self.out is not None:
            mask |= select.EPOLLOUT
        return mask


class _Slot:
    scheduler: Optional["EpollScheduler"] = None


_slot = _Slot()


def _os_failure(exc: OSError) -> RuntimeError:
    message = os.strerror(exc.errno) if exc.errno else str(exc)
    failure = RuntimeError(message)
    failure.__cause__ = exc
    return failure


class EpollScheduler(FiberScheduler):
    """Runs fibers and resumes those waiting on I/O once their descriptor is ready."""

    def __init__(self) -> None:
        super().__init__()
        try:
            self._epoll = select.epoll()
        except OSError as exc:
            raise RuntimeError("Can not create epoll") from exc
        self._wait_list: dict[int, _Events] = {}

    def __enter__(self) -> "EpollScheduler":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        """True once the underlying epoll object has been closed."""
        return self._epoll.closed

    def close(self) -> None:
        """Release the epoll descriptor."""
        if not self._epoll.closed:
            self._epoll.close()

    def await_read(self, context: Context, data: ReadData) -> None:
        """Park ``context`` until ``data.fd`` is readable, then read into it."""
        self._await(context, data, self._do_read, incoming=True, what="read")

    def await_write(self, context: Context, data: WriteData) -> None:
        """Park ``context`` until ``data.fd`` is writable, then write from it."""
        self._await(context, data, self._do_write, incoming=False, what="write")

    def await_accept(self, context: Context, data: AcceptData) -> None:
        """Park ``context`` until ``data.fd`` has a pending connection."""
        self._await(context, data, self._do_accept, incoming=True, what="accept")

    def _await(
        self,
        context: Context,
        data: Any,
        callback: Callable[[_Node], None],
        *,
        incoming: bool,
        what: str,
    ) -> None:
        fd = data.fd
        with contextlib.suppress(OSError):
            os.set_blocking(fd, False)
        node = _Node(context, fd, data, callback)

        elem = self._wait_list.setdefault(fd, _Events())
        was_empty = elem.idle
        if incoming:
            if elem.in_ is not None:
                raise RuntimeError(f"duplicate {what} await")
            elem.in_ = node
        else:
            if elem.out is not None:
                raise RuntimeError(f"duplicate {what} await")
            elem.out = node

        try:
            if was_empty:
                self._epoll.register(fd, elem.mask)
            else:
                self._epoll.modify(fd, elem.mask)
        except OSError as exc:
            raise RuntimeError("epoll_ctl failed") from exc

    def _do_read(self, node: _Node) -> None:
        try:
            chunk = os.read(node.fd, node.data.size)
        except OSError as exc:
            node.context.exception = _os_failure(exc)
        else:
            node.context.yield_data = chunk
        self.schedule(node.context)

    def _do_write(self, node: _Node) -> None:
        try:
            written = os.write(node.fd, node.data.data)
        except OSError as exc:
            node.context.exception = _os_failure(exc)
        else:
            node.context.yield_data = written
        self.schedule(node.context)

    def _do_accept(self, node: _Node) -> None:
        listener = socket.socket(fileno=node.fd)
        try:
            conn, _ = listener.accept()
        except OSError as exc:
            node.context.exception = _os_failure(exc)
        else:
            fd = conn.detach()
            os.set_blocking(fd, False)
            node.context.yield_data = fd
        finally:
            listener.detach()
        self.schedule(node.context)

    def _fail(self, node: _Node, message: str) -> None:
        node.context.exception = RuntimeError(message)
        self.schedule(node.context)

    def _forget(self, fd: int) -> None:
        with contextlib.suppress(OSError, ValueError):
            self._epoll.unregister(fd)
        del self._wait_list[fd]

    def cleanup_closed_fds(self) -> None:
        """Wake every fiber waiting on a descriptor that has been closed."""
        for fd, rec in list(self._wait_list.items()):
            try:
                os.fstat(fd)
            except OSError as exc:
                if exc.errno != errno.EBADF:
                    continue
            else:
                continue
            for node in (rec.in_, rec.out):
                if node is not None:
                    self._fail(node, "fd closed")
            self._forget(fd)

    def run(self) -> None:
        """Run fibers and wait for I/O until nothing is queued or waiting."""
        while True:
            self.cleanup_closed_fds()
            while not self.empty():
                self.run_one()
            self.cleanup_closed_fds()
            if not self._wait_list:
                break
            try:
                events = self._epoll.poll(-1, MAX_EVENTS)
            except OSError as exc:
                raise RuntimeError("epoll_wait failed") from exc
            for fd, ev in events:
                self._dispatch(fd, ev)
            self.cleanup_closed_fds()

    def _dispatch(self, fd: int, ev: int) -> None:
        rec = self._wait_list.get(fd)
        if rec is None:
            return
        if ev & (select.EPOLLERR | select.EPOLLHUP):
            for node in (rec.in_, rec.out):
                if node is not None:
                    self._fail(node, "epoll error")
            self._forget(fd)
            return
        if ev & select.EPOLLIN and rec.in_ is not None:
            node, rec.in_ = rec.in_, None
            node.callback(node)
        if ev & select.EPOLLOUT and rec.out is not None:
            node, rec.out = rec.out, None
            node.callback(node)
        if rec.idle:
            self._forget(fd)
        else:
            with contextlib.suppress(OSError):
                self._epoll.modify(fd, rec.mask)


def current_scheduler() -> Optional[EpollScheduler]:
    """The scheduler that ``scheduler_run`` is driving, or None."""
    return _slot.scheduler


def _require_scheduler() -> EpollScheduler:
    sched = _slot.scheduler
    if sched is None:
        raise RuntimeError("Global scheduler is empty")
    return sched


def schedule(fiber: Callable[[], None]) -> None:
    """Queue a fiber on the running scheduler."""
    _require_scheduler().schedule(fiber)


def yield_() -> None:
    """Move the running fiber to the back of the queue."""
    _require_scheduler().yield_(None)


def create_current_fiber_inspector(inspector_cls: Callable[..., Inspector], *args: Any) -> None:
    """Attach an inspector to the fiber currently running on the global scheduler."""
    _require_scheduler().create_current_fiber_inspector(inspector_cls, *args)


def scheduler_run(sched: EpollScheduler) -> None:
    """Make ``sched`` the global scheduler and run it to completion."""
    if _slot.scheduler is not None:
        raise RuntimeError("Global scheduler is not empty")
    _slot.scheduler = sched
    try:
        sched.run()
    finally:
        _slot.scheduler = None