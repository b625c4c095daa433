"""I/O calls that suspend the running fiber until its descriptor is ready.

Each call parks the current fiber on the global scheduler.
The fiber resumes once the operation has been carried out.
"""

from __future__ import annotations

from typing import Any, Callable, Union

from .epoll import AcceptData, EpollScheduler, ReadData, WriteData, current_scheduler
from .fibers import Action, ActionType, Context, Inspector

FileLike = Union[int, Any]


class _ParkInspector(Inspector):
    """Turns a fiber's yield into a wait on a file descriptor."""

    def __init__(self, park: Callable[[Context, Any], None]) -> None:
        self._park = park

    def __call__(self, action: Action, context: Context) -> None:
        if action.action is ActionType.SCHED:
            context.inspector = None
            self._park(context, action.user_data)
            action.action = ActionType.STOP


def _scheduler() -> EpollScheduler:
    sched = current_scheduler()
    if sched is None:
        raise RuntimeError("Global scheduler is empty")
    return sched


def _fileno(fd: FileLike) -> int:
    return fd if isinstance(fd, int) else fd.fileno()


def _suspend(sched: EpollScheduler, park: Callable[[Context, Any], None], data: Any) -> Any:
    sched.create_current_fiber_inspector(_ParkInspector, park)
    return sched.yield_(data)


def accept(fd: FileLike) -> int:
    """Wait for a connection on listening socket ``fd``; return the new, non-blocking descriptor."""
    sched = _scheduler()
    return _suspend(sched, sched.await_accept, AcceptData(_fileno(fd)))


def read(fd: FileLike, size: int) -> bytes:
    """Wait until ``fd`` is readable and read at most ``size`` bytes; ``b""`` means end of file."""
    sched = _scheduler()
    return _suspend(sched, sched.await_read, ReadData(_fileno(fd), size))


def write(fd: FileLike, data: bytes) -> int:
    """Wait until ``fd`` is writable and write ``data``; return the number of bytes written."""
    sched = _scheduler()
    return _suspend(sched, sched.await_write, WriteData(_fileno(fd), data))