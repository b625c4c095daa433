"""Fiber contexts: independent call stacks that hand control to each other.

Each fiber runs on its own thread, but only one context is ever active:
control moves by an explicit hand-off in ``Context.switch_context``.
"""

from __future__ import annotations

import abc
import enum
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

Fiber = Callable[[], None]


class ActionType(enum.Enum):
    """What a context switch asks the other side to do."""

    # scheduler -> fiber
    START = enum.auto()
    THROW = enum.auto()
    # fiber -> scheduler
    STOP = enum.auto()
    SCHED = enum.auto()


@dataclass
class Action:
    """A message passed along with a context switch."""

    action: ActionType
    user_data: Any = None


class Inspector(abc.ABC):
    """Hook run by the scheduler after a fiber hands control back."""

    @abc.abstractmethod
    def __call__(self, action: Action, context: "Context") -> None:
        """Inspect (and possibly alter) the returned action and its context."""


_local = threading.local()


def _current_context() -> "Context":
    ctx = getattr(_local, "context", None)
    if ctx is None:
        ctx = Context()
        ctx._bound = True
        _local.context = ctx
    return ctx


class Context:
    """An execution context, either a fiber or the thread that drives fibers."""

    def __init__(self, fiber: Optional[Fiber] = None) -> None:
        self.fiber = fiber
        self.inspector: Optional[Inspector] = None
        self.exception: Optional[BaseException] = None
        self.yield_data: Any = None
        self.failure: Optional[BaseException] = None
        self.resumer: Optional[Context] = None
        self._inbox: "queue.SimpleQueue[tuple[Context, Action]]" = queue.SimpleQueue()
        self._bound = False
        self._thread: Optional[threading.Thread] = None
        self._finished = False

    @property
    def started(self) -> bool:
        """True once the fiber has been entered at least once."""
        return self._thread is not None

    @property
    def finished(self) -> bool:
        """True once the fiber function has returned or raised."""
        return self._finished

    def switch_context(self, action: Action) -> Action:
        """Transfer control to this context and wait for control to come back.

        Returns the action that the context which resumes the caller sent.
        """
        if self._finished:
            raise RuntimeError("Context already finished")
        if self.fiber is None and not self._bound:
            raise RuntimeError("Context not initialized")
        source = _current_context()
        if source is self:
            raise RuntimeError("Context is already running")
        if self._thread is None and self.fiber is not None:
            self._thread = threading.Thread(target=self._trampoline, daemon=True)
            self._thread.start()
        self._deliver(source, action)
        return source._receive()

    def _deliver(self, sender: "Context", action: Action) -> None:
        self._inbox.put((sender, action))

    def _receive(self) -> Action:
        sender, action = self._inbox.get()
        self.resumer = sender
        return action

    def _trampoline(self) -> None:
        _local.context = self
        first = self._receive()
        try:
            if first.action is ActionType.THROW:
                raise first.user_data
            self.fiber()
        except BaseException as exc:  # noqa: BLE001 - handed to the scheduler
            self.failure = exc
        self._finished = True
        self.resumer._deliver(self, Action(ActionType.STOP))