"""A first-in first-out scheduler for fibers."""

from __future__ import annotations

from collections import deque
from typing import Any, Callable, Optional, Union

from .fibers import Action, ActionType, Context, Inspector


class FiberScheduler:
    """Runs scheduled fibers in order until the queue drains."""

    def __init__(self) -> None:
        self._queue: "deque[Context]" = deque()
        self.sched_context: Optional[Context] = None

    def schedule(self, fiber: Union[Callable[[], None], Context]) -> None:
        """Queue a fiber function or an existing context."""
        if isinstance(fiber, Context):
            self._queue.append(fiber)
        else:
            self._queue.append(self.create_context_from_fiber(fiber))

    def create_context_from_fiber(self, fiber: Callable[[], None]) -> Context:
        """Wrap a callable in a fresh, not yet started context."""
        if not callable(fiber):
            raise TypeError("fiber must be callable")
        return Context(fiber)

    def yield_(self, data: Any = None) -> Any:
        """Hand control back to the scheduler from the running fiber.

        Returns the data the fiber is resumed with; raises the exception
        the fiber is resumed with, if any.
        """
        ctx = self.sched_context
        if ctx is None or ctx.resumer is None or ctx.finished:
            raise RuntimeError("yield outside of a running fiber")
        act = ctx.resumer.switch_context(Action(ActionType.SCHED, data))
        if act.action is ActionType.THROW:
            raise act.user_data
        return act.user_data

    def create_current_fiber_inspector(self, inspector_cls: Callable[..., Inspector], *args: Any) -> None:
        """Attach a new inspector to the fiber that is running now."""
        if self.sched_context is None:
            raise RuntimeError("no fiber is running")
        self.sched_context.inspector = inspector_cls(*args)

    def empty(self) -> bool:
        """True when no fiber is waiting to run."""
        return not self._queue

    def run_one(self) -> None:
        """Run the first queued fiber until it yields or finishes."""
        if not self._queue:
            raise RuntimeError("no fibers scheduled")
        context = self._queue.popleft()
        self.sched_context = context
        if context.exception is not None:
            action = Action(ActionType.THROW, context.exception)
            context.exception = None
        else:
            action = Action(ActionType.START, context.yield_data)
        context.yield_data = None
        ret = context.switch_context(action)

        if context.inspector is not None:
            context.inspector(ret, context)

        if ret.action is ActionType.SCHED:
            self._queue.append(context)
        elif context.finished and context.failure is not None:
            failure = context.failure
            context.failure = None
            raise failure

    def run(self) -> None:
        """Run fibers until the queue is empty."""
        while not self.empty():
            self.run_one()