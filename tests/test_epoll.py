import os
import socket
from contextlib import suppress

import pytest

from fiberloop.epoll import (
    AcceptData,
    EpollScheduler,
    ReadData,
    WriteData,
    create_current_fiber_inspector,
    current_scheduler,
    schedule,
    scheduler_run,
    yield_,
)
from fiberloop.fibers import ActionType, Context, Inspector

ITERS = 10


class _Await(Inspector):
    def __init__(self, method):
        self.method = method

    def __call__(self, action, context):
        if action.action is ActionType.SCHED:
            context.inspector = None
            getattr(current_scheduler(), self.method)(context, action.user_data)
            action.action = ActionType.STOP


def _suspend(method, data):
    create_current_fiber_inspector(_Await, method)
    return current_scheduler().yield_(data)


def _read(fd, size):
    return _suspend("await_read", ReadData(fd, size))


def _write(fd, data):
    return _suspend("await_write", WriteData(fd, data))


def _accept(fd):
    return _suspend("await_accept", AcceptData(fd))


@pytest.fixture
def sched():
    scheduler = EpollScheduler()
    yield scheduler
    scheduler.close()


@pytest.fixture
def pipe():
    fds = os.pipe()
    yield fds
    for fd in fds:
        with suppress(OSError):
            os.close(fd)


@pytest.fixture
def listener():
    sock = socket.create_server(("127.0.0.1", 0))
    yield sock
    sock.close()


def _run(sched, *fibers):
    for fiber in fibers:
        sched.schedule(fiber)
    scheduler_run(sched)
    assert sched.empty()


def _nest(depth, leaf):
    if depth == 0:
        return leaf
    inner = _nest(depth - 1, leaf)
    return lambda: schedule(inner)


def _looper(order, fiber_id):
    def fiber():
        for _ in range(ITERS):
            order.append(fiber_id)
            yield_()

    return fiber


@pytest.mark.parametrize("count", [1, 3])
def test_simple_and_multiple(sched, count):
    hits = []
    _run(sched, *[lambda: hits.append(1)] * count)
    assert hits == [1] * count


def test_recursive(sched):
    hits = []
    _run(
        sched,
        *(_nest(depth, lambda name=name: hits.append(name)) for depth, name in ((1, "a"), (2, "b"), (3, "c"))),
    )
    assert sorted(hits) == ["a", "b", "c"]


def test_yield_one(sched):
    order = []
    sched.schedule(_looper(order, 1))
    assert order == []
    assert not sched.empty()
    _run(sched)
    assert order == [1] * ITERS


def test_yield_many_interleaves(sched):
    order = []
    _run(sched, *(_looper(order, fiber_id) for fiber_id in (1, 2, 3)))
    assert len(order) == 3 * ITERS
    assert all(a != b for a, b in zip(order, order[1:]))


def test_current_scheduler_set_only_while_running(sched):
    seen = []
    assert current_scheduler() is None
    _run(sched, lambda: seen.append(current_scheduler()))
    assert seen == [sched]
    assert current_scheduler() is None


@pytest.mark.parametrize(
    "call",
    [
        lambda: schedule(lambda: None),
        yield_,
        lambda: create_current_fiber_inspector(_Await, "await_read"),
    ],
)
def test_global_helpers_need_a_scheduler(call):
    with pytest.raises(RuntimeError, match="Global scheduler is empty"):
        call()


def test_nested_run_is_rejected(sched):
    other = EpollScheduler()
    try:
        sched.schedule(lambda: scheduler_run(other))
        with pytest.raises(RuntimeError, match="Global scheduler is not empty"):
            scheduler_run(sched)
    finally:
        other.close()
    assert current_scheduler() is None


def test_fiber_exception_propagates_and_run_resumes(sched):
    hits = []

    def thrower():
        raise RuntimeError("Thrower threw")

    sched.schedule(lambda: hits.append(1))
    sched.schedule(thrower)
    sched.schedule(lambda: hits.append(2))
    with pytest.raises(RuntimeError, match="Thrower threw"):
        scheduler_run(sched)
    assert hits == [1]
    assert current_scheduler() is None
    _run(sched)
    assert hits == [1, 2]


def test_pipe_read_write(sched, pipe):
    r, w = pipe
    got = []
    written = []
    _run(sched, lambda: got.append(_read(r, 100)), lambda: written.append(_write(w, b"hello")))
    assert written == [5]
    assert got == [b"hello"]
    assert os.get_blocking(r) is False
    assert os.get_blocking(w) is False


def test_large_transfer_through_pipe(sched, pipe):
    r, w = pipe
    payload = bytes(range(256)) * 800
    received = bytearray()

    def writer():
        view = memoryview(payload)
        while view:
            n = _write(w, bytes(view[:65536]))
            assert n > 0
            view = view[n:]

    def reader():
        while len(received) < len(payload):
            chunk = _read(r, 4096)
            assert chunk
            received.extend(chunk)

    _run(sched, writer, reader)
    assert bytes(received) == payload


def test_server_client_echo(sched, listener):
    port = listener.getsockname()[1]
    msg = b"Hello, hell!"
    echoed = []

    def server():
        fd = _accept(listener.fileno())
        data = _read(fd, 100)
        assert _write(fd, data) == len(data)
        os.close(fd)

    def client():
        with socket.create_connection(("127.0.0.1", port)) as conn:
            assert _write(conn.fileno(), msg) == len(msg)
            echoed.append(_read(conn.fileno(), 100))

    _run(sched, server, client)
    assert echoed == [msg]


def test_read_until_peer_closes(sched, listener):
    port = listener.getsockname()[1]
    result = []

    def server():
        fd = _accept(listener.fileno())
        chunks = []
        while chunk := _read(fd, 1024):
            chunks.append(chunk)
        os.close(fd)
        result.append(b"".join(chunks))

    def client():
        with socket.create_connection(("127.0.0.1", port)) as conn:
            _write(conn.fileno(), b"This is text message")

    _run(sched, server, client)
    assert result == [b"This is text message"]


@pytest.mark.parametrize(
    "first, second, message",
    [
        ("await_read", "await_read", "duplicate read await"),
        ("await_read", "await_accept", "duplicate accept await"),
        ("await_write", "await_write", "duplicate write await"),
    ],
)
def test_duplicate_await(sched, pipe, first, second, message):
    r, w = pipe
    requests = {
        "await_read": lambda: ReadData(r, 1),
        "await_write": lambda: WriteData(w, b"x"),
        "await_accept": lambda: AcceptData(r),
    }
    getattr(sched, first)(Context(lambda: None), requests[first]())
    with pytest.raises(RuntimeError, match=message):
        getattr(sched, second)(Context(lambda: None), requests[second]())


def test_cleanup_closed_fds_schedules_failure(sched, pipe):
    r, _ = pipe
    sched.await_read(Context(lambda: None), ReadData(r, 1))
    assert sched.empty()
    os.close(r)
    sched.cleanup_closed_fds()
    assert not sched.empty()
    with pytest.raises(RuntimeError, match="fd closed"):
        sched.run_one()
    assert sched.empty()


def test_context_manager_closes():
    with EpollScheduler() as scheduler:
        assert scheduler.closed is False
    assert scheduler.closed is True
    scheduler.close()
    assert scheduler.closed is True