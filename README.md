# fiberloop

Cooperative fibers for Python. A scheduler runs the fibers one at a time.
When a fiber waits on a file descriptor, the scheduler parks it and wakes it
up again through `epoll`. Because of `epoll`, the package works on Linux only.

A fiber is any callable that takes no arguments. Fibers run in the order they
were scheduled. Each one keeps running until it yields, waits for I/O or
finishes. Every fiber has its own thread, but control passes from one to the
next by explicit hand-off, so only one fiber is ever running.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Running fibers

```python
from fiberloop.epoll import EpollScheduler, schedule, scheduler_run, yield_

counter = 0

def worker():
    global counter
    for _ in range(10):
        counter += 1
        yield_()          # go to the back of the run queue

def spawner():
    schedule(worker)      # add a fiber to the running scheduler

with EpollScheduler() as sched:   # closes the epoll descriptor on exit
    sched.schedule(worker)
    sched.schedule(spawner)
    scheduler_run(sched)          # returns when no fiber is runnable or waiting

assert counter == 20
```

Only one scheduler can run at a time:

- While a scheduler runs, `current_scheduler()` returns it. At any other time
  it returns `None`.
- `schedule`, `yield_` and `create_current_fiber_inspector` raise
  `RuntimeError` when no scheduler is running. So do the I/O calls.
- `scheduler_run` raises `RuntimeError` if another scheduler is already
  running.

If a fiber raises, `scheduler_run` stops and raises that same exception. Any
fibers still queued stay in the scheduler, so calling `scheduler_run(sched)`
again carries on with them.

If you do not use the scheduler as a context manager, call `sched.close()`
yourself when you are done with it.

## Non-blocking socket I/O

`fiberloop.aio` provides `accept`, `read` and `write`. Each takes either a
file descriptor or an object with a `fileno()` method, and switches that
descriptor to non-blocking mode. The calling fiber is suspended until the
descriptor is ready, and the other fibers run in the meantime.

- `accept(fd)` returns the new connection's descriptor, already non-blocking.
- `read(fd, size)` returns at most `size` bytes as `bytes`. An empty result
  means end of file.
- `write(fd, data)` returns the number of bytes written. This can be fewer
  than `len(data)`.

The waiting fiber gets a `RuntimeError` in any of these cases:

- the system call fails;
- `epoll` reports an error or hang-up on the descriptor;
- the descriptor is closed while the fiber waits on it.

Only one fiber may wait to read (or accept) on a descriptor at a time, and
only one may wait to write. A second one gets a `RuntimeError`.

`fiberloop.net` adds helpers:

- `prepare_listen_sock(port)` opens a TCP socket that listens on all
  interfaces, with `SO_REUSEPORT` set where it is available, and returns its
  descriptor.
- `prepare_client_sock(port)` connects to `127.0.0.1:port` and returns the
  descriptor. The connect itself is blocking.
- `write_all(fd, data)` keeps calling `aio.write` until every byte is written.
- `LineReader(fd).get_line()` returns the next line as `bytes`, without its
  newline.
  - At end of input it returns the unterminated rest, and after that `b""`.
  - A line that does not fit in 1024 bytes raises `RuntimeError`.

Here is an echo server and a client that talks to it:

```python
import os
from fiberloop import aio
from fiberloop.epoll import EpollScheduler, schedule, scheduler_run
from fiberloop.net import prepare_client_sock, prepare_listen_sock, write_all

PORT = 8080

def server():
    listener = prepare_listen_sock(PORT)
    client = aio.accept(listener)

    def echo():
        while chunk := aio.read(client, 1024):
            write_all(client, chunk)
        os.close(client)

    schedule(echo)
    os.close(listener)

def client():
    fd = prepare_client_sock(PORT)
    write_all(fd, b"Hello, hell!")
    print(aio.read(fd, 100))
    os.close(fd)

with EpollScheduler() as sched:
    sched.schedule(server)
    sched.schedule(client)
    scheduler_run(sched)
```

## Lower-level pieces

- `fiberloop.fibers` defines `Context`, `Action`, `ActionType` and
  `Inspector`. `Context.switch_context(action)` hands control to a context
  and returns the action it gets back.
- `fiberloop.scheduler.FiberScheduler` is a plain run-queue scheduler with no
  I/O. It has the following methods:
  - `schedule(fiber)` queues a callable or a `Context`.
  - `run_one()` and `run()` run the queued fibers.
  - `yield_(data)` is called from inside a fiber to give control back to the
    scheduler.

You attach an `Inspector` with `create_current_fiber_inspector(cls, *args)`.
The inspector is called with the fiber's action each time the fiber hands
control back. It can change that action to `STOP` and park the fiber
somewhere else. The I/O calls are built this way.

## What it does not do

- There is no command-line program. This is a library only.
- There are no timers, sleeps or timeouts. A fiber waiting on a descriptor
  waits until that descriptor is ready, fails or is closed.
- It does not run on platforms without `select.epoll`.