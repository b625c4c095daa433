"""Cooperative fibers with an epoll-driven scheduler for non-blocking socket I/O."""

__version__ = "0.1.0"
__all__ = ["fibers", "scheduler", "epoll", "aio", "net"]