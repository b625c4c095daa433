[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fiberloop"
version = "0.1.0"
description = "Cooperative fibers with an epoll-driven scheduler for non-blocking socket I/O"
requires-python = ">=3.10"
dependencies = []
keywords = ["fibers", "coroutines", "scheduler", "epoll", "cooperative", "sockets", "non-blocking"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["fiberloop"]

[tool.pytest.ini_options]
addopts = "-ra"
