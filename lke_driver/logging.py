"""Logging for the LKE driver.

Driver modules log through loguru with a bound ``component`` (``driver``,
``pools``, ``bootstrap``, ...). As a library the package is silent until the
host adapter turns it on, either explicitly or from the environment:

    from lke_driver import LogConfig, logging_enabled

    with logging_enabled(LogConfig.from_env()):
        asyncio.run(driver.create(options))

Environment variables read by ``LogConfig.from_env``:

    LKE_DRIVER_LOG_LEVEL  console level (default INFO)
    LKE_DRIVER_LOG_FILE   also write a rotating DEBUG log to this path
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, cast

from loguru import logger

if TYPE_CHECKING:
    from loguru import Record

PACKAGE = "lke_driver"

logger.disable(PACKAGE)

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

_LEVELS = ("TRACE", "DEBUG", "INFO", "WARNING", "ERROR")

LEVEL_ENV = "LKE_DRIVER_LOG_LEVEL"
FILE_ENV = "LKE_DRIVER_LOG_FILE"

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[component]: <9}</magenta> | "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[component]} | "
    "{name}:{function}:{line} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where and how much the driver logs.

    Attributes:
        level: Minimum level for the stderr sink.
        file: Optional log file; it always receives DEBUG and above.
        console: Whether to log to stderr.
        rotation: File rotation policy, e.g. "50 MB" or "1 day".
        retention: Number of rotated files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10

    @classmethod
    def from_env(cls) -> LogConfig:
        level = os.environ.get(LEVEL_ENV, "INFO").upper()
        if level not in _LEVELS:
            raise ValueError(f"{LEVEL_ENV} must be one of {', '.join(_LEVELS)}, got {level!r}")
        return cls(level=cast(LogLevel, level), file=os.environ.get(FILE_ENV) or None)


def _driver_records(record: Record) -> bool:
    if not record["name"] or not record["name"].startswith(PACKAGE):
        return False
    record["extra"].setdefault("component", record["name"].rpartition(".")[2])
    return True


def setup_logging(config: LogConfig) -> list[int]:
    """Enable driver logging and return the sink ids for teardown_logging."""
    logger.enable(PACKAGE)
    sinks: list[int] = []

    if config.console:
        sinks.append(logger.add(
            sys.stderr,
            level=config.level,
            format=CONSOLE_FORMAT,
            colorize=True,
            filter=_driver_records,
        ))

    if config.file:
        sinks.append(logger.add(
            config.file,
            level="DEBUG",
            format=FILE_FORMAT,
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            diagnose=False,  # no local variable values (tokens) in tracebacks
            enqueue=True,
            filter=_driver_records,
        ))

    return sinks


def teardown_logging(sinks: list[int]) -> None:
    """Remove the driver's sinks and silence the package again."""
    for sink in sinks:
        logger.remove(sink)
    logger.disable(PACKAGE)


@contextmanager
def logging_enabled(config: LogConfig) -> Iterator[None]:
    sinks = setup_logging(config)
    try:
        yield
    finally:
        teardown_logging(sinks)
