"""loguru sinks for the sshmesh CLI.

Library modules log through ``logger.bind(component=...)`` and stay silent
until a caller installs sinks here; the CLI does so once per invocation and
removes them on exit.

Example:
    ids = setup_logging(LogConfig(level="DEBUG", file="sshmesh.log"))
    try:
        ...
    finally:
        teardown_logging(ids)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Literal

from loguru import logger

logger.disable("sshmesh")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[component]} | {name}:{function}:{line} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """The ``[logging]`` table.

    ``file`` adds a DEBUG-level sink next to the console one; ``rotation``
    and ``retention`` only apply to it.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def _console_sink(config: LogConfig) -> int:
    return logger.add(
        sys.stderr,
        level=config.level,
        format=CONSOLE_FORMAT,
        colorize=True,
        filter="sshmesh",
    )


def _file_sink(path: str, config: LogConfig) -> int:
    return logger.add(
        path,
        level="DEBUG",
        format=FILE_FORMAT,
        rotation=config.rotation,
        retention=config.retention,
        compression="zip",
        diagnose=False,  # locals may hold key material
        enqueue=True,
        filter="sshmesh",
    )


def setup_logging(config: LogConfig) -> list[int]:
    """Install the sinks ``config`` asks for; returns their ids."""
    logger.configure(extra={"component": "sshmesh"})
    logger.enable("sshmesh")
    ids = [_console_sink(config)] if config.console else []
    if config.file:
        ids.append(_file_sink(config.file, config))
    return ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("sshmesh")
