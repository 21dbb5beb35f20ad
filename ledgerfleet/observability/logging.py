"""Logging configuration for the operator.

Logging is silent until ``setup_logging`` attaches sinks; the operator
entry point calls it with the ``[logging]`` section of the config.

Example:
    from ledgerfleet.observability.logging import LogConfig, setup_logging

    handler_ids = setup_logging(LogConfig(level="DEBUG", console=True))
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from ledgerfleet.observability.logger import logger

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum level for the console sink.
        file: Path to the log file; empty disables file output.
        console: Whether to log to stderr through rich.
        rotation: Size at which the file is rotated (e.g. "50 MB").
        retention: Number of rotated files to keep.
    """

    level: LogLevel = "INFO"
    file: str = ".ledgerfleet/operator.log"
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def setup_logging(config: LogConfig) -> list[int]:
    """Attach sinks described by ``config`` and return their handler ids."""
    logger.remove()
    logger.enable()
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(logger.add(sys.stderr, level=config.level))

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handler_ids.append(logger.add(
            config.file,
            level="DEBUG",
            rotation=config.rotation,
            retention=config.retention,
        ))

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable()
