"""Log sinks for the controller process.

Records from the ``asgctl`` namespace carry whatever context the emitting
component bound with ``logger.bind``. Sinks render the known context keys
in a fixed order after the call site, so a failed swap reads as::

    12:00:01.532 | WARNING  | asgctl.orchestration.saga:__aexit__:79 [component=swap group=web instance_id=i-1] - swap failed ...

The namespace stays disabled until ``setup_logging`` runs.
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from loguru import logger

NAMESPACE = "asgctl"

logger.disable(NAMESPACE)

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]

CONTEXT_KEYS = ("component", "operation", "group", "instance_id", "request_id")

_CONSOLE_PREFIX = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}:{function}:{line}</cyan>"
)
_FILE_PREFIX = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line}"


def _formatter(prefix: str, colorize: bool) -> Callable[[Any], str]:
    # Only key names go into the template; loguru fills in the values
    def render(record: Any) -> str:
        keys = [k for k in CONTEXT_KEYS if k in record["extra"]]
        context = " ".join(f"{k}={{extra[{k}]}}" for k in keys)
        if context:
            context = f" <dim>[{context}]</dim>" if colorize else f" [{context}]"
        message = "<level>{message}</level>" if colorize else "{message}"
        return f"{prefix}{context} - {message}\n{{exception}}"

    return render


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where the controller logs to.

    The console sink honors ``level``; the optional file sink always
    records DEBUG and up, rotated by ``rotation`` and zipped.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "1 day"
    retention: int = 10


def setup_logging(config: LogConfig) -> list[int]:
    """Replace all loguru sinks with the controller's and return their ids."""
    logger.remove()
    logger.enable(NAMESPACE)

    sinks: list[int] = []
    if config.console:
        sinks.append(logger.add(
            sys.stderr,
            level=config.level,
            format=_formatter(_CONSOLE_PREFIX, colorize=True),
            colorize=True,
            filter=NAMESPACE,
        ))
    if config.file:
        path = Path(config.file)
        path.parent.mkdir(parents=True, exist_ok=True)
        sinks.append(logger.add(
            path,
            level="DEBUG",
            format=_formatter(_FILE_PREFIX, colorize=False),
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            diagnose=False,
            enqueue=True,
            filter=NAMESPACE,
        ))
    return sinks


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable(NAMESPACE)


__all__ = [
    "CONTEXT_KEYS",
    "LogConfig",
    "NAMESPACE",
    "setup_logging",
    "teardown_logging",
]
