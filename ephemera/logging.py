"""Logging configuration for provisioning output.

Provisioning runs inside test sessions, so the format is compact: one line
per lifecycle transition. When a record carries a container id it leads the
message, so the interleaved output of parallel launches stays readable; the
other structured fields trail as key=value pairs.
"""

import sys
from typing import TYPE_CHECKING

from loguru import logger

from ephemera.config import Settings


if TYPE_CHECKING:
    from loguru import Record


LEVEL_TAGS = {
    "TRACE": "dim",
    "DEBUG": "cyan",
    "INFO": "blue",
    "WARNING": "yellow",
    "ERROR": "red",
}


def _escape(text: str) -> str:
    """Make arbitrary text safe to embed in a loguru format string."""
    return text.replace("{", "{{").replace("}", "}}").replace("<", r"\<")


def _log_format(record: "Record") -> str:
    tag = LEVEL_TAGS.get(record["level"].name, "bold")
    extra = dict(record["extra"])
    container = extra.pop("container", None)

    fmt = f"<dim>{{time:HH:mm:ss.SSS}}</dim> <{tag}>{{level: <7}}</{tag}> "
    if container:
        fmt += f"<magenta>[{_escape(str(container))}]</magenta> "
    fmt += "{message}"
    if extra:
        fields = " ".join(f"{k}={v!r}" for k, v in extra.items())
        fmt += f" <dim>{_escape(fields)}</dim>"
    fmt += "\n"

    if record["exception"]:
        fmt += "{exception}\n"
    return fmt


def configure_logging(level: str | None = None) -> None:
    """Replace loguru's default handler with the ephemera stderr handler.

    Args:
        level: Minimum level to display; EPHEMERA_LOG_LEVEL when omitted.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level or Settings().log_level,
        format=_log_format,
        colorize=True,
    )
