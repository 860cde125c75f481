"""
Root logger configuration driven by ``settings.logging``.

``text`` renders the classic one-line format; ``json`` hands records to
structlog, which renders one JSON object per line and keeps any
``extra={...}`` fields passed at the call site.
"""

import logging
import sys

import structlog

from signalgate.config import LoggingSettings

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Applied to records coming from the standard library loggers.
_PRE_CHAIN = [
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.ExtraAdder(),
    structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
]


def json_formatter() -> structlog.stdlib.ProcessorFormatter:
    """Build a formatter that renders records as single-line JSON."""
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_PRE_CHAIN,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(default=str),
        ],
    )


def configure_logging(settings: LoggingSettings) -> None:
    """Install a single stdout handler on the root logger."""
    handler = logging.StreamHandler(sys.stdout)
    if settings.format.lower() == "json":
        handler.setFormatter(json_formatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, settings.level.upper(), logging.INFO))
