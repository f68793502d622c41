"""Process-wide logging setup.

Call sites use plain ``logging.getLogger(__name__)``; this module routes them
through structlog's ``ProcessorFormatter`` so the same records render as
readable console lines (``text``) or JSON lines (``json``).
"""

from __future__ import annotations

import logging
import sys

import structlog

_NOISE_LOGGERS = ("uvicorn.access", "urllib3")


def _shared_processors(time_fmt: str) -> list:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt, utc=True),
    ]


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    if fmt == "json":
        pre_chain = _shared_processors("iso")
        renderer = structlog.processors.JSONRenderer()
    else:
        pre_chain = _shared_processors("%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=pre_chain,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
