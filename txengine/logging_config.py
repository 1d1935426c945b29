"""
Logging setup for applications embedding txengine.

The library itself only emits records: the lifecycle modules use stdlib
``logging`` and the bridge coordinator uses structlog. ``setup_logging``
renders both through one structlog pipeline so contextvars bound while a
transaction or transfer is in flight (``chain``, ``address``, ``transfer_id``)
show up on every line.
"""

import logging
import sys
from typing import IO, ContextManager, List, Optional

import structlog

from .config import settings

_LOG_FORMATS = ("auto", "json", "console")
_CHATTY_LOGGERS = ("httpcore", "httpx", "hpack")


def _pick_renderer(log_format: str, level: int) -> structlog.types.Processor:
    if log_format == "auto":
        log_format = "console" if level <= logging.DEBUG else "json"
    if log_format == "console":
        return structlog.dev.ConsoleRenderer(colors=False)
    return structlog.processors.JSONRenderer(sort_keys=True)


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    stream: Optional[IO[str]] = None,
) -> logging.Handler:
    """
    Install a single root handler rendering stdlib and structlog records alike.

    Args:
        log_level: Overrides ``settings.log_level``
        log_format: ``json``, ``console`` or ``auto`` (console at DEBUG, JSON
            otherwise); overrides ``settings.log_format``
        stream: Destination, stderr by default

    Returns:
        The installed handler, so callers can remove it again.
    """
    level_name = (log_level or settings.log_level).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {level_name}")

    log_format = (log_format or settings.log_format).lower()
    if log_format not in _LOG_FORMATS:
        raise ValueError(f"Unknown log format: {log_format}")

    pre_chain: List[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _pick_renderer(log_format, level),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # One request per poll tick
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return handler


def chain_context(chain: str, address: str = "") -> ContextManager[None]:
    """Bind the network (and signer) to every record logged inside the block."""
    fields = {"chain": chain}
    if address:
        fields["address"] = address
    return structlog.contextvars.bound_contextvars(**fields)
