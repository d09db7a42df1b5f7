"""Structured logging setup.

Usage in every module::

    from push_scheduler.logging_utils import get_logger
    log = get_logger(__name__)
    log.info("schedule_created", schedule_id=3)
"""

from __future__ import annotations

import logging
import sys
from typing import Any, List, Optional

import structlog


def get_logger(name: Optional[str] = None) -> Any:
    return structlog.get_logger(name)


def setup_logging(*, level: str = "INFO", json_logs: bool = False) -> None:
    """Configure stdlib handlers and structlog. Call once at process start."""

    log_level = getattr(logging, str(level).upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    logging.basicConfig(format="%(message)s", level=log_level, handlers=[handler], force=True)

    for noisy in ("urllib3", "httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    shared_processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        renderer: Any = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    for h in logging.root.handlers:
        h.setFormatter(formatter)
