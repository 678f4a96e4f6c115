from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

_LOGGING_CONFIGURED = False
_FILE_HANDLERS: dict[str, logging.Handler] = {}


def setup_logging(filename: str | Path | None = None, *, level: int = logging.INFO) -> structlog.BoundLogger:
    """Set up structured logging for the repo_fusion package.

    The first call configures structlog (JSON lines on stderr). Later calls with
    a filename attach an extra file handler, once per distinct file, so a CLI
    can redirect diagnostics after the module-level logger was created.

    Args:
        filename: Optional path to a diagnostic log file.
        level: Minimum level for emitted events.

    Returns:
        A structlog logger bound to the ``repo_fusion`` name.
    """
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if not _LOGGING_CONFIGURED:
        logging.basicConfig(
            level=level,
            handlers=[logging.StreamHandler(sys.stderr)],
            format="%(message)s",
        )
        structlog.configure(
            processors=[
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_CONFIGURED = True

    if filename and str(filename) not in _FILE_HANDLERS:
        handler = logging.FileHandler(str(filename), encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(message)s"))
        logging.getLogger().addHandler(handler)
        _FILE_HANDLERS[str(filename)] = handler

    return structlog.get_logger("repo_fusion")


logger = setup_logging()
