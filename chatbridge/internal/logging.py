import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

import structlog

from chatbridge.internal.constants import LOG_LEVEL_ENV_VAR

_LOGGING_CONFIGURED = False

_FOREIGN_PRE_CHAIN = [
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
]


def _configure_structlog() -> None:
    """
    Route structlog through the stdlib logging machinery. Handlers are only
    installed by setup_logging(), so a host application that never calls it
    keeps full control of its own logging.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,  # Key to integrate with stdlib handlers
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def setup_logging(log_level_name: str = "INFO", log_file_path: Optional[Path] = None, console_output: bool = False):
    """
    Configure logging for the application.
    - Uses structlog for structured logging.
    - Writes logs to a rotating file if log_file_path is provided (JSON when the name ends in .json).
    - Can optionally send human-readable logs to the console.
    - Log level can be set with the CHATBRIDGE_LOG_LEVEL environment variable or function argument.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    effective_log_level_name = os.environ.get(LOG_LEVEL_ENV_VAR, log_level_name).upper()
    log_level = getattr(logging, effective_log_level_name, logging.INFO)

    handlers = []

    if log_file_path:
        log_file_path = Path(log_file_path)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file_path,
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=5,
        )
        renderer = (
            structlog.processors.JSONRenderer()
            if log_file_path.name.endswith(".json")
            else structlog.dev.ConsoleRenderer(colors=False)
        )
        file_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=_FOREIGN_PRE_CHAIN,
        ))
        handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(),
            foreign_pre_chain=_FOREIGN_PRE_CHAIN,
        ))
        handlers.append(console_handler)

    # Avoid "No handlers could be found" noise
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    _configure_structlog()

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(log_level)

    _LOGGING_CONFIGURED = True


def get_logger(name: Optional[str] = None):
    return structlog.get_logger(name)


if not structlog.is_configured():
    _configure_structlog()
