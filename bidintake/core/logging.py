import logging
import os
import sys
from typing import Any, Optional

import structlog

HANDLER_NAME = "bidintake"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Configure structlog and route stdlib records through the same chain.

    Pipeline modules log with logging.getLogger(__name__); their records are
    rendered by a ProcessorFormatter so they carry the bound document context,
    timestamp and level just like structlog loggers do.

    Args:
        level: Log level name, defaults to LOG_LEVEL (INFO)
        json_logs: Render JSON lines instead of console output, defaults to JSON_LOGS
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_logs is None:
        json_logs = _env_flag("JSON_LOGS")

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    log_file = os.getenv("LOG_FILE")
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    # Repeated calls replace our handlers and leave any others in place
    for handler in list(root.handlers):
        if handler.get_name() == HANDLER_NAME:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        handler.set_name(HANDLER_NAME)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)


def bind_document_context(document_id: str, project_id: str) -> None:
    """Attach document identifiers to every log line emitted in this task."""
    structlog.contextvars.bind_contextvars(
        document_id=document_id, project_id=project_id
    )


def clear_document_context() -> None:
    structlog.contextvars.clear_contextvars()
