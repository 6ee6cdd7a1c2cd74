"""structlog setup shared by the CLI, the queue consumer and the web app."""

import logging
import sys

import structlog

_BASE_PROCESSORS: tuple[structlog.types.Processor, ...] = (
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
)


def _renderers(json_output: bool) -> list[structlog.types.Processor]:
    if json_output:
        # Tracebacks go into the event dict so batch aborts stay one JSON line
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def configure_logging(*, json_output: bool = False, level: int = logging.INFO) -> None:
    """Route every listing-hub event to stderr.

    Args:
        json_output: Emit one JSON object per event, for log shippers. The
            default is the human-readable console renderer.
        level: Events below this level are dropped before rendering.
    """
    structlog.configure(
        processors=[*_BASE_PROCESSORS, *_renderers(json_output)],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
