from __future__ import annotations
import logging, sys
import structlog

# per-request INFO lines from the HTTP stack; only shown at DEBUG
_CHATTY = ("httpx", "httpcore", "uvicorn.access")


def configure_logging(level: str = "INFO", json_logs: bool = True) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, stream=sys.stdout, format="%(message)s")
    for name in _CHATTY:
        logging.getLogger(name).setLevel(numeric if numeric <= logging.DEBUG else logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer() if not json_logs else structlog.processors.JSONRenderer(ensure_ascii=False),
    ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "yunhu"):
    return structlog.get_logger(f"yunhu_bridge.{name}")


def bind_event_id(event_id: str | None, event_type: str | None = None):
    """Tag every log line of one webhook delivery."""
    structlog.contextvars.bind_contextvars(event_id=event_id or "-", event_type=event_type or "-")


def clear_event_id():
    structlog.contextvars.unbind_contextvars("event_id", "event_type")
