"""Structured logging for the conversation engine (structlog over stdlib).

Every log line carries the conversation and form being worked on, taken from
context vars the driver binds when it loads a conversation. Output is JSON
unless ``debug`` is set, in which case it is rendered for the console.
"""

import logging
import sys
from contextvars import ContextVar

import structlog

from convoforms.config import Settings, get_settings

# ── Context variables (bound per turn) ──────────────────────────────

conversation_id_var: ContextVar[str | None] = ContextVar("conversation_id", default=None)
form_id_var: ContextVar[str | None] = ContextVar("form_id", default=None)

_CONTEXT_VARS = (
    (conversation_id_var, "conversation_id"),
    (form_id_var, "form_id"),
)

QUIET_LOGGERS = ("httpx", "httpcore", "openai", "redis")


def bind_conversation(conversation_id: str, form_id: str) -> None:
    """Tag subsequent log lines of the current task with the conversation."""
    conversation_id_var.set(conversation_id)
    form_id_var.set(form_id)


def _inject_context_vars(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Structlog processor adding the bound ids; explicit kwargs win."""
    for var, key in _CONTEXT_VARS:
        val = var.get()
        if val is not None:
            event_dict.setdefault(key, val)
    return event_dict


def _renderer(settings: Settings) -> structlog.types.Processor:
    if settings.debug:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def setup_logging(settings: Settings | None = None) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Call once at process startup, before the first conversation is loaded.
    """
    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _inject_context_vars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(settings),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
