# /chatflow/utils/logging.py

import logging
import sys
import structlog
from chatflow.config.settings import Settings, settings as default_settings

# Structured logging for the engine. Module loggers (logging.getLogger) and
# structlog event loggers share one stdout handler: console output while
# developing, JSON lines everywhere else.

_HANDLER_NAME = "chatflow"

SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]

NOISY_LOGGERS = ("sklearn", "asyncio")


def _renderer(settings_obj: Settings):
    if settings_obj.environment == "development":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def setup_logging(settings_obj: Settings = default_settings) -> None:
    """
    Route structlog and stdlib logging through a single formatter.
    Safe to call more than once: the engine's handler is replaced, never duplicated.
    """
    structlog.configure(
        processors=SHARED_PROCESSORS + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=_renderer(settings_obj), foreign_pre_chain=SHARED_PROCESSORS)
    )

    root_logger = logging.getLogger()
    for existing in [h for h in root_logger.handlers if h.get_name() == _HANDLER_NAME]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings_obj.log_level, logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def conversation_log_context(identity: str):
    """Tag every log line emitted inside the block with the conversation identity."""
    return structlog.contextvars.bound_contextvars(identity=identity)
