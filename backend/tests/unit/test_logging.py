# backend/tests/unit/test_logging.py
import logging

import structlog

from chatflow.config.settings import Settings
from chatflow.utils.logging import conversation_log_context, setup_logging


def test_setup_logging_is_idempotent():
    settings = Settings(database_path=":memory:", environment="test", log_level="debug")

    setup_logging(settings)
    setup_logging(settings)

    root = logging.getLogger()
    assert len([h for h in root.handlers if h.get_name() == "chatflow"]) == 1
    assert root.level == logging.DEBUG


def test_conversation_context_is_bound_only_inside_block():
    with conversation_log_context("5511"):
        assert structlog.contextvars.get_contextvars()["identity"] == "5511"

    assert "identity" not in structlog.contextvars.get_contextvars()
