"""Tests for structured logging setup."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator

import pytest
import structlog

from searchsync.config.settings import ObservabilitySettings
from searchsync.observability.logging import bind_context, clear_context, setup_logging


@pytest.fixture
def restore_root_logger() -> Iterator[logging.Logger]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)
    clear_context()
    structlog.reset_defaults()


class TestSetupLogging:
    def test_json_output(self, restore_root_logger: logging.Logger, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(ObservabilitySettings(log_level="debug", log_format="json"))
        assert restore_root_logger.level == logging.DEBUG

        bind_context(index="articles", operation="import")
        logging.getLogger("searchsync.sync").info("Imported %d documents", 3)

        line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert line["event"] == "Imported 3 documents"
        assert line["index"] == "articles"
        assert line["operation"] == "import"
        assert line["level"] == "info"
        assert line["logger"] == "searchsync.sync"

    def test_clear_context(self, restore_root_logger: logging.Logger, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(ObservabilitySettings(log_format="json"))

        bind_context(index="articles")
        clear_context()
        logging.getLogger("searchsync").warning("done")

        line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert "index" not in line

    def test_defaults(self, restore_root_logger: logging.Logger) -> None:
        setup_logging()
        assert restore_root_logger.level == logging.INFO
        assert len(restore_root_logger.handlers) == 1
