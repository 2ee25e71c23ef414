"""
Unit tests for structured JSON logging.
"""

import json
import logging

import pytest

from clpool.core.logging_config import CustomJsonFormatter, setup_logging


@pytest.fixture
def logger_name(request):
    name = f"clpool.test.{request.node.name}"
    yield name
    logger = logging.getLogger(name)
    for handler in logger.handlers:
        handler.close()
    logger.handlers = []


def _record(msg="Swap executed", **extra):
    record = logging.LogRecord("clpool.pool", logging.INFO, __file__, 10, msg, None, None, func="swap")
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_adds_context_fields():
    formatter = CustomJsonFormatter(environment="production", service_name="clpool")

    payload = json.loads(formatter.format(_record(event="clpool.swap", amount0=1000)))

    assert payload["message"] == "Swap executed"
    assert payload["level"] == "info"
    assert payload["environment"] == "production"
    assert payload["service"] == "clpool"
    assert payload["event"] == "clpool.swap"
    assert payload["amount0"] == 1000
    assert payload["timestamp"]
    assert payload["source"]["function"] == "swap"
    assert payload["source"]["line"] == 10


def test_formatter_defaults_environment():
    payload = json.loads(CustomJsonFormatter().format(_record()))
    assert payload["environment"] == "development"


def test_setup_logging_writes_json_lines(tmp_path, logger_name):
    log_file = tmp_path / "logs" / "engine.json"
    logger = setup_logging(name=logger_name, log_file=str(log_file), level="DEBUG", enable_console=False)

    logger.info("Position minted", extra={"event": "clpool.mint", "amount": 5})
    for handler in logger.handlers:
        handler.flush()

    lines = log_file.read_text().strip().splitlines()
    assert len(lines) == 1
    payload = json.loads(lines[0])
    assert payload["event"] == "clpool.mint"
    assert payload["amount"] == 5
    assert payload["service"] == "clpool"


def test_setup_logging_replaces_handlers(logger_name):
    setup_logging(name=logger_name, level="WARNING")
    logger = setup_logging(name=logger_name, level="WARNING")
    assert len(logger.handlers) == 1
    assert logger.level == logging.WARNING


def test_setup_logging_without_handlers(logger_name):
    logger = setup_logging(name=logger_name, enable_console=False)
    assert logger.handlers == []



def test_unusable_log_file_is_reported_and_skipped(tmp_path, logger_name, caplog):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")

    logger = setup_logging(name=logger_name, log_file=str(blocker / "engine.json"), level="INFO")

    assert len(logger.handlers) == 1
    failures = [r for r in caplog.records if getattr(r, "event", None) == "logging.file_handler_failed"]
    assert len(failures) == 1
    assert failures[0].levelno == logging.WARNING
