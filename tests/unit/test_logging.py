"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Test suite for the logging module.
"""

import json
import logging
import uuid

import pytest

from resultsync.core.config import LoggingConfig
from resultsync.core.logging import (
    JSONFormatter,
    LogRedactor,
    RedactingFilter,
    create_logger,
    get_logger,
    log_operation,
)


@pytest.fixture
def isolated_logger_name():
    """Unique logger name so configured handlers never leak into other tests."""
    name = f"resultsync_test_{uuid.uuid4().hex[:8]}"
    yield name
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.mark.unit
class TestLogRedactor:
    @pytest.fixture
    def redactor(self):
        return LogRedactor()

    def test_redacts_api_key(self, redactor):
        assert redactor.redact("api_key=abcdef123456") == "api_key: [REDACTED]"

    def test_redacts_password(self, redactor):
        assert "hunter2" not in redactor.redact('{"password": "hunter2"}')

    def test_redacts_bearer_token(self, redactor):
        assert redactor.redact("Authorization: Bearer abcdefghijkl") == "Authorization: Bearer [REDACTED]"

    def test_leaves_plain_messages(self, redactor):
        assert redactor.redact("Submitted 5 results") == "Submitted 5 results"

    def test_non_string_passes_through(self, redactor):
        assert redactor.redact(42) == 42

    def test_filter_rewrites_record(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "token=%s", ("abcdefgh1234",), None)

        assert RedactingFilter().filter(record) is True
        assert "abcdefgh1234" not in record.getMessage()


@pytest.mark.unit
def test_json_formatter_includes_context():
    record = logging.LogRecord("resultsync.client", logging.WARNING, __file__, 10, "slow call", None, None)
    record.context_data = {"operation": "create_run"}

    data = json.loads(JSONFormatter().format(record))

    assert data["level"] == "WARNING"
    assert data["logger"] == "resultsync.client"
    assert data["message"] == "slow call"
    assert data["context"] == {"operation": "create_run"}


@pytest.mark.unit
def test_create_logger_writes_redacted_json_file(tmp_path, isolated_logger_name):
    log_file = tmp_path / "logs" / "resultsync.log"
    config = LoggingConfig(level="DEBUG", json_format=True, log_file=str(log_file))

    logger = create_logger(isolated_logger_name, config)
    logger.info("using api_key=abcdef123456")

    assert logger.propagate is False
    assert logger.level == logging.DEBUG
    lines = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert lines[-1]["message"] == "using api_key: [REDACTED]"


@pytest.mark.unit
def test_create_logger_replaces_handlers(isolated_logger_name):
    config = LoggingConfig(use_rich=False)

    create_logger(isolated_logger_name, config)
    logger = create_logger(isolated_logger_name, config)

    assert len(logger.handlers) == 1


@pytest.mark.unit
def test_get_logger_uses_injected_parent():
    parent = logging.getLogger("custom_parent")

    assert get_logger("parsers", parent).name == "custom_parent.parsers"
    assert get_logger("parsers").name == "resultsync.parsers"


@pytest.mark.unit
class TestLogOperation:
    def test_logs_start_and_completion(self, caplog):
        logger = logging.getLogger("resultsync_ops.success")
        with caplog.at_level(logging.INFO, logger="resultsync_ops.success"):
            with log_operation(logger, "parse", context={"files": 2}):
                pass

        messages = [record.getMessage() for record in caplog.records]
        assert messages[0] == "Starting parse"
        assert messages[1].startswith("Completed parse in ")
        assert caplog.records[0].context_data["files"] == 2
        assert "operation_id" in caplog.records[0].context_data

    def test_logs_and_reraises_failure(self, caplog):
        logger = logging.getLogger("resultsync_ops.failure")
        with caplog.at_level(logging.INFO, logger="resultsync_ops.failure"):
            with pytest.raises(RuntimeError):
                with log_operation(logger, "submit"):
                    raise RuntimeError("boom")

        failure = caplog.records[-1]
        assert failure.levelno == logging.ERROR
        assert failure.context_data["error_type"] == "RuntimeError"
        assert failure.context_data["error"] == "boom"
