#!/usr/bin/env python3
"""
Unit tests for logging configuration and the audit trail.
"""

import json
import logging
import logging.handlers

import pytest

from shared.exceptions import ServerError
from shared.logging_config import (
    setup_logging, LogLevel, LogFormat, AuditLogger, StructuredFormatter,
    DetailedFormatter, log_structured_error
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def make_record(message="hello", **extra):
    record = logging.LogRecord("client.test", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSetupLogging:
    """Test logging setup."""

    def test_file_handler_and_level(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "logs" / "client.log"

        loggers = setup_logging(LogLevel.DEBUG, LogFormat.JSON, str(log_file), enable_console=False)
        loggers['client'].debug("written to file")
        for handler in loggers['root'].handlers:
            handler.flush()

        assert loggers['root'].level == logging.DEBUG
        assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in loggers['root'].handlers)
        entry = json.loads(log_file.read_text().splitlines()[-1])
        assert entry['message'] == "written to file"
        assert entry['logger'] == "client"

    def test_console_only(self, restore_root_logger):
        loggers = setup_logging(LogLevel.WARNING)

        assert len(loggers['root'].handlers) == 1
        assert loggers['root'].level == logging.WARNING


class TestFormatters:
    """Test log formatters."""

    def test_structured_formatter_includes_error(self):
        record = make_record(error_info=ServerError(500, "Boom"))

        entry = json.loads(StructuredFormatter().format(record))

        assert entry['error']['user_message'] == "Boom"
        assert entry['error']['context']['status_code'] == 500

    def test_structured_formatter_extra_fields(self):
        entry = json.loads(StructuredFormatter().format(make_record(request_id="abc")))

        assert entry['extra'] == {'request_id': "abc"}

    def test_detailed_formatter_includes_audit(self):
        record = make_record(audit_info={'event_type': 'logout'})

        assert "Audit:" in DetailedFormatter().format(record)


class TestAuditLogger:
    """Test authentication audit events."""

    def test_authentication_failure(self, caplog):
        with caplog.at_level(logging.INFO, logger="audit"):
            AuditLogger().log_authentication("login", success=False, failure_reason="Invalid email or password")

        record = caplog.records[-1]
        assert record.getMessage() == "Login failed"
        assert record.audit_info['result'] == "failure"
        assert record.audit_info['context']['failure_reason'] == "Invalid email or password"
        assert 'user_id' not in record.audit_info

    def test_token_refresh_and_logout(self, caplog):
        with caplog.at_level(logging.INFO, logger="audit"):
            AuditLogger().log_token_refresh(success=True)
            AuditLogger().log_logout(user_id="user-1", server_notified=False)

        refresh, logout = caplog.records[-2:]
        assert refresh.audit_info['event_type'] == "token_refresh"
        assert logout.audit_info['user_id'] == "user-1"
        assert logout.audit_info['context'] == {'server_notified': False}

    def test_log_structured_error(self, caplog):
        logger = logging.getLogger("client.test")
        with caplog.at_level(logging.WARNING, logger="client.test"):
            log_structured_error(logger, ServerError(403, "Nope"), logging.WARNING)

        assert caplog.records[-1].error_info.status_code == 403
