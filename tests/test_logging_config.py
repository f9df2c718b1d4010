"""
Tests for structured logging
"""

import json
import logging

from globalpay.logging_config import (
    JSONFormatter, correlation_context, get_correlation_id, log_action, setup_logging
)


class ListHandler(logging.Handler):

    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestStructuredLogging:

    def setup_method(self):
        self.logger = setup_logging("INFO", logger_name="globalpay.test")
        self.handler = ListHandler()
        self.logger.addHandler(self.handler)

    def teardown_method(self):
        self.logger.removeHandler(self.handler)

    def test_log_action_fields(self):
        log_action(self.logger, "info", "send committed", account_id="acct-1",
                   action="send", resource="TXN1", extra={"fee": "1.00"})

        record = self.handler.records[0]
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "send committed"
        assert entry["level"] == "INFO"
        assert entry["account_id"] == "acct-1"
        assert entry["action"] == "send"
        assert entry["resource"] == "TXN1"
        assert entry["extra"] == {"fee": "1.00"}
        assert "correlation_id" not in entry

    def test_record_is_attributed_to_the_caller(self):
        log_action(self.logger, "info", "deposit committed", action="deposit")

        record = self.handler.records[0]
        assert record.module == "test_logging_config"
        assert record.funcName == "test_record_is_attributed_to_the_caller"
        entry = json.loads(JSONFormatter().format(record))
        assert entry["module"] == "test_logging_config"
        assert entry["function"] == "test_record_is_attributed_to_the_caller"

    def test_correlation_id_from_context(self):
        with correlation_context("req-7"):
            log_action(self.logger, "info", "send committed")
        log_action(self.logger, "info", "after request")

        inside, outside = [json.loads(JSONFormatter().format(r)) for r in self.handler.records]
        assert inside["correlation_id"] == "req-7"
        assert "correlation_id" not in outside
        assert get_correlation_id() is None

    def test_explicit_correlation_id_wins(self):
        with correlation_context("req-7"):
            log_action(self.logger, "info", "replayed", correlation_id="batch-1")
        entry = json.loads(JSONFormatter().format(self.handler.records[0]))
        assert entry["correlation_id"] == "batch-1"

    def test_disabled_level_is_skipped(self):
        log_action(self.logger, "debug", "noisy detail")
        assert self.handler.records == []

    def test_text_format(self):
        logger = setup_logging("WARNING", fmt="text", logger_name="globalpay.test.text")
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.level == logging.WARNING
        assert logger.propagate is False
