"""Tests for logging configuration."""

import json
import logging

from workflow_core.core.logging import (
    LogContextFilter,
    StructuredFormatter,
    clear_logging_context,
    log_with_context,
    logging_context,
    set_logging_context,
    setup_logging,
)


class _Capture(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestStructuredLogging:
    """Test cases for structured log output."""

    def test_formatter_emits_json_with_extra_fields(self):
        """Context fields end up in the JSON line."""
        record = logging.LogRecord("workflow_core.test", logging.INFO, __file__, 10, "node done", None, None)
        record.extra_fields = {"node_id": "J", "duration": 0.5}

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["message"] == "node done"
        assert entry["level"] == "INFO"
        assert entry["node_id"] == "J"
        assert entry["duration"] == 0.5

    def test_log_with_context(self):
        """Keyword context is attached to the record."""
        logger = logging.getLogger("workflow_core.test.context")
        capture = _Capture()
        logger.addHandler(capture)
        logger.setLevel(logging.DEBUG)
        try:
            log_with_context(logger, logging.INFO, "Node S completed", node_id="S", node_type="start")
        finally:
            logger.removeHandler(capture)

        assert capture.records[0].extra_fields == {"node_id": "S", "node_type": "start"}

    def test_context_filter_adds_fields(self, tmp_path):
        """Fields set globally are added to records written by the root handlers."""
        log_file = tmp_path / "logs" / "engine.log"
        setup_logging(level="INFO", log_file=str(log_file), structured=True)
        set_logging_context(request_id="req-1")
        try:
            logging.getLogger("workflow_core.core.test").info("hello")
        finally:
            clear_logging_context()
            root = logging.getLogger()
            for handler in root.handlers[:]:
                root.removeHandler(handler)
                handler.close()

        lines = log_file.read_text().strip().splitlines()
        entry = json.loads(lines[-1])
        assert entry["message"] == "hello"
        assert entry["request_id"] == "req-1"

    def test_scoped_context(self):
        """Fields from logging_context apply inside the block only."""
        context_filter = LogContextFilter()

        def make_record():
            record = logging.LogRecord("workflow_core.test", logging.INFO, __file__, 1, "msg", None, None)
            context_filter.filter(record)
            return record

        with logging_context(run_id="run-7"):
            inside = make_record()
        outside = make_record()

        assert inside.extra_fields == {"run_id": "run-7"}
        assert outside.extra_fields == {}

    def test_explicit_fields_win_over_context(self):
        """Fields passed with the call override ambient ones."""
        record = logging.LogRecord("workflow_core.test", logging.INFO, __file__, 1, "msg", None, None)
        record.extra_fields = {"node_id": "explicit"}

        with logging_context(node_id="ambient", run_id="r"):
            LogContextFilter().filter(record)

        assert record.extra_fields == {"node_id": "explicit", "run_id": "r"}
