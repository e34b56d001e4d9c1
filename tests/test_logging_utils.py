"""Tests for structured logging."""

import json
import logging
import sys

import pytest

from offline_sync.logging_utils import (
    StructuredJsonFormatter,
    SyncLoggerAdapter,
    configure_structured_logging,
)


def make_record(message="Drained 2 operations", **extra):
    record = logging.LogRecord(
        name="offline_sync.engine",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredJsonFormatter:
    def test_basic_fields(self):
        output = json.loads(StructuredJsonFormatter().format(make_record()))

        assert output["level"] == "INFO"
        assert output["logger"] == "offline_sync.engine"
        assert output["message"] == "Drained 2 operations"
        assert "timestamp" in output
        assert "context" not in output

    def test_extra_fields(self):
        record = make_record(operation_id="op-1", synced_count=2)

        output = json.loads(StructuredJsonFormatter().format(record))

        assert output["context"] == {"operation_id": "op-1", "synced_count": 2}

    def test_unserializable_extra_is_stringified(self):
        record = make_record(target=object())

        output = json.loads(StructuredJsonFormatter().format(record))

        assert output["context"]["target"].startswith("<object object")

    def test_exception(self):
        try:
            raise RuntimeError("remote down")
        except RuntimeError:
            record = make_record()
            record.exc_info = sys.exc_info()

        output = json.loads(StructuredJsonFormatter().format(record))

        assert "RuntimeError: remote down" in output["exception"]


class TestConfigureStructuredLogging:
    def test_replaces_handlers(self):
        logger = configure_structured_logging(logging.DEBUG, logger_name="offline_sync.test")
        configure_structured_logging(logging.DEBUG, logger_name="offline_sync.test")

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, StructuredJsonFormatter)
        assert logger.level == logging.DEBUG
        logger.handlers.clear()

    def test_level_by_name(self):
        logger = configure_structured_logging("debug", logger_name="offline_sync.test_names")

        assert logger.level == logging.DEBUG
        logger.handlers.clear()

    def test_unknown_level_name(self):
        with pytest.raises(ValueError, match="Unknown log level"):
            configure_structured_logging("chatty", logger_name="offline_sync.test_names")


class TestSyncLoggerAdapter:
    def test_adds_context(self, caplog):
        adapter = SyncLoggerAdapter(
            logging.getLogger("offline_sync.test_adapter"),
            {"operation_id": "op-7", "target_id": "n1"},
        )

        with caplog.at_level(logging.INFO, logger="offline_sync.test_adapter"):
            adapter.info("Synced PUT /api/notebooks/n1", extra={"attempts": 2})

        record = caplog.records[0]
        assert record.operation_id == "op-7"
        assert record.target_id == "n1"
        assert record.attempts == 2

    async def test_engine_logs_operation_context(self, caplog, engine, oplog, remote):
        """Rejected operations are logged with their operation id."""
        operation = await oplog.enqueue("/entities/n1", "PUT", {"title": "A"})
        remote.reject("/entities/n1", status=404)

        with caplog.at_level(logging.WARNING, logger="offline_sync.engine"):
            await engine.drain()

        rejected = [r for r in caplog.records if "Discarding rejected" in r.getMessage()]
        assert rejected[0].operation_id == operation.operation_id
        assert rejected[0].target_id == "n1"
