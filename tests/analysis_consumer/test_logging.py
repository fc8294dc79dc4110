"""Tests for logging context, formatters and setup."""

import json
import logging

import pytest

from analysis_consumer.logging import (
    MessageLogContext,
    clear_log_context,
    get_log_context,
    log_exception,
    set_log_context,
)
from analysis_consumer.errors import module_not_found
from analysis_consumer.logging.formatters import ConsoleFormatter, JSONFormatter
from analysis_consumer.logging.setup import get_log_file_path, setup_logging


def make_log_record(msg="Processing module", level=logging.INFO, **extra):
    record = logging.LogRecord(
        name="analysis_consumer.processor",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def cleanup():
    """Reset log context and root handlers after each test."""
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    clear_log_context()
    yield
    clear_log_context()
    for handler in root_logger.handlers:
        if handler not in handlers:
            handler.close()
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)


class TestMessageLogContext:
    def test_fields_scoped_to_block(self):
        with MessageLogContext(topic="t", offset=3):
            assert get_log_context()["message"] == {"topic": "t", "offset": 3}
        assert get_log_context()["message"] is None

    def test_nested_contexts_merge(self):
        with MessageLogContext(topic="t", offset=3):
            with MessageLogContext(module_name="left-pad"):
                assert get_log_context()["message"] == {
                    "topic": "t",
                    "offset": 3,
                    "module_name": "left-pad",
                }
            assert "module_name" not in get_log_context()["message"]

    def test_none_values_dropped(self):
        with MessageLogContext(topic="t", partition=None):
            assert get_log_context()["message"] == {"topic": "t"}


class TestJSONFormatter:
    def test_includes_context_and_extras(self):
        set_log_context(domain="npms", stage="consume", worker_id="w-1")

        with MessageLogContext(topic="t", partition=0, offset=7):
            line = JSONFormatter().format(
                make_log_record(module_name="left-pad", reason="blacklisted")
            )

        entry = json.loads(line)
        assert entry["msg"] == "Processing module"
        assert entry["level"] == "INFO"
        assert entry["domain"] == "npms"
        assert entry["stage"] == "consume"
        assert entry["worker_id"] == "w-1"
        assert entry["topic"] == "t"
        assert entry["offset"] == 7
        assert entry["module_name"] == "left-pad"
        assert entry["reason"] == "blacklisted"

    def test_unknown_extras_ignored(self):
        entry = json.loads(JSONFormatter().format(make_log_record(password="secret")))
        assert "password" not in entry


class TestConsoleFormatter:
    def test_includes_stage_and_module(self):
        set_log_context(stage="consume")

        line = ConsoleFormatter().format(make_log_record(module_name="left-pad"))

        assert "[consume]" in line
        assert "[left-pad] Processing module" in line

    def test_module_from_message_context(self):
        with MessageLogContext(module_name="ghost-pkg"):
            line = ConsoleFormatter().format(make_log_record())

        assert "[ghost-pkg]" in line


class TestLogException:
    def test_adds_error_fields(self, caplog):
        logger = logging.getLogger("analysis_consumer.test")

        with caplog.at_level(logging.WARNING, logger="analysis_consumer.test"):
            log_exception(
                logger,
                module_not_found("ghost-pkg"),
                "Module vanished",
                level=logging.WARNING,
                include_traceback=False,
            )

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.error_kind == "not_found"
        assert record.error_code == "MODULE_NOT_FOUND"
        assert "ghost-pkg" in record.error_message


class TestSetupLogging:
    def test_log_file_path(self, tmp_path):
        path = get_log_file_path(tmp_path, domain="npms", stage="consume", instance_id="p1")

        assert path.parent.parent == tmp_path / "npms"
        assert path.name.startswith("npms_consume_")
        assert path.name.endswith("_p1.log")

    def test_writes_json_file(self, tmp_path):
        logger = setup_logging(
            name="analysis_consumer",
            stage="consume",
            domain="npms",
            log_dir=tmp_path,
            use_instance_id=False,
        )
        logger.info("hello", extra={"module_name": "left-pad"})
        for handler in logging.getLogger().handlers:
            handler.flush()

        log_files = list(tmp_path.rglob("*.log"))
        assert len(log_files) == 1

        entries = [json.loads(line) for line in log_files[0].read_text().splitlines()]
        hello = next(e for e in entries if e["msg"] == "hello")
        assert hello["module_name"] == "left-pad"
        assert hello["stage"] == "consume"

    def test_quiets_noisy_loggers(self, tmp_path):
        setup_logging(log_dir=tmp_path)

        assert logging.getLogger("aiokafka").level == logging.WARNING
