"""Tests for logging_config module."""

import json
import logging

from node_enrollment.lib.logging_config import (
    LOGGER,
    EnrollmentJsonFormatter,
    _setup_logger,
    get_logger,
)


class TestEnrollmentJsonFormatter:
    """Tests for the JSON field set."""

    def test_keeps_only_known_fields(self) -> None:
        formatter = EnrollmentJsonFormatter(
            fmt="%(timestamp)s %(levelname)s %(name)s %(funcName)s %(lineno)d %(message)s",
            timestamp=True,
        )
        record = logging.LogRecord(
            name="node_enrollment.job",
            level=logging.INFO,
            pathname=__file__,
            lineno=42,
            msg="Job '%s' created",
            args=("peer1-enroll",),
            exc_info=None,
        )
        record.extra_field = "dropped"

        line = json.loads(formatter.format(record))

        assert line["message"] == "Job 'peer1-enroll' created"
        assert line["level"] == "INFO"
        assert line["logger"] == "node_enrollment.job"
        assert line["lineno"] == 42
        assert "timestamp" in line
        assert "levelname" not in line
        assert "extra_field" not in line


class TestGetLogger:
    """Tests for get_logger."""

    def test_child_of_package_logger(self) -> None:
        logger = get_logger("hsm_enroller")

        assert logger.name == "node_enrollment.hsm_enroller"
        assert logger.parent is LOGGER

    def test_package_logger_writes_json(self) -> None:
        """Other handlers, e.g. the test runner's capture, may sit beside ours."""
        json_handlers = [
            h for h in LOGGER.handlers if isinstance(h.formatter, EnrollmentJsonFormatter)
        ]

        assert len(json_handlers) == 1
        assert LOGGER.propagate is False

    def test_setup_adds_json_handler_beside_foreign_handler(self) -> None:
        """A handler attached before import does not stop JSON setup."""
        saved = LOGGER.handlers[:]
        foreign = logging.NullHandler()
        LOGGER.handlers = [foreign]
        try:
            logger = _setup_logger()
            json_handlers = [
                h for h in logger.handlers if isinstance(h.formatter, EnrollmentJsonFormatter)
            ]

            assert logger is LOGGER
            assert len(json_handlers) == 1
            assert foreign in logger.handlers
        finally:
            LOGGER.handlers = saved
