"""JSON logging configuration for node enrollment."""

import logging

from pythonjsonlogger import jsonlogger

# LogRecord attribute -> JSON key
RENAMED_FIELDS = {"levelname": "level", "name": "logger"}

LOG_FIELDS = frozenset(
    {"timestamp", "level", "logger", "message", "exc_info", "funcName", "lineno"}
)


class EnrollmentJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter emitting a fixed set of fields.

    The logger name is kept so concurrent enrollments for different
    components can be told apart.
    """

    def add_fields(self, log_record, record, message_dict):
        """Add the standard fields, rename them and drop everything else.

        Args:
            log_record: Dict serialized as the JSON line
            record: LogRecord being formatted
            message_dict: Fields parsed from a dict message
        """
        super().add_fields(log_record, record, message_dict)

        for source, target in RENAMED_FIELDS.items():
            if source in log_record:
                log_record[target] = log_record.pop(source)

        for key in [key for key in log_record if key not in LOG_FIELDS]:
            del log_record[key]


def _setup_logger() -> logging.Logger:
    """Configure the package root logger once.

    Returns:
        The 'node_enrollment' logger writing JSON lines to stderr
    """
    logger = logging.getLogger("node_enrollment")

    # Already configured on a previous import
    if any(isinstance(h.formatter, EnrollmentJsonFormatter) for h in logger.handlers):
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(
        EnrollmentJsonFormatter(
            fmt="%(timestamp)s %(levelname)s %(name)s %(funcName)s %(lineno)d %(message)s",
            timestamp=True,
        )
    )

    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(component: str) -> logging.Logger:
    """Return a child of the package logger for one component.

    Enrollers and clients take a logger in their constructor; this is the
    default they fall back to when the caller does not inject one.

    Args:
        component: Short component name, e.g. 'hsm_enroller'

    Returns:
        Logger named node_enrollment.<component>
    """
    return LOGGER.getChild(component)


LOGGER = _setup_logger()
