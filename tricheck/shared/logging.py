import logging
import os
import sys
from logging.handlers import RotatingFileHandler

EVENTS_LEVEL_NUM = 38
DEFAULT_LOG_BACKUP_COUNT = 10
DEFAULT_LOG_MAX_BYTES = 50 * 1024 * 1024

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


_HTTP_REQUEST_SUBSTR = "HTTP Request:"


class _HttpRequestFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno > logging.INFO:
            return True
        try:
            message = record.getMessage()
        except Exception:
            return True
        return _HTTP_REQUEST_SUBSTR not in message


_http_request_filter = _HttpRequestFilter()


def suppress_http_request_logs() -> None:
    targets = (
        "httpx",
        "httpcore",
        "anthropic._base_client",
    )
    for name in targets:
        logging.getLogger(name).addFilter(_http_request_filter)


EVENTS_LOGGER_NAME = "event"
logging.addLevelName(EVENTS_LEVEL_NUM, "EVENT")


def log_event(message) -> None:
    """Record a settlement milestone on the EVENT logger (``events.log``)."""
    logging.getLogger(EVENTS_LOGGER_NAME).log(EVENTS_LEVEL_NUM, message)


def setup_events_logger(full_path, events_retention_size):
    logger = logging.getLogger(EVENTS_LOGGER_NAME)
    logger.setLevel(EVENTS_LEVEL_NUM)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(message)s",
        datefmt=DATE_FORMAT,
    )

    file_handler = RotatingFileHandler(
        os.path.join(full_path, "events.log"),
        maxBytes=events_retention_size,
        backupCount=DEFAULT_LOG_BACKUP_COUNT,
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(EVENTS_LEVEL_NUM)
    logger.addHandler(file_handler)

    return logger


def configure_logging(
    level: str = "INFO",
    log_dir: str | None = None,
    max_bytes: int = DEFAULT_LOG_MAX_BYTES,
) -> logging.Logger:
    """Configure root logging for the oracle process.

    Console output always; a rotating ``oracle.log`` plus ``events.log``
    when ``log_dir`` is given. Safe to call more than once.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if not any(getattr(h, "_tricheck", False) for h in root.handlers):
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        console._tricheck = True  # type: ignore[attr-defined]
        root.addHandler(console)

        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, "oracle.log"),
                maxBytes=max_bytes,
                backupCount=DEFAULT_LOG_BACKUP_COUNT,
            )
            file_handler.setFormatter(formatter)
            file_handler._tricheck = True  # type: ignore[attr-defined]
            root.addHandler(file_handler)
            setup_events_logger(log_dir, max_bytes)

    suppress_http_request_logs()
    return root
