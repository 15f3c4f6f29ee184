import logging
import sys

from session_ledger.config import get_settings


class KeyValueFormatter(logging.Formatter):
    """One line per record as ``key=value`` pairs, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"ts={self.formatTime(record, self.datefmt)} level={record.levelname} "
            f"logger={record.name} msg={record.getMessage()!r}"
        )
        if record.exc_info:
            line += f" exc={self.formatException(record.exc_info)!r}"
        return line


def configure_logging() -> None:
    """Install a single stdout handler on the root logger."""
    settings = get_settings()
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    if settings.ENVIRONMENT == "local":
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    else:
        handler.setFormatter(KeyValueFormatter())

    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
