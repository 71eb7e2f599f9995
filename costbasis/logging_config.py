# costbasis/logging_config.py
"""
Logging configuration for the cost-basis engine.
Concise single-line console output; set COSTBASIS_DEBUG=1 for verbose records.
"""
import logging
import os
import sys

DEBUG_MODE = os.getenv("COSTBASIS_DEBUG", "").lower() in ("1", "true", "yes")


class ConciseFormatter(logging.Formatter):
    """Single-line, concise log format."""

    FORMATS = {
        logging.DEBUG: "[D] %(name)s: %(message)s",
        logging.INFO: "[I] %(message)s",
        logging.WARNING: "[W] %(message)s",
        logging.ERROR: "[E] %(name)s: %(message)s",
        logging.CRITICAL: "[!] %(name)s: %(message)s",
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno, self.FORMATS[logging.INFO])
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


class VerboseFormatter(logging.Formatter):
    """Detailed format for debug mode."""
    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging(level=logging.INFO):
    """
    Configure logging for the costbasis package.
    Call this once at startup; library code only creates module loggers.
    """
    # Silence noisy third-party loggers
    for logger_name in ("sqlalchemy.engine", "sqlalchemy.pool"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    app_logger = logging.getLogger("costbasis")
    app_logger.handlers.clear()
    app_logger.propagate = False

    handler = logging.StreamHandler(sys.stdout)
    if DEBUG_MODE:
        handler.setFormatter(VerboseFormatter())
        app_logger.setLevel(logging.DEBUG)
    else:
        handler.setFormatter(ConciseFormatter())
        app_logger.setLevel(level)
    app_logger.addHandler(handler)

    return app_logger
