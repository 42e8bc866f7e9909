"""
logging_config.py — Centralized Logging Configuration for the Order Tracking Service

This module configures unified logging behavior for the entire application.
It ensures that all modules log messages in one format to the console and,
when configured, to a file.

Features:
    • Console output on stdout, optional file output
    • Process ID tagging for multi-process visibility
    • Standardized log format for all modules
    • Reduced verbosity for external dependencies (uvicorn access log, SQLAlchemy, httpx)
"""

import logging
import sys

LOG_FORMAT = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(message)s'

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx")


def setup_logging(level="INFO", log_file=""):
    """
    Configures the global logging system for the application.

    The configuration includes:
        - Log level: taken from `level` (default INFO)
        - Log format: timestamp, log level, process ID, and message
        - Output destinations:
            1. Console (stdout): real-time logs, Docker/Kubernetes compatible
            2. File: `log_file`, only when a path is given
        - Reduced verbosity for third-party libraries

    Args:
        level (str): Name of the root log level, e.g. "INFO" or "DEBUG".
        log_file (str): Path of an additional log file. Empty disables it.
    """
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a logger instance for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A logger that follows the global format and handlers.
    """
    return logging.getLogger(name)
