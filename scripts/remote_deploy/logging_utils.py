"""Run-scoped logging for remote deploys.

Each run appends to its own dated file: ``<log_dir>/deploy_YYYYMMDD_HHMMSS.log``.
The file captures everything at DEBUG (including full remote command output);
the console shows INFO and above.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path


ROOT_LOGGER_NAME = "scripts.remote_deploy"
LOG_PREFIX = "[remote-deploy]"

FILE_FORMAT = "[%(asctime)s] %(levelname)-8s %(message)s"
FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


class ColoredConsoleFormatter(logging.Formatter):
    """Console formatter: colored by level, timestamp like the log file."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime(FILE_DATEFMT)
        text = f"[{timestamp}] {record.getMessage()}"
        color = self.COLORS.get(record.levelname, "")
        if color:
            text = f"{color}{text}{self.RESET}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def log_file_name(now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"deploy_{stamp}.log"


def setup_run_logging(log_dir: str | Path = "logs", *, console: bool = True, now: datetime | None = None) -> Path:
    """Attach a dated file handler (and optionally a console handler).

    Returns the path of the log file for this run.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / log_file_name(now)

    run_logger = logging.getLogger(ROOT_LOGGER_NAME)
    run_logger.setLevel(logging.DEBUG)
    run_logger.propagate = False
    for handler in list(run_logger.handlers):
        run_logger.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(filename=log_file, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATEFMT))
    run_logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(ColoredConsoleFormatter())
        run_logger.addHandler(console_handler)

    run_logger.info("%s 🗂 Logs will be saved in: %s", LOG_PREFIX, log_file)
    return log_file


def shutdown_run_logging() -> None:
    run_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(run_logger.handlers):
        handler.flush()
        run_logger.removeHandler(handler)
        handler.close()
    run_logger.propagate = True


class StepLogger:
    """Numbered stage banners: one line before a stage, one after it."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger(ROOT_LOGGER_NAME)
        self.step_number = 0

    def start(self, message: str, *, icon: str = "🚀") -> None:
        self.step_number += 1
        self._logger.info("%s %s Step %d: %s", LOG_PREFIX, icon, self.step_number, message)

    def done(self, message: str) -> None:
        self._logger.info("%s ✅ %s", LOG_PREFIX, message)
