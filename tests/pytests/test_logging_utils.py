from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from scripts.remote_deploy.logging_utils import (
    ROOT_LOGGER_NAME,
    StepLogger,
    log_file_name,
    setup_run_logging,
    shutdown_run_logging,
)


def test_log_file_name_is_dated() -> None:
    assert log_file_name(datetime(2024, 3, 9, 7, 5, 1)) == "deploy_20240309_070501.log"


def test_file_captures_debug_and_steps(tmp_path: Path) -> None:
    log_file = setup_run_logging(tmp_path / "logs", console=False, now=datetime(2024, 1, 2, 3, 4, 5))
    try:
        child = logging.getLogger(f"{ROOT_LOGGER_NAME}.remote_session")
        child.debug("remote stdout line")
        steps = StepLogger()
        steps.start("Cloning repository", icon="📦")
        steps.done("Repository cloned")
        steps.start("Provisioning", icon="🔗")
    finally:
        shutdown_run_logging()

    assert log_file == tmp_path / "logs" / "deploy_20240102_030405.log"
    text = log_file.read_text(encoding="utf-8")
    assert "Logs will be saved in" in text
    assert "remote stdout line" in text
    assert "Step 1: Cloning repository" in text
    assert "✅ Repository cloned" in text
    assert "Step 2: Provisioning" in text


def test_shutdown_detaches_handlers(tmp_path: Path) -> None:
    setup_run_logging(tmp_path, console=True)
    run_logger = logging.getLogger(ROOT_LOGGER_NAME)
    assert len(run_logger.handlers) == 2
    assert run_logger.propagate is False
    shutdown_run_logging()
    assert run_logger.handlers == []
    assert run_logger.propagate is True


def test_repeated_setup_does_not_duplicate_handlers(tmp_path: Path) -> None:
    setup_run_logging(tmp_path, console=False, now=datetime(2024, 1, 1))
    setup_run_logging(tmp_path, console=False, now=datetime(2024, 1, 2))
    try:
        assert len(logging.getLogger(ROOT_LOGGER_NAME).handlers) == 1
    finally:
        shutdown_run_logging()
