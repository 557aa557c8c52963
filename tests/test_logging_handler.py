import logging
import os
import time

import pytest

from samprunner.backend.handlers.logging_handler import GAME_LOG_NAME, LoggingHandler


@pytest.fixture
def log_dir(tmp_path):
    return tmp_path / "logs"


@pytest.fixture
def scratch_logger():
    logger = logging.getLogger("samprunner.tests.scratch")
    yield logger
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_rotation_keeps_backup_count(log_dir):
    handler = LoggingHandler(log_dir)
    log = log_dir / "samprunner-cli.log"
    for run in range(4):
        log.write_text(f"run {run}\n")
        handler.rotate_log_for_logger("samprunner", "samprunner-cli.log", backup_count=2)

    assert not log.exists()
    assert (log_dir / "samprunner-cli.log.1").read_text() == "run 3\n"
    assert (log_dir / "samprunner-cli.log.2").read_text() == "run 2\n"
    assert not (log_dir / "samprunner-cli.log.3").exists()


def test_game_log_is_never_rotated(log_dir):
    handler = LoggingHandler(log_dir)
    game_log = log_dir / GAME_LOG_NAME
    game_log.write_text("game output\n")

    handler.rotate_log_file_per_run(game_log)

    assert game_log.read_text() == "game output\n"
    assert game_log not in handler.get_log_files()


def test_setup_logger_writes_file_without_duplicate_handlers(log_dir, scratch_logger):
    handler = LoggingHandler(log_dir)

    handler.setup_logger(scratch_logger.name, "scratch.log")
    handler.setup_logger(scratch_logger.name, "scratch.log")
    scratch_logger.debug("prefix ready")
    for h in scratch_logger.handlers:
        h.flush()

    assert len(scratch_logger.handlers) == 2
    assert "DEBUG - prefix ready" in (log_dir / "scratch.log").read_text()


def test_cleanup_removes_only_stale_orchestrator_logs(log_dir):
    handler = LoggingHandler(log_dir)
    stale = log_dir / "samprunner-cli.log.3"
    fresh = log_dir / "samprunner-cli.log"
    game_log = log_dir / GAME_LOG_NAME
    for path in (stale, fresh, game_log):
        path.write_text("x")
    old = time.time() - 40 * 24 * 60 * 60
    os.utime(stale, (old, old))
    os.utime(game_log, (old, old))

    assert handler.cleanup_old_logs(days=30) == 1

    assert not stale.exists()
    assert fresh.exists()
    assert game_log.exists()
