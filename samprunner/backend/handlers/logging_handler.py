"""
Logging Handler

Owns <app-support>/logs/. Orchestrator logs (samprunner-cli.log and
friends) are rotated once per run and capped in size while running.
wine_game.log is written by the process supervisor and truncated per launch;
nothing here rotates or cleans it.
"""

import time
import logging
import logging.handlers
from pathlib import Path
from typing import List, Optional

DEFAULT_LOG_NAME = "samprunner-cli.log"
GAME_LOG_NAME = "wine_game.log"
MAX_LOG_BYTES = 1024 * 1024
BACKUP_COUNT = 5

FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
CONSOLE_FORMAT = '%(levelname)s: %(message)s'


class LoggingHandler:
    """
    Sets up the package logger for a frontend run.

    Usage:
        handler = LoggingHandler(paths.logs_dir)
        handler.rotate_log_for_logger('samprunner', 'samprunner-cli.log')
        handler.setup_logger('samprunner', 'samprunner-cli.log', console_level=logging.INFO)
    """

    def __init__(self, log_dir: Optional[Path] = None):
        if log_dir is None:
            from samprunner.shared.paths import get_logs_dir
            log_dir = get_logs_dir()
        self.log_dir = Path(log_dir)
        self.ensure_log_directory()

    def ensure_log_directory(self) -> None:
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            print(f"Failed to create log directory {self.log_dir}: {e}")

    def _log_path(self, log_file: Optional[str]) -> Path:
        return self.log_dir / (log_file or DEFAULT_LOG_NAME)

    @staticmethod
    def _backup(path: Path, index: int) -> Path:
        return path.with_name(f"{path.name}.{index}")

    def rotate_log_file_per_run(self, log_file_path: Path, backup_count: int = BACKUP_COUNT):
        """Shift name.log -> name.log.1 -> ... -> name.log.<backup_count>, dropping the oldest."""
        if log_file_path.name == GAME_LOG_NAME or not log_file_path.exists():
            return
        oldest = self._backup(log_file_path, backup_count)
        if oldest.exists():
            oldest.unlink()
        for i in range(backup_count - 1, 0, -1):
            src = self._backup(log_file_path, i)
            if src.exists():
                src.rename(self._backup(log_file_path, i + 1))
        log_file_path.rename(self._backup(log_file_path, 1))

    def rotate_log_for_logger(self, name: str, log_file: Optional[str] = None, backup_count: int = BACKUP_COUNT):
        """
        Start a fresh log file for this run.
        Call before setup_logger attaches a file handler to the same file.
        """
        self.rotate_log_file_per_run(self._log_path(log_file), backup_count=backup_count)

    def setup_logger(self, name: str, log_file: Optional[str] = None,
                     console_level: int = logging.ERROR) -> logging.Logger:
        """
        Attach a console handler and, when log_file is given, a size-capped
        file handler that records everything from DEBUG up. Calling it again
        for the same logger does not add duplicate handlers.
        """
        logger = logging.getLogger(name)
        logger.setLevel(logging.DEBUG)
        logger.propagate = False

        # Console shows ERROR and above unless the caller asks for more
        if not any(type(h) is logging.StreamHandler for h in logger.handlers):
            console_handler = logging.StreamHandler()
            console_handler.setLevel(console_level)
            console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
            logger.addHandler(console_handler)

        if log_file:
            file_path = self._log_path(log_file)
            attached = any(
                isinstance(h, logging.handlers.RotatingFileHandler) and h.baseFilename == str(file_path)
                for h in logger.handlers
            )
            if not attached:
                file_handler = logging.handlers.RotatingFileHandler(
                    file_path, mode='a', encoding='utf-8', maxBytes=MAX_LOG_BYTES, backupCount=BACKUP_COUNT
                )
                file_handler.setLevel(logging.DEBUG)
                file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
                logger.addHandler(file_handler)

        return logger

    def cleanup_old_logs(self, days: int = 30) -> int:
        """Delete orchestrator logs and their backups not touched for `days` days."""
        cutoff = time.time() - days * 24 * 60 * 60
        removed = 0
        for log_file in self.get_log_files():
            try:
                if log_file.stat().st_mtime < cutoff:
                    log_file.unlink()
                    removed += 1
            except OSError as e:
                print(f"Failed to clean up log file {log_file}: {e}")
        return removed

    def get_log_files(self) -> List[Path]:
        """Orchestrator logs and rotated backups; the game log is never included."""
        return sorted(p for p in self.log_dir.glob("*.log*")
                      if p.is_file() and not p.name.startswith(GAME_LOG_NAME))
