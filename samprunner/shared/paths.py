"""
Path helpers

Resolves the application-support root and the directories beneath it.
Every component receives an ``AppPaths`` instance instead of computing
locations itself, so tests can point the whole runner at a temporary tree.
"""

import os
import sys
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

APP_NAME = "SA-MP Runner"
DATA_DIR_ENV = "SAMPRUNNER_DATA_DIR"

# Directories created at startup, relative to the application-support root
APP_DIRECTORIES = [
    "wine",
    "dxvk_cache",
    "mods",
    "config",
    "logs",
    "screenshots",
    "temp",
]


def get_app_support_dir() -> Path:
    """
    Get the application-support root.

    ``SAMPRUNNER_DATA_DIR`` wins when set. Otherwise macOS uses
    ~/Library/Application Support/SA-MP Runner and everything else follows XDG.
    """
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return Path(override).expanduser()
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    xdg_data = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(xdg_data) / "samprunner"


def get_logs_dir() -> Path:
    """Get the orchestrator log directory."""
    return get_app_support_dir() / "logs"


@dataclass(frozen=True)
class AppPaths:
    """All file-system locations used by the runner."""
    root: Path

    @classmethod
    def default(cls, root: Optional[Path] = None) -> "AppPaths":
        return cls(Path(root) if root else get_app_support_dir())

    @property
    def prefix(self) -> Path:
        return self.root / "wine"

    @property
    def drive_c(self) -> Path:
        return self.prefix / "drive_c"

    @property
    def system32(self) -> Path:
        return self.drive_c / "windows" / "system32"

    @property
    def dxvk_cache(self) -> Path:
        return self.root / "dxvk_cache"

    @property
    def config_dir(self) -> Path:
        return self.root / "config"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def temp_dir(self) -> Path:
        return self.root / "temp"

    @property
    def game_log(self) -> Path:
        return self.logs_dir / "wine_game.log"

    @property
    def dxvk_config(self) -> Path:
        return self.config_dir / "dxvk.conf"

    @property
    def settings_file(self) -> Path:
        return self.config_dir / "settings.json"

    def app_dir(self, install_subpath: str) -> Path:
        """Installation directory of the guest application inside drive_c."""
        return self.drive_c / install_subpath

    def create_directories(self) -> bool:
        """Create the application directory tree. Returns False on failure."""
        try:
            for name in APP_DIRECTORIES:
                (self.root / name).mkdir(parents=True, exist_ok=True)
            return True
        except OSError as e:
            logger.error(f"Failed to create application directories under {self.root}: {e}")
            return False
