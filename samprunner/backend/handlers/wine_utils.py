#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Wine Utilities Module
Handles wine-related operations and utilities

The runner only needs four primitives from the compatibility runtime:
bootstrap a prefix, write a registry value, delete a registry value and run
an arbitrary executable inside the prefix. WineRuntime wraps those plus the
wineserver shutdown and version query.
"""

import os
import shutil
import subprocess
import logging
from pathlib import Path
from typing import Optional, List, Dict

from ..data.runtime_env import ARCH_ENV_VAR, DEBUG_SUPPRESSION_ENV, PREFIX_ENV_VAR
from .subprocess_utils import get_clean_subprocess_env

# Initialize logger
logger = logging.getLogger(__name__)

# Fallback locations when no Wine is configured or bundled
WINE_SEARCH_PATHS = [
    "/opt/homebrew/bin/wine",  # Apple Silicon Homebrew
    "/usr/local/bin/wine",  # Intel Homebrew / source installs
    "/Applications/Wine Stable.app/Contents/Resources/wine/bin/wine",
    "/Applications/Wine Staging.app/Contents/Resources/wine/bin/wine",
    "/usr/bin/wine",
    "/opt/wine-stable/bin/wine",
    "/opt/wine-staging/bin/wine",
]

REG_TIMEOUT = 60
BOOTSTRAP_TIMEOUT = 300


class WineNotFoundError(FileNotFoundError):
    pass


class WineRuntime:
    """
    Thin wrapper over one Wine installation bound to one prefix.
    """

    def __init__(self, prefix_path: Path, wine_binary: Optional[str] = None):
        self.prefix_path = Path(prefix_path)
        self.wine_binary = wine_binary or self.find_wine_binary()
        if self.wine_binary:
            logger.debug(f"Using Wine binary: {self.wine_binary}")
        else:
            logger.warning("No Wine binary found; runtime operations will fail until one is configured")

    @staticmethod
    def find_wine_binary(configured: Optional[str] = None, bundle_dir: Optional[Path] = None) -> Optional[str]:
        """
        Locate the Wine binary.

        Order: configured path, bundled wine/bin/wine, well-known install
        locations, then PATH.
        """
        candidates: List[str] = []
        if configured:
            candidates.append(os.path.expanduser(configured))
        if bundle_dir:
            candidates.append(str(Path(bundle_dir) / "wine" / "bin" / "wine"))
        candidates.extend(WINE_SEARCH_PATHS)

        for path in candidates:
            if os.path.isfile(path) and os.access(path, os.X_OK):
                return path
            if configured and path == os.path.expanduser(configured):
                logger.warning(f"Configured Wine binary not usable: {path}")

        for name in ("wine", "wine64"):
            found = shutil.which(name)
            if found:
                return found
        return None

    @property
    def is_available(self) -> bool:
        return bool(self.wine_binary) and os.access(self.wine_binary, os.X_OK)

    @property
    def wineserver_binary(self) -> Optional[str]:
        """wineserver lives next to the wine binary."""
        if not self.wine_binary:
            return None
        sibling = Path(self.wine_binary).with_name("wineserver")
        if sibling.exists():
            return str(sibling)
        return shutil.which("wineserver")

    def require_binary(self) -> str:
        if not self.wine_binary:
            raise WineNotFoundError("Wine is not installed or could not be found")
        return self.wine_binary

    def base_env(self, extra_env: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Clean host environment with the prefix bound and debug output suppressed."""
        env = get_clean_subprocess_env()
        # Only bootstrap chooses the architecture
        env.pop(ARCH_ENV_VAR, None)
        env[PREFIX_ENV_VAR] = str(self.prefix_path)
        env.update(DEBUG_SUPPRESSION_ENV)
        if extra_env:
            env.update(extra_env)
        return env

    def run_command(self, args: List[str], extra_env: Optional[Dict[str, str]] = None,
                    timeout: Optional[float] = REG_TIMEOUT) -> subprocess.CompletedProcess:
        """Run `wine <args>` to completion and capture its output."""
        cmd = [self.require_binary()] + list(args)
        logger.debug(f"Running: {' '.join(cmd)}")
        return subprocess.run(
            cmd,
            env=self.base_env(extra_env),
            capture_output=True,
            text=True,
            errors='replace',
            timeout=timeout,
        )

    def bootstrap(self, arch: Optional[str] = None, timeout: float = BOOTSTRAP_TIMEOUT) -> subprocess.CompletedProcess:
        """Initialize the prefix with `wineboot --init`."""
        extra = {ARCH_ENV_VAR: arch} if arch else None
        self.prefix_path.parent.mkdir(parents=True, exist_ok=True)
        return self.run_command(['wineboot', '--init'], extra_env=extra, timeout=timeout)

    def reg_add(self, full_key: str, name: str, value: str, value_type: str = "REG_SZ") -> subprocess.CompletedProcess:
        return self.run_command(['reg', 'add', full_key, '/v', name, '/t', value_type, '/d', str(value), '/f'])

    def reg_delete(self, full_key: str, name: str) -> subprocess.CompletedProcess:
        return self.run_command(['reg', 'delete', full_key, '/v', name, '/f'])

    def spawn(self, executable: Path, args: List[str], env: Dict[str, str], stdout) -> subprocess.Popen:
        """
        Start an executable inside the prefix without waiting for it.

        Runs from the executable's own directory with just its file name, which
        keeps spaces in the Windows path out of Wine's command line.
        """
        executable = Path(executable)
        cmd = [self.require_binary(), executable.name] + list(args)
        logger.info(f"Working directory: {executable.parent}")
        logger.info(f"Executing: wine {executable.name} {' '.join(args)}".rstrip())
        return subprocess.Popen(
            cmd,
            cwd=str(executable.parent),
            env=env,
            stdout=stdout,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            start_new_session=True,
        )

    def kill_server(self, timeout: float = 30) -> bool:
        """Run `wineserver -k` so no helper processes outlive the session."""
        server = self.wineserver_binary
        if not server:
            logger.debug("wineserver not found, nothing to shut down")
            return False
        try:
            result = subprocess.run(
                [server, '-k'],
                env=self.base_env(),
                capture_output=True,
                text=True,
                errors='replace',
                timeout=timeout,
            )
            logger.debug(f"wineserver -k exit code: {result.returncode}")
            return result.returncode == 0
        except subprocess.TimeoutExpired:
            logger.warning("wineserver -k timed out")
            return False
        except OSError as e:
            logger.error(f"Failed to run wineserver: {e}")
            return False

    def get_version(self) -> str:
        """Return the `wine --version` string, or 'Unknown'."""
        if not self.wine_binary:
            return "Unknown"
        try:
            result = subprocess.run(
                [self.wine_binary, '--version'],
                env=get_clean_subprocess_env(),
                capture_output=True,
                text=True,
                errors='replace',
                timeout=15,
            )
            version = result.stdout.strip()
            return version or "Unknown"
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"Failed to get Wine version: {e}")
            return "Unknown"

    def to_windows_path(self, path: Path) -> str:
        """
        Convert a host path inside drive_c to a Windows path.
        <prefix>/drive_c/Program Files/... -> C:\\Program Files\\...
        Paths outside drive_c are returned unchanged.
        """
        drive_c = self.prefix_path / "drive_c"
        try:
            relative = Path(path).relative_to(drive_c)
        except ValueError:
            logger.warning(f"Path doesn't match Wine prefix format: {path}")
            return str(path)
        return "C:\\" + "\\".join(relative.parts)
