#!/usr/bin/env python3
"""
Prefix Service

Creates and inspects the Wine prefix. A prefix is either fully absent or
fully initialized: a partial tree (interrupted bootstrap) is reported as not
initialized and bootstrapped again in place. It is never deleted here, since
the installed game lives inside drive_c; only reset() removes it.
"""

import re
import logging
import subprocess
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional

from ..data.registry_defaults import PREFIX_DEFAULTS
from ..data.runtime_env import FORCED_ARCH
from ..handlers.config_handler import ConfigHandler
from ..handlers.filesystem_handler import FileSystemHandler
from ..handlers.registry_handler import RegistryHandler
from ..handlers.wine_utils import WineNotFoundError, WineRuntime
from ..models.configuration import HostCapabilities
from ..models.errors import SetupError
from ..models.runtime import Prefix

logger = logging.getLogger(__name__)

# Files Wine creates at the end of a successful wineboot
PREFIX_MARKERS = ("system.reg", "user.reg", "drive_c/windows/system32")
RUNTIME_VERSION_FILE = ".runtime_version"
ARCH_PATTERN = re.compile(r"^#arch=(\w+)", re.MULTILINE)


class PrefixService:
    """
    Idempotent prefix bootstrap and status.
    """

    def __init__(self, runtime: WineRuntime, registry: RegistryHandler,
                 host_caps: Callable[[], HostCapabilities],
                 config_handler: Optional[ConfigHandler] = None,
                 executor: Optional[Executor] = None):
        self.runtime = runtime
        self.registry = registry
        self._host_caps = host_caps
        self.config_handler = config_handler
        self._executor = executor

    @property
    def root(self) -> Path:
        return self.runtime.prefix_path

    def status(self) -> Prefix:
        """Probe the file system. Never runs Wine."""
        root = self.root
        initialized = all((root / marker).exists() for marker in PREFIX_MARKERS)
        prefix = Prefix(root=root, initialized=initialized)
        if initialized:
            prefix.architecture = self._read_architecture()
            prefix.runtime_version = self._read_runtime_version()
        return prefix

    def _read_architecture(self) -> Optional[str]:
        try:
            with open(self.root / "system.reg", 'r', encoding='utf-8', errors='replace') as f:
                head = f.read(4096)
        except OSError as e:
            logger.debug(f"Could not read system.reg: {e}")
            return None
        match = ARCH_PATTERN.search(head)
        return match.group(1) if match else None

    def _read_runtime_version(self) -> Optional[str]:
        version_file = self.root / RUNTIME_VERSION_FILE
        try:
            return version_file.read_text().strip() or None
        except OSError:
            return None

    def _bootstrap_arch(self) -> Optional[str]:
        """
        WINEARCH for wineboot. Forced to win32 on x86 hosts; left unset on arm64,
        where Wine only offers a wow64 prefix. The wine_arch setting overrides both.
        """
        if self.config_handler:
            configured = self.config_handler.get("wine_arch")
            if configured:
                return configured
        if self._host_caps().uses_wow64:
            return None
        return FORCED_ARCH

    def ensure_initialized(self) -> Prefix:
        """
        Make sure the prefix exists and is initialized.

        Raises:
            SetupError: wineboot failed, timed out, or left an incomplete tree
        """
        prefix = self.status()
        if prefix.initialized:
            logger.debug(f"Prefix already initialized at {self.root}")
            return prefix

        if self.root.is_dir() and any(self.root.iterdir()):
            logger.warning(f"Prefix at {self.root} is incomplete, bootstrapping again")
        else:
            logger.info(f"Creating Wine prefix at {self.root}")

        arch = self._bootstrap_arch()
        try:
            result = self.runtime.bootstrap(arch=arch)
        except WineNotFoundError as e:
            raise SetupError(str(e)) from e
        except subprocess.TimeoutExpired as e:
            raise SetupError("wineboot timed out") from e
        except OSError as e:
            raise SetupError(f"Could not run wineboot: {e}") from e

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            logger.error(f"wineboot failed with exit code {result.returncode}: {output}")
            raise SetupError(f"wineboot exited with code {result.returncode}", exit_code=result.returncode)

        if not self.status().initialized:
            missing = [m for m in PREFIX_MARKERS if not (self.root / m).exists()]
            logger.error(f"wineboot succeeded but the prefix is incomplete, missing: {missing}")
            raise SetupError(f"Prefix incomplete after wineboot (missing {', '.join(missing)})",
                             exit_code=result.returncode)

        self._record_runtime_version()
        self.apply_defaults()
        prefix = self.status()
        logger.info(f"Prefix initialized ({prefix.architecture or 'unknown arch'}, {prefix.runtime_version})")
        return prefix

    def ensure_initialized_async(self, callback: Optional[Callable[[Future], None]] = None) -> Future:
        """Run ensure_initialized on the worker pool."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="prefix")
        future = self._executor.submit(self.ensure_initialized)
        if callback:
            future.add_done_callback(callback)
        return future

    def _record_runtime_version(self):
        version = self.runtime.get_version()
        try:
            (self.root / RUNTIME_VERSION_FILE).write_text(version + "\n")
        except OSError as e:
            logger.warning(f"Could not record runtime version: {e}")

    def apply_defaults(self) -> int:
        """Audio buffer and Windows version defaults for a fresh prefix."""
        entries = RegistryHandler.entries_from_table(PREFIX_DEFAULTS)
        return self.registry.apply_batch(entries)

    def reset(self) -> bool:
        """Delete the whole prefix, installed game included. Returns True if nothing is left."""
        if not self.root.exists():
            return True
        logger.warning(f"Removing Wine prefix {self.root}")
        FileSystemHandler.delete_directory(self.root)
        return not self.root.exists()
