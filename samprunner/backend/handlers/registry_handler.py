#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Registry Handler Module
Writes and deletes Wine registry values through `wine reg`.

Writes are best-effort: Wine tolerates missing optional keys, so a failed
value never aborts the calling stage. Each write produces either None or a
ConfigWriteError; _apply_logged is the one place such errors are logged and
dropped.
"""

import subprocess
import logging
from typing import Iterable, List, Optional

from ..models.errors import ConfigWriteError
from ..models.runtime import ConfigEntry, ConfigScope
from .wine_utils import WineRuntime

logger = logging.getLogger(__name__)

MISSING_VALUE_MARKERS = ("unable to find", "not found", "cannot find")


class RegistryHandler:
    """
    Typed key/value access to the prefix registry.
    """

    def __init__(self, runtime: WineRuntime):
        self.runtime = runtime

    def set(self, scope: ConfigScope, key_path: str, name: str, value, value_type: str = "REG_SZ") -> bool:
        """Write one value. Returns False (after logging) if Wine rejected it."""
        return self.apply(ConfigEntry(scope, key_path, name, str(value), value_type))

    def delete(self, scope: ConfigScope, key_path: str, name: str) -> bool:
        """Delete one value. A value that is already absent counts as deleted."""
        return self.apply(ConfigEntry(scope, key_path, name, None))

    def apply(self, entry: ConfigEntry) -> bool:
        return self._apply_logged(entry)

    def apply_batch(self, entries: Iterable[ConfigEntry]) -> int:
        """
        Apply entries one after another in the given order.

        Later entries for the same key overwrite earlier ones, and some keys are
        only meaningful once an earlier one exists (desktop mode before desktop
        size), so the order is never changed here.

        Returns:
            int: number of entries applied successfully
        """
        entries = list(entries)
        applied = 0
        for entry in entries:
            if self._apply_logged(entry):
                applied += 1
        logger.debug(f"Applied {applied}/{len(entries)} registry entries")
        return applied

    def _apply_logged(self, entry: ConfigEntry) -> bool:
        """Best-effort boundary: ConfigWriteErrors stop here."""
        error = self._write(entry)
        if error is None:
            return True
        logger.warning(f"Registry write failed for {entry}: {error}")
        return False

    def _write(self, entry: ConfigEntry) -> Optional[ConfigWriteError]:
        if not self.runtime.prefix_path.exists():
            return ConfigWriteError(f"prefix {self.runtime.prefix_path} does not exist")
        try:
            if entry.is_delete:
                result = self.runtime.reg_delete(entry.full_key, entry.name)
            else:
                result = self.runtime.reg_add(entry.full_key, entry.name, entry.value, entry.value_type)
        except subprocess.TimeoutExpired:
            return ConfigWriteError("wine reg timed out")
        except OSError as e:
            return ConfigWriteError(f"could not run wine reg: {e}")

        if result.returncode == 0:
            logger.debug(f"Registry: {entry}")
            return None

        output = f"{result.stdout or ''}\n{result.stderr or ''}".strip()
        if entry.is_delete and any(marker in output.lower() for marker in MISSING_VALUE_MARKERS):
            logger.debug(f"Registry: {entry} (already absent)")
            return None
        return ConfigWriteError(output or f"exit code {result.returncode}", returncode=result.returncode)

    @staticmethod
    def entries_from_table(rows) -> List[ConfigEntry]:
        """Build entries from (scope, key, name, value, type) tuples of a data table."""
        return [ConfigEntry(ConfigScope(scope), key, name, value, value_type)
                for scope, key, name, value, value_type in rows]
