#!/usr/bin/env python3
"""
Platform Detection Service

Collects host facts (CPU architecture, memory, cores, GPU, graphics driver
shim) once at startup and shares them across the rendering and performance
services.
"""

import os
import sys
import glob
import platform
import subprocess
import logging
from pathlib import Path
from typing import Dict, List, Optional

import psutil

from ..data.rendering_tables import DRIVER_SHIM_LOCATIONS
from ..handlers.config_handler import ConfigHandler
from ..handlers.subprocess_utils import get_clean_subprocess_env
from ..handlers.wine_utils import WineRuntime
from ..models.configuration import GIB, HostCapabilities

logger = logging.getLogger(__name__)

MIN_MEMORY_GIB = 4
PCI_VENDOR_NAMES = {
    "0x10de": "NVIDIA",
    "0x1002": "AMD Radeon",
    "0x8086": "Intel",
}


class PlatformDetectionService:
    """
    Service for detecting host capabilities.

    Detection runs lazily on first access and is cached; call refresh() to
    detect again. Tests pass a ready-made HostCapabilities instead.
    """

    def __init__(self, config_handler: Optional[ConfigHandler] = None,
                 bundle_dir: Optional[Path] = None,
                 capabilities: Optional[HostCapabilities] = None):
        self.config_handler = config_handler
        self.bundle_dir = Path(bundle_dir) if bundle_dir else None
        self._capabilities = capabilities

    @property
    def capabilities(self) -> HostCapabilities:
        if self._capabilities is None:
            self._capabilities = self._detect()
        return self._capabilities

    def refresh(self) -> HostCapabilities:
        self._capabilities = self._detect()
        return self._capabilities

    def _detect(self) -> HostCapabilities:
        """Perform platform detection once"""
        logger.debug("Performing platform detection...")
        try:
            total_memory = psutil.virtual_memory().total
        except Exception as e:
            logger.warning(f"Could not read total memory: {e}")
            total_memory = 0

        caps = HostCapabilities(
            machine=platform.machine() or "unknown",
            total_memory=total_memory,
            cpu_count=psutil.cpu_count(logical=False) or os.cpu_count() or 1,
            gpu_name=self.detect_gpu_name(),
            os_name=platform.system(),
            os_version=platform.mac_ver()[0] if sys.platform == "darwin" else platform.release(),
            driver_shim=self.find_driver_shim(),
        )
        logger.debug(f"Platform detection complete: {caps.to_dict()}")
        return caps

    def detect_gpu_name(self) -> str:
        """
        GPU model name. A manual override in the app settings wins; otherwise
        system_profiler on macOS, then glxinfo, then the PCI vendor of the
        first DRM card.
        """
        if self.config_handler:
            override = self.config_handler.get("gpu_name")
            if override:
                return override

        if sys.platform == "darwin":
            name = self._gpu_from_system_profiler()
            if name:
                return name

        name = self._gpu_from_glxinfo()
        if name:
            return name

        name = self._gpu_from_drm()
        if name:
            return name
        return "Unknown"

    @staticmethod
    def _run_quiet(cmd: List[str]) -> Optional[str]:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, errors='replace',
                                    timeout=10, env=get_clean_subprocess_env())
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"{cmd[0]} unavailable: {e}")
            return None
        if result.returncode != 0:
            return None
        return result.stdout

    def _gpu_from_system_profiler(self) -> Optional[str]:
        output = self._run_quiet(["system_profiler", "SPDisplaysDataType"])
        if not output:
            return None
        for line in output.splitlines():
            line = line.strip()
            if line.startswith("Chipset Model:"):
                return line.split(":", 1)[1].strip()
        return None

    def _gpu_from_glxinfo(self) -> Optional[str]:
        output = self._run_quiet(["glxinfo", "-B"])
        if not output:
            return None
        for line in output.splitlines():
            if "OpenGL renderer string:" in line:
                return line.split(":", 1)[1].strip()
        return None

    @staticmethod
    def _gpu_from_drm() -> Optional[str]:
        for vendor_file in sorted(glob.glob("/sys/class/drm/card*/device/vendor")):
            try:
                vendor = Path(vendor_file).read_text().strip().lower()
            except OSError:
                continue
            if vendor in PCI_VENDOR_NAMES:
                return PCI_VENDOR_NAMES[vendor]
        return None

    def find_driver_shim(self, platform_name: Optional[str] = None) -> Optional[Path]:
        """First existing MoltenVK library or Vulkan ICD manifest, or None."""
        key = "darwin" if (platform_name or sys.platform) == "darwin" else "linux"
        substitutions = {
            "bundle": str(self.bundle_dir) if self.bundle_dir else "",
            "home": str(Path.home()),
        }
        for pattern in DRIVER_SHIM_LOCATIONS.get(key, []):
            if "{bundle}" in pattern and not self.bundle_dir:
                continue
            for match in sorted(glob.glob(pattern.format(**substitutions))):
                logger.debug(f"Graphics driver shim found: {match}")
                return Path(match)
        logger.debug("No graphics driver shim found")
        return None

    def check_requirements(self, runtime: Optional[WineRuntime] = None) -> Dict[str, object]:
        """
        Check the host against the minimum requirements.

        Returns:
            dict with 'met' (bool), 'errors' (list of str), 'warnings' (list of str)
        """
        caps = self.capabilities
        errors: List[str] = []
        warnings: List[str] = []

        if caps.total_memory < MIN_MEMORY_GIB * GIB:
            errors.append(f"At least {MIN_MEMORY_GIB} GB of memory is required "
                          f"({caps.total_memory_gib:.1f} GB found)")

        if runtime is not None and not runtime.is_available:
            errors.append("Wine is not installed or could not be found")

        if not caps.has_driver_shim:
            warnings.append("No Vulkan driver (MoltenVK or ICD) found; "
                            "the built-in WineD3D renderer will be used")

        for message in errors:
            logger.error(f"Requirement not met: {message}")
        for message in warnings:
            logger.warning(message)
        return {'met': not errors, 'errors': errors, 'warnings': warnings}
