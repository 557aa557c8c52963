#!/usr/bin/env python3
"""
Rendering Backend Service

Chooses between DXVK (Direct3D translated to Vulkan, via MoltenVK on macOS)
and Wine's built-in WineD3D, and makes the prefix agree with the choice.

Selection is driven by what is actually installed: DXVK is used only when its
DLLs are in system32 and a Vulkan driver shim exists on the host. Everything
else, and every installer run, falls back to WineD3D.
"""

import re
import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from ..data.rendering_tables import (
    BACKEND_DLL_OVERRIDES,
    DEFAULT_COLOR_DEPTH,
    DEFAULT_DESKTOP_RESOLUTION,
    DEFAULT_VIDEO_MEMORY_MB,
    DESKTOPS_KEY,
    DIRECT3D_KEY,
    DISPLAY_DRIVER_KEY,
    DLL_OVERRIDES_KEY,
    DXVK_ARTIFACTS,
    DXVK_DLLS,
    EXPLORER_KEY,
    VIDEO_MEMORY_VALUE,
    VIRTUAL_DESKTOP_NAME,
    WINE_PLACEHOLDER_SIGNATURES,
    WINED3D_DIRECT3D_SETTINGS,
)
from ..handlers.config_handler import ConfigHandler
from ..handlers.registry_handler import RegistryHandler
from ..models.configuration import ApplicationProfile, HostCapabilities
from ..models.runtime import BackendIntent, ConfigEntry, ConfigScope, RenderingBackend
from ...shared.paths import AppPaths

logger = logging.getLogger(__name__)

# Wine stub DLLs carry their marker within the first few KB
SIGNATURE_SCAN_BYTES = 4096
DLL_OVERRIDES_SECTION = "[Software\\\\Wine\\\\DllOverrides]"
D3D9_OVERRIDE_PATTERN = re.compile(r'^"\*?d3d9"="([^"]*)"', re.IGNORECASE)


class RenderingBackendService:
    """
    Detects, selects and applies the rendering backend.
    """

    def __init__(self, paths: AppPaths, registry: RegistryHandler,
                 host_caps: Callable[[], HostCapabilities],
                 profile: Optional[ApplicationProfile] = None,
                 config_handler: Optional[ConfigHandler] = None):
        self.paths = paths
        self.registry = registry
        self._host_caps = host_caps
        self.profile = profile or ApplicationProfile()
        self.config_handler = config_handler

    def _setting(self, key: str, default):
        if self.config_handler is None:
            return default
        return self.config_handler.get(key, default)

    # Detection

    @staticmethod
    def is_placeholder_dll(path: Path) -> bool:
        """True if the DLL is one of Wine's own builtin stubs rather than a real library."""
        try:
            with open(path, 'rb') as f:
                head = f.read(SIGNATURE_SCAN_BYTES)
        except OSError as e:
            logger.debug(f"Could not read {path}: {e}")
            return True
        return any(signature in head for signature in WINE_PLACEHOLDER_SIGNATURES)

    def accelerated_dlls_installed(self) -> bool:
        """All DXVK DLLs present in system32 and none of them a Wine stub."""
        for dll in DXVK_DLLS:
            path = self.paths.system32 / dll
            if not path.is_file():
                logger.debug(f"DXVK not installed: {dll} missing from system32")
                return False
            if self.is_placeholder_dll(path):
                logger.debug(f"DXVK not installed: {dll} is a Wine placeholder")
                return False
        return True

    def select_backend(self, intent: BackendIntent = BackendIntent.NORMAL,
                       host_caps: Optional[HostCapabilities] = None) -> RenderingBackend:
        """
        Pick the backend for the next session.

        Installers always get WineD3D. Normal sessions get DXVK only when its
        DLLs are installed and the host has a Vulkan driver shim.
        """
        if intent is BackendIntent.INSTALLER_SAFE_MODE:
            logger.info("Installer safe mode: using WineD3D")
            return RenderingBackend.NATIVE_EMULATION

        caps = host_caps or self._host_caps()
        if not self.accelerated_dlls_installed():
            logger.info("DXVK DLLs not installed, using WineD3D")
            return RenderingBackend.NATIVE_EMULATION
        if not caps.has_driver_shim:
            logger.warning("DXVK is installed but no Vulkan driver shim was found, falling back to WineD3D")
            return RenderingBackend.NATIVE_EMULATION

        logger.info(f"Using DXVK (driver shim: {caps.driver_shim})")
        return RenderingBackend.ACCELERATED_TRANSLATION

    def active_backend(self) -> Optional[RenderingBackend]:
        """
        Backend the prefix is currently configured for, read from the d3d9
        override in user.reg. None when no override has been written yet.
        """
        user_reg = self.paths.prefix / "user.reg"
        try:
            lines = user_reg.read_text(encoding='utf-8', errors='replace').splitlines()
        except OSError:
            return None

        in_section = False
        for line in lines:
            stripped = line.strip()
            if stripped.startswith("["):
                in_section = stripped.lower().startswith(DLL_OVERRIDES_SECTION.lower())
                continue
            if not in_section:
                continue
            match = D3D9_OVERRIDE_PATTERN.match(stripped)
            if match:
                mode = match.group(1).lower()
                if mode.startswith("native"):
                    return RenderingBackend.ACCELERATED_TRANSLATION
                if mode.startswith("builtin"):
                    return RenderingBackend.NATIVE_EMULATION
                return None
        return None

    # Registry state

    @staticmethod
    def owned_entries(backend: RenderingBackend) -> List[ConfigEntry]:
        """Registry values that only make sense for the given backend."""
        entries = [
            ConfigEntry(ConfigScope.USER, DLL_OVERRIDES_KEY, dll, mode)
            for dll, mode in BACKEND_DLL_OVERRIDES[backend.value].items()
        ]
        if backend is RenderingBackend.NATIVE_EMULATION:
            entries.extend(
                ConfigEntry(ConfigScope.USER, DIRECT3D_KEY, name, value, value_type)
                for name, value, value_type in WINED3D_DIRECT3D_SETTINGS
            )
            entries.append(ConfigEntry(ConfigScope.USER, DIRECT3D_KEY, VIDEO_MEMORY_VALUE,
                                       str(DEFAULT_VIDEO_MEMORY_MB)))
        return entries

    def canonical_entries(self, backend: RenderingBackend,
                          intent: BackendIntent = BackendIntent.NORMAL) -> List[ConfigEntry]:
        """
        The ordered entries that fully describe a backend: DLL override mode,
        renderer and shader backend, virtual desktop mode then geometry, color
        depth and the video memory hint.
        """
        entries = [
            ConfigEntry(ConfigScope.USER, DLL_OVERRIDES_KEY, dll, mode)
            for dll, mode in BACKEND_DLL_OVERRIDES[backend.value].items()
        ]

        if backend is RenderingBackend.NATIVE_EMULATION:
            entries.extend(
                ConfigEntry(ConfigScope.USER, DIRECT3D_KEY, name, value, value_type)
                for name, value, value_type in WINED3D_DIRECT3D_SETTINGS
            )
            video_memory = self._setting("video_memory_mb", DEFAULT_VIDEO_MEMORY_MB)
            entries.append(ConfigEntry(ConfigScope.USER, DIRECT3D_KEY, VIDEO_MEMORY_VALUE, str(video_memory)))

        desktop_mode = ConfigEntry(ConfigScope.USER, EXPLORER_KEY, "Desktop", VIRTUAL_DESKTOP_NAME)
        desktop_size = ConfigEntry(ConfigScope.USER, DESKTOPS_KEY, VIRTUAL_DESKTOP_NAME,
                                   self._setting("desktop_resolution", DEFAULT_DESKTOP_RESOLUTION))
        if intent is BackendIntent.NORMAL and self._setting("virtual_desktop", False):
            entries.extend([desktop_mode, desktop_size])
        else:
            entries.extend([desktop_mode.deleted(), desktop_size.deleted()])

        color_depth = self._setting("color_depth", DEFAULT_COLOR_DEPTH)
        entries.append(ConfigEntry(ConfigScope.USER, DISPLAY_DRIVER_KEY, "ScreenDepth", str(color_depth)))
        return entries

    def apply_backend(self, backend: RenderingBackend,
                      intent: BackendIntent = BackendIntent.NORMAL) -> List[ConfigEntry]:
        """
        Bring the prefix in line with one backend.

        Removes every value owned by the other backend, then writes this
        backend's canonical values. Safe to call before every launch.
        DXVK files in the game directory are removed for either backend; DXVK
        itself loads from the prefix.
        """
        logger.info(f"Applying rendering backend: {backend.label} ({intent.value})")
        self.strip_backend_artifacts(self.paths.app_dir(self.profile.install_subpath))

        removals = [entry.deleted() for entry in self.owned_entries(backend.other)]
        entries = removals + self.canonical_entries(backend, intent)
        self.registry.apply_batch(entries)
        return entries

    def strip_backend_artifacts(self, directory: Path,
                                protected_dirs: Optional[Iterable[Path]] = None) -> List[Path]:
        """
        Remove DXVK override files sitting directly inside directory.

        Refuses to touch the prefix's Windows directory (and anything below it),
        where the DXVK install itself lives.

        Returns:
            list of removed files
        """
        directory = Path(directory)
        protected = list(protected_dirs) if protected_dirs is not None else [self.paths.drive_c / "windows"]
        target = directory.resolve()
        for protected_dir in protected:
            protected_dir = Path(protected_dir).resolve()
            if target == protected_dir or protected_dir in target.parents:
                logger.error(f"Refusing to remove backend files from protected directory {directory}")
                return []

        if not directory.is_dir():
            return []

        artifacts = {name.lower() for name in DXVK_ARTIFACTS}
        removed: List[Path] = []
        for item in sorted(directory.iterdir()):
            if item.name.lower() not in artifacts or not item.is_file():
                continue
            try:
                item.unlink()
                removed.append(item)
            except OSError as e:
                logger.warning(f"Could not remove {item}: {e}")
        if removed:
            logger.info(f"Removed {len(removed)} DXVK file(s) from {directory}")
        return removed
