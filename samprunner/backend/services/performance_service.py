#!/usr/bin/env python3
"""
Performance Service

Resolves and applies performance presets: the game's own settings file,
the DXVK tuning file and the video memory hint WineD3D reads from the
registry. The numbers come from backend/data/performance_presets.py.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, Optional

from ..data.performance_presets import (
    AUTO_PRESET_FALLBACK,
    AUTO_PRESET_RULES,
    DXVK_TUNING,
    PRESET_GAME_SETTINGS,
    STATIC_SETTINGS_SECTIONS,
)
from ..handlers.config_handler import ConfigHandler
from ..handlers.filesystem_handler import FileSystemHandler
from ..models.configuration import ApplicationProfile, HostCapabilities
from ..models.runtime import BackendIntent, GameSettings, PerformancePreset
from ...shared.paths import AppPaths
from .prefix_service import PrefixService
from .rendering_backend_service import RenderingBackendService

logger = logging.getLogger(__name__)

SHADER_CACHE_FILE = "GTA_SA.dxvk-cache"


def rule_matches(rule: Dict, caps: HostCapabilities) -> bool:
    """True if every field the rule sets matches the host."""
    arch = rule.get("arch")
    if arch and caps.architecture_class != arch:
        return False
    min_gib = rule.get("min_memory_gib")
    if min_gib is not None and caps.total_memory_gib < min_gib:
        return False
    max_gib = rule.get("max_memory_gib")
    if max_gib is not None and caps.total_memory_gib >= max_gib:
        return False
    needles = rule.get("gpu_contains")
    if needles and not any(needle in (caps.gpu_name or "") for needle in needles):
        return False
    return True


class PerformanceService:
    """
    Applies performance presets to the game, DXVK and the prefix.
    """

    def __init__(self, paths: AppPaths, host_caps: Callable[[], HostCapabilities],
                 backend_service: RenderingBackendService,
                 prefix_service: PrefixService,
                 config_handler: ConfigHandler,
                 profile: Optional[ApplicationProfile] = None):
        self.paths = paths
        self._host_caps = host_caps
        self.backend_service = backend_service
        self.prefix_service = prefix_service
        self.config_handler = config_handler
        self.profile = profile or ApplicationProfile()

    @property
    def settings_path(self) -> Path:
        return self.paths.app_dir(self.profile.install_subpath) / self.profile.settings_file

    def resolve(self, preset: PerformancePreset, host_caps: Optional[HostCapabilities] = None) -> PerformancePreset:
        """Turn AUTO into a concrete tier; concrete tiers are returned unchanged."""
        if preset is not PerformancePreset.AUTO:
            return preset
        caps = host_caps or self._host_caps()
        for rule in AUTO_PRESET_RULES:
            if rule_matches(rule, caps):
                resolved = PerformancePreset(rule["preset"])
                break
        else:
            resolved = PerformancePreset(AUTO_PRESET_FALLBACK)
        logger.info(f"Auto preset resolved to {resolved.value} "
                    f"({caps.architecture_class}, {caps.total_memory_gib:.0f} GB, {caps.gpu_name})")
        return resolved

    @staticmethod
    def game_settings(preset: PerformancePreset) -> GameSettings:
        return GameSettings(**PRESET_GAME_SETTINGS[preset.value])

    @staticmethod
    def settings_sections(settings: GameSettings) -> Dict[str, Dict[str, str]]:
        """INI sections of the game settings file."""
        width, height = settings.resolution
        sections = {
            "Display": {
                "Width": str(width),
                "Height": str(height),
                "Depth": "32",
                "Windowed": "0",
                "VSync": "1" if settings.vsync else "0",
                "FrameLimiter": "1" if settings.frame_limiter else "0",
            },
            "Graphics": {
                "VideoMode": "1",
                "Brightness": "0",
                "DrawDistance": str(settings.draw_distance),
                "AntiAliasing": "1" if settings.anti_aliasing else "0",
                "VisualFX": str(settings.visual_fx),
                "MipMapping": "1",
            },
        }
        sections.update({name: dict(values) for name, values in STATIC_SETTINGS_SECTIONS.items()})
        return sections

    @staticmethod
    def dxvk_config_text(preset: PerformancePreset, cpu_count: int) -> str:
        tuning = DXVK_TUNING[preset.value]
        cores = max(1, cpu_count or 1)
        threads = cores if tuning["compiler_threads"] == "all" else max(2, cores // 2)
        lines = [
            f"# DXVK configuration - {preset.value} preset",
            "dxvk.enableAsync = True",
            f"dxvk.numCompilerThreads = {threads}",
            f"dxvk.maxFrameLatency = {tuning['max_frame_latency']}",
            f"dxvk.maxDeviceMemory = {tuning['max_device_memory']}",
            f"dxvk.enableGraphicsPipelineLibrary = {tuning['graphics_pipeline_library']}",
            "dxvk.useRawSsbo = True",
            "dxvk.enableStateCache = True",
        ]
        if tuning["hud"]:
            lines.append(f"dxvk.hud = {tuning['hud']}")
        if tuning["max_chunk_size"]:
            lines.append(f"dxvk.maxChunkSize = {tuning['max_chunk_size']}")
        return "\n".join(lines) + "\n"

    def apply(self, preset: PerformancePreset) -> PerformancePreset:
        """
        Apply a preset and return the concrete tier that was applied.

        The game settings file is only written once the game is installed.
        Backend keys are refreshed through the rendering service so the video
        memory hint lands only when WineD3D is active.
        """
        caps = self._host_caps()
        tier = self.resolve(preset, caps)
        logger.info(f"Applying performance preset: {tier.value}")

        app_dir = self.settings_path.parent
        if app_dir.is_dir():
            FileSystemHandler.write_ini_atomic(self.settings_path,
                                               self.settings_sections(self.game_settings(tier)))
        else:
            logger.warning(f"{self.profile.name} is not installed, skipping {self.profile.settings_file}")

        FileSystemHandler.atomic_write_text(self.paths.dxvk_config, self.dxvk_config_text(tier, caps.cpu_count))
        logger.info("DXVK configuration updated")

        tuning = DXVK_TUNING[tier.value]
        self.config_handler.update({
            "video_memory_mb": tuning["max_device_memory"],
            "dxvk_hud": tuning["hud"] or "0",
        })
        self.config_handler.set_last_applied_preset(tier.value)

        if self.prefix_service.status().initialized:
            backend = self.backend_service.active_backend() or self.backend_service.select_backend(BackendIntent.NORMAL)
            self.backend_service.apply_backend(backend)
        return tier

    def shader_cache_status(self) -> Dict[str, object]:
        cache_dir = self.paths.dxvk_cache
        size = FileSystemHandler.get_directory_size(cache_dir) if cache_dir.is_dir() else 0
        return {
            'path': str(cache_dir),
            'exists': (cache_dir / SHADER_CACHE_FILE).is_file(),
            'size': size or 0,
        }

    def clear_shader_cache(self) -> int:
        """Empty the shader cache directory. Returns the number of entries removed."""
        logger.info("Clearing shader cache...")
        removed = FileSystemHandler.clear_directory(self.paths.dxvk_cache)
        logger.info(f"Shader cache cleared ({removed} entries)")
        return removed
