#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration Handler Module
Handles application settings and configuration
"""

import os
import re
import json
import logging
from pathlib import Path
from typing import Optional

from packaging import version

# Initialize logger
logger = logging.getLogger(__name__)

CONFIG_VERSION = "0.3.0"
RESOLUTION_PATTERN = re.compile(r"^\d{3,5}x\d{3,5}$")


class ConfigHandler:
    """
    Handles application configuration and settings.
    One instance is created by the RunnerContext and passed to every service
    that needs it.
    """

    def __init__(self, config_file: Path):
        """Initialize configuration handler with default settings"""
        self.config_file = Path(config_file)
        self.config_dir = self.config_file.parent
        self.settings = self._default_settings()

        # Load configuration if exists
        existed = self.config_file.exists()
        self._load_config()

        # Perform version migrations
        if existed:
            self._migrate_config()

    @staticmethod
    def _default_settings():
        return {
            "version": CONFIG_VERSION,
            "wine_path": None,  # None = auto-detect (bundled, well-known paths, PATH)
            "wine_arch": None,  # None = win32 on x86 hosts, wow64 default on arm64
            "virtual_desktop": False,
            "desktop_resolution": "1024x768",
            "color_depth": 32,
            "video_memory_mb": 2048,  # Written by the performance presets, read by WineD3D
            "dxvk_hud": "0",  # Overridden by the HUD level of high/ultra presets
            "last_applied_preset": None,  # Always a concrete tier, never "auto"
            "overlay_download_url": None,  # None = profile default
            "gpu_name": None,  # Manual override when detection gets it wrong
            "debug_mode": False,
        }

    def _load_config(self):
        """
        Load configuration from file and update in-memory cache.
        """
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r') as f:
                    saved_config = json.load(f)
                    # Update settings with saved values while preserving defaults
                    self.settings.update(saved_config)
                    logger.debug("Loaded configuration from file")
            else:
                logger.debug("No configuration file found, using defaults")
                self._create_config_dir()
        except Exception as e:
            logger.error(f"Error loading configuration: {e}")

    def _migrate_config(self):
        """
        Migrate configuration between versions
        Handles breaking changes and data format updates
        """
        current_version = str(self.settings.get("version") or "0.0.0")
        target_version = CONFIG_VERSION

        if current_version == target_version:
            return

        logger.info(f"Migrating config from {current_version} to {target_version}")

        try:
            outdated = version.parse(current_version) < version.parse(target_version)
        except version.InvalidVersion:
            logger.warning(f"Unparseable config version '{current_version}', treating as outdated")
            outdated = True

        if outdated:
            # 0.2.x stored the user's preset choice, including "auto". Only concrete
            # tiers are stored now, and under a different key.
            old_preset = self.settings.pop("performance_preset", None)
            if old_preset and old_preset != "auto":
                self.settings["last_applied_preset"] = old_preset

            # Backend choice is re-derived from the prefix on every launch
            obsolete_keys = ["dxvk_enabled", "force_wined3d", "has_launched_before"]
            removed_count = 0
            for key in obsolete_keys:
                if key in self.settings:
                    del self.settings[key]
                    removed_count += 1

            if removed_count > 0:
                logger.info(f"Removed {removed_count} obsolete config keys")

        self.settings["version"] = target_version
        self.save_config()
        logger.info("Config migration completed")

    def reload_config(self):
        """Reload configuration from disk to pick up external changes"""
        self._load_config()

    def _create_config_dir(self):
        """Create configuration directory if it doesn't exist"""
        try:
            os.makedirs(self.config_dir, exist_ok=True)
        except Exception as e:
            logger.error(f"Error creating configuration directory: {e}")

    def save_config(self):
        """Save current configuration to file (temp file + rename)"""
        try:
            self._create_config_dir()
            tmp_file = self.config_file.with_suffix(self.config_file.suffix + ".tmp")
            with open(tmp_file, 'w') as f:
                json.dump(self.settings, f, indent=2)
            os.replace(tmp_file, self.config_file)
            logger.debug("Saved configuration to file")
            return True
        except Exception as e:
            logger.error(f"Error saving configuration: {e}")
            return False

    def get(self, key, default=None):
        """Get a configuration value by key."""
        value = self.settings.get(key)
        return default if value is None else value

    def set(self, key, value):
        """Set a configuration value"""
        self.settings[key] = value
        return True

    def update(self, settings_dict):
        """Update multiple configuration values"""
        self.settings.update(settings_dict)
        return True

    def get_wine_path(self) -> Optional[str]:
        """Get the user-selected Wine binary, or None for auto-detection"""
        return self.settings.get("wine_path")

    def set_wine_path(self, path):
        """Set the Wine binary to use"""
        self.settings["wine_path"] = str(path) if path else None
        logger.debug(f"Set Wine path to: {path}")
        return self.save_config()

    def save_desktop_resolution(self, resolution):
        """
        Save the virtual desktop resolution

        Args:
            resolution (str): Resolution string (e.g., '1024x768')

        Returns:
            bool: True if saved successfully, False otherwise
        """
        if not resolution or not RESOLUTION_PATTERN.match(resolution):
            logger.warning(f"Invalid desktop resolution: {resolution}")
            return False
        self.settings["desktop_resolution"] = resolution
        logger.debug(f"Desktop resolution saved: {resolution}")
        return self.save_config()

    def set_virtual_desktop(self, enabled: bool):
        self.settings["virtual_desktop"] = bool(enabled)
        return self.save_config()

    def set_last_applied_preset(self, preset_name: str):
        """Record the concrete preset tier that was applied"""
        if preset_name == "auto":
            raise ValueError("Auto must be resolved before it is recorded")
        self.settings["last_applied_preset"] = preset_name
        return self.save_config()

    def reset_to_defaults(self):
        """Forget every saved setting"""
        self.settings = self._default_settings()
        logger.info("Configuration reset to defaults")
        return self.save_config()
