"""
Configuration Data Models

Data structures describing the host machine and the guest application.
"""

from pathlib import Path
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field

GIB = 1024 * 1024 * 1024


@dataclass
class HostCapabilities:
    """Host hardware and software facts used by backend selection and presets."""
    machine: str
    total_memory: int
    cpu_count: int
    gpu_name: str = "Unknown"
    os_name: str = ""
    os_version: str = ""
    driver_shim: Optional[Path] = None

    def __post_init__(self):
        """Convert string paths to Path objects."""
        if isinstance(self.driver_shim, str):
            self.driver_shim = Path(self.driver_shim)

    @property
    def architecture_class(self) -> str:
        """'arm' or 'x86'."""
        machine = self.machine.lower()
        if machine.startswith(('arm', 'aarch')):
            return 'arm'
        return 'x86'

    @property
    def uses_wow64(self) -> bool:
        """arm64 hosts run a 64-bit prefix with 32-bit support; never force win32 there."""
        return self.architecture_class == 'arm'

    @property
    def total_memory_gib(self) -> float:
        return self.total_memory / GIB

    @property
    def has_driver_shim(self) -> bool:
        return self.driver_shim is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'machine': self.machine,
            'architecture_class': self.architecture_class,
            'total_memory': self.total_memory,
            'cpu_count': self.cpu_count,
            'gpu_name': self.gpu_name,
            'os_name': self.os_name,
            'os_version': self.os_version,
            'driver_shim': str(self.driver_shim) if self.driver_shim else None,
        }


@dataclass
class ApplicationProfile:
    """Everything specific to the guest application and its overlay component."""
    name: str = "GTA San Andreas"
    install_subpath: str = "Program Files/Rockstar Games/GTA San Andreas"
    base_executable: str = "gta_sa.exe"
    base_required_files: List[str] = field(default_factory=lambda: [
        "gta_sa.exe",
        "models/gta3.img",
        "data/gta.dat",
    ])
    overlay_name: str = "SA-MP"
    overlay_executable: str = "samp.exe"
    overlay_required_files: List[str] = field(default_factory=lambda: ["samp.exe", "samp.dll"])
    overlay_marker: str = "samp.exe"
    overlay_url: str = "https://gta-multiplayer.cz/downloads/sa-mp-0.3.7-R5-2-MP-install.exe"
    overlay_installer_name: str = "samp_install.exe"
    overlay_min_size: int = 2_000_000
    overlay_poll_interval: float = 1.0
    overlay_install_timeout: float = 180.0
    settings_file: str = "gta_sa.set"
    overlay_config_file: str = "SAMP/sa-mp.cfg"
    overlay_config_defaults: Dict[str, Dict[str, str]] = field(default_factory=lambda: {
        "samp": {
            "pagesize": "10",
            "gamma": "1.0",
            "fontface": "Arial",
            "fontweight": "0",
            "timestamp": "1",
        }
    })
    # Game-generated settings caches that remember the previous backend's video mode
    stale_settings_globs: List[str] = field(default_factory=lambda: [
        "users/*/Documents/GTA San Andreas User Files/gta_sa.set",
        "users/*/My Documents/GTA San Andreas User Files/gta_sa.set",
    ])
    # Registry value the overlay reads to find the base game
    overlay_registry_key: str = "Software\\SAMP"
    overlay_registry_name: str = "gta_sa_exe"
