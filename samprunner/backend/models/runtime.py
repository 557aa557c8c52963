"""
Runtime Data Models

Data structures shared by the prefix, registry, rendering, supervisor,
installation and performance services.
"""

import subprocess
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional


@dataclass
class Prefix:
    """One isolated Wine environment."""
    root: Path
    initialized: bool = False
    architecture: Optional[str] = None  # "win32" / "win64"
    runtime_version: Optional[str] = None


class ConfigScope(Enum):
    """Registry hive an entry lives in."""
    USER = "HKCU"
    MACHINE = "HKLM"


@dataclass(frozen=True)
class ConfigEntry:
    """A (scope, key path, name) -> value triple. ``value=None`` deletes the entry."""
    scope: ConfigScope
    key_path: str
    name: str
    value: Optional[str] = None
    value_type: str = "REG_SZ"

    @property
    def is_delete(self) -> bool:
        return self.value is None

    @property
    def full_key(self) -> str:
        return f"{self.scope.value}\\{self.key_path}"

    @property
    def address(self):
        """Identity of the entry regardless of its value."""
        return (self.scope, self.key_path.lower(), self.name.lower())

    def deleted(self) -> "ConfigEntry":
        return ConfigEntry(self.scope, self.key_path, self.name, None, self.value_type)

    def __str__(self) -> str:
        if self.is_delete:
            return f"{self.full_key}\\{self.name} (delete)"
        return f"{self.full_key}\\{self.name}={self.value}"


class RenderingBackend(Enum):
    ACCELERATED_TRANSLATION = "dxvk"
    NATIVE_EMULATION = "wined3d"

    @property
    def label(self) -> str:
        if self is RenderingBackend.ACCELERATED_TRANSLATION:
            return "DXVK (Vulkan translation)"
        return "WineD3D (built-in)"

    @property
    def other(self) -> "RenderingBackend":
        if self is RenderingBackend.ACCELERATED_TRANSLATION:
            return RenderingBackend.NATIVE_EMULATION
        return RenderingBackend.ACCELERATED_TRANSLATION


class BackendIntent(Enum):
    NORMAL = "normal"
    INSTALLER_SAFE_MODE = "installer"


class InstallStatus(Enum):
    INSTALLED = "installed"
    NOT_INSTALLED = "not_installed"
    CORRUPT = "corrupt"


@dataclass
class InstallationRecord:
    """Installation state of one target, derived from the file system at query time."""
    target: str
    root: Path
    required_files: List[str]
    missing_files: List[str] = field(default_factory=list)

    @property
    def status(self) -> InstallStatus:
        if not self.missing_files:
            return InstallStatus.INSTALLED
        if len(self.missing_files) == len(self.required_files):
            return InstallStatus.NOT_INSTALLED
        return InstallStatus.CORRUPT

    @classmethod
    def probe(cls, target: str, root: Path, required_files: List[str]) -> "InstallationRecord":
        missing = [rel for rel in required_files if not (root / rel).is_file()]
        return cls(target=target, root=root, required_files=list(required_files), missing_files=missing)


class SessionKind(Enum):
    NORMAL = "normal"
    INSTALLER = "installer"


class SessionState(Enum):
    IDLE = "idle"
    LAUNCHING = "launching"
    RUNNING = "running"
    TERMINATED = "terminated"


@dataclass
class LaunchSession:
    """One execution of the supervised Wine process."""
    executable: Path
    working_directory: Path
    arguments: List[str]
    environment: Dict[str, str]
    kind: SessionKind
    backend: RenderingBackend
    process: Optional[subprocess.Popen] = None
    exit_code: Optional[int] = None
    exit_future: Future = field(default_factory=Future)
    _terminated: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def has_terminated(self) -> bool:
        return self._terminated.is_set()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Block until the termination observer fired. Returns the exit code or None on timeout."""
        if self._terminated.wait(timeout):
            return self.exit_code
        return None


class PerformancePreset(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    ULTRA = "ultra"
    AUTO = "auto"

    @classmethod
    def from_name(cls, name: str) -> "PerformancePreset":
        return cls(name.strip().lower())


@dataclass
class GameSettings:
    """Concrete settings payload written to the guest's settings file."""
    resolution: tuple
    draw_distance: float
    anti_aliasing: bool
    visual_fx: int
    frame_limiter: bool
    vsync: bool


@dataclass
class PerformanceStats:
    memory_usage: int = 0  # bytes, whole process tree
    cpu_usage: float = 0.0  # percent
    process_count: int = 0


@dataclass
class RuntimeStatus:
    """Snapshot returned by RunnerContext.status()."""
    is_running: bool
    prefix: Prefix
    wine_version: str
    base_status: InstallStatus
    overlay_status: InstallStatus
    backend: Optional[RenderingBackend] = None

    @property
    def prefix_initialized(self) -> bool:
        return self.prefix.initialized


class PipelineStage(Enum):
    NOT_STARTED = "not_started"
    PREPARING_PREFIX = "preparing_prefix"
    INSTALLING_BASE = "installing_base"
    VERIFYING_BASE = "verifying_base"
    INSTALLING_OVERLAY = "installing_overlay"
    APPLYING_PATCHES = "applying_patches"
    VERIFIED = "verified"
    FAILED = "failed"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")
