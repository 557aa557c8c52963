"""
Runner Operations

RunnerContext is built once at process start and owns one instance of every
service. Frontends talk to it instead of constructing services themselves.
"""

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional, Sequence

from ..handlers.config_handler import ConfigHandler
from ..handlers.filesystem_handler import FileSystemHandler
from ..handlers.registry_handler import RegistryHandler
from ..handlers.subprocess_utils import increase_file_descriptor_limit
from ..handlers.wine_utils import WineRuntime
from ..models.configuration import ApplicationProfile, HostCapabilities
from ..models.errors import LaunchError
from ..models.runtime import (
    BackendIntent,
    InstallStatus,
    LaunchSession,
    RuntimeStatus,
    SessionKind,
)
from ..services.installation_service import InstallationService
from ..services.performance_service import PerformanceService
from ..services.platform_detection_service import PlatformDetectionService
from ..services.prefix_service import PrefixService
from ..services.process_supervisor import ProcessSupervisor
from ..services.rendering_backend_service import RenderingBackendService
from ...shared.paths import APP_DIRECTORIES, AppPaths

logger = logging.getLogger(__name__)

POOL_WORKERS = 2
# Kept on reset: the open log files live here
RESET_KEEP = {"logs"}


class RunnerContext:
    """
    Wires the runtime, handlers and services together.

    Args:
        paths: application directories; defaults to the platform location
        wine_binary: explicit Wine binary, skipping detection
        capabilities: host facts, skipping detection
        profile: guest application constants
        bundle_dir: directory of a bundled Wine and MoltenVK
    """

    def __init__(self, paths: Optional[AppPaths] = None, wine_binary: Optional[str] = None,
                 capabilities: Optional[HostCapabilities] = None,
                 profile: Optional[ApplicationProfile] = None,
                 bundle_dir: Optional[Path] = None,
                 executor: Optional[Executor] = None):
        self.paths = paths or AppPaths.default()
        self.paths.create_directories()

        success, old_limit, new_limit, message = increase_file_descriptor_limit()
        if success:
            logger.debug(message)
        else:
            logger.warning(message)

        self.profile = profile or ApplicationProfile()
        self.config_handler = ConfigHandler(self.paths.settings_file)
        self.platform = PlatformDetectionService(self.config_handler, bundle_dir, capabilities)

        if wine_binary is None:
            wine_binary = WineRuntime.find_wine_binary(self.config_handler.get_wine_path(), bundle_dir)
        self.runtime = WineRuntime(self.paths.prefix, wine_binary)
        self.registry = RegistryHandler(self.runtime)

        self.executor = executor or ThreadPoolExecutor(max_workers=POOL_WORKERS, thread_name_prefix="samprunner")

        self.prefix_service = PrefixService(self.runtime, self.registry, self.host_capabilities,
                                            self.config_handler, self.executor)
        self.backend_service = RenderingBackendService(self.paths, self.registry, self.host_capabilities,
                                                       self.profile, self.config_handler)
        self.supervisor = ProcessSupervisor(self.paths, self.runtime, self.host_capabilities, self.config_handler)
        self.installation_service = InstallationService(
            self.paths, self.prefix_service, self.registry, self.backend_service, self.supervisor,
            profile=self.profile, config_handler=self.config_handler, executor=self.executor,
        )
        self.performance_service = PerformanceService(
            self.paths, self.host_capabilities, self.backend_service, self.prefix_service,
            self.config_handler, self.profile,
        )

    def host_capabilities(self) -> HostCapabilities:
        return self.platform.capabilities

    @property
    def app_dir(self) -> Path:
        return self.paths.app_dir(self.profile.install_subpath)

    def submit(self, fn: Callable, *args, callback: Optional[Callable[[Future], None]] = None, **kwargs) -> Future:
        """Run fn on the worker pool, optionally calling callback(future) when done."""
        future = self.executor.submit(fn, *args, **kwargs)
        if callback:
            future.add_done_callback(callback)
        return future

    def status(self) -> RuntimeStatus:
        prefix = self.prefix_service.status()
        return RuntimeStatus(
            is_running=self.supervisor.is_running,
            prefix=prefix,
            wine_version=self.runtime.get_version(),
            base_status=self.installation_service.base_status(),
            overlay_status=self.installation_service.overlay_status(),
            backend=self.backend_service.active_backend() if prefix.initialized else None,
        )

    def launch_game(self, use_overlay: bool = True, args: Sequence[str] = ()) -> LaunchSession:
        """
        Launch the overlay client (or the bare game) with the best available backend.

        Raises:
            LaunchError: the prefix or game is not set up, or the supervisor refused
        """
        if not self.prefix_service.status().initialized:
            raise LaunchError("The Wine prefix is not set up yet. Run setup first.")
        if not self.installation_service.verify_base():
            raise LaunchError(f"{self.profile.name} is not installed.")

        executable = self.app_dir / self.profile.base_executable
        if use_overlay:
            if self.installation_service.overlay_status() is InstallStatus.NOT_INSTALLED:
                raise LaunchError(f"{self.profile.overlay_name} is not installed.")
            executable = self.app_dir / self.profile.overlay_executable

        backend = self.backend_service.select_backend(BackendIntent.NORMAL)
        return self.supervisor.launch(
            executable, args, SessionKind.NORMAL, backend,
            prepare=lambda: self.backend_service.apply_backend(backend, BackendIntent.NORMAL),
        )

    def stop_game(self, grace_millis: int = 5000) -> bool:
        return self.supervisor.terminate(grace_millis)

    def reset_installation(self) -> bool:
        """
        Stop Wine and delete everything the runner created (prefix, game,
        caches, settings), keeping only the logs.
        """
        logger.warning(f"Resetting installation under {self.paths.root}")
        self.supervisor.shutdown_runtime()
        ok = True
        for name in APP_DIRECTORIES:
            if name in RESET_KEEP:
                continue
            target = self.paths.root / name
            if target.exists() and not FileSystemHandler.delete_directory(target):
                ok = False
        self.config_handler.reset_to_defaults()
        ok = self.paths.create_directories() and ok
        return ok

    def shutdown(self):
        """Stop any session and the wineserver, then the worker pool."""
        self.supervisor.shutdown_runtime()
        if isinstance(self.executor, ThreadPoolExecutor):
            self.executor.shutdown(wait=False)
