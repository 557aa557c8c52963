#!/usr/bin/env python3
"""
Installation Service

Drives the installation pipeline:

    NOT_STARTED -> PREPARING_PREFIX -> INSTALLING_BASE -> VERIFYING_BASE
        -> INSTALLING_OVERLAY -> APPLYING_PATCHES -> VERIFIED

Any stage may end in FAILED with a PipelineError. Every stage can be run
again on its own; nothing here retries automatically.
"""

import time
import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional

from ..handlers.config_handler import ConfigHandler
from ..handlers.filesystem_handler import FileSystemHandler
from ..handlers.registry_handler import RegistryHandler
from ..models.configuration import ApplicationProfile
from ..models.errors import DownloadError, LaunchError, PipelineError, SetupError, VerificationError
from ..models.runtime import (
    BackendIntent,
    ConfigScope,
    InstallationRecord,
    InstallStatus,
    PipelineStage,
    RenderingBackend,
    SessionKind,
)
from ...shared.paths import AppPaths
from ...shared.progress_models import TransferProgress
from .prefix_service import PrefixService
from .process_supervisor import ProcessSupervisor
from .rendering_backend_service import RenderingBackendService

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]
CompletionCallback = Callable[[bool, Optional[str]], None]

# Seconds a finished installer gets to exit on its own before it is terminated
INSTALLER_EXIT_GRACE = 5.0

# Share of overall progress per stage when the whole pipeline runs
PIPELINE_BANDS = {
    PipelineStage.PREPARING_PREFIX: (0.0, 0.05),
    PipelineStage.INSTALLING_BASE: (0.05, 0.75),
    PipelineStage.INSTALLING_OVERLAY: (0.75, 1.0),
}


def _banded(on_progress: Optional[ProgressCallback], start: float, end: float) -> Optional[ProgressCallback]:
    if on_progress is None:
        return None

    def report(fraction: float, message: str):
        on_progress(start + (end - start) * fraction, message)
    return report


class InstallationService:
    """
    Installs the base game from a local copy and the overlay from its
    installer, then patches and verifies the result.
    """

    def __init__(self, paths: AppPaths, prefix_service: PrefixService,
                 registry: RegistryHandler, backend_service: RenderingBackendService,
                 supervisor: ProcessSupervisor,
                 profile: Optional[ApplicationProfile] = None,
                 config_handler: Optional[ConfigHandler] = None,
                 executor: Optional[Executor] = None,
                 downloader: Callable = FileSystemHandler.download_file,
                 sleep: Callable[[float], None] = time.sleep,
                 installer_exit_grace: float = INSTALLER_EXIT_GRACE):
        self.paths = paths
        self.prefix_service = prefix_service
        self.registry = registry
        self.backend_service = backend_service
        self.supervisor = supervisor
        self.profile = profile or ApplicationProfile()
        self.config_handler = config_handler
        self._executor = executor
        self._download = downloader
        self._sleep = sleep
        self.installer_exit_grace = installer_exit_grace
        self._overlay_lock = threading.Lock()
        self.stage = PipelineStage.NOT_STARTED
        self.failure: Optional[PipelineError] = None

    @property
    def app_dir(self) -> Path:
        return self.paths.app_dir(self.profile.install_subpath)

    def _enter(self, stage: PipelineStage):
        logger.info(f"Installation stage: {stage.label}")
        self.stage = stage
        self.failure = None

    def _fail(self, stage: PipelineStage, reason: str, reached: bool = False,
              cause: Optional[BaseException] = None) -> PipelineError:
        error = PipelineError(stage, reason, reached=reached, cause=cause)
        logger.error(error.user_message)
        self.stage = PipelineStage.FAILED
        self.failure = error
        return error

    # Status

    def base_record(self) -> InstallationRecord:
        return InstallationRecord.probe("base", self.app_dir, self.profile.base_required_files)

    def overlay_record(self) -> InstallationRecord:
        return InstallationRecord.probe("overlay", self.app_dir, self.profile.overlay_required_files)

    def base_status(self) -> InstallStatus:
        return self.base_record().status

    def overlay_status(self) -> InstallStatus:
        return self.overlay_record().status

    def verify_base(self) -> bool:
        """True iff every required base file is present right now."""
        record = self.base_record()
        if record.missing_files:
            logger.debug(f"Base install incomplete, missing: {record.missing_files}")
            return False
        return True

    # Stages

    def prepare_prefix(self):
        self._enter(PipelineStage.PREPARING_PREFIX)
        try:
            return self.prefix_service.ensure_initialized()
        except SetupError as e:
            raise self._fail(PipelineStage.PREPARING_PREFIX, str(e), cause=e) from e

    def install_base(self, source_directory, on_progress: Optional[ProgressCallback] = None) -> int:
        """
        Copy the base game from source_directory into the prefix.

        Progress is reported as (fraction, message), never decreasing and
        ending at 1.0.

        Returns:
            int: number of files copied
        """
        stage = PipelineStage.INSTALLING_BASE
        self._enter(stage)
        source = Path(source_directory).expanduser()
        if not source.is_dir():
            raise self._fail(stage, f"source folder {source} does not exist")
        if not (source / self.profile.base_executable).is_file():
            raise self._fail(stage, f"{self.profile.base_executable} not found in {source}")

        last = [0.0]

        def report(progress: TransferProgress):
            fraction = max(last[0], progress.fraction)
            last[0] = fraction
            if on_progress:
                on_progress(fraction, progress.describe() or "Copying files")

        try:
            result = FileSystemHandler.copy_tree_with_progress(source, self.app_dir, report)
        except OSError as e:
            raise self._fail(stage, f"copy failed: {e}", cause=e) from e

        if on_progress:
            on_progress(1.0, f"Copied {result.files_done} files")
        self.register_base_path()
        return result.files_done

    def register_base_path(self) -> bool:
        """Tell the overlay where the game executable is."""
        executable = self.app_dir / self.profile.base_executable
        windows_path = self.prefix_service.runtime.to_windows_path(executable)
        return self.registry.set(ConfigScope.USER, self.profile.overlay_registry_key,
                                 self.profile.overlay_registry_name, windows_path)

    def verify_base_stage(self):
        stage = PipelineStage.VERIFYING_BASE
        self._enter(stage)
        record = self.base_record()
        if record.missing_files:
            cause = VerificationError("base game files missing", record.missing_files)
            raise self._fail(stage, f"missing {', '.join(record.missing_files)}", reached=True, cause=cause)

    def install_overlay(self, on_progress: Optional[ProgressCallback] = None,
                        on_complete: Optional[CompletionCallback] = None) -> bool:
        """
        Install the overlay by downloading and running its installer.

        Short-circuits when the overlay marker already exists. The installer
        runs with the WineD3D backend in installer-safe mode and is watched
        until the marker appears or the timeout passes.

        Raises:
            PipelineError: after on_complete(False, message) has been called
        """
        if not self._overlay_lock.acquire(blocking=False):
            error = PipelineError(PipelineStage.INSTALLING_OVERLAY, "an overlay installation is already running")
            logger.warning(error.user_message)
            if on_complete:
                on_complete(False, error.user_message)
            raise error
        try:
            self._install_overlay(on_progress)
        except PipelineError as e:
            if on_complete:
                on_complete(False, e.user_message)
            raise
        finally:
            self._overlay_lock.release()

        if on_complete:
            on_complete(True, None)
        return True

    def _install_overlay(self, on_progress: Optional[ProgressCallback]):
        stage = PipelineStage.INSTALLING_OVERLAY
        self._enter(stage)
        progress = on_progress or (lambda fraction, message: None)
        marker = self.app_dir / self.profile.overlay_marker

        if marker.is_file():
            logger.info(f"{self.profile.overlay_name} already installed, skipping download")
            progress(0.9, "Applying patches...")
            self.apply_patches()
            progress(1.0, f"{self.profile.overlay_name} ready")
            return

        if not self.verify_base():
            raise self._fail(stage, f"{self.profile.name} must be installed first")

        url = self.profile.overlay_url
        if self.config_handler:
            url = self.config_handler.get("overlay_download_url", url)
        installer = self.paths.temp_dir / self.profile.overlay_installer_name

        progress(0.1, "Downloading installer...")

        def on_download(transfer: TransferProgress):
            progress(0.1 + 0.3 * transfer.fraction, f"Downloading installer {transfer.data_progress_text}")

        try:
            self._download(url, installer, self.profile.overlay_min_size, on_download)
        except DownloadError as e:
            raise self._fail(stage, str(e), cause=e) from e

        progress(0.5, "Running installer...")
        try:
            session = self.supervisor.launch(
                installer, session_kind=SessionKind.INSTALLER, backend=RenderingBackend.NATIVE_EMULATION,
                prepare=lambda: self.backend_service.apply_backend(RenderingBackend.NATIVE_EMULATION,
                                                                   BackendIntent.INSTALLER_SAFE_MODE),
            )
        except LaunchError as e:
            raise self._fail(stage, str(e), cause=e) from e

        waited = 0.0
        timeout = self.profile.overlay_install_timeout
        while not marker.is_file():
            if session.exit_future.done():
                # Files are written before the installer exits; look once more
                if marker.is_file():
                    break
                raise self._fail(stage, f"installer exited with code {session.exit_code} "
                                        f"without installing {self.profile.overlay_marker}", reached=True)
            if waited >= timeout:
                self.supervisor.terminate()
                raise self._fail(stage, f"installer did not finish within {int(timeout)} seconds", reached=True)
            self._sleep(self.profile.overlay_poll_interval)
            waited += self.profile.overlay_poll_interval
            progress(0.5 + 0.4 * min(waited / timeout, 1.0), "Running installer...")

        logger.info(f"{self.profile.overlay_marker} found, installer finished")
        if session.wait(self.installer_exit_grace) is None:
            logger.info("Installer still open, closing it")
            self.supervisor.terminate()

        progress(0.9, "Applying patches...")
        self.apply_patches()
        self._verify_overlay()
        FileSystemHandler.clear_directory(self.paths.temp_dir)
        progress(1.0, f"{self.profile.overlay_name} installed")

    def _verify_overlay(self):
        record = self.overlay_record()
        if record.missing_files:
            cause = VerificationError("overlay files missing", record.missing_files)
            raise self._fail(PipelineStage.INSTALLING_OVERLAY,
                             f"missing {', '.join(record.missing_files)}", reached=True, cause=cause)

    def apply_patches(self) -> List[Path]:
        """
        Write the default overlay config if there is none, and remove settings
        caches the game wrote under a previous backend.

        Returns:
            list of removed cache files
        """
        self._enter(PipelineStage.APPLYING_PATCHES)
        overlay_config = self.app_dir / self.profile.overlay_config_file
        if not overlay_config.exists():
            FileSystemHandler.write_ini_atomic(overlay_config, self.profile.overlay_config_defaults)
            logger.info(f"Wrote default {overlay_config.name}")

        removed: List[Path] = []
        for pattern in self.profile.stale_settings_globs:
            for stale in self.paths.drive_c.glob(pattern):
                if FileSystemHandler.delete_file(stale):
                    removed.append(stale)
        if removed:
            logger.info(f"Removed {len(removed)} stale settings file(s)")
        return removed

    # Whole pipeline

    def run(self, source_directory, on_progress: Optional[ProgressCallback] = None,
            on_complete: Optional[CompletionCallback] = None) -> PipelineStage:
        """Run every stage in order. Returns VERIFIED or raises PipelineError."""
        try:
            self.prepare_prefix()
            if on_progress:
                on_progress(PIPELINE_BANDS[PipelineStage.PREPARING_PREFIX][1], "Prefix ready")
            self.install_base(source_directory, _banded(on_progress, *PIPELINE_BANDS[PipelineStage.INSTALLING_BASE]))
            self.verify_base_stage()
        except PipelineError as e:
            if on_complete:
                on_complete(False, e.user_message)
            raise

        self.install_overlay(_banded(on_progress, *PIPELINE_BANDS[PipelineStage.INSTALLING_OVERLAY]), on_complete)
        self.stage = PipelineStage.VERIFIED
        logger.info("Installation verified")
        return self.stage

    def run_async(self, source_directory, on_progress: Optional[ProgressCallback] = None,
                  on_complete: Optional[CompletionCallback] = None) -> Future:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="install")
        return self._executor.submit(self.run, source_directory, on_progress, on_complete)
