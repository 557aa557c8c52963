#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SA-MP Runner CLI Frontend - Main Entry Point

Command-line interface for SA-MP Runner that uses the backend services.
"""

import sys
import argparse
import logging
from pathlib import Path

from tqdm import tqdm

from samprunner import __version__ as samprunner_version
from samprunner.backend.core.runner_operations import RunnerContext
from samprunner.backend.handlers.logging_handler import LoggingHandler
from samprunner.backend.models.errors import LaunchError, PipelineError, RunnerError, SetupError
from samprunner.backend.models.runtime import InstallStatus, PerformancePreset
from samprunner.shared.colors import (
    COLOR_ERROR,
    COLOR_INFO,
    COLOR_PROMPT,
    COLOR_RESET,
    COLOR_SUCCESS,
    COLOR_WARNING,
)
from samprunner.shared.paths import AppPaths

logger = logging.getLogger(__name__)

CLI_LOG_NAME = "samprunner-cli.log"


class ProgressBar:
    """Adapts (fraction, message) callbacks to a tqdm bar."""

    def __init__(self, description: str):
        self.bar = tqdm(total=100, desc=description, unit="%",
                        bar_format="{desc}: {percentage:3.0f}%|{bar}| {postfix}")

    def __call__(self, fraction: float, message: str):
        target = int(round(fraction * 100))
        if target > self.bar.n:
            self.bar.update(target - self.bar.n)
        self.bar.set_postfix_str(message[:60], refresh=True)

    def close(self):
        self.bar.close()


class RunnerCLI:
    """Main application class for the SA-MP Runner CLI frontend"""

    def __init__(self, argv=None):
        self.argv = argv
        self.args = None
        self.context = None

    def _parse_args(self):
        parser = argparse.ArgumentParser(
            prog="samprunner",
            description="SA-MP Runner: install and play GTA San Andreas multiplayer under Wine")
        parser.add_argument("-V", "--version", action="store_true", help="Show SA-MP Runner version and exit")
        parser.add_argument("-d", "--debug", action="store_true", help="Enable debug logging (implies verbose)")
        parser.add_argument("-v", "--verbose", action="store_true", help="Enable informational console output")
        parser.add_argument("--data-dir", type=Path, help="Application data directory (overrides the default)")
        parser.add_argument("--wine", help="Wine binary to use")

        subparsers = parser.add_subparsers(dest="command", help="Command to run")
        subparsers.add_parser("status", help="Show prefix, installation and backend status")
        subparsers.add_parser("check", help="Check system requirements")
        subparsers.add_parser("setup", help="Create the Wine prefix")

        base = subparsers.add_parser("install-base", help="Copy GTA San Andreas into the prefix")
        base.add_argument("source", type=Path, help="Folder containing gta_sa.exe")
        subparsers.add_parser("install-overlay", help="Download and install SA-MP")
        full = subparsers.add_parser("install", help="Run the complete installation")
        full.add_argument("source", type=Path, help="Folder containing gta_sa.exe")

        launch = subparsers.add_parser("launch", help="Launch the game and wait for it to exit")
        launch.add_argument("--game", action="store_true", help="Start single player instead of SA-MP")
        launch.add_argument("server", nargs="?", help="Server address (host:port) to connect to")

        subparsers.add_parser("stop", help="Stop Wine in this prefix")

        preset = subparsers.add_parser("preset", help="Apply a performance preset")
        preset.add_argument("level", choices=[p.value for p in PerformancePreset])

        subparsers.add_parser("clear-cache", help="Clear the shader cache")

        reset = subparsers.add_parser("reset", help="Delete the prefix, game and settings")
        reset.add_argument("--yes", action="store_true", help="Confirm the reset")

        args = parser.parse_args(self.argv)
        if args.version:
            print(f"SA-MP Runner version {samprunner_version}")
            sys.exit(0)
        if not args.command:
            parser.print_help()
            sys.exit(0)
        return args

    def _configure_logging(self, paths: AppPaths):
        if self.args.debug:
            console_level = logging.DEBUG
        elif self.args.verbose:
            console_level = logging.INFO
        else:
            console_level = logging.ERROR

        logging_handler = LoggingHandler(paths.logs_dir)
        logging_handler.rotate_log_for_logger('samprunner', CLI_LOG_NAME)
        logging_handler.setup_logger('samprunner', CLI_LOG_NAME, console_level=console_level)
        logging_handler.cleanup_old_logs()
        if self.args.debug:
            print("Debug logging enabled for console and file")

    def run(self) -> int:
        self.args = self._parse_args()
        paths = AppPaths.default(self.args.data_dir)
        paths.create_directories()
        self._configure_logging(paths)
        logger.debug(f"Parsed args: {self.args}")

        self.context = RunnerContext(paths=paths, wine_binary=self.args.wine)
        handlers = {
            "status": self._cmd_status,
            "check": self._cmd_check,
            "setup": self._cmd_setup,
            "install-base": self._cmd_install_base,
            "install-overlay": self._cmd_install_overlay,
            "install": self._cmd_install,
            "launch": self._cmd_launch,
            "stop": self._cmd_stop,
            "preset": self._cmd_preset,
            "clear-cache": self._cmd_clear_cache,
            "reset": self._cmd_reset,
        }
        try:
            return handlers[self.args.command]()
        except KeyboardInterrupt:
            print(f"\n{COLOR_INFO}Interrupted, stopping Wine...{COLOR_RESET}")
            self.context.supervisor.shutdown_runtime()
            return 130
        except PipelineError as e:
            print(f"{COLOR_ERROR}{e.user_message}{COLOR_RESET}")
            return 1
        except RunnerError as e:
            logger.error(f"{self.args.command} failed: {e}")
            print(f"{COLOR_ERROR}Error: {e}{COLOR_RESET}")
            return 1

    # Commands

    def _cmd_status(self) -> int:
        status = self.context.status()
        prefix = status.prefix
        print(f"{COLOR_INFO}SA-MP Runner {samprunner_version}{COLOR_RESET}")
        print(f"  Data directory:  {self.context.paths.root}")
        print(f"  Wine:            {status.wine_version}")
        if prefix.initialized:
            print(f"  Prefix:          {prefix.root} ({prefix.architecture or 'unknown arch'})")
        else:
            print(f"  Prefix:          {COLOR_WARNING}not set up{COLOR_RESET}")
        print(f"  {self.context.profile.name}: {self._format_install(status.base_status)}")
        print(f"  {self.context.profile.overlay_name}:          {self._format_install(status.overlay_status)}")
        print(f"  Backend:         {status.backend.label if status.backend else 'not configured'}")
        print(f"  Running:         {'yes' if status.is_running else 'no'}")
        last_preset = self.context.config_handler.get("last_applied_preset")
        print(f"  Preset:          {last_preset or 'none applied'}")
        return 0

    @staticmethod
    def _format_install(status: InstallStatus) -> str:
        if status is InstallStatus.INSTALLED:
            return f"{COLOR_SUCCESS}installed{COLOR_RESET}"
        if status is InstallStatus.CORRUPT:
            return f"{COLOR_ERROR}incomplete{COLOR_RESET}"
        return f"{COLOR_WARNING}not installed{COLOR_RESET}"

    def _cmd_check(self) -> int:
        caps = self.context.host_capabilities()
        print(f"{COLOR_INFO}System information{COLOR_RESET}")
        print(f"  CPU:     {caps.machine} ({caps.cpu_count} cores)")
        print(f"  Memory:  {caps.total_memory_gib:.1f} GB")
        print(f"  GPU:     {caps.gpu_name}")
        print(f"  OS:      {caps.os_name} {caps.os_version}")
        print(f"  Vulkan:  {caps.driver_shim or 'not found'}")

        result = self.context.platform.check_requirements(self.context.runtime)
        for message in result['errors']:
            print(f"{COLOR_ERROR}  ✗ {message}{COLOR_RESET}")
        for message in result['warnings']:
            print(f"{COLOR_WARNING}  ! {message}{COLOR_RESET}")
        if result['met']:
            print(f"{COLOR_SUCCESS}All requirements met{COLOR_RESET}")
            return 0
        return 1

    def _cmd_setup(self) -> int:
        print(f"{COLOR_INFO}Setting up the Wine prefix (this can take a few minutes)...{COLOR_RESET}")
        try:
            prefix = self.context.prefix_service.ensure_initialized()
        except SetupError as e:
            print(f"{COLOR_ERROR}Prefix setup failed: {e}{COLOR_RESET}")
            return 1
        print(f"{COLOR_SUCCESS}Prefix ready at {prefix.root}{COLOR_RESET}")
        if self.args.wine:
            self.context.config_handler.set_wine_path(self.args.wine)
        return 0

    def _cmd_install_base(self) -> int:
        service = self.context.installation_service
        service.prepare_prefix()
        bar = ProgressBar(f"Installing {self.context.profile.name}")
        try:
            count = service.install_base(self.args.source, bar)
        finally:
            bar.close()
        service.verify_base_stage()
        print(f"{COLOR_SUCCESS}{self.context.profile.name} installed ({count} files){COLOR_RESET}")
        return 0

    def _cmd_install_overlay(self) -> int:
        bar = ProgressBar(f"Installing {self.context.profile.overlay_name}")
        try:
            self.context.installation_service.install_overlay(bar)
        finally:
            bar.close()
        print(f"{COLOR_SUCCESS}{self.context.profile.overlay_name} installed{COLOR_RESET}")
        return 0

    def _cmd_install(self) -> int:
        bar = ProgressBar("Installing")
        try:
            self.context.installation_service.run(self.args.source, bar)
        finally:
            bar.close()
        tier = self.context.performance_service.apply(PerformancePreset.AUTO)
        print(f"{COLOR_SUCCESS}Installation complete. Applied the {tier.value} performance preset.{COLOR_RESET}")
        return 0

    def _cmd_launch(self) -> int:
        args = [self.args.server] if self.args.server else []
        try:
            session = self.context.launch_game(use_overlay=not self.args.game, args=args)
        except LaunchError as e:
            print(f"{COLOR_ERROR}{e}{COLOR_RESET}")
            return 1
        print(f"{COLOR_INFO}Running {session.executable.name} with {session.backend.label} "
              f"(PID {session.pid}). Press Ctrl+C to stop.{COLOR_RESET}")
        print(f"Game output: {self.context.paths.game_log}")
        exit_code = session.exit_future.result()
        self.context.supervisor.shutdown_runtime()
        print(f"{COLOR_INFO}Game exited with code {exit_code}{COLOR_RESET}")
        return 0

    def _cmd_stop(self) -> int:
        if self.context.supervisor.shutdown_runtime():
            print(f"{COLOR_SUCCESS}Wine stopped{COLOR_RESET}")
        else:
            print(f"{COLOR_WARNING}wineserver was not running{COLOR_RESET}")
        return 0

    def _cmd_preset(self) -> int:
        tier = self.context.performance_service.apply(PerformancePreset.from_name(self.args.level))
        print(f"{COLOR_SUCCESS}Applied the {tier.value} performance preset{COLOR_RESET}")
        return 0

    def _cmd_clear_cache(self) -> int:
        removed = self.context.performance_service.clear_shader_cache()
        print(f"{COLOR_SUCCESS}Shader cache cleared ({removed} entries){COLOR_RESET}")
        return 0

    def _cmd_reset(self) -> int:
        if not self.args.yes:
            print(f"{COLOR_PROMPT}This deletes the Wine prefix, the installed game and all settings.{COLOR_RESET}")
            print("Run again with --yes to confirm.")
            return 1
        if self.context.reset_installation():
            print(f"{COLOR_SUCCESS}Reset complete{COLOR_RESET}")
            return 0
        print(f"{COLOR_ERROR}Reset finished with errors, see {CLI_LOG_NAME}{COLOR_RESET}")
        return 1


def main(argv=None) -> int:
    return RunnerCLI(argv).run()


if __name__ == "__main__":
    # This should not be called directly - use __main__.py instead
    print("Please use: python -m samprunner")
    sys.exit(1)
