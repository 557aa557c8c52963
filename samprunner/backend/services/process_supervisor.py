#!/usr/bin/env python3
"""
Process Supervisor

Owns the lifecycle of the one Wine process the runner starts at a time:

    IDLE -> LAUNCHING -> RUNNING -> TERMINATED

State lives behind a single lock. A watcher thread per session waits for the
process to exit, records the exit code, resolves the session's future and
notifies termination observers on that thread.
"""

import signal
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import psutil

from ..data.runtime_env import (
    ACCELERATED_BACKEND_ENV,
    CPU_TOPOLOGY_MAX_CORES,
    HOST_TUNING_ENV,
    SESSION_KIND_ENV,
    SHADER_CACHE_SIZES,
)
from ..handlers.config_handler import ConfigHandler
from ..handlers.subprocess_utils import kill_process_tree, signal_process
from ..handlers.wine_utils import WineNotFoundError, WineRuntime
from ..models.configuration import GIB, HostCapabilities
from ..models.errors import AlreadyRunningError, ExecutableNotFoundError, SpawnFailedError
from ..models.runtime import (
    LaunchSession,
    PerformanceStats,
    RenderingBackend,
    SessionKind,
    SessionState,
)
from ...shared.paths import AppPaths

logger = logging.getLogger(__name__)

DEFAULT_GRACE_MILLIS = 5000
SHADER_CACHE_SUBDIR = "shaders"

TerminationObserver = Callable[[LaunchSession], None]


def shader_cache_size_for(total_memory: int) -> str:
    """Shader cache budget ('4G', '2G', ...) for the host's memory."""
    gib = total_memory / GIB
    for min_gib, size in SHADER_CACHE_SIZES:
        if gib >= min_gib:
            return size
    return SHADER_CACHE_SIZES[-1][1]


def size_to_bytes(size: str) -> int:
    units = {"K": 1024, "M": 1024 ** 2, "G": GIB}
    size = size.strip().upper()
    if size and size[-1] in units:
        return int(float(size[:-1]) * units[size[-1]])
    return int(size)


class ProcessSupervisor:
    """
    Launches, watches and terminates the supervised Wine process.
    """

    def __init__(self, paths: AppPaths, runtime: WineRuntime,
                 host_caps: Callable[[], HostCapabilities],
                 config_handler: Optional[ConfigHandler] = None):
        self.paths = paths
        self.runtime = runtime
        self._host_caps = host_caps
        self.config_handler = config_handler
        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._session: Optional[LaunchSession] = None
        self._observers: List[TerminationObserver] = []
        self._kill_timer: Optional[threading.Timer] = None

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._state in (SessionState.LAUNCHING, SessionState.RUNNING)

    @property
    def current_session(self) -> Optional[LaunchSession]:
        with self._lock:
            return self._session

    def add_termination_observer(self, observer: TerminationObserver):
        """Call observer(session) on the watcher thread whenever a session ends."""
        with self._lock:
            self._observers.append(observer)

    def remove_termination_observer(self, observer: TerminationObserver):
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    # Environment

    def _placeholders(self) -> Dict[str, str]:
        caps = self._host_caps()
        cores = max(1, min(caps.cpu_count or 1, CPU_TOPOLOGY_MAX_CORES))
        cache_size = shader_cache_size_for(caps.total_memory)
        hud = "0"
        if self.config_handler:
            hud = str(self.config_handler.get("dxvk_hud", "0"))
        return {
            "dxvk_cache": str(self.paths.dxvk_cache),
            "dxvk_config": str(self.paths.dxvk_config),
            "dxvk_hud": hud,
            "shader_cache": str(self.paths.dxvk_cache / SHADER_CACHE_SUBDIR),
            "shader_cache_size": cache_size,
            "shader_cache_bytes": str(size_to_bytes(cache_size)),
            "cpu_topology": f"{cores}:{','.join(str(i) for i in range(cores))}",
        }

    def build_environment(self, session_kind: SessionKind = SessionKind.NORMAL,
                          backend: RenderingBackend = RenderingBackend.NATIVE_EMULATION) -> Dict[str, str]:
        """
        Environment for a session, layered in order: cleaned host environment,
        prefix binding and debug suppression, DXVK variables (normal sessions on
        DXVK only), host tuning, then session-kind overrides.
        """
        env = self.runtime.base_env()
        values = self._placeholders()
        if session_kind is SessionKind.NORMAL and backend is RenderingBackend.ACCELERATED_TRANSLATION:
            env.update({k: v.format(**values) for k, v in ACCELERATED_BACKEND_ENV.items()})
        env.update({k: v.format(**values) for k, v in HOST_TUNING_ENV.items()})
        env.update(SESSION_KIND_ENV[session_kind.value])
        return env

    # Lifecycle

    def launch(self, executable_path, args: Sequence[str] = (),
               session_kind: SessionKind = SessionKind.NORMAL,
               backend: RenderingBackend = RenderingBackend.NATIVE_EMULATION,
               prepare: Optional[Callable[[], object]] = None) -> LaunchSession:
        """
        Start an executable under Wine and return its session.

        prepare runs after the session slot is taken and before the process
        starts, so a refused launch never reaches it. The backend configuration
        for the session is applied there.

        Raises:
            AlreadyRunningError: a session is launching or running (nothing is changed)
            ExecutableNotFoundError: the executable does not exist
            SpawnFailedError: the process could not be started
        """
        executable = Path(executable_path)
        with self._lock:
            if self._state in (SessionState.LAUNCHING, SessionState.RUNNING):
                raise AlreadyRunningError("A Wine session is already running")
            if not executable.is_file():
                raise ExecutableNotFoundError(executable)
            previous_state = self._state
            self._state = SessionState.LAUNCHING

        logger.info(f"Launching {executable.name} ({session_kind.value}, {backend.label})")
        try:
            if prepare is not None:
                prepare()
            session = LaunchSession(
                executable=executable,
                working_directory=executable.parent,
                arguments=list(args),
                environment=self.build_environment(session_kind, backend),
                kind=session_kind,
                backend=backend,
            )
            self.paths.game_log.parent.mkdir(parents=True, exist_ok=True)
            with open(self.paths.game_log, 'w') as log_file:
                log_file.write(f"=== {executable.name} started {datetime.now().isoformat(timespec='seconds')} ===\n")
                log_file.flush()
                session.process = self.runtime.spawn(executable, session.arguments,
                                                     session.environment, stdout=log_file)
        except (OSError, WineNotFoundError) as e:
            logger.error(f"Failed to launch {executable.name}: {e}")
            with self._lock:
                self._state = previous_state
            raise SpawnFailedError(f"Failed to launch {executable.name}: {e}") from e
        except Exception:
            with self._lock:
                self._state = previous_state
            raise

        with self._lock:
            self._session = session
            self._state = SessionState.RUNNING
        logger.info(f"{executable.name} running with PID {session.pid}")

        watcher = threading.Thread(target=self._watch, args=(session,),
                                   name=f"wine-watcher-{session.pid}", daemon=True)
        watcher.start()
        return session

    def _watch(self, session: LaunchSession):
        exit_code = session.process.wait()
        session.exit_code = exit_code
        with self._lock:
            if self._session is session:
                self._state = SessionState.TERMINATED
            observers = list(self._observers)
            timer, self._kill_timer = self._kill_timer, None
        if timer:
            timer.cancel()

        logger.info(f"{session.executable.name} terminated with exit code {exit_code}")
        session.exit_future.set_result(exit_code)
        for observer in observers:
            try:
                observer(session)
            except Exception as e:
                logger.error(f"Termination observer failed: {e}", exc_info=True)
        session._terminated.set()

    def terminate(self, grace_millis: int = DEFAULT_GRACE_MILLIS) -> bool:
        """
        Ask the running process to exit, and kill its whole process tree if it
        is still alive after grace_millis. Returns immediately.

        Returns:
            bool: False when there was nothing to terminate
        """
        with self._lock:
            session = self._session
            if self._state is not SessionState.RUNNING or session is None or session.process is None:
                return False
            pid = session.pid
            # Registered before signalling; the watcher cancels it on exit
            timer = threading.Timer(grace_millis / 1000.0, self._force_kill, args=(session,))
            timer.daemon = True
            if self._kill_timer:
                self._kill_timer.cancel()
            self._kill_timer = timer

        logger.info(f"Terminating Wine process {pid}...")
        signal_process(pid, signal.SIGTERM)
        timer.start()
        return True

    def _force_kill(self, session: LaunchSession):
        if session.exit_future.done():
            return
        logger.warning(f"Force killing Wine process tree {session.pid}")
        kill_process_tree(session.pid)

    def shutdown_runtime(self, grace_millis: int = DEFAULT_GRACE_MILLIS) -> bool:
        """
        Terminate any session, wait for it, then stop the wineserver.
        Safe to call any number of times.
        """
        session = self.current_session
        if self.terminate(grace_millis) and session is not None:
            # Escalation fires at grace_millis; allow the watcher a moment after it
            if session.wait(grace_millis / 1000.0 + 5) is None:
                logger.warning("Wine process did not exit before wineserver shutdown")
        return self.runtime.kill_server()

    # Stats

    def get_performance_stats(self) -> PerformanceStats:
        """Memory and CPU of the running session's process tree."""
        stats = PerformanceStats()
        session = self.current_session
        if session is None or not self.is_running:
            return stats
        try:
            root = psutil.Process(session.pid)
            procs = [root] + root.children(recursive=True)
        except psutil.NoSuchProcess:
            return stats

        for proc in procs:
            try:
                stats.memory_usage += proc.memory_info().rss
                stats.cpu_usage += proc.cpu_percent(interval=None)
                stats.process_count += 1
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return stats
