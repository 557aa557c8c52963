import os
import signal
import resource
import sys
import logging

import psutil

logger = logging.getLogger(__name__)

# Set by AppImage, py2app and PyInstaller launchers; meaningless to Wine
BUNDLE_ENV_VARS = ('APPIMAGE', 'APPDIR', 'ARGV0', 'OWD', 'RESOURCEPATH', 'EXECUTABLEPATH',
                   'PYTHONHOME', 'PYTHONPATH')
LIBRARY_PATH_VARS = ('LD_LIBRARY_PATH', 'DYLD_LIBRARY_PATH', 'DYLD_FALLBACK_LIBRARY_PATH')
SYSTEM_BIN_DIRS = ('/opt/homebrew/bin', '/usr/local/bin', '/usr/bin', '/bin', '/usr/sbin', '/sbin')


def _outside_bundle(parts, bundle_dir):
    if not bundle_dir:
        return list(parts)
    return [p for p in parts if not p.startswith(bundle_dir)]


def get_clean_subprocess_env(extra_env=None):
    """
    Copy of os.environ safe to hand to wine, wineserver and helper tools.

    When the runner is frozen into a bundle, the launcher injects Python and
    library search paths that point inside the bundle; Wine must see the
    host's own libraries instead. extra_env is merged last.
    """
    env = os.environ.copy()
    bundle_dir = getattr(sys, '_MEIPASS', None) or os.environ.get('RESOURCEPATH')

    for key in BUNDLE_ENV_VARS:
        env.pop(key, None)
    for key in [k for k in env if k.startswith('_MEIPASS') or k.startswith('_PYI_')]:
        del env[key]

    # PyInstaller backs up the caller's value as <VAR>_ORIG
    for var in LIBRARY_PATH_VARS:
        original = env.pop(f'{var}_ORIG', None)
        if original is not None:
            env[var] = original
        elif var in env:
            kept = _outside_bundle(env[var].split(os.pathsep), bundle_dir)
            if kept:
                env[var] = os.pathsep.join(kept)
            else:
                env.pop(var)

    path_parts = _outside_bundle(filter(None, env.get('PATH', '').split(os.pathsep)), bundle_dir)
    path_parts.extend(d for d in SYSTEM_BIN_DIRS if os.path.isdir(d))
    env['PATH'] = os.pathsep.join(dict.fromkeys(path_parts))

    if extra_env:
        env.update(extra_env)
    return env


def increase_file_descriptor_limit(target_limit=524288):
    """
    Raise the soft file descriptor limit for this process and its children.
    Wine's esync needs far more descriptors than the usual default of 1024.

    Args:
        target_limit (int): Desired file descriptor limit

    Returns:
        tuple: (success: bool, old_limit: int, new_limit: int, message: str)
    """
    try:
        soft_limit, hard_limit = resource.getrlimit(resource.RLIMIT_NOFILE)

        # Don't decrease the limit if it's already higher
        if soft_limit >= target_limit:
            return True, soft_limit, soft_limit, f"Current limit ({soft_limit}) already sufficient"

        if hard_limit == resource.RLIM_INFINITY:
            new_limit = target_limit
        else:
            new_limit = min(target_limit, hard_limit)
        resource.setrlimit(resource.RLIMIT_NOFILE, (new_limit, hard_limit))

        return True, soft_limit, new_limit, f"Increased file descriptor limit from {soft_limit} to {new_limit}"

    except (OSError, ValueError) as e:
        try:
            soft_limit, _ = resource.getrlimit(resource.RLIMIT_NOFILE)
        except (OSError, ValueError):
            soft_limit = -1
        return False, soft_limit, soft_limit, f"Failed to increase file descriptor limit: {e}"


def signal_process(pid, sig=signal.SIGTERM):
    """Send a signal to a single process. Returns False if it is already gone."""
    try:
        os.kill(pid, sig)
        return True
    except ProcessLookupError:
        return False
    except PermissionError as e:
        logger.warning(f"Not allowed to signal process {pid}: {e}")
        return False


def kill_process_tree(pid, include_parent=True):
    """
    Forcefully kill a process and every descendant.

    Returns:
        int: number of processes signalled
    """
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return 0

    try:
        procs = parent.children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        procs = []
    if include_parent:
        procs.append(parent)

    killed = 0
    for proc in procs:
        try:
            proc.kill()
            killed += 1
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue

    # No wait here: the parent is usually our own Popen child and is reaped by its watcher
    logger.debug(f"Killed {killed} process(es) in tree of PID {pid}")
    return killed
