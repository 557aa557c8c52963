import stat
import textwrap
from pathlib import Path

import pytest

from samprunner.backend.handlers.config_handler import ConfigHandler
from samprunner.backend.handlers.registry_handler import RegistryHandler
from samprunner.backend.handlers.wine_utils import WineRuntime
from samprunner.backend.models.configuration import GIB, HostCapabilities
from samprunner.shared.paths import AppPaths


FAKE_WINE = textwrap.dedent("""\
    #!/bin/sh
    echo "$*" >> "${FAKE_WINE_LOG:-/dev/null}"
    case "$1" in
      --version)
        echo "wine-9.0"
        exit 0
        ;;
      wineboot)
        if [ -n "$FAKE_WINEBOOT_EXIT" ]; then
          exit "$FAKE_WINEBOOT_EXIT"
        fi
        echo "WINEARCH=${WINEARCH:-unset}" >> "${FAKE_WINE_LOG:-/dev/null}"
        mkdir -p "$WINEPREFIX/drive_c/windows/system32"
        if [ -z "$FAKE_WINEBOOT_PARTIAL" ]; then
          printf 'WINE REGISTRY Version 2\\n#arch=%s\\n' "${WINEARCH:-win64}" > "$WINEPREFIX/system.reg"
          printf 'WINE REGISTRY Version 2\\n#arch=%s\\n' "${WINEARCH:-win64}" > "$WINEPREFIX/user.reg"
        fi
        exit 0
        ;;
      reg)
        if [ -n "$FAKE_REG_FAIL" ]; then
          echo "reg: Unable to find the specified registry value"
          exit 1
        fi
        exit 0
        ;;
    esac
    if [ -n "$FAKE_INSTALL_DIR" ]; then
      mkdir -p "$FAKE_INSTALL_DIR"
      touch "$FAKE_INSTALL_DIR/samp.exe" "$FAKE_INSTALL_DIR/samp.dll"
    fi
    echo "running $1"
    exec sleep "${FAKE_WINE_SLEEP:-30}"
    """)

FAKE_WINESERVER = textwrap.dedent("""\
    #!/bin/sh
    echo "wineserver $*" >> "${FAKE_WINE_LOG:-/dev/null}"
    exit 0
    """)


def _write_script(path: Path, content: str) -> Path:
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def app_paths(tmp_path):
    paths = AppPaths(tmp_path / "data")
    paths.create_directories()
    return paths


@pytest.fixture
def wine_log(tmp_path, monkeypatch):
    log = tmp_path / "fake_wine.log"
    log.touch()
    monkeypatch.setenv("FAKE_WINE_LOG", str(log))
    for var in ("FAKE_WINEBOOT_EXIT", "FAKE_WINEBOOT_PARTIAL", "FAKE_REG_FAIL",
                "FAKE_INSTALL_DIR", "FAKE_WINE_SLEEP", "WINEARCH"):
        monkeypatch.delenv(var, raising=False)
    return log


@pytest.fixture
def fake_wine(tmp_path, wine_log):
    """Path to a shell script standing in for wine, with a wineserver beside it."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    _write_script(bin_dir / "wineserver", FAKE_WINESERVER)
    return str(_write_script(bin_dir / "wine", FAKE_WINE))


@pytest.fixture
def runtime(app_paths, fake_wine):
    return WineRuntime(app_paths.prefix, fake_wine)


@pytest.fixture
def config_handler(app_paths):
    return ConfigHandler(app_paths.settings_file)


def wine_calls(log: Path):
    return [line for line in log.read_text().splitlines() if line]


def make_caps(machine="x86_64", memory_gib=16, cpu_count=8, gpu_name="AMD Radeon Pro 5500M",
              driver_shim="/usr/share/vulkan/icd.d/test_icd.json"):
    return HostCapabilities(
        machine=machine,
        total_memory=int(memory_gib * GIB),
        cpu_count=cpu_count,
        gpu_name=gpu_name,
        os_name="Linux",
        os_version="6.1",
        driver_shim=driver_shim,
    )


@pytest.fixture
def x86_caps():
    return make_caps()


class FakeRegistry(RegistryHandler):
    """Registry that applies entries to a dict instead of running wine."""

    def __init__(self):
        super().__init__(runtime=None)
        self.state = {}
        self.applied = []

    def _write(self, entry):
        self.applied.append(entry)
        if entry.is_delete:
            self.state.pop(entry.address, None)
        else:
            self.state[entry.address] = entry.value
        return None

    def value(self, scope, key_path, name):
        return self.state.get((scope, key_path.lower(), name.lower()))


@pytest.fixture
def fake_registry():
    return FakeRegistry()


def make_prefix(paths: AppPaths, arch: str = "win32"):
    """Create the marker tree of an initialized prefix."""
    paths.system32.mkdir(parents=True, exist_ok=True)
    header = f"WINE REGISTRY Version 2\n#arch={arch}\n"
    (paths.prefix / "system.reg").write_text(header)
    (paths.prefix / "user.reg").write_text(header)


def write_user_reg_override(paths: AppPaths, mode: str):
    (paths.prefix / "user.reg").write_text(
        "WINE REGISTRY Version 2\n"
        "#arch=win32\n\n"
        "[Software\\\\Wine\\\\DllOverrides] 1700000000\n"
        "#time=1da0000000000000\n"
        f"\"*d3d9\"=\"{mode}\"\n"
        f"\"d3d11\"=\"{mode}\"\n"
    )


def populate_base_game(app_dir: Path, files=("gta_sa.exe", "models/gta3.img", "data/gta.dat")):
    for rel in files:
        target = app_dir / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(b"x" * 16)
