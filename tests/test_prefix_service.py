import threading

import pytest
from conftest import make_caps, wine_calls

from samprunner.backend.handlers.registry_handler import RegistryHandler
from samprunner.backend.handlers.wine_utils import WineRuntime
from samprunner.backend.models.errors import SetupError
from samprunner.backend.services.prefix_service import PrefixService


def make_service(runtime, caps=None, config_handler=None):
    caps = caps or make_caps()
    return PrefixService(runtime, RegistryHandler(runtime), lambda: caps, config_handler)


def test_status_of_missing_prefix(runtime):
    prefix = make_service(runtime).status()
    assert prefix.initialized is False
    assert prefix.architecture is None


def test_bootstrap_forces_win32_on_x86(app_paths, runtime, wine_log):
    prefix = make_service(runtime).ensure_initialized()

    assert prefix.initialized
    assert prefix.architecture == "win32"
    assert prefix.runtime_version == "wine-9.0"
    assert "WINEARCH=win32" in wine_calls(wine_log)


def test_bootstrap_leaves_arch_unset_on_arm(runtime, wine_log):
    prefix = make_service(runtime, make_caps(machine="arm64")).ensure_initialized()

    assert prefix.initialized
    assert prefix.architecture == "win64"
    assert "WINEARCH=unset" in wine_calls(wine_log)


def test_configured_arch_wins(runtime, wine_log, config_handler):
    config_handler.set("wine_arch", "win64")
    make_service(runtime, make_caps(), config_handler).ensure_initialized()

    assert "WINEARCH=win64" in wine_calls(wine_log)


def test_defaults_applied_after_bootstrap(runtime, wine_log):
    make_service(runtime).ensure_initialized()

    calls = wine_calls(wine_log)
    reg_calls = [c for c in calls if c.startswith("reg add")]
    assert reg_calls == [
        "reg add HKCU\\Software\\Wine\\DirectSound /v HelBuflen /t REG_SZ /d 512 /f",
        "reg add HKCU\\Software\\Wine\\DirectSound /v SndQueueMax /t REG_SZ /d 3 /f",
        "reg add HKCU\\Software\\Wine /v Version /t REG_SZ /d win10 /f",
    ]


def test_ensure_initialized_is_idempotent(runtime, wine_log):
    service = make_service(runtime)
    service.ensure_initialized()
    calls_after_first = len(wine_calls(wine_log))

    prefix = service.ensure_initialized()

    assert prefix.initialized
    assert len(wine_calls(wine_log)) == calls_after_first


def test_partial_prefix_is_bootstrapped_in_place(app_paths, runtime):
    game_file = app_paths.drive_c / "Program Files" / "game.dat"
    game_file.parent.mkdir(parents=True)
    game_file.write_text("keep me")
    (app_paths.prefix / "system.reg").write_text("#arch=win32\n")

    service = make_service(runtime)
    assert service.status().initialized is False

    assert service.ensure_initialized().initialized
    assert game_file.read_text() == "keep me"


def test_nonzero_exit_raises_setup_error(runtime, monkeypatch):
    monkeypatch.setenv("FAKE_WINEBOOT_EXIT", "3")

    with pytest.raises(SetupError) as excinfo:
        make_service(runtime).ensure_initialized()
    assert excinfo.value.exit_code == 3


def test_incomplete_tree_after_wineboot_raises(runtime, monkeypatch):
    monkeypatch.setenv("FAKE_WINEBOOT_PARTIAL", "1")

    with pytest.raises(SetupError) as excinfo:
        make_service(runtime).ensure_initialized()
    assert "system.reg" in str(excinfo.value)


def test_missing_wine_raises_setup_error(app_paths, monkeypatch):
    monkeypatch.setattr(WineRuntime, "find_wine_binary", staticmethod(lambda *a, **k: None))
    runtime = WineRuntime(app_paths.prefix)

    with pytest.raises(SetupError):
        make_service(runtime).ensure_initialized()


def test_async_bootstrap_returns_future(runtime):
    service = make_service(runtime)
    called = threading.Event()

    future = service.ensure_initialized_async(callback=lambda f: called.set())

    assert future.result(timeout=30).initialized
    assert called.wait(5)


def test_reset_removes_prefix(app_paths, runtime):
    service = make_service(runtime)
    service.ensure_initialized()

    assert service.reset() is True
    assert not app_paths.prefix.exists()
    assert service.status().initialized is False
