import os
import stat
import threading
from concurrent.futures import Future

import pytest
import requests
from conftest import FakeRegistry, make_caps, make_prefix, populate_base_game

from samprunner.backend.handlers import filesystem_handler
from samprunner.backend.handlers.filesystem_handler import FileSystemHandler
from samprunner.backend.handlers.wine_utils import WineRuntime
from samprunner.backend.models.configuration import ApplicationProfile
from samprunner.backend.models.errors import DownloadTooSmallError, PipelineError
from samprunner.backend.models.runtime import (
    BackendIntent,
    ConfigScope,
    InstallStatus,
    LaunchSession,
    PipelineStage,
    RenderingBackend,
    SessionKind,
)
from samprunner.backend.services.installation_service import InstallationService
from samprunner.backend.services.prefix_service import PrefixService
from samprunner.backend.services.rendering_backend_service import RenderingBackendService


class StubSupervisor:
    """Records launches; on_launch decides what the 'installer' does."""

    def __init__(self, on_launch=None, exits=True):
        self.on_launch = on_launch
        self.exits = exits
        self.launches = []
        self.terminated = 0

    def launch(self, executable, args=(), session_kind=SessionKind.NORMAL, backend=RenderingBackend.NATIVE_EMULATION,
               prepare=None):
        self.launches.append((executable, session_kind, backend))
        if prepare:
            prepare()
        if self.on_launch:
            self.on_launch()
        session = LaunchSession(executable=executable, working_directory=executable.parent, arguments=[],
                                environment={}, kind=session_kind, backend=backend)
        if self.exits:
            session.exit_code = 0
            session.exit_future.set_result(0)
            session._terminated.set()
        return session

    def terminate(self, grace_millis=5000):
        self.terminated += 1
        return True


class RecordingBackendService(RenderingBackendService):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.applied = []

    def apply_backend(self, backend, intent=BackendIntent.NORMAL):
        self.applied.append((backend, intent))
        return super().apply_backend(backend, intent)


def fake_download(size):
    calls = []

    def download(url, destination, min_size=0, progress_callback=None):
        calls.append(url)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"\0" * size)
        if size < min_size:
            destination.unlink()
            raise DownloadTooSmallError(size, min_size)
        return destination
    download.calls = calls
    return download


@pytest.fixture
def profile():
    return ApplicationProfile(overlay_min_size=1000, overlay_poll_interval=1.0, overlay_install_timeout=3.0)


@pytest.fixture
def app_dir(app_paths, profile):
    return app_paths.app_dir(profile.install_subpath)


def make_service(app_paths, profile, supervisor=None, downloader=None, registry=None, config_handler=None):
    registry = registry or FakeRegistry()
    caps = make_caps()
    runtime = WineRuntime(app_paths.prefix, "/nonexistent/wine")
    prefix_service = PrefixService(runtime, registry, lambda: caps)
    backend_service = RecordingBackendService(app_paths, registry, lambda: caps, profile, config_handler)
    return InstallationService(
        app_paths, prefix_service, registry, backend_service, supervisor or StubSupervisor(),
        profile=profile, config_handler=config_handler,
        downloader=downloader or fake_download(5000),
        sleep=lambda seconds: None,
        installer_exit_grace=0,
    )


def make_source(root, extra_files=0):
    populate_base_game(root)
    for i in range(extra_files):
        (root / "audio" / f"track{i:03}.raw").parent.mkdir(parents=True, exist_ok=True)
        (root / "audio" / f"track{i:03}.raw").write_bytes(os.urandom(100 + i))
    return root


# Status

def test_verify_base_requires_every_file(app_paths, profile, app_dir):
    service = make_service(app_paths, profile)
    assert service.verify_base() is False
    assert service.base_status() is InstallStatus.NOT_INSTALLED

    populate_base_game(app_dir, files=("gta_sa.exe", "data/gta.dat"))
    assert service.verify_base() is False
    assert service.base_status() is InstallStatus.CORRUPT

    populate_base_game(app_dir)
    assert service.verify_base() is True
    assert service.base_status() is InstallStatus.INSTALLED


def test_verify_base_is_rederived_every_time(app_paths, profile, app_dir):
    service = make_service(app_paths, profile)
    populate_base_game(app_dir)
    assert service.verify_base()

    (app_dir / "models" / "gta3.img").unlink()
    assert service.verify_base() is False


# Base install

def test_install_base_reports_monotonic_progress(app_paths, profile, app_dir, tmp_path):
    source = make_source(tmp_path / "source", extra_files=20)
    service = make_service(app_paths, profile)
    reported = []

    count = service.install_base(source, lambda fraction, message: reported.append(fraction))

    assert count == 23
    assert reported == sorted(reported)
    assert reported[-1] == 1.0
    assert service.verify_base()
    assert (app_dir / "audio" / "track019.raw").read_bytes() == (source / "audio" / "track019.raw").read_bytes()


def test_install_base_replaces_read_only_files(app_paths, profile, app_dir, tmp_path):
    source = make_source(tmp_path / "source")
    (source / "gta_sa.exe").write_bytes(b"new")
    populate_base_game(app_dir)
    old = app_dir / "gta_sa.exe"
    old.chmod(stat.S_IRUSR)

    make_service(app_paths, profile).install_base(source)

    assert old.read_bytes() == b"new"


def test_install_base_records_game_path_for_overlay(app_paths, profile, tmp_path):
    registry = FakeRegistry()
    service = make_service(app_paths, profile, registry=registry)

    service.install_base(make_source(tmp_path / "source"))

    assert registry.value(ConfigScope.USER, "Software\\SAMP", "gta_sa_exe") == \
        "C:\\Program Files\\Rockstar Games\\GTA San Andreas\\gta_sa.exe"


def test_install_base_missing_source(app_paths, profile, tmp_path):
    service = make_service(app_paths, profile)

    with pytest.raises(PipelineError) as excinfo:
        service.install_base(tmp_path / "does-not-exist")

    assert excinfo.value.reached is False
    assert excinfo.value.stage is PipelineStage.INSTALLING_BASE
    assert service.stage is PipelineStage.FAILED
    assert service.failure is excinfo.value


def test_install_base_rejects_folder_without_game(app_paths, profile, tmp_path):
    source = tmp_path / "source"
    source.mkdir()
    (source / "readme.txt").write_text("not a game")

    with pytest.raises(PipelineError):
        make_service(app_paths, profile).install_base(source)


def test_verify_stage_failure_is_marked_reached(app_paths, profile, app_dir):
    populate_base_game(app_dir, files=("gta_sa.exe",))
    service = make_service(app_paths, profile)

    with pytest.raises(PipelineError) as excinfo:
        service.verify_base_stage()

    assert excinfo.value.reached is True
    assert "models/gta3.img" in excinfo.value.reason
    assert "Check the source files" in excinfo.value.user_message


# Overlay install

def test_overlay_marker_short_circuits(app_paths, profile, app_dir):
    populate_base_game(app_dir)
    (app_dir / "samp.exe").write_bytes(b"MZ")
    supervisor = StubSupervisor()
    download = fake_download(5000)
    results = []
    service = make_service(app_paths, profile, supervisor=supervisor, downloader=download)

    assert service.install_overlay(on_complete=lambda ok, msg: results.append((ok, msg)))

    assert download.calls == []
    assert supervisor.launches == []
    assert results == [(True, None)]
    assert (app_dir / "SAMP" / "sa-mp.cfg").exists()


def test_undersized_payload_never_reaches_supervisor(app_paths, profile, app_dir):
    populate_base_game(app_dir)
    supervisor = StubSupervisor()
    results = []
    service = make_service(app_paths, profile, supervisor=supervisor, downloader=fake_download(10))

    with pytest.raises(PipelineError) as excinfo:
        service.install_overlay(on_complete=lambda ok, msg: results.append((ok, msg)))

    assert isinstance(excinfo.value.cause, DownloadTooSmallError)
    assert excinfo.value.reached is False
    assert supervisor.launches == []
    assert results[0][0] is False


def test_overlay_requires_base_game(app_paths, profile):
    download = fake_download(5000)
    service = make_service(app_paths, profile, downloader=download)

    with pytest.raises(PipelineError):
        service.install_overlay()
    assert download.calls == []


def test_overlay_installs_with_installer_safe_backend(app_paths, profile, app_dir):
    populate_base_game(app_dir)

    def installer_runs():
        (app_dir / "samp.exe").write_bytes(b"MZ")
        (app_dir / "samp.dll").write_bytes(b"MZ")

    supervisor = StubSupervisor(on_launch=installer_runs)
    service = make_service(app_paths, profile, supervisor=supervisor)
    results = []

    service.install_overlay(on_complete=lambda ok, msg: results.append((ok, msg)))

    executable, kind, backend = supervisor.launches[0]
    assert executable == app_paths.temp_dir / profile.overlay_installer_name
    assert kind is SessionKind.INSTALLER
    assert backend is RenderingBackend.NATIVE_EMULATION
    assert service.backend_service.applied == [
        (RenderingBackend.NATIVE_EMULATION, BackendIntent.INSTALLER_SAFE_MODE)
    ]
    assert results == [(True, None)]
    assert service.overlay_status() is InstallStatus.INSTALLED
    assert list(app_paths.temp_dir.iterdir()) == []


def test_lingering_installer_is_terminated(app_paths, profile, app_dir):
    populate_base_game(app_dir)

    def installer_runs():
        (app_dir / "samp.exe").write_bytes(b"MZ")
        (app_dir / "samp.dll").write_bytes(b"MZ")

    supervisor = StubSupervisor(on_launch=installer_runs, exits=False)

    make_service(app_paths, profile, supervisor=supervisor).install_overlay()

    assert supervisor.terminated == 1


def test_installer_timeout_fails_and_terminates(app_paths, profile, app_dir):
    populate_base_game(app_dir)
    supervisor = StubSupervisor(exits=False)
    service = make_service(app_paths, profile, supervisor=supervisor)

    with pytest.raises(PipelineError) as excinfo:
        service.install_overlay()

    assert excinfo.value.reached is True
    assert excinfo.value.stage is PipelineStage.INSTALLING_OVERLAY
    assert supervisor.terminated == 1


def test_installer_exiting_without_marker_fails(app_paths, profile, app_dir):
    populate_base_game(app_dir)
    service = make_service(app_paths, profile, supervisor=StubSupervisor(exits=True))

    with pytest.raises(PipelineError) as excinfo:
        service.install_overlay()
    assert "without installing samp.exe" in excinfo.value.reason


def test_concurrent_overlay_install_is_refused_without_touching_the_first(app_paths, profile, app_dir):
    populate_base_game(app_dir)
    started = threading.Event()
    release = threading.Event()

    def slow_download(url, destination, min_size=0, progress_callback=None):
        started.set()
        release.wait(10)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"\0" * 5000)
        return destination

    def installer_runs():
        (app_dir / "samp.exe").write_bytes(b"MZ")
        (app_dir / "samp.dll").write_bytes(b"MZ")

    service = make_service(app_paths, profile, supervisor=StubSupervisor(on_launch=installer_runs),
                           downloader=slow_download)
    outcomes = []
    first = threading.Thread(target=lambda: outcomes.append(service.install_overlay()))
    first.start()
    try:
        assert started.wait(10)
        refused = []

        with pytest.raises(PipelineError) as excinfo:
            service.install_overlay(on_complete=lambda ok, msg: refused.append(ok))

        assert "already running" in excinfo.value.reason
        assert refused == [False]
        assert service.stage is PipelineStage.INSTALLING_OVERLAY
        assert service.failure is None
    finally:
        release.set()
        first.join(10)

    assert outcomes == [True]
    assert service.overlay_status() is InstallStatus.INSTALLED


# Patches

def test_patches_keep_existing_overlay_config(app_paths, profile, app_dir):
    config = app_dir / "SAMP" / "sa-mp.cfg"
    config.parent.mkdir(parents=True)
    config.write_text("[samp]\npagesize=20\n")

    make_service(app_paths, profile).apply_patches()

    assert config.read_text() == "[samp]\npagesize=20\n"


def test_patches_write_default_overlay_config(app_paths, profile, app_dir):
    make_service(app_paths, profile).apply_patches()

    sections = FileSystemHandler.read_ini(app_dir / "SAMP" / "sa-mp.cfg")
    assert sections["samp"]["fontface"] == "Arial"
    assert sections["samp"]["pagesize"] == "10"


def test_patches_remove_stale_settings_caches(app_paths, profile, app_dir):
    stale = app_paths.drive_c / "users" / "player" / "Documents" / "GTA San Andreas User Files" / "gta_sa.set"
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"old video mode")
    managed = app_dir / "gta_sa.set"
    managed.parent.mkdir(parents=True, exist_ok=True)
    managed.write_text("[Display]\n")

    removed = make_service(app_paths, profile).apply_patches()

    assert removed == [stale]
    assert not stale.exists()
    assert managed.exists()


# Whole pipeline

def test_run_reaches_verified(app_paths, profile, app_dir, tmp_path):
    make_prefix(app_paths)
    (app_dir).mkdir(parents=True, exist_ok=True)
    (app_dir / "samp.exe").write_bytes(b"MZ")
    service = make_service(app_paths, profile)
    reported = []

    stage = service.run(make_source(tmp_path / "source"), lambda f, m: reported.append(f))

    assert stage is PipelineStage.VERIFIED
    assert reported == sorted(reported)
    assert reported[-1] == 1.0


def test_run_async_propagates_failure(app_paths, profile, tmp_path):
    make_prefix(app_paths)
    service = make_service(app_paths, profile)
    results = []

    future = service.run_async(tmp_path / "missing", on_complete=lambda ok, msg: results.append(ok))

    assert isinstance(future, Future)
    with pytest.raises(PipelineError):
        future.result(timeout=30)
    assert results == [False]


# Download handler

class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status
        self.headers = {"content-length": str(len(payload))}

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.exceptions.HTTPError(f"{self.status} error")

    def iter_content(self, chunk_size=8192):
        for i in range(0, len(self.payload), chunk_size):
            yield self.payload[i:i + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_download_rejects_small_payload_and_removes_it(monkeypatch, tmp_path):
    monkeypatch.setattr(filesystem_handler.requests, "get", lambda *a, **k: FakeResponse(b"x" * 100))
    destination = tmp_path / "temp" / "installer.exe"

    with pytest.raises(DownloadTooSmallError):
        FileSystemHandler.download_file("https://example.invalid/i.exe", destination, min_size=1000)
    assert not destination.exists()


def test_download_http_error(monkeypatch, tmp_path):
    monkeypatch.setattr(filesystem_handler.requests, "get", lambda *a, **k: FakeResponse(b"", status=404))

    with pytest.raises(filesystem_handler.DownloadError):
        FileSystemHandler.download_file("https://example.invalid/i.exe", tmp_path / "i.exe")
    assert not (tmp_path / "i.exe").exists()


def test_download_reports_progress(monkeypatch, tmp_path):
    monkeypatch.setattr(filesystem_handler.requests, "get", lambda *a, **k: FakeResponse(b"x" * 20000))
    fractions = []

    path = FileSystemHandler.download_file("https://example.invalid/i.exe", tmp_path / "i.exe",
                                           min_size=1000, progress_callback=lambda p: fractions.append(p.fraction))

    assert path.stat().st_size == 20000
    assert fractions[-1] == 1.0
    assert fractions == sorted(fractions)
