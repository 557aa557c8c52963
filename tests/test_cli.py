import json
import logging

import pytest
from conftest import wine_calls

from samprunner.frontends.cli.main import RunnerCLI, main


@pytest.fixture(autouse=True)
def restore_package_logger():
    package_logger = logging.getLogger('samprunner')
    handlers = list(package_logger.handlers)
    level, propagate = package_logger.level, package_logger.propagate
    yield
    for handler in package_logger.handlers:
        if handler not in handlers:
            handler.close()
    package_logger.handlers = handlers
    package_logger.setLevel(level)
    package_logger.propagate = propagate


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "runner-data"


def run_cli(data_dir, fake_wine, *args):
    cli = RunnerCLI(["--data-dir", str(data_dir), "--wine", fake_wine, *args])
    code = cli.run()
    cli.context.shutdown()
    return code


def test_version_flag(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--version"])
    assert excinfo.value.code == 0
    assert "SA-MP Runner version" in capsys.readouterr().out


def test_status_on_empty_data_dir(data_dir, fake_wine, capsys):
    assert run_cli(data_dir, fake_wine, "status") == 0

    out = capsys.readouterr().out
    assert "wine-9.0" in out
    assert "not set up" in out
    assert (data_dir / "logs" / "samprunner-cli.log").exists()


def test_setup_creates_prefix(data_dir, fake_wine, wine_log):
    assert run_cli(data_dir, fake_wine, "setup") == 0

    assert (data_dir / "wine" / "system.reg").exists()
    assert any(call.startswith("wineboot") for call in wine_calls(wine_log))
    assert json.loads((data_dir / "config" / "settings.json").read_text())["wine_path"] == fake_wine


def test_reset_requires_confirmation(data_dir, fake_wine, capsys):
    run_cli(data_dir, fake_wine, "setup")

    assert run_cli(data_dir, fake_wine, "reset") == 1
    assert "--yes" in capsys.readouterr().out
    assert (data_dir / "wine" / "system.reg").exists()

    assert run_cli(data_dir, fake_wine, "reset", "--yes") == 0
    assert not (data_dir / "wine" / "system.reg").exists()


def test_pipeline_failure_maps_to_exit_code(data_dir, fake_wine, tmp_path, capsys):
    assert run_cli(data_dir, fake_wine, "install-base", str(tmp_path / "missing")) == 1
    assert "Please retry" in capsys.readouterr().out


def test_launch_before_setup_fails(data_dir, fake_wine):
    assert run_cli(data_dir, fake_wine, "launch", "127.0.0.1:7777") == 1
