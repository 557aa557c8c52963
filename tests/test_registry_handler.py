from conftest import make_prefix, wine_calls

from samprunner.backend.handlers.registry_handler import RegistryHandler
from samprunner.backend.models.runtime import ConfigEntry, ConfigScope


def test_set_runs_reg_add(app_paths, runtime, wine_log):
    make_prefix(app_paths)
    registry = RegistryHandler(runtime)

    assert registry.set(ConfigScope.USER, "Software\\Wine\\Direct3D", "renderer", "gl")

    assert wine_calls(wine_log) == [
        "reg add HKCU\\Software\\Wine\\Direct3D /v renderer /t REG_SZ /d gl /f"
    ]


def test_delete_runs_reg_delete(app_paths, runtime, wine_log):
    make_prefix(app_paths)
    registry = RegistryHandler(runtime)

    assert registry.delete(ConfigScope.MACHINE, "Software\\Test", "Value")

    assert wine_calls(wine_log) == ["reg delete HKLM\\Software\\Test /v Value /f"]


def test_batch_keeps_caller_order(app_paths, runtime, wine_log):
    make_prefix(app_paths)
    registry = RegistryHandler(runtime)
    entries = [
        ConfigEntry(ConfigScope.USER, "Software\\Wine\\Explorer", "Desktop", "Default"),
        ConfigEntry(ConfigScope.USER, "Software\\Wine\\Explorer\\Desktops", "Default", "800x600"),
        ConfigEntry(ConfigScope.USER, "Software\\Wine\\Direct3D", "csmt", None),
    ]

    assert registry.apply_batch(entries) == 3

    calls = wine_calls(wine_log)
    assert calls[0].startswith("reg add HKCU\\Software\\Wine\\Explorer /v Desktop")
    assert calls[1].startswith("reg add HKCU\\Software\\Wine\\Explorer\\Desktops /v Default")
    assert calls[2].startswith("reg delete HKCU\\Software\\Wine\\Direct3D /v csmt")


def test_failed_write_is_not_raised(app_paths, runtime, monkeypatch):
    make_prefix(app_paths)
    monkeypatch.setenv("FAKE_REG_FAIL", "1")
    registry = RegistryHandler(runtime)

    assert registry.set(ConfigScope.USER, "Software\\Wine", "Version", "win10") is False
    assert registry.apply_batch([
        ConfigEntry(ConfigScope.USER, "Software\\Wine", "Version", "win10"),
        ConfigEntry(ConfigScope.USER, "Software\\Wine", "Other", "1"),
    ]) == 0


def test_deleting_absent_value_counts_as_success(app_paths, runtime, monkeypatch):
    make_prefix(app_paths)
    monkeypatch.setenv("FAKE_REG_FAIL", "1")
    registry = RegistryHandler(runtime)

    assert registry.delete(ConfigScope.USER, "Software\\Wine\\Direct3D", "renderer") is True


def test_missing_prefix_skips_wine(app_paths, runtime, wine_log):
    app_paths.prefix.rmdir()
    registry = RegistryHandler(runtime)

    assert registry.set(ConfigScope.USER, "Software\\Wine", "Version", "win10") is False
    assert wine_calls(wine_log) == []


def test_entries_from_table():
    entries = RegistryHandler.entries_from_table([
        ("HKCU", "Software\\Wine", "Version", "win10", "REG_SZ"),
        ("HKLM", "Software\\Test", "Flag", "1", "REG_DWORD"),
    ])
    assert entries[0].scope is ConfigScope.USER
    assert entries[1].full_key == "HKLM\\Software\\Test"
    assert entries[1].value_type == "REG_DWORD"
