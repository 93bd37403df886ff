from pathlib import Path

import pytest

import mediashare.config as config_module
from mediashare.bootstrap import BootstrapError, Bootstrapper
from mediashare.config import AppConfig


def test_bootstrapper_raises_when_cache_directory_unwritable(tmp_path: Path, monkeypatch) -> None:
    source_root = tmp_path / "shared"
    source_root.mkdir()
    cache_root = tmp_path / "cache"

    config = AppConfig(source_root=source_root, cache_root=cache_root)

    original_ensure = config_module._ensure_writable_directory

    def fake_ensure(path: Path) -> bool:
        if path.resolve() == cache_root.resolve():
            return False
        return original_ensure(path)

    monkeypatch.setattr(config_module, "_ensure_writable_directory", fake_ensure)

    with pytest.raises(BootstrapError) as excinfo:
        Bootstrapper(config).initialize()

    assert "cache" in str(excinfo.value).lower()


def test_bootstrapper_requires_existing_source(tmp_path: Path) -> None:
    config = AppConfig(source_root=tmp_path / "missing", cache_root=tmp_path / "cache")

    with pytest.raises(BootstrapError) as excinfo:
        Bootstrapper(config).initialize()

    assert "does not exist" in str(excinfo.value)


def test_bootstrapper_rejects_file_as_source(tmp_path: Path) -> None:
    source = tmp_path / "shared.txt"
    source.write_text("not a folder", encoding="utf-8")
    config = AppConfig(source_root=source, cache_root=tmp_path / "cache")

    with pytest.raises(BootstrapError):
        Bootstrapper(config).initialize()


def test_bootstrapper_clears_stale_cache_outputs(temp_config: AppConfig) -> None:
    stale = temp_config.transcode_root / "transcoded_old-0123456789abcdef.mp4"
    stale.write_bytes(b"old")

    Bootstrapper(temp_config).initialize()

    assert temp_config.transcode_root.is_dir()
    assert temp_config.archive_root.is_dir()
    assert temp_config.poster_root.is_dir()
    assert not stale.exists()
