import zipfile
from pathlib import Path

from mediashare.services.archives import ZIP_MIME_TYPE, build_folder_archive, discard_archive
from mediashare.services.resolver import ResourceKind


def test_folder_archive_keeps_folder_name_and_skips_hidden(tmp_path: Path) -> None:
    folder = tmp_path / "shared" / "Holiday"
    (folder / "day1").mkdir(parents=True)
    (folder / "beach.jpg").write_bytes(b"jpg")
    (folder / "day1" / "clip.mp4").write_bytes(b"mp4")
    (folder / ".DS_Store").write_bytes(b"junk")
    (folder / ".git").mkdir()
    (folder / ".git" / "config").write_text("[core]", encoding="utf-8")

    resource = build_folder_archive(folder, tmp_path / "archives", logical_path="Holiday")

    assert resource.kind is ResourceKind.DIRECTORY_ENTRY
    assert resource.mime_type == ZIP_MIME_TYPE
    assert resource.name == "Holiday.zip"
    with zipfile.ZipFile(resource.location) as bundle:
        assert sorted(bundle.namelist()) == ["Holiday/beach.jpg", "Holiday/day1/clip.mp4"]
        assert bundle.read("Holiday/day1/clip.mp4") == b"mp4"


def test_discard_archive_removes_file(tmp_path: Path) -> None:
    folder = tmp_path / "Docs"
    folder.mkdir()
    (folder / "a.txt").write_text("a", encoding="utf-8")
    resource = build_folder_archive(folder, tmp_path / "archives", logical_path="Docs")

    discard_archive(resource)
    discard_archive(resource)

    assert not resource.location.exists()


def test_each_download_writes_a_separate_archive(tmp_path: Path) -> None:
    folder = tmp_path / "Docs"
    folder.mkdir()

    first = build_folder_archive(folder, tmp_path / "archives", logical_path="Docs")
    second = build_folder_archive(folder, tmp_path / "archives", logical_path="Docs")

    assert first.location != second.location
    assert first.size == second.size
