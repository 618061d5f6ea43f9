from __future__ import annotations

import os
import zipfile

import pytest

from lanshare.errors import ArchiveError
from lanshare.transfer.archiver import (
    archive_folder,
    archive_name_for,
    extract_archive,
    is_folder_archive,
    original_folder_name,
)


@pytest.fixture
def photos(tmp_path):
    folder = tmp_path / "src" / "photos"
    (folder / "2024" / "summer").mkdir(parents=True)
    (folder / "empty").mkdir()
    (folder / "cover.jpg").write_bytes(os.urandom(4096))
    (folder / "2024" / "notes.txt").write_text("beach day", encoding="utf-8")
    (folder / "2024" / "summer" / "sea.png").write_bytes(os.urandom(10000))
    return folder


def relative_files(root) -> dict[str, bytes]:
    files = {}
    for dirpath, _, filenames in os.walk(root):
        for name in filenames:
            path = os.path.join(dirpath, name)
            with open(path, "rb") as f:
                files[os.path.relpath(path, root)] = f.read()
    return files


def test_archive_then_extract_reproduces_folder(photos, tmp_path):
    archive = archive_folder(photos, temp_dir=str(tmp_path))
    try:
        extracted = extract_archive(archive, tmp_path / "dest")
    finally:
        os.remove(archive)

    assert extracted == os.path.join(tmp_path / "dest", "photos")
    assert os.path.basename(extracted) == photos.name
    assert relative_files(extracted) == relative_files(photos)
    assert os.path.isdir(os.path.join(extracted, "empty"))


def test_archive_root_entry_is_folder_name(photos, tmp_path):
    archive = archive_folder(photos, temp_dir=str(tmp_path))
    with zipfile.ZipFile(archive) as zf:
        names = zf.namelist()
    assert names[0] == "photos/"
    assert all(name.startswith("photos/") for name in names)


def test_archive_is_deterministic(photos, tmp_path):
    first = archive_folder(photos, temp_dir=str(tmp_path))
    second = archive_folder(photos, temp_dir=str(tmp_path))
    assert first != second
    with zipfile.ZipFile(first) as a, zipfile.ZipFile(second) as b:
        assert a.namelist() == b.namelist()
        assert [i.CRC for i in a.infolist()] == [i.CRC for i in b.infolist()]


def test_extract_overwrites_existing_files(photos, tmp_path):
    dest = tmp_path / "dest"
    (dest / "photos").mkdir(parents=True)
    (dest / "photos" / "cover.jpg").write_bytes(b"old")

    archive = archive_folder(photos, temp_dir=str(tmp_path))
    extract_archive(archive, dest)
    assert (dest / "photos" / "cover.jpg").read_bytes() == (photos / "cover.jpg").read_bytes()


def test_archiving_missing_folder_fails(tmp_path):
    with pytest.raises(ArchiveError):
        archive_folder(tmp_path / "nope")


def test_extracting_garbage_fails(tmp_path):
    bogus = tmp_path / "photos.folder.zip"
    bogus.write_bytes(b"definitely not a zip")
    with pytest.raises(ArchiveError):
        extract_archive(bogus, tmp_path / "dest")
    assert bogus.exists()


def test_folder_archive_marker():
    assert archive_name_for("photos") == "photos.folder.zip"
    assert is_folder_archive("photos.folder.zip")
    assert is_folder_archive("Photos.FOLDER.ZIP")
    assert not is_folder_archive("photos.zip")
    assert original_folder_name("photos.folder.zip") == "photos"
    assert original_folder_name("backup.zip") == "backup"
